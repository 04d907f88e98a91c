import os
from datetime import time
from functools import lru_cache
from typing import Any, Dict

from dotenv import load_dotenv


def _parse_time(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


@lru_cache()
def get_settings() -> Dict[str, Any]:
    """
    Returns scheduler settings from environment variables (a .env file is honoured).
    Cached so the environment is read once per process; call
    get_settings.cache_clear() after changing variables in tests.
    """
    load_dotenv()
    return {
        # Geographic clustering
        "cluster_radius_miles": float(os.environ.get("SCHEDULER_CLUSTER_RADIUS_MILES", "25")),
        "min_jobs_per_cluster": int(os.environ.get("SCHEDULER_MIN_JOBS_PER_CLUSTER", "2")),
        # Strategy tuning
        "balance_threshold_factor": float(os.environ.get("SCHEDULER_BALANCE_THRESHOLD_FACTOR", "1.2")),
        "proximity_bonus_radius_miles": float(os.environ.get("SCHEDULER_PROXIMITY_BONUS_RADIUS", "50")),
        "hybrid_proximity_radius_miles": float(os.environ.get("SCHEDULER_HYBRID_PROXIMITY_RADIUS", "100")),
        "hybrid_load_ceiling": int(os.environ.get("SCHEDULER_HYBRID_LOAD_CEILING", "10")),
        # Team pairing
        "pairing_threshold": float(os.environ.get("SCHEDULER_PAIRING_THRESHOLD", "60")),
        # Working day
        "workday_start": _parse_time(os.environ.get("SCHEDULER_WORKDAY_START", "08:00")),
        "workday_end": _parse_time(os.environ.get("SCHEDULER_WORKDAY_END", "17:00")),
        # Route solver; 0 keeps the first solution without local search
        "route_time_limit_seconds": int(os.environ.get("SCHEDULER_ROUTE_TIME_LIMIT_SECONDS", "0")),
        # API
        "api_keys": [key for key in os.environ.get("SCHEDULER_API_KEYS", "").split(",") if key],
    }
