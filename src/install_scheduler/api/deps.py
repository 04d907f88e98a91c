from functools import lru_cache
from typing import Any, Dict

from fastapi import Header, HTTPException, status

from ..config import get_settings
from ..scheduler import SchedulingEngine


@lru_cache()
def get_engine() -> SchedulingEngine:
    """
    Returns the shared scheduling engine.
    The engine keeps no per-run state, so one instance serves every request.
    """
    return SchedulingEngine()


async def get_api_key(api_key: str = Header(..., alias="api-key")) -> Dict[str, Any]:
    """
    Validate API key for protected endpoints.

    Args:
        api_key: API key extracted from the 'api-key' header

    Returns:
        Dict containing the API key

    Raises:
        HTTPException: If API key is invalid or missing
    """
    settings = get_settings()
    if api_key not in settings["api_keys"]:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API Key",
        )
    return {"api_key": api_key}
