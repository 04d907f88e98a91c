from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

from .models import Installation, Priority, SchedulingConstraints

PRIORITY_WEIGHTS: Dict[Priority, int] = {
    Priority.URGENT: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}

SEVERITY_ORDER = {'critical': 4, 'high': 3, 'medium': 2, 'low': 1}


def priority_weight(priority: Optional[Priority]) -> int:
    """Maps a priority to its sort weight (urgent=4 ... low=1); unknown values weigh 1."""
    return PRIORITY_WEIGHTS.get(priority, 1)


def group_jobs_by_date(jobs: Iterable[Installation]) -> Dict[date, List[Installation]]:
    """
    Groups jobs by scheduled date, preserving input order within each date.

    Args:
        jobs: Installations to group. Jobs without a date are skipped.

    Returns:
        Dict[date, List[Installation]]: date -> jobs on that date.
    """
    grouped = defaultdict(list)
    for job in jobs:
        if job.scheduled_date is None:
            continue
        grouped[job.scheduled_date].append(job)
    return dict(grouped)


def required_specializations_for(job: Installation, constraints: SchedulingConstraints) -> List[str]:
    """
    The specializations a job needs: the request-level constraint map merged
    with the job's own list, de-duplicated in first-seen order.
    """
    merged: List[str] = []
    for spec in list(constraints.required_specializations.get(job.id, [])) + list(job.required_specializations):
        if spec not in merged:
            merged.append(spec)
    return merged


def specialization_match_ratio(specializations: List[str], required: List[str]) -> float:
    """Share of the required specializations the technician holds; 0 when nothing is required."""
    matching = [spec for spec in required if spec in specializations]
    return len(matching) / max(len(required), 1)


def calculate_variance(values: List[float]) -> float:
    """Population variance; 0 for an empty list."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / len(values)
