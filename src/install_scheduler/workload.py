"""
Workload balancing module.

Spreads a region's installations across its active team members day by day
and grades each member's day by utilization:
- Above 100%: critical
- Above 90%: overloaded
- Below 60%: underutilized
- Otherwise: optimal

The workload score peaks when utilization sits near 80%.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Tuple

from .models import (
    Installation,
    OptimizedAssignment,
    TeamMember,
    TeamWorkload,
    WorkloadAssignment,
    WorkloadDistribution,
    WorkloadImbalances,
    WorkloadStatus,
)
from .utils import calculate_variance, group_jobs_by_date, priority_weight

logger = logging.getLogger(__name__)

HOURS_PER_JOB = 2
TRAVEL_MINUTES_PER_JOB = 30
OPTIMAL_UTILIZATION = 80


def workload_status(utilization: float) -> WorkloadStatus:
    if utilization > 100:
        return WorkloadStatus.CRITICAL
    if utilization > 90:
        return WorkloadStatus.OVERLOADED
    if utilization < 60:
        return WorkloadStatus.UNDERUTILIZED
    return WorkloadStatus.OPTIMAL


def calculate_workload_score(utilization: float) -> float:
    difference = abs(utilization - OPTIMAL_UTILIZATION)
    if difference <= 5:
        return 100
    if difference <= 10:
        return 90
    if difference <= 15:
        return 80
    if difference <= 20:
        return 70
    return max(50, 70 - difference)


def _balance_day(members: List[TeamMember], jobs: List[Installation], day: date) -> List[WorkloadAssignment]:
    loads: Dict[str, List[str]] = {member.id: [] for member in members}
    ordered = sorted(jobs, key=lambda job: (-priority_weight(job.priority), -job.duration))

    for job in ordered:
        open_members = [m for m in members if len(loads[m.id]) < m.capacity]
        if not open_members:
            logger.warning("No capacity left on %s for installation %s", day.isoformat(), job.id)
            continue
        least_loaded = min(open_members, key=lambda m: len(loads[m.id]))
        loads[least_loaded.id].append(job.id)

    assignments = []
    for member in members:
        scheduled = loads[member.id]
        if not scheduled:
            continue
        utilization = len(scheduled) / member.capacity * 100
        assignments.append(WorkloadAssignment(
            team_member_id=member.id,
            date=day,
            scheduled_jobs=scheduled,
            estimated_hours=len(scheduled) * HOURS_PER_JOB,
            travel_time=len(scheduled) * TRAVEL_MINUTES_PER_JOB,
            utilization_percentage=utilization,
            workload_score=calculate_workload_score(utilization),
            status=workload_status(utilization),
        ))
    return assignments


def balance_team_workload(
    team_members: List[TeamMember],
    installations: List[Installation],
    region: Optional[str] = None,
    date_range: Optional[Tuple[date, date]] = None,
) -> List[WorkloadAssignment]:
    """
    Distributes installations over team members per scheduled date.

    Each day, jobs ordered by priority (then longest first) go to the least
    loaded active member still under capacity. Jobs that find no room are
    left out of the result; find_unplaced_installations lists them.

    Args:
        team_members: Candidate members.
        installations: Jobs to distribute. Undated jobs are ignored.
        region: Only members whose region or sub-regions include it.
        date_range: Inclusive (start, end) filter on scheduled dates.

    Returns:
        List[WorkloadAssignment]: One entry per member per date with work.
    """
    members = [
        m for m in team_members
        if m.is_active and m.capacity > 0 and (not region or m.region == region or region in m.sub_regions)
    ]
    jobs = installations
    if date_range is not None:
        start, end = date_range
        jobs = [job for job in jobs if job.scheduled_date and start <= job.scheduled_date <= end]

    assignments: List[WorkloadAssignment] = []
    for day, day_jobs in group_jobs_by_date(jobs).items():
        assignments.extend(_balance_day(members, day_jobs, day))
    return assignments


def find_unplaced_installations(
    assignments: List[WorkloadAssignment],
    installations: List[Installation],
    date_range: Optional[Tuple[date, date]] = None,
) -> List[Installation]:
    """
    Dated installations that balance_team_workload could not place.

    Args:
        assignments: Output of balance_team_workload for the same inputs.
        installations: The installations that were balanced.
        date_range: The same inclusive date filter that was applied.

    Returns:
        List[Installation]: Jobs in range that no member has room for, in input order.
    """
    placed = {job_id for assignment in assignments for job_id in assignment.scheduled_jobs}
    unplaced = []
    for job in installations:
        if job.scheduled_date is None or job.id in placed:
            continue
        if date_range is not None and not date_range[0] <= job.scheduled_date <= date_range[1]:
            continue
        unplaced.append(job)
    return unplaced


def identify_workload_imbalances(assignments: List[WorkloadAssignment]) -> WorkloadImbalances:
    overloaded = [a for a in assignments if a.status in (WorkloadStatus.OVERLOADED, WorkloadStatus.CRITICAL)]
    underutilized = [a for a in assignments if a.status == WorkloadStatus.UNDERUTILIZED]

    recommendations = []
    if overloaded:
        recommendations.append(f"{len(overloaded)} team members are overloaded and may need job redistribution")
    if underutilized:
        recommendations.append(f"{len(underutilized)} team members are underutilized and could take on additional work")
    if overloaded and underutilized:
        recommendations.append('Consider redistributing work from overloaded to underutilized team members')

    return WorkloadImbalances(overloaded=overloaded, underutilized=underutilized, recommendations=recommendations)


def calculate_workload_distribution(
    assignments: List[OptimizedAssignment],
    teams: List[TeamMember],
) -> WorkloadDistribution:
    """
    Summarises how optimized assignments load each team member.

    Both the lead and the assistant on an assignment are credited with it.
    Utilization is measured against one day of capacity.
    """
    workloads = {team.id: TeamWorkload() for team in teams}
    for assignment in assignments:
        for member_id in (assignment.lead_id, assignment.assistant_id):
            workload = workloads.get(member_id) if member_id else None
            if workload is None:
                continue
            workload.job_count += 1
            workload.total_distance += assignment.estimated_travel_distance
            workload.total_time += assignment.estimated_travel_time

    utilizations = []
    for team in teams:
        workload = workloads[team.id]
        capacity = team.capacity or 8
        workload.utilization_percentage = workload.job_count / capacity * 100
        workload.efficiency_score = (workload.total_distance / workload.total_time * 100) if workload.total_time > 0 else 0.0
        utilizations.append(workload.utilization_percentage)

    average = sum(utilizations) / len(utilizations) if utilizations else 0.0
    variance = calculate_variance(utilizations)

    recommendations = []
    if variance > 400:
        recommendations.append('High workload imbalance detected. Consider redistributing assignments.')
    if average < 60:
        recommendations.append('Team utilization is below optimal. Consider increasing job assignments.')
    elif average > 90:
        recommendations.append('Team utilization is very high. Consider adding more team members or extending work hours.')
    underutilized = [w for w in workloads.values() if w.utilization_percentage < 50]
    if underutilized:
        recommendations.append(f"{len(underutilized)} team member(s) are underutilized and could take on more work.")

    return WorkloadDistribution(
        team_workloads=workloads,
        average_utilization=round(average, 2),
        workload_variance=round(variance, 2),
        recommendations=recommendations,
    )
