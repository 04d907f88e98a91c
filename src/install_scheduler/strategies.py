"""
Optimization strategies.

Each strategy takes the per-call OptimizationContext and returns a
StrategyOutcome (assignments plus unassigned jobs with reasons). Strategies
are greedy heuristics; none of them searches for a global optimum.

The engine picks one through STRATEGIES, keyed by optimization goal, with
the hybrid strategy as the fallback.
"""

import logging
import uuid
from collections import Counter
from datetime import date
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .context import OptimizationContext
from .geo import calculate_distance
from .models import (
    GeographicCluster,
    Installation,
    OptimizationGoal,
    OptimizedAssignment,
    RoutePoint,
    TeamMember,
    UserRole,
)
from .routing import optimize_route
from .utils import priority_weight, specialization_match_ratio

logger = logging.getLogger(__name__)

# Unassigned reasons
NO_ELIGIBLE_TECHNICIAN = 'no_eligible_technician'
NO_TECHNICIAN_IN_RANGE = 'no_technician_in_range'
MISSING_COORDINATES = 'missing_coordinates'

DEFAULT_COMPLETION_RATE = 0.8
DEFAULT_TRAVEL_EFFICIENCY = 0.7


class StrategyOutcome(BaseModel):
    assignments: List[OptimizedAssignment] = Field(default_factory=list)
    unassigned_jobs: List[Installation] = Field(default_factory=list)
    unassigned_reasons: Dict[str, str] = Field(default_factory=dict)

    def unassign(self, job: Installation, reason: str) -> None:
        self.unassigned_jobs.append(job)
        self.unassigned_reasons[job.id] = reason


class _LoadTracker:
    """Running job counts per technician, overall and per date."""

    def __init__(self):
        self.total = Counter()
        self.daily = Counter()

    def add(self, team: TeamMember, day: date) -> None:
        self.total[team.id] += 1
        self.daily[(team.id, day)] += 1

    def on(self, team: TeamMember, day: date) -> int:
        return self.daily[(team.id, day)]


def calculate_assignment_workload_score(team: TeamMember, job: Installation) -> float:
    """Job size (relative to a 4 hour job) weighted by the technician's completion rate."""
    completion = DEFAULT_COMPLETION_RATE
    if team.performance_metrics and team.performance_metrics.completion_rate:
        completion = team.performance_metrics.completion_rate
    return min(job.duration / 240, 1) * completion


def calculate_assignment_efficiency_score(team: TeamMember, job: Installation) -> float:
    efficiency = DEFAULT_TRAVEL_EFFICIENCY
    if team.performance_metrics and team.performance_metrics.travel_efficiency:
        efficiency = team.performance_metrics.travel_efficiency
    bonus = 0.1 if team.specializations else 0.0
    return min(efficiency + bonus, 1)


def create_optimized_assignment(
    job: Installation,
    team: TeamMember,
    context: OptimizationContext,
    route_point: Optional[RoutePoint] = None,
) -> OptimizedAssignment:
    """Builds the assignment record for a job; timing is filled later by route sequencing."""
    is_assistant = team.role == UserRole.ASSISTANT
    return OptimizedAssignment(
        id=f"assignment_{job.id}_{team.id}_{uuid.uuid4().hex[:8]}",
        installation_id=job.id,
        lead_id=None if is_assistant else team.id,
        assistant_id=team.id if is_assistant else None,
        scheduled_date=job.scheduled_date,
        duration=job.duration,
        priority=job.priority,
        estimated_travel_time=route_point.travel_time_from_previous if route_point else 0,
        estimated_travel_distance=route_point.distance_from_previous if route_point else 0.0,
        travel_route=[route_point] if route_point else [],
        buffer_time=context.constraints.buffer_time,
        workload_score=calculate_assignment_workload_score(team, job),
        efficiency_score=calculate_assignment_efficiency_score(team, job),
    )


def _eligible(context: OptimizationContext, job: Installation) -> List[TeamMember]:
    return [team for team in context.teams if context.can_team_handle_job(team, job)]


# --- Travel distance ---

def _cluster_candidates(context: OptimizationContext, cluster: GeographicCluster) -> List[TeamMember]:
    """In-radius technicians, best capacity-to-distance ratio first; a distance of 0 ranks highest."""
    ranked = []
    for team in context.teams:
        base = team.base_coordinates
        if base is None:
            continue
        distance = calculate_distance(base, cluster.center)
        if distance > team.travel_radius:
            continue
        ratio = float('inf') if distance == 0 else team.capacity / distance
        ranked.append((ratio, team))
    ranked.sort(key=lambda pair: pair[0], reverse=True)
    return [team for _, team in ranked]


def optimize_for_travel_distance(context: OptimizationContext) -> StrategyOutcome:
    """
    Assigns whole geographic clusters to the best-placed technician.

    The technician within travel radius of the cluster centre with the best
    capacity/distance ratio takes the cluster; jobs they cannot take
    (availability, specialization, daily capacity) go to the next in-radius
    technician. Each technician's share of a cluster is ordered with
    optimize_route.
    """
    outcome = StrategyOutcome()
    loads = _LoadTracker()

    for job in context.jobs:
        if job.address.coordinates is None:
            outcome.unassign(job, MISSING_COORDINATES)

    for cluster in context.clusters:
        candidates = _cluster_candidates(context, cluster)
        if not candidates:
            logger.info("No technician within range of %s (%d jobs)", cluster.id, len(cluster.jobs))
            for job in cluster.jobs:
                outcome.unassign(job, NO_TECHNICIAN_IN_RANGE)
            continue

        shares: Dict[str, List[Installation]] = {}
        for job in cluster.jobs:
            chosen = next(
                (team for team in candidates
                 if context.can_team_handle_job(team, job)
                 and loads.on(team, job.scheduled_date) < context.daily_capacity(team)),
                None,
            )
            if chosen is None:
                outcome.unassign(job, NO_TECHNICIAN_IN_RANGE)
                continue
            loads.add(chosen, job.scheduled_date)
            shares.setdefault(chosen.id, []).append(job)

        for team_id, jobs in shares.items():
            team = context.teams_by_id[team_id]
            route = optimize_route(jobs, team, context.settings["route_time_limit_seconds"])
            jobs_by_id = {job.id: job for job in jobs}
            for point in route.route:
                outcome.assignments.append(create_optimized_assignment(jobs_by_id[point.job_id], team, context, point))

    return outcome


# --- Workload balance ---

def optimize_for_workload_balance(context: OptimizationContext) -> StrategyOutcome:
    """
    Spreads jobs evenly, highest priority first.

    Each job goes to the eligible technician with the fewest jobs that day.
    If that would push the technician's total above balance_threshold_factor
    times the mean jobs per technician, an eligible technician still within
    the threshold is preferred.
    """
    outcome = StrategyOutcome()
    loads = _LoadTracker()
    jobs = sorted(context.jobs, key=lambda job: -priority_weight(job.priority))
    threshold = len(jobs) / max(len(context.teams), 1) * context.settings["balance_threshold_factor"]

    for job in jobs:
        eligible = _eligible(context, job)
        if not eligible:
            outcome.unassign(job, NO_ELIGIBLE_TECHNICIAN)
            continue

        ranked = sorted(eligible, key=lambda team: (loads.on(team, job.scheduled_date), loads.total[team.id]))
        chosen = ranked[0]
        if loads.total[chosen.id] + 1 > threshold:
            alternative = next((team for team in ranked[1:] if loads.total[team.id] + 1 <= threshold), None)
            if alternative is not None:
                chosen = alternative

        loads.add(chosen, job.scheduled_date)
        outcome.assignments.append(create_optimized_assignment(job, chosen, context))

    return outcome


# --- Deadline priority ---

def _deadline_order(context: OptimizationContext, jobs: List[Installation]) -> List[Installation]:
    with_deadline = [job for job in jobs if context.deadline_for(job) is not None]
    without_deadline = [job for job in jobs if context.deadline_for(job) is None]
    with_deadline.sort(key=lambda job: (context.deadline_for(job), -priority_weight(job.priority)))
    without_deadline.sort(key=lambda job: -priority_weight(job.priority))
    return with_deadline + without_deadline


def optimize_for_deadlines(context: OptimizationContext) -> StrategyOutcome:
    """
    Handles jobs with deadlines first (earliest deadline, then priority),
    then the rest by priority. A job with a deadline goes to the first
    eligible technician who can meet it: the job date is on or before the
    deadline and the technician has spare capacity that day. Otherwise the
    first eligible technician takes it.
    """
    outcome = StrategyOutcome()
    loads = _LoadTracker()

    for job in _deadline_order(context, context.jobs):
        eligible = _eligible(context, job)
        if not eligible:
            outcome.unassign(job, NO_ELIGIBLE_TECHNICIAN)
            continue

        chosen = eligible[0]
        deadline = context.deadline_for(job)
        if deadline is not None and job.scheduled_date <= deadline:
            chosen = next(
                (team for team in eligible if loads.on(team, job.scheduled_date) < context.daily_capacity(team)),
                chosen,
            )

        loads.add(chosen, job.scheduled_date)
        outcome.assignments.append(create_optimized_assignment(job, chosen, context))

    return outcome


# --- Customer satisfaction ---

def calculate_customer_satisfaction_score(team: TeamMember, job: Installation, context: OptimizationContext) -> float:
    score = 0.0
    metrics = team.performance_metrics
    if metrics:
        score += metrics.customer_satisfaction * 0.4
        score += metrics.completion_rate * 0.3
    score += specialization_match_ratio(team.specializations, context.required_specializations(job)) * 0.2
    distance = context.distance_to_team(team, job)
    if distance is not None:
        radius = context.settings["proximity_bonus_radius_miles"]
        score += max(0.0, (radius - distance) / radius) * 0.1
    return score


def optimize_for_customer_satisfaction(context: OptimizationContext) -> StrategyOutcome:
    """Gives each job, independently, to the eligible technician with the best service record."""
    outcome = StrategyOutcome()
    for job in context.jobs:
        eligible = _eligible(context, job)
        if not eligible:
            outcome.unassign(job, NO_ELIGIBLE_TECHNICIAN)
            continue
        best = max(eligible, key=lambda team: calculate_customer_satisfaction_score(team, job, context))
        outcome.assignments.append(create_optimized_assignment(job, best, context))
    return outcome


# --- Hybrid ---

def calculate_hybrid_score(team: TeamMember, job: Installation, context: OptimizationContext, current_load: int) -> float:
    """Equal-weight blend of proximity, spare load, specialization match and performance."""
    settings = context.settings
    score = 0.0

    distance = context.distance_to_team(team, job)
    if distance is not None:
        radius = settings["hybrid_proximity_radius_miles"]
        score += max(0.0, (radius - distance) / radius) * 0.25

    ceiling = settings["hybrid_load_ceiling"]
    score += max(0.0, (ceiling - current_load) / ceiling) * 0.25

    score += specialization_match_ratio(team.specializations, context.required_specializations(job)) * 0.25

    metrics = team.performance_metrics
    if metrics:
        score += (metrics.completion_rate + metrics.customer_satisfaction + metrics.travel_efficiency) / 3 * 0.25
    return score


def optimize_hybrid(context: OptimizationContext) -> StrategyOutcome:
    """Gives each job, in input order, to the eligible technician with the best hybrid score."""
    outcome = StrategyOutcome()
    loads = _LoadTracker()
    for job in context.jobs:
        eligible = _eligible(context, job)
        if not eligible:
            outcome.unassign(job, NO_ELIGIBLE_TECHNICIAN)
            continue
        best = max(eligible, key=lambda team: calculate_hybrid_score(team, job, context, loads.total[team.id]))
        loads.add(best, job.scheduled_date)
        outcome.assignments.append(create_optimized_assignment(job, best, context))
    return outcome


Strategy = Callable[[OptimizationContext], StrategyOutcome]

STRATEGIES: Dict[OptimizationGoal, Strategy] = {
    OptimizationGoal.TRAVEL_DISTANCE: optimize_for_travel_distance,
    OptimizationGoal.WORKLOAD_BALANCE: optimize_for_workload_balance,
    OptimizationGoal.DEADLINE_PRIORITY: optimize_for_deadlines,
    OptimizationGoal.CUSTOMER_SATISFACTION: optimize_for_customer_satisfaction,
    OptimizationGoal.HYBRID: optimize_hybrid,
}


def get_strategy(goal: Optional[OptimizationGoal]) -> Strategy:
    return STRATEGIES.get(goal, optimize_hybrid)
