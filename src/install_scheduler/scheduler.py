import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from .availability import get_daily_window, is_available_on
from .config import get_settings
from .conflicts import UNRESOLVED_REASON, detect_conflicts, resolve_conflicts
from .context import OptimizationContext
from .geo import build_distance_matrix, calculate_distance, create_geographic_clusters
from .models import (
    DailySchedule,
    Installation,
    OptimizationMetrics,
    OptimizedAssignment,
    RejectedJob,
    SchedulingConflict,
    SchedulingRequest,
    SchedulingResult,
    TeamMember,
)
from .routing import sequence_daily_routes
from .strategies import get_strategy
from .teams import find_optimal_pairings
from .utils import calculate_variance

logger = logging.getLogger(__name__)

# Rejection reasons for jobs that never reach a strategy
INCOMPLETE_ADDRESS = 'incomplete_address'
MISSING_SCHEDULED_DATE = 'missing_scheduled_date'

# Miles of travel per job at which geographic efficiency reaches zero
EFFICIENCY_MILES_PER_JOB = 50


class SchedulingEngine:
    """
    Assigns installation jobs to technicians.

    One call to optimize_schedule runs the whole pipeline: validate input,
    build distance data and clusters, run the strategy for the requested
    optimization goal, lay out each technician's day, detect and resolve
    conflicts, then compute metrics, daily schedules and recommendations.

    All per-run state lives in an OptimizationContext, so a single engine can
    be shared between callers.
    """

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        self.settings = settings if settings is not None else get_settings()

    def optimize_schedule(self, request: Union[SchedulingRequest, Dict[str, Any]]) -> SchedulingResult:
        """
        Builds an optimized schedule for a request.

        Business outcomes (unassignable jobs, conflicts, overload) are
        reported in the result, never raised.

        Args:
            request: A SchedulingRequest, or a dict with the same shape.

        Returns:
            SchedulingResult: Assignments, unassigned and rejected jobs,
                conflicts, metrics, daily schedules and recommendations.

        Raises:
            ValueError: If request is None.
            TypeError: If request is neither a SchedulingRequest nor a dict.
            pydantic.ValidationError: If a dict request is malformed.
        """
        if request is None:
            raise ValueError("optimize_schedule requires a scheduling request.")
        if isinstance(request, dict):
            request = SchedulingRequest.model_validate(request)
        elif not isinstance(request, SchedulingRequest):
            raise TypeError(f"Expected SchedulingRequest or dict, got {type(request).__name__}")

        jobs, rejected = self.validate_jobs(request.jobs)
        teams = self.filter_available_teams(request.teams)
        goal = request.preferences.optimization_goal
        logger.info(
            "Optimizing %d jobs (%d rejected) across %d technicians, goal=%s",
            len(jobs), len(rejected), len(teams), goal.value,
        )

        context = OptimizationContext(request, jobs, teams, self.settings)
        context.distance_matrix = build_distance_matrix(jobs)
        context.clusters = create_geographic_clusters(
            jobs,
            self.settings["cluster_radius_miles"],
            self.settings["min_jobs_per_cluster"],
        )

        outcome = get_strategy(goal)(context)
        sequence_daily_routes(outcome.assignments, context)

        conflicts = detect_conflicts(outcome.assignments, teams, request.constraints, jobs)
        resolution = resolve_conflicts(outcome.assignments, conflicts, request, context)
        assignments = sequence_daily_routes(resolution.assignments, context)

        unassigned = list(outcome.unassigned_jobs)
        reasons = dict(outcome.unassigned_reasons)
        for job in resolution.unassigned_jobs:
            unassigned.append(job)
            reasons[job.id] = UNRESOLVED_REASON
        for job in unassigned:
            logger.warning("Installation %s left unassigned: %s", job.id, reasons.get(job.id))

        remaining = detect_conflicts(assignments, teams, request.constraints, jobs)

        if request.preferences.pair_assistants:
            self.pair_assistants(assignments, context)

        metrics = self.calculate_optimization_metrics(assignments, remaining, context)
        schedule_by_date = self.generate_daily_schedules(assignments, context)
        recommendations = self.generate_recommendations(unassigned, rejected, remaining, metrics, assignments)

        logger.info(
            "Scheduled %d jobs, %d unassigned, %d conflicts detected, %d remaining",
            len(assignments), len(unassigned), len(conflicts), len(remaining),
        )
        return SchedulingResult(
            assignments=assignments,
            unassigned_jobs=unassigned,
            unassigned_reasons=reasons,
            rejected_jobs=rejected,
            optimization_metrics=metrics,
            conflicts=resolution.conflicts,
            remaining_conflicts=remaining,
            recommendations=recommendations,
            schedule_by_date=schedule_by_date,
        )

    @staticmethod
    def validate_jobs(jobs: List[Installation]) -> Tuple[List[Installation], List[RejectedJob]]:
        """Splits jobs into schedulable ones and rejects (incomplete address or no date)."""
        valid: List[Installation] = []
        rejected: List[RejectedJob] = []
        for job in jobs:
            if not job.address.is_complete():
                rejected.append(RejectedJob(installation=job, reason=INCOMPLETE_ADDRESS))
            elif job.scheduled_date is None:
                rejected.append(RejectedJob(installation=job, reason=MISSING_SCHEDULED_DATE))
            else:
                valid.append(job)
        for reject in rejected:
            logger.warning("Rejected installation %s: %s", reject.installation.id, reject.reason)
        return valid, rejected

    @staticmethod
    def filter_available_teams(teams: List[TeamMember]) -> List[TeamMember]:
        """Active technicians with at least one availability entry."""
        return [team for team in teams if team.is_active and team.availability]

    @staticmethod
    def pair_assistants(assignments: List[OptimizedAssignment], context: OptimizationContext) -> None:
        """
        Attaches each lead's paired assistant to the lead's jobs.

        An assistant only joins on days they are available and free of jobs of
        their own, up to their daily capacity.
        """
        pairings = {pairing.lead_id: pairing.assistant_id for pairing in find_optimal_pairings(context.teams)}
        own_days = {(a.technician_id, a.scheduled_date) for a in assignments}
        attached: Dict[Tuple[str, date], int] = defaultdict(int)
        for assignment in assignments:
            assistant_id = pairings.get(assignment.lead_id)
            if assistant_id is None or assignment.assistant_id:
                continue
            day = assignment.scheduled_date
            assistant = context.teams_by_id[assistant_id]
            if (assistant_id, day) in own_days or attached[(assistant_id, day)] >= context.daily_capacity(assistant):
                continue
            if is_available_on(assistant, day):
                assignment.assistant_id = assistant_id
                attached[(assistant_id, day)] += 1

    @staticmethod
    def _baseline_distance(assignments: List[OptimizedAssignment], context: OptimizationContext) -> float:
        """Travel if every technician visited their jobs in input order."""
        input_order = {job.id: index for index, job in enumerate(context.jobs)}
        routes = defaultdict(list)
        for assignment in assignments:
            routes[(assignment.technician_id, assignment.scheduled_date)].append(assignment.installation_id)

        total = 0.0
        for (tech_id, _), job_ids in routes.items():
            ordered = [context.jobs_by_id[job_id] for job_id in sorted(job_ids, key=input_order.get)]
            team = context.teams_by_id.get(tech_id)
            first = ordered[0]
            if team and team.base_coordinates and first.address.coordinates:
                total += calculate_distance(team.base_coordinates, first.address.coordinates)
            for previous, current in zip(ordered, ordered[1:]):
                total += context.travel_between(previous, current).distance
        return total

    def calculate_optimization_metrics(
        self,
        assignments: List[OptimizedAssignment],
        remaining_conflicts: List[SchedulingConflict],
        context: OptimizationContext,
    ) -> OptimizationMetrics:
        total_distance = sum(a.estimated_travel_distance for a in assignments)
        total_time = sum(a.estimated_travel_time for a in assignments)

        counts = [sum(1 for a in assignments if a.technician_id == team.id) for team in context.teams]
        average = sum(counts) / len(counts) if counts else 0.0

        if context.jobs:
            efficiency = max(0.0, 1 - total_distance / (len(context.jobs) * EFFICIENCY_MILES_PER_JOB))
        else:
            efficiency = 1.0

        assigned_dates = {a.installation_id: a.scheduled_date for a in assignments}
        with_deadline = [job for job in context.jobs if context.deadline_for(job) is not None]
        met = sum(
            1 for job in with_deadline
            if job.id in assigned_dates and assigned_dates[job.id] <= context.deadline_for(job)
        )
        compliance = met / len(with_deadline) if with_deadline else 1.0

        working_days = len({a.scheduled_date for a in assignments})
        capacity = sum(context.daily_capacity(team) for team in context.teams) * working_days
        utilization = len(assignments) / capacity if capacity else 0.0

        baseline = self._baseline_distance(assignments, context)
        improvement = (baseline - total_distance) / baseline * 100 if baseline > 0 else 0.0

        return OptimizationMetrics(
            total_travel_distance=round(total_distance, 2),
            total_travel_time=total_time,
            average_jobs_per_team_member=round(average, 2),
            workload_variance=round(calculate_variance(counts), 2),
            geographic_efficiency=round(efficiency, 4),
            deadline_compliance=round(compliance, 4),
            utilization_rate=round(utilization, 4),
            conflict_rate=round(len(remaining_conflicts) / len(assignments), 4) if assignments else 0.0,
            improvement_percentage=round(improvement, 2),
        )

    @staticmethod
    def generate_daily_schedules(
        assignments: List[OptimizedAssignment],
        context: OptimizationContext,
    ) -> Dict[date, DailySchedule]:
        by_date = defaultdict(list)
        for assignment in assignments:
            by_date[assignment.scheduled_date].append(assignment)

        schedules = {}
        for day in sorted(by_date):
            day_assignments = by_date[day]
            counts = defaultdict(int)
            for assignment in day_assignments:
                counts[assignment.technician_id] += 1

            utilization = {}
            warnings = []
            for tech_id, count in counts.items():
                team = context.teams_by_id.get(tech_id)
                capacity = context.daily_capacity(team) if team else 0
                utilization[tech_id] = round(count / capacity * 100, 2) if capacity else 0.0
                if count > capacity:
                    name = team.full_name if team else tech_id
                    warnings.append(f"{name} is scheduled for {count} jobs, above daily capacity of {capacity}")

            for assignment in day_assignments:
                team = context.teams_by_id.get(assignment.technician_id)
                if team is None or assignment.end_time is None:
                    continue
                window = get_daily_window(team, day, context.constraints.working_hours)
                day_end = window[1] if window else datetime.combine(day, context.constraints.working_hours.end)
                if assignment.end_time > day_end:
                    warnings.append(f"Job {assignment.installation_id} ends after {team.full_name}'s working hours")

            schedules[day] = DailySchedule(
                date=day,
                assignments=day_assignments,
                total_jobs=len(day_assignments),
                total_travel_distance=round(sum(a.estimated_travel_distance for a in day_assignments), 2),
                total_travel_time=sum(a.estimated_travel_time for a in day_assignments),
                team_utilization=utilization,
                warnings=warnings,
            )
        return schedules

    @staticmethod
    def generate_recommendations(
        unassigned: List[Installation],
        rejected: List[RejectedJob],
        remaining_conflicts: List[SchedulingConflict],
        metrics: OptimizationMetrics,
        assignments: List[OptimizedAssignment],
    ) -> List[str]:
        recommendations = []
        if unassigned:
            recommendations.append(
                f"{len(unassigned)} jobs could not be assigned. Consider adding more team members or adjusting constraints.")
        if rejected:
            recommendations.append(
                f"{len(rejected)} jobs were rejected for missing address or date details. Complete them and re-run.")
        if remaining_conflicts:
            recommendations.append(
                f"{len(remaining_conflicts)} scheduling conflicts remain. Review and resolve conflicts for optimal schedule.")
        if metrics.workload_variance > 2:
            recommendations.append('High workload variance detected. Consider redistributing jobs for better balance.')
        if assignments and metrics.geographic_efficiency < 0.7:
            recommendations.append('Travel efficiency is below optimal. Consider geographic clustering of assignments.')
        if assignments and metrics.utilization_rate < 0.6:
            recommendations.append('Team utilization is low. Consider increasing job assignments or reducing team size.')
        return recommendations
