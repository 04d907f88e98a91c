"""
Conflict detection and resolution.

Detection inspects a set of sequenced assignments and reports every rule
violation it finds. Resolution makes one best-effort pass over those
conflicts, moving jobs to other technicians where possible and demoting the
rest to unassigned. Callers re-detect afterwards to see what remains.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from .availability import is_available_on
from .context import OptimizationContext
from .models import (
    ConflictResolution,
    ConflictResolutionAction,
    ConflictSeverity,
    ConflictType,
    Installation,
    OptimizationGoal,
    OptimizedAssignment,
    ResolutionMetrics,
    SchedulingConflict,
    SchedulingConstraints,
    SchedulingRequest,
    TeamMember,
    UserRole,
)
from .utils import SEVERITY_ORDER, priority_weight, required_specializations_for

logger = logging.getLogger(__name__)

# Conflicts only worth fixing when a better technician exists; never demoted
SOFT_CONFLICTS = {ConflictType.TRAVEL_DISTANCE, ConflictType.GEOGRAPHIC_MISMATCH}

UNRESOLVED_REASON = 'conflict_unresolved'


def _by_technician_and_date(assignments: Iterable[OptimizedAssignment]) -> Dict[Tuple[str, date], List[OptimizedAssignment]]:
    grouped = defaultdict(list)
    for assignment in assignments:
        if assignment.technician_id:
            grouped[(assignment.technician_id, assignment.scheduled_date)].append(assignment)
    return grouped


def _member_name(member_id: str, teams_by_id: Dict[str, TeamMember]) -> str:
    member = teams_by_id.get(member_id)
    return member.full_name if member else member_id


def _timed(stops: List[OptimizedAssignment]) -> List[OptimizedAssignment]:
    return sorted((a for a in stops if a.start_time and a.end_time), key=lambda a: a.start_time)


def _detect_time_overlaps(grouped, teams_by_id) -> List[SchedulingConflict]:
    conflicts = []
    for (tech_id, day), stops in grouped.items():
        timed = _timed(stops)
        for i, first in enumerate(timed):
            for second in timed[i + 1:]:
                if second.start_time >= first.end_time:
                    break
                conflicts.append(SchedulingConflict(
                    id=f"time_overlap_{first.installation_id}_{second.installation_id}",
                    type=ConflictType.TIME_OVERLAP,
                    severity=ConflictSeverity.HIGH,
                    description=f"Team member {_member_name(tech_id, teams_by_id)} has overlapping assignments on {day.isoformat()}",
                    affected_jobs=[first.installation_id, second.installation_id],
                    affected_team_members=[tech_id],
                    suggested_resolution='Reschedule or reassign one of the conflicting assignments',
                ))
    return conflicts


def _detect_capacity(grouped, teams_by_id, constraints: SchedulingConstraints) -> List[SchedulingConflict]:
    conflicts = []
    for (tech_id, day), stops in grouped.items():
        member = teams_by_id.get(tech_id)
        capacity = min(member.capacity, constraints.max_daily_jobs) if member else constraints.max_daily_jobs
        if len(stops) <= capacity:
            continue
        excess = len(stops) - capacity
        # Lowest priority first; later assignments lose ties
        ranked = sorted(enumerate(stops), key=lambda pair: (priority_weight(pair[1].priority), -pair[0]))
        conflicts.append(SchedulingConflict(
            id=f"capacity_exceeded_{tech_id}_{day.isoformat()}",
            type=ConflictType.CAPACITY_EXCEEDED,
            severity=ConflictSeverity.MEDIUM,
            description=f"Team member {_member_name(tech_id, teams_by_id)} exceeds daily capacity ({len(stops)}/{capacity}) on {day.isoformat()}",
            affected_jobs=[a.installation_id for _, a in ranked[:excess]],
            affected_team_members=[tech_id],
            suggested_resolution=f"Reassign {excess} jobs to other available team members",
        ))
    return conflicts


def _detect_travel_time(grouped, teams_by_id) -> List[SchedulingConflict]:
    conflicts = []
    for (tech_id, day), stops in grouped.items():
        timed = _timed(stops)
        for previous, current in zip(timed, timed[1:]):
            gap = (current.start_time - previous.end_time).total_seconds() / 60
            # Negative gaps are already reported as overlaps
            if gap < 0 or current.estimated_travel_time <= gap:
                continue
            conflicts.append(SchedulingConflict(
                id=f"travel_time_{previous.installation_id}_{current.installation_id}",
                type=ConflictType.TRAVEL_TIME,
                severity=ConflictSeverity.HIGH,
                description=(
                    f"Team member {_member_name(tech_id, teams_by_id)} needs {current.estimated_travel_time} minutes "
                    f"to reach job {current.installation_id} but has only {int(gap)}"
                ),
                affected_jobs=[previous.installation_id, current.installation_id],
                affected_team_members=[tech_id],
                suggested_resolution='Move one of the jobs to another team member or time slot',
            ))
    return conflicts


def _detect_travel_distance(assignments, teams_by_id, constraints: SchedulingConstraints) -> List[SchedulingConflict]:
    conflicts = []
    for assignment in assignments:
        member = teams_by_id.get(assignment.technician_id)
        if member is None or assignment.distance_from_base is None:
            continue
        limit = min(member.travel_radius, constraints.max_travel_distance)
        if assignment.distance_from_base > limit:
            conflicts.append(SchedulingConflict(
                id=f"travel_distance_{assignment.installation_id}",
                type=ConflictType.TRAVEL_DISTANCE,
                severity=ConflictSeverity.MEDIUM,
                description=f"Assignment requires travel of {assignment.distance_from_base} miles, exceeding limit of {limit} miles",
                affected_jobs=[assignment.installation_id],
                affected_team_members=[member.id],
                suggested_resolution='Reassign to a team member closer to the job location',
            ))
    return conflicts


def _detect_availability(assignments, teams_by_id) -> List[SchedulingConflict]:
    conflicts = []
    for assignment in assignments:
        tech_id = assignment.technician_id
        member = teams_by_id.get(tech_id)
        if member is not None and is_available_on(member, assignment.scheduled_date):
            continue
        conflicts.append(SchedulingConflict(
            id=f"unavailable_team_{assignment.installation_id}",
            type=ConflictType.UNAVAILABLE_TEAM,
            severity=ConflictSeverity.HIGH,
            description=f"Team member {_member_name(tech_id, teams_by_id)} is not available on {assignment.scheduled_date.isoformat()}",
            affected_jobs=[assignment.installation_id],
            affected_team_members=[tech_id] if tech_id else [],
            suggested_resolution='Reassign to an available team member or reschedule',
        ))
    return conflicts


def _detect_specializations(assignments, teams_by_id, constraints, jobs_by_id) -> List[SchedulingConflict]:
    conflicts = []
    for assignment in assignments:
        member = teams_by_id.get(assignment.technician_id)
        if member is None:
            continue
        job = jobs_by_id.get(assignment.installation_id)
        if job is not None:
            required = required_specializations_for(job, constraints)
        else:
            required = list(constraints.required_specializations.get(assignment.installation_id, []))
        if member.has_specialization(required):
            continue
        missing = ', '.join(required)
        conflicts.append(SchedulingConflict(
            id=f"missing_specialization_{assignment.installation_id}",
            type=ConflictType.MISSING_SPECIALIZATION,
            severity=ConflictSeverity.HIGH,
            description=f"Team member {member.full_name} lacks required specializations: {missing}",
            affected_jobs=[assignment.installation_id],
            affected_team_members=[member.id],
            suggested_resolution=f"Reassign to team member with specializations: {missing}",
        ))
    return conflicts


def _detect_deadlines(assignments, constraints: SchedulingConstraints) -> List[SchedulingConflict]:
    conflicts = []
    for assignment in assignments:
        deadline = constraints.deadlines.get(assignment.installation_id)
        if deadline is None or assignment.scheduled_date <= deadline:
            continue
        conflicts.append(SchedulingConflict(
            id=f"deadline_conflict_{assignment.installation_id}",
            type=ConflictType.DEADLINE_CONFLICT,
            severity=ConflictSeverity.CRITICAL,
            description=f"Assignment scheduled after required deadline of {deadline.isoformat()}",
            affected_jobs=[assignment.installation_id],
            affected_team_members=[assignment.technician_id] if assignment.technician_id else [],
            suggested_resolution='Prioritize this assignment or find earlier time slot',
            auto_resolvable=False,
        ))
    return conflicts


def _detect_geographic_mismatch(assignments) -> List[SchedulingConflict]:
    conflicts = []
    by_technician = defaultdict(list)
    for assignment in assignments:
        if assignment.technician_id:
            by_technician[assignment.technician_id].append(assignment)

    for tech_id, stops in by_technician.items():
        if len(stops) < 2:
            continue
        average = sum(a.estimated_travel_distance for a in stops) / len(stops)
        if average <= 0:
            continue
        for assignment in stops:
            if assignment.estimated_travel_distance > average * 2:
                conflicts.append(SchedulingConflict(
                    id=f"geographic_mismatch_{assignment.installation_id}",
                    type=ConflictType.GEOGRAPHIC_MISMATCH,
                    severity=ConflictSeverity.LOW,
                    description="Assignment is geographically isolated from team member's other jobs",
                    affected_jobs=[assignment.installation_id],
                    affected_team_members=[tech_id],
                    suggested_resolution='Consider reassigning to reduce overall travel distance',
                ))
    return conflicts


def detect_conflicts(
    assignments: List[OptimizedAssignment],
    teams: List[TeamMember],
    constraints: SchedulingConstraints,
    jobs: Optional[List[Installation]] = None,
) -> List[SchedulingConflict]:
    """
    Finds every scheduling conflict in a set of assignments.

    Time-based checks rely on start/end times filled by route sequencing;
    assignments without times are skipped by those checks.

    Args:
        assignments: The assignments to inspect.
        teams: Team members referenced by the assignments.
        constraints: Request constraints (capacity cap, travel limit, deadlines,
            required specializations).
        jobs: The installations, used for their own required specializations.

    Returns:
        List[SchedulingConflict]: Conflicts grouped by type.
    """
    teams_by_id = {team.id: team for team in teams}
    jobs_by_id = {job.id: job for job in jobs or []}
    grouped = _by_technician_and_date(assignments)

    conflicts: List[SchedulingConflict] = []
    conflicts.extend(_detect_time_overlaps(grouped, teams_by_id))
    conflicts.extend(_detect_capacity(grouped, teams_by_id, constraints))
    conflicts.extend(_detect_travel_time(grouped, teams_by_id))
    conflicts.extend(_detect_travel_distance(assignments, teams_by_id, constraints))
    conflicts.extend(_detect_availability(assignments, teams_by_id))
    conflicts.extend(_detect_specializations(assignments, teams_by_id, constraints, jobs_by_id))
    conflicts.extend(_detect_deadlines(assignments, constraints))
    conflicts.extend(_detect_geographic_mismatch(assignments))
    return conflicts


def _assign_to(assignment: OptimizedAssignment, member: TeamMember) -> None:
    if member.role == UserRole.ASSISTANT:
        assignment.lead_id = None
        assignment.assistant_id = member.id
    else:
        assignment.lead_id = member.id
        assignment.assistant_id = None


def _has_fixed_time_clash(
    job: Installation,
    day_stops: List[OptimizedAssignment],
) -> bool:
    """A fixed-time job clashes with any already-timed stop overlapping its appointment."""
    if job.scheduled_time is None or job.scheduled_date is None:
        return False
    start = datetime.combine(job.scheduled_date, job.scheduled_time)
    end = start + timedelta(minutes=job.duration)
    for stop in day_stops:
        if stop.start_time and stop.end_time and stop.start_time < end and start < stop.end_time:
            return True
    return False


class _Resolver:
    """Working state for one resolution pass."""

    def __init__(self, assignments: List[OptimizedAssignment], context: OptimizationContext):
        self.context = context
        self.assignments = [assignment.model_copy() for assignment in assignments]
        self.by_job = {a.installation_id: a for a in self.assignments}
        self.demoted: List[Installation] = []
        self.actions: Dict[str, ConflictResolutionAction] = {}
        self.departures: Dict[Tuple[str, date], ConflictResolutionAction] = {}

    def day_stops(self, tech_id: str, day: date) -> List[OptimizedAssignment]:
        return [a for a in self.assignments if a.technician_id == tech_id and a.scheduled_date == day]

    def has_room(self, member: TeamMember, day: date) -> bool:
        return len(self.day_stops(member.id, day)) < self.context.daily_capacity(member)

    def moved_off(self, conflict: SchedulingConflict) -> bool:
        """Whether an earlier step already took one of the conflict's jobs away from its technician."""
        for job_id in conflict.affected_jobs:
            assignment = self.by_job.get(job_id)
            if assignment is None:
                return True
            if conflict.affected_team_members and assignment.technician_id not in conflict.affected_team_members:
                return True
        return False

    def pick_victim(self, conflict: SchedulingConflict) -> Optional[OptimizedAssignment]:
        candidates = [
            (index, self.by_job[job_id]) for index, job_id in enumerate(conflict.affected_jobs)
            if job_id in self.by_job
        ]
        if not candidates:
            return None
        # Lowest priority gives way; the later job loses ties
        return min(candidates, key=lambda pair: (priority_weight(pair[1].priority), -pair[0]))[1]

    def capacity_victims(self, conflict: SchedulingConflict) -> List[OptimizedAssignment]:
        """The conflict's jobs still over capacity after earlier moves, lowest priority first."""
        tech_id = conflict.affected_team_members[0] if conflict.affected_team_members else None
        staying = [
            self.by_job[job_id] for job_id in conflict.affected_jobs
            if job_id in self.by_job and self.by_job[job_id].technician_id == tech_id
        ]
        member = self.context.teams_by_id.get(tech_id)
        if not staying or member is None:
            return staying
        excess = len(self.day_stops(tech_id, staying[0].scheduled_date)) - self.context.daily_capacity(member)
        return staying[:max(0, excess)]

    def find_alternative(self, assignment: OptimizedAssignment, job: Installation, closer_than: Optional[float] = None) -> Optional[TeamMember]:
        radius_bound = self.context.preferences.optimization_goal == OptimizationGoal.TRAVEL_DISTANCE
        best: Optional[TeamMember] = None
        best_key = None
        for member in self.context.teams:
            if member.id == assignment.technician_id:
                continue
            if not self.context.can_team_handle_job(member, job):
                continue
            if radius_bound and not self.context.within_travel_radius(member, job):
                continue
            if not self.has_room(member, assignment.scheduled_date):
                continue
            if _has_fixed_time_clash(job, self.day_stops(member.id, assignment.scheduled_date)):
                continue
            distance = self.context.distance_to_team(member, job)
            if closer_than is not None:
                limit = min(member.travel_radius, self.context.constraints.max_travel_distance)
                if distance is None or distance >= closer_than or distance > limit:
                    continue
            key = (len(self.day_stops(member.id, assignment.scheduled_date)), distance if distance is not None else float('inf'))
            if best_key is None or key < best_key:
                best, best_key = member, key
        return best

    def resolve(self, conflict: SchedulingConflict) -> ConflictResolutionAction:
        if not conflict.auto_resolvable:
            return ConflictResolutionAction.UNRESOLVED

        if conflict.type == ConflictType.CAPACITY_EXCEEDED:
            victims = self.capacity_victims(conflict)
        elif self.moved_off(conflict):
            victims = []
        else:
            victim = self.pick_victim(conflict)
            victims = [victim] if victim else []

        if not victims:
            # Already handled through an earlier conflict on the same jobs or technician
            handled = [self.actions[j] for j in conflict.affected_jobs if j in self.actions]
            if handled:
                return handled[0]
            if conflict.type == ConflictType.CAPACITY_EXCEEDED and conflict.affected_team_members:
                day = next((self.by_job[j].scheduled_date for j in conflict.affected_jobs if j in self.by_job), None)
                return self.departures.get((conflict.affected_team_members[0], day), ConflictResolutionAction.UNRESOLVED)
            return ConflictResolutionAction.UNRESOLVED

        outcome = ConflictResolutionAction.REASSIGNED
        for victim in victims:
            origin = (victim.technician_id, victim.scheduled_date)
            action = self.relocate(victim, conflict)
            self.actions[victim.installation_id] = action
            if action != ConflictResolutionAction.UNRESOLVED:
                self.departures[origin] = action
            if action != ConflictResolutionAction.REASSIGNED:
                outcome = action
        return outcome

    def relocate(self, victim: OptimizedAssignment, conflict: SchedulingConflict) -> ConflictResolutionAction:
        job = self.context.jobs_by_id.get(victim.installation_id)
        if job is None:
            return ConflictResolutionAction.UNRESOLVED

        if conflict.type in SOFT_CONFLICTS:
            current = victim.distance_from_base
            if current is None:
                return ConflictResolutionAction.UNRESOLVED
            member = self.find_alternative(victim, job, closer_than=current)
            if member is None:
                return ConflictResolutionAction.UNRESOLVED
            _assign_to(victim, member)
            return ConflictResolutionAction.REASSIGNED

        member = self.find_alternative(victim, job)
        if member is not None:
            logger.info("Moved job %s from %s to %s (%s)", job.id, victim.technician_id, member.id, conflict.type.value)
            _assign_to(victim, member)
            return ConflictResolutionAction.REASSIGNED

        logger.warning("Unassigned job %s: no alternative for %s", job.id, conflict.type.value)
        self.assignments.remove(victim)
        del self.by_job[victim.installation_id]
        self.demoted.append(job)
        return ConflictResolutionAction.UNASSIGNED


def resolve_conflicts(
    assignments: List[OptimizedAssignment],
    conflicts: List[SchedulingConflict],
    request: SchedulingRequest,
    context: Optional[OptimizationContext] = None,
) -> ConflictResolution:
    """
    One best-effort pass over detected conflicts.

    Conflicts are handled by severity, then by the highest priority among
    the jobs involved. Hard conflicts move the lower-priority job to another
    eligible technician with spare capacity that day and no clash with a
    fixed appointment, or demote it to unassigned. Travel-distance and
    geographic-mismatch conflicts only move a job to a closer in-radius
    technician and otherwise leave it in place. Deadline conflicts are
    never auto-resolved.

    The input assignments are not modified; timing fields of moved jobs are
    stale until the caller re-sequences.

    Returns:
        ConflictResolution: Revised assignments, demoted jobs, and the
            conflicts annotated with what happened to each.
    """
    if context is None:
        context = OptimizationContext(request, list(request.jobs), list(request.teams))

    resolver = _Resolver(assignments, context)
    ordered = sorted(
        conflicts,
        key=lambda c: (
            -SEVERITY_ORDER[c.severity.value],
            -max((priority_weight(resolver.by_job[j].priority) for j in c.affected_jobs if j in resolver.by_job), default=0),
        ),
    )

    annotated = []
    for conflict in ordered:
        action = resolver.resolve(conflict)
        annotated.append(conflict.model_copy(update={'resolution': action}))

    logger.info(
        "Resolved conflicts: %d reassigned, %d demoted, %d unresolved",
        sum(1 for c in annotated if c.resolution == ConflictResolutionAction.REASSIGNED),
        len(resolver.demoted),
        sum(1 for c in annotated if c.resolution == ConflictResolutionAction.UNRESOLVED),
    )
    return ConflictResolution(
        assignments=resolver.assignments,
        unassigned_jobs=resolver.demoted,
        conflicts=annotated,
    )


def calculate_resolution_metrics(
    original_conflicts: List[SchedulingConflict],
    resolved_assignments: List[OptimizedAssignment],
    teams: List[TeamMember],
    constraints: SchedulingConstraints,
    jobs: Optional[List[Installation]] = None,
) -> ResolutionMetrics:
    """Re-detects conflicts on resolved assignments and reports how many went away."""
    remaining = detect_conflicts(resolved_assignments, teams, constraints, jobs)
    resolved_count = max(0, len(original_conflicts) - len(remaining))
    rate = resolved_count / len(original_conflicts) * 100 if original_conflicts else 100.0
    return ResolutionMetrics(
        original_conflict_count=len(original_conflicts),
        resolved_conflict_count=resolved_count,
        resolution_rate=round(rate, 2),
        remaining_conflicts=remaining,
    )
