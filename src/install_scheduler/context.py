from datetime import date
from typing import Any, Dict, List, Optional

from .availability import is_available_on
from .config import get_settings
from .geo import calculate_distance, estimate_travel_time, is_urban_area, ORIGIN
from .models import (
    Coordinates,
    DistanceMatrix,
    DistanceMatrixEntry,
    GeographicCluster,
    Installation,
    SchedulingRequest,
    TeamMember,
)
from .utils import required_specializations_for


class OptimizationContext:
    """
    State for a single optimize_schedule call.

    Holds the validated jobs, the eligible teams, and the distance matrix and
    clusters built for them. A fresh context is created per call so an engine
    instance never carries state between runs.
    """

    def __init__(
        self,
        request: SchedulingRequest,
        jobs: List[Installation],
        teams: List[TeamMember],
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.request = request
        self.constraints = request.constraints
        self.preferences = request.preferences
        self.jobs = jobs
        self.teams = teams
        self.settings = settings if settings is not None else get_settings()
        self.jobs_by_id: Dict[str, Installation] = {job.id: job for job in jobs}
        self.teams_by_id: Dict[str, TeamMember] = {team.id: team for team in teams}
        self.distance_matrix: DistanceMatrix = {}
        self.clusters: List[GeographicCluster] = []

    def required_specializations(self, job: Installation) -> List[str]:
        return required_specializations_for(job, self.constraints)

    def deadline_for(self, job: Installation) -> Optional[date]:
        return self.constraints.deadlines.get(job.id)

    def daily_capacity(self, team: TeamMember) -> int:
        """Jobs a technician may take on one date: their capacity, capped by max_daily_jobs."""
        return min(team.capacity, self.constraints.max_daily_jobs)

    def can_team_handle_job(self, team: TeamMember, job: Installation) -> bool:
        """
        Eligibility check shared by all strategies.

        The technician must be available on the job date and, when the job
        requires specializations, hold at least one of them.
        """
        if job.scheduled_date is None:
            return False
        if not is_available_on(team, job.scheduled_date):
            return False
        return team.has_specialization(self.required_specializations(job))

    def distance_to_team(self, team: TeamMember, job: Installation) -> Optional[float]:
        """Miles from the technician's base to the job, or None if either is not geocoded."""
        base = team.base_coordinates
        if base is None or job.address.coordinates is None:
            return None
        return calculate_distance(base, job.address.coordinates)

    def travel_between(self, from_job: Installation, to_job: Installation) -> DistanceMatrixEntry:
        """Matrix entry between two jobs, computed on the fly for pairs outside the matrix."""
        entry = self.distance_matrix.get(from_job.id, {}).get(to_job.id)
        if entry is not None:
            return entry
        distance = calculate_distance(
            from_job.address.coordinates or ORIGIN,
            to_job.address.coordinates or ORIGIN,
        )
        return DistanceMatrixEntry(
            distance=distance,
            duration=estimate_travel_time(distance, is_urban_area(to_job.address)),
            route=f"{from_job.address.city} to {to_job.address.city}",
        )

    def cluster_center_for(self, job: Installation) -> Optional[Coordinates]:
        """Centre of the cluster holding the job, else the job's own coordinates."""
        for cluster in self.clusters:
            if any(member.id == job.id for member in cluster.jobs):
                return cluster.center
        return job.address.coordinates

    def within_travel_radius(self, team: TeamMember, job: Installation) -> bool:
        """Whether the job's cluster centre lies inside the technician's travel radius."""
        center = self.cluster_center_for(job)
        if team.base_coordinates is None or center is None:
            return False
        return calculate_distance(team.base_coordinates, center) <= team.travel_radius
