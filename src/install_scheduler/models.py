import uuid
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import List, Optional, Dict

from pydantic import BaseModel, Field, validator


# --- Enums ---

class UserRole(str, Enum):
    ADMIN = 'admin'
    SCHEDULER = 'scheduler'
    LEAD = 'lead'
    ASSISTANT = 'assistant'
    VIEWER = 'viewer'

class InstallationStatus(str, Enum):
    PENDING = 'pending'
    SCHEDULED = 'scheduled'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    RESCHEDULED = 'rescheduled'

class Priority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    URGENT = 'urgent'

class AssignmentStatus(str, Enum):
    ASSIGNED = 'assigned'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'

class OptimizationGoal(str, Enum):
    TRAVEL_DISTANCE = 'travel_distance'
    WORKLOAD_BALANCE = 'workload_balance'
    DEADLINE_PRIORITY = 'deadline_priority'
    CUSTOMER_SATISFACTION = 'customer_satisfaction'
    HYBRID = 'hybrid'

class ConflictType(str, Enum):
    TIME_OVERLAP = 'time_overlap'
    CAPACITY_EXCEEDED = 'capacity_exceeded'
    TRAVEL_TIME = 'travel_time'
    TRAVEL_DISTANCE = 'travel_distance'
    UNAVAILABLE_TEAM = 'unavailable_team'
    MISSING_SPECIALIZATION = 'missing_specialization'
    DEADLINE_CONFLICT = 'deadline_conflict'
    GEOGRAPHIC_MISMATCH = 'geographic_mismatch'

class ConflictSeverity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

class ConflictResolutionAction(str, Enum):
    REASSIGNED = 'reassigned'
    UNASSIGNED = 'unassigned'
    UNRESOLVED = 'unresolved'

class PairingStatus(str, Enum):
    ACTIVE = 'active'
    TEMPORARY = 'temporary'
    INACTIVE = 'inactive'
    PREFERRED = 'preferred'
    AVOID = 'avoid'

class WorkloadStatus(str, Enum):
    UNDERUTILIZED = 'underutilized'
    OPTIMAL = 'optimal'
    OVERLOADED = 'overloaded'
    CRITICAL = 'critical'


# --- Core Models ---

class Coordinates(BaseModel):
    """A latitude/longitude pair in decimal degrees."""
    lat: float
    lng: float

class Address(BaseModel):
    """Represents a street address, optionally geocoded."""
    street: str = ''
    city: str = ''
    state: str = ''
    zip_code: str = ''
    coordinates: Optional[Coordinates] = None

    def is_complete(self) -> bool:
        return bool(self.street and self.city and self.state)

class Installation(BaseModel):
    """Represents a single installation job to be scheduled."""
    id: str
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    address: Address
    scheduled_date: Optional[date] = None # Jobs without a date are rejected by validation
    scheduled_time: Optional[time] = None # Fixed appointment start, if any
    duration: int = Field(default=120, ge=0) # Minutes
    status: InstallationStatus = InstallationStatus.PENDING
    priority: Priority = Priority.MEDIUM
    required_specializations: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    lead_id: Optional[str] = None
    assistant_id: Optional[str] = None

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if not isinstance(other, Installation):
            return False
        return self.id == other.id

    @validator('scheduled_date', pre=True)
    def parse_scheduled_date(cls, v):
        # Imports hand over '' for blank cells and full timestamps for dated cells
        if v in ('', None):
            return None
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and 'T' in v:
            return datetime.fromisoformat(v).date()
        return v

class Availability(BaseModel):
    """A technician availability (or time-off) window."""
    id: str = Field(default_factory=lambda: f"avail_{uuid.uuid4().hex[:8]}")
    team_member_id: Optional[str] = None
    start_date: date
    end_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_recurring: bool = False
    recurring_days: List[int] = Field(default_factory=list) # 0 = Sunday ... 6 = Saturday
    is_available: bool = True
    notes: Optional[str] = None

class PerformanceMetrics(BaseModel):
    """Historical performance figures, kept on the scale the source supplied."""
    completion_rate: float = 0.0
    average_time: float = 0.0
    customer_satisfaction: float = 0.0
    travel_efficiency: float = 0.0
    total_jobs: int = 0
    total_distance: float = 0.0
    quality_score: float = 0.0
    safety_score: float = 0.0
    punctuality_score: float = 0.0
    communication_score: float = 0.0

class Skill(BaseModel):
    name: str
    level: str = 'intermediate'

class WorkPreferences(BaseModel):
    preferred_start_time: Optional[str] = None
    preferred_end_time: Optional[str] = None
    max_daily_jobs: Optional[int] = None
    weekends_available: bool = False
    overtime_available: bool = False
    unavailable_dates: List[date] = Field(default_factory=list)

class TeamMember(BaseModel):
    """Represents a field technician (or other team member)."""
    id: str
    first_name: str = ''
    last_name: str = ''
    email: Optional[str] = None
    role: UserRole = UserRole.LEAD
    is_active: bool = True
    region: str = ''
    sub_regions: List[str] = Field(default_factory=list)
    specializations: List[str] = Field(default_factory=list)
    skills: List[Skill] = Field(default_factory=list)
    availability: List[Availability] = Field(default_factory=list)
    capacity: int = Field(default=8, ge=0) # Jobs per day
    travel_radius: float = Field(default=50.0, ge=0) # Miles
    coordinates: Optional[Coordinates] = None
    home_base: Optional[Address] = None
    performance_metrics: Optional[PerformanceMetrics] = None
    preferred_partners: List[str] = Field(default_factory=list)
    work_preferences: WorkPreferences = Field(default_factory=WorkPreferences)

    def __hash__(self):
        return hash(self.id)

    @property
    def full_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.id

    @property
    def base_coordinates(self) -> Optional[Coordinates]:
        """Where the technician's day starts: their coordinates, else their home base."""
        if self.coordinates:
            return self.coordinates
        if self.home_base and self.home_base.coordinates:
            return self.home_base.coordinates
        return None

    def has_specialization(self, required: List[str]) -> bool:
        """True when no specialization is required or at least one matches."""
        if not required:
            return True
        return any(spec in self.specializations for spec in required)


# --- Request Models ---

class WorkingHours(BaseModel):
    start: time = time(8, 0)
    end: time = time(17, 0)

class SchedulingConstraints(BaseModel):
    max_daily_jobs: int = Field(default=8, ge=0)
    max_travel_distance: float = Field(default=100.0, ge=0) # Miles
    buffer_time: int = Field(default=15, ge=0) # Minutes between jobs
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    required_specializations: Dict[str, List[str]] = Field(default_factory=dict)
    deadlines: Dict[str, date] = Field(default_factory=dict)
    team_preferences: Dict[str, List[str]] = Field(default_factory=dict)

    @validator('deadlines', pre=True)
    def parse_deadlines(cls, v):
        if not isinstance(v, dict):
            return v
        parsed = {}
        for job_id, deadline in v.items():
            if isinstance(deadline, datetime):
                deadline = deadline.date()
            elif isinstance(deadline, str) and 'T' in deadline:
                deadline = datetime.fromisoformat(deadline).date()
            parsed[job_id] = deadline
        return parsed

class SchedulingPreferences(BaseModel):
    optimization_goal: OptimizationGoal = OptimizationGoal.HYBRID
    allow_overtime_assignment: bool = False
    prioritize_lead_continuity: bool = False
    minimize_team_splits: bool = False
    geographic_clustering: bool = True
    pair_assistants: bool = False # Attach the best-matching assistant to each lead's jobs

class SchedulingRequest(BaseModel):
    jobs: List[Installation]
    teams: List[TeamMember]
    constraints: SchedulingConstraints = Field(default_factory=SchedulingConstraints)
    preferences: SchedulingPreferences = Field(default_factory=SchedulingPreferences)


# --- Scheduler Specific Models ---

class RoutePoint(BaseModel):
    """One stop of an ordered route."""
    job_id: str
    address: Address
    estimated_arrival: Optional[datetime] = None
    estimated_departure: Optional[datetime] = None
    distance_from_previous: float = 0.0 # Miles
    travel_time_from_previous: int = 0 # Minutes

class RouteSavings(BaseModel):
    distance_saved: float = 0.0
    time_saved: int = 0
    percentage_improvement: float = 0.0

class TravelOptimization(BaseModel):
    """An ordered route plus totals. Approximately optimal, not globally optimal."""
    route: List[RoutePoint] = Field(default_factory=list)
    total_distance: float = 0.0
    total_time: int = 0 # Minutes of travel plus service
    savings: RouteSavings = Field(default_factory=RouteSavings)

class OptimizedAssignment(BaseModel):
    """Links one installation to its technician(s), with the planned slot and travel."""
    id: str
    installation_id: str
    lead_id: Optional[str] = None
    assistant_id: Optional[str] = None
    assigned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    assigned_by: str = 'system'
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    scheduled_date: date
    start_time: Optional[datetime] = None # Filled by route sequencing
    end_time: Optional[datetime] = None
    duration: int = 120 # Minutes
    priority: Priority = Priority.MEDIUM
    estimated_travel_time: int = 0 # Minutes from the previous stop
    estimated_travel_distance: float = 0.0 # Miles from the previous stop
    distance_from_base: Optional[float] = None
    travel_route: List[RoutePoint] = Field(default_factory=list)
    previous_job_id: Optional[str] = None
    next_job_id: Optional[str] = None
    buffer_time: int = 15
    workload_score: float = 0.0
    efficiency_score: float = 0.0

    @property
    def technician_id(self) -> Optional[str]:
        """The technician who owns this stop in their route."""
        return self.lead_id or self.assistant_id

class GeographicCluster(BaseModel):
    id: str
    center: Coordinates
    jobs: List[Installation]
    radius: float = 0.0 # Miles from center to the farthest member
    density: float = 1.0
    suggested_team: Optional[str] = None

class DistanceMatrixEntry(BaseModel):
    distance: float # Miles
    duration: int # Minutes
    route: Optional[str] = None

DistanceMatrix = Dict[str, Dict[str, DistanceMatrixEntry]]

class SchedulingConflict(BaseModel):
    id: str
    type: ConflictType
    severity: ConflictSeverity
    description: str
    affected_jobs: List[str] = Field(default_factory=list)
    affected_team_members: List[str] = Field(default_factory=list)
    suggested_resolution: Optional[str] = None
    auto_resolvable: bool = True
    resolution: Optional[ConflictResolutionAction] = None # Set by the resolver

class ConflictResolution(BaseModel):
    """Outcome of one resolver pass."""
    assignments: List[OptimizedAssignment] = Field(default_factory=list)
    unassigned_jobs: List[Installation] = Field(default_factory=list) # Demoted by the resolver
    conflicts: List[SchedulingConflict] = Field(default_factory=list) # Input conflicts with resolution set

class ResolutionMetrics(BaseModel):
    original_conflict_count: int = 0
    resolved_conflict_count: int = 0
    resolution_rate: float = 100.0 # Percent
    remaining_conflicts: List[SchedulingConflict] = Field(default_factory=list)

class OptimizationMetrics(BaseModel):
    total_travel_distance: float = 0.0
    total_travel_time: int = 0
    average_jobs_per_team_member: float = 0.0
    workload_variance: float = 0.0
    geographic_efficiency: float = 0.0
    deadline_compliance: float = 1.0
    utilization_rate: float = 0.0
    conflict_rate: float = 0.0
    improvement_percentage: float = 0.0

class DailySchedule(BaseModel):
    date: date
    assignments: List[OptimizedAssignment] = Field(default_factory=list)
    total_jobs: int = 0
    total_travel_distance: float = 0.0
    total_travel_time: int = 0
    team_utilization: Dict[str, float] = Field(default_factory=dict) # Member id -> % of daily capacity
    warnings: List[str] = Field(default_factory=list)

class RejectedJob(BaseModel):
    """An input job that failed validation and was never offered to a strategy."""
    installation: Installation
    reason: str

class SchedulingResult(BaseModel):
    assignments: List[OptimizedAssignment] = Field(default_factory=list)
    unassigned_jobs: List[Installation] = Field(default_factory=list)
    unassigned_reasons: Dict[str, str] = Field(default_factory=dict) # Job id -> reason
    rejected_jobs: List[RejectedJob] = Field(default_factory=list)
    optimization_metrics: OptimizationMetrics = Field(default_factory=OptimizationMetrics)
    conflicts: List[SchedulingConflict] = Field(default_factory=list)
    remaining_conflicts: List[SchedulingConflict] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    schedule_by_date: Dict[date, DailySchedule] = Field(default_factory=dict)


# --- Team Management Models ---

class TeamPairing(BaseModel):
    id: str
    lead_id: str
    assistant_id: str
    region: str
    compatibility_score: float
    pairing_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    total_jobs_completed: int = 0
    average_performance: float = 0.0
    status: PairingStatus = PairingStatus.ACTIVE
    notes: Optional[str] = None

class TeamAssignmentValidation(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)

class WorkloadAssignment(BaseModel):
    team_member_id: str
    date: date
    scheduled_jobs: List[str] = Field(default_factory=list) # Installation ids
    estimated_hours: float = 0.0
    travel_time: int = 0 # Minutes
    utilization_percentage: float = 0.0
    workload_score: float = 0.0
    status: WorkloadStatus = WorkloadStatus.OPTIMAL

class WorkloadImbalances(BaseModel):
    overloaded: List[WorkloadAssignment] = Field(default_factory=list)
    underutilized: List[WorkloadAssignment] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

class TeamWorkload(BaseModel):
    job_count: int = 0
    total_distance: float = 0.0 # Miles
    total_time: int = 0 # Travel minutes
    utilization_percentage: float = 0.0
    efficiency_score: float = 0.0

class WorkloadDistribution(BaseModel):
    team_workloads: Dict[str, TeamWorkload] = Field(default_factory=dict)
    average_utilization: float = 0.0
    workload_variance: float = 0.0
    recommendations: List[str] = Field(default_factory=list)
