"""
Routing module.

Provides:
- Route ordering for a technician's jobs (OR-Tools, open route from the
  technician's base, nearest-neighbour fallback)
- Daily route sequencing: start/end times, travel from the previous stop and
  previous/next links on each assignment

Routes are approximately optimal, not globally optimal.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ortools.constraint_solver import routing_enums_pb2
from ortools.constraint_solver import pywrapcp

from .availability import get_daily_window
from .config import get_settings
from .context import OptimizationContext
from .geo import calculate_distance, estimate_travel_time, is_urban_area
from .models import (
    Coordinates,
    Installation,
    OptimizedAssignment,
    RoutePoint,
    RouteSavings,
    TeamMember,
    TravelOptimization,
)

logger = logging.getLogger(__name__)

# OR-Tools wants integer arc costs; distances are scaled from miles
DISTANCE_SCALE = 1000


def _solve_open_route(
    start: Coordinates,
    stops: List[Coordinates],
    time_limit_seconds: int = 0,
) -> Optional[List[int]]:
    """
    Orders stops into a route that starts at `start` and may end anywhere.

    The open end is modelled with a dummy end node reachable from every stop
    at zero cost.

    Returns:
        Optional[List[int]]: Indices into `stops` in visiting order, or None
            when the solver finds no solution.
    """
    points = [start] + stops
    num_nodes = len(points) + 1
    depot = 0
    end_node = len(points)

    costs = [
        [int(calculate_distance(a, b) * DISTANCE_SCALE) for b in points]
        for a in points
    ]

    manager = pywrapcp.RoutingIndexManager(num_nodes, 1, [depot], [end_node])
    routing = pywrapcp.RoutingModel(manager)

    def distance_callback(from_index, to_index):
        """Returns the scaled distance between two nodes."""
        from_node = manager.IndexToNode(from_index)
        to_node = manager.IndexToNode(to_index)
        if from_node == end_node or to_node == end_node:
            return 0
        return costs[from_node][to_node]

    transit_callback_index = routing.RegisterTransitCallback(distance_callback)
    routing.SetArcCostEvaluatorOfAllVehicles(transit_callback_index)

    search_parameters = pywrapcp.DefaultRoutingSearchParameters()
    search_parameters.first_solution_strategy = (
        routing_enums_pb2.FirstSolutionStrategy.PATH_CHEAPEST_ARC)
    if time_limit_seconds > 0:
        search_parameters.local_search_metaheuristic = (
            routing_enums_pb2.LocalSearchMetaheuristic.GUIDED_LOCAL_SEARCH)
        search_parameters.time_limit.seconds = time_limit_seconds

    solution = routing.SolveWithParameters(search_parameters)
    if not solution:
        return None

    order = []
    index = routing.Start(0)
    while not routing.IsEnd(index):
        node = manager.IndexToNode(index)
        if node != depot:
            order.append(node - 1)
        index = solution.Value(routing.NextVar(index))
    return order


def nearest_neighbor_order(start: Coordinates, jobs: List[Installation]) -> List[Installation]:
    """
    Greedy route: repeatedly visit the closest unvisited geocoded job.

    Jobs without coordinates keep their relative order at the end.
    """
    remaining = [job for job in jobs if job.address.coordinates]
    ordered = []
    current = start
    while remaining:
        nearest = min(remaining, key=lambda job: calculate_distance(current, job.address.coordinates))
        ordered.append(nearest)
        remaining.remove(nearest)
        current = nearest.address.coordinates
    return ordered + [job for job in jobs if not job.address.coordinates]


def _path_distance(jobs: List[Installation]) -> float:
    total = 0.0
    for previous, current in zip(jobs, jobs[1:]):
        if previous.address.coordinates and current.address.coordinates:
            total += calculate_distance(previous.address.coordinates, current.address.coordinates)
    return total


def optimize_route(
    jobs: List[Installation],
    team: TeamMember,
    time_limit_seconds: Optional[int] = None,
) -> TravelOptimization:
    """
    Orders a technician's jobs into a short open route.

    The route starts at the technician's base (coordinates, else home base,
    else the first job). Savings are measured against visiting the jobs in
    input order.

    Args:
        jobs: Jobs to visit.
        team: The technician driving the route.
        time_limit_seconds: Guided local search budget; 0 keeps the first
            solution. Defaults to the configured limit.

    Returns:
        TravelOptimization: Route points, totals and savings.
    """
    if len(jobs) <= 1:
        return TravelOptimization(
            route=[RoutePoint(job_id=job.id, address=job.address) for job in jobs],
            total_time=sum(job.duration for job in jobs),
        )

    if time_limit_seconds is None:
        time_limit_seconds = get_settings()["route_time_limit_seconds"]

    geocoded = [job for job in jobs if job.address.coordinates]
    start = team.base_coordinates or (geocoded[0].address.coordinates if geocoded else None)

    if start is None:
        ordered = list(jobs)
    else:
        order = _solve_open_route(start, [job.address.coordinates for job in geocoded], time_limit_seconds)
        if order is None:
            logger.warning("No route solution for technician %s, using nearest neighbour", team.id)
            ordered = nearest_neighbor_order(start, jobs)
        else:
            ordered = [geocoded[i] for i in order] + [job for job in jobs if not job.address.coordinates]

    route: List[RoutePoint] = []
    total_distance = 0.0
    total_time = 0
    current = start
    for job in ordered:
        distance = 0.0
        if current is not None and job.address.coordinates:
            distance = calculate_distance(current, job.address.coordinates)
        travel = estimate_travel_time(distance, is_urban_area(job.address))
        route.append(RoutePoint(
            job_id=job.id,
            address=job.address,
            distance_from_previous=distance,
            travel_time_from_previous=travel,
        ))
        total_distance += distance
        total_time += travel + job.duration
        current = job.address.coordinates or current

    naive = _path_distance(jobs)
    optimized = _path_distance(ordered)
    savings = RouteSavings(
        distance_saved=round(max(0.0, naive - optimized), 2),
        time_saved=max(0, estimate_travel_time(naive) - estimate_travel_time(optimized)),
        percentage_improvement=round((naive - optimized) / naive * 100, 2) if naive > 0 else 0.0,
    )
    return TravelOptimization(
        route=route,
        total_distance=round(total_distance, 2),
        total_time=total_time,
        savings=savings,
    )


def _day_start(team: Optional[TeamMember], day, context: OptimizationContext) -> datetime:
    working_hours = context.constraints.working_hours
    if team is not None:
        window = get_daily_window(team, day, working_hours)
        if window is not None:
            return window[0]
    return datetime.combine(day, working_hours.start)


def _leg(
    previous_job: Optional[Installation],
    job: Installation,
    base: Optional[Coordinates],
    context: OptimizationContext,
) -> Tuple[float, int]:
    """Distance and travel minutes into a job, from the previous stop or the base."""
    if previous_job is None:
        distance = 0.0
        if base is not None and job.address.coordinates is not None:
            distance = calculate_distance(base, job.address.coordinates)
        return distance, estimate_travel_time(distance, is_urban_area(job.address))
    entry = context.travel_between(previous_job, job)
    return entry.distance, entry.duration


def _interleave(
    floating: List[OptimizedAssignment],
    fixed: List[OptimizedAssignment],
    day,
    day_start: datetime,
    base: Optional[Coordinates],
    context: OptimizationContext,
) -> List[OptimizedAssignment]:
    """
    Orders one technician's day around its fixed appointments.

    Floating jobs keep their assignment order and fill the gap before each
    appointment while travel, the job, the buffer and the onward travel still
    fit before it starts. Whatever does not fit moves past the appointment.
    """
    buffer = timedelta(minutes=context.constraints.buffer_time)
    queue = list(floating)
    ordered: List[OptimizedAssignment] = []
    cursor = day_start
    previous_job: Optional[Installation] = None

    for slot in fixed:
        slot_job = context.jobs_by_id[slot.installation_id]
        slot_start = datetime.combine(day, slot_job.scheduled_time)
        while queue:
            job = context.jobs_by_id[queue[0].installation_id]
            _, travel = _leg(previous_job, job, base, context)
            _, onward = _leg(job, slot_job, base, context)
            end = cursor + timedelta(minutes=travel + job.duration)
            if end + buffer + timedelta(minutes=onward) > slot_start:
                break
            ordered.append(queue.pop(0))
            cursor = end + buffer
            previous_job = job
        ordered.append(slot)
        cursor = slot_start + timedelta(minutes=slot_job.duration) + buffer
        previous_job = slot_job

    return ordered + queue


def sequence_daily_routes(
    assignments: List[OptimizedAssignment],
    context: OptimizationContext,
) -> List[OptimizedAssignment]:
    """
    Lays out each technician's day and fills timing fields in place.

    Per technician and date, fixed-time jobs are placed in time order and
    floating jobs fill the gaps between them in assignment order; a floating
    job that cannot finish before the next appointment waits until after it.
    A floating job starts after the travel from the previous stop (or the
    base); consecutive jobs are separated by the buffer. Fixed-time jobs start
    at their appointment time regardless.

    Args:
        assignments: Assignments to sequence. Modified in place.
        context: The current optimization context.

    Returns:
        List[OptimizedAssignment]: The same assignments, in their original order.
    """
    buffer_minutes = context.constraints.buffer_time
    routes: Dict[Tuple[str, object], List[OptimizedAssignment]] = defaultdict(list)
    for assignment in assignments:
        routes[(assignment.technician_id, assignment.scheduled_date)].append(assignment)

    for (tech_id, day), stops in routes.items():
        team = context.teams_by_id.get(tech_id)
        floating = [a for a in stops if context.jobs_by_id[a.installation_id].scheduled_time is None]
        fixed = sorted(
            (a for a in stops if context.jobs_by_id[a.installation_id].scheduled_time is not None),
            key=lambda a: context.jobs_by_id[a.installation_id].scheduled_time,
        )

        base = team.base_coordinates if team else None
        cursor = _day_start(team, day, context)
        ordered = _interleave(floating, fixed, day, cursor, base, context)
        previous_job: Optional[Installation] = None

        for position, assignment in enumerate(ordered):
            job = context.jobs_by_id[assignment.installation_id]
            from_base = None
            if base is not None and job.address.coordinates is not None:
                from_base = calculate_distance(base, job.address.coordinates)

            distance, travel = _leg(previous_job, job, base, context)

            if job.scheduled_time is not None:
                start = datetime.combine(day, job.scheduled_time)
            else:
                start = cursor + timedelta(minutes=travel)

            assignment.start_time = start
            assignment.end_time = start + timedelta(minutes=job.duration)
            assignment.estimated_travel_distance = distance
            assignment.estimated_travel_time = travel
            assignment.distance_from_base = from_base
            assignment.buffer_time = buffer_minutes
            assignment.previous_job_id = ordered[position - 1].installation_id if position > 0 else None
            assignment.next_job_id = ordered[position + 1].installation_id if position + 1 < len(ordered) else None

            cursor = assignment.end_time + timedelta(minutes=buffer_minutes)
            previous_job = job

    return assignments
