"""Tests for route ordering and daily sequencing."""

import pytest
from datetime import datetime, time
from unittest.mock import patch

from install_scheduler.context import OptimizationContext
from install_scheduler.models import Coordinates, SchedulingConstraints, SchedulingRequest
from install_scheduler.routing import (
    nearest_neighbor_order,
    optimize_route,
    sequence_daily_routes,
)
from install_scheduler.strategies import create_optimized_assignment


# --- Test Data ---

@pytest.fixture
def line_jobs(make_job):
    """Three jobs due north of the base, given out of order."""
    return [
        make_job("far", Coordinates(lat=40.3, lng=-75.0), city="Smallville"),
        make_job("near", Coordinates(lat=40.1, lng=-75.0), city="Smallville"),
        make_job("mid", Coordinates(lat=40.2, lng=-75.0), city="Smallville"),
    ]


@pytest.fixture
def line_tech(make_tech):
    return make_tech("t1", Coordinates(lat=40.0, lng=-75.0))


# --- Route ordering ---

def test_nearest_neighbor_order(make_job, test_locations):
    jobs = [make_job("p", 'philadelphia'), make_job("b", 'brooklyn'), make_job("x", None)]

    ordered = nearest_neighbor_order(test_locations['manhattan'], jobs)

    assert [job.id for job in ordered] == ["b", "p", "x"]


def test_optimize_route_single_job(make_job, make_tech):
    job = make_job("j1", duration=90)

    result = optimize_route([job], make_tech("t1"))

    assert [point.job_id for point in result.route] == ["j1"]
    assert result.total_distance == 0.0
    assert result.total_time == 90


def test_optimize_route_empty(make_tech):
    result = optimize_route([], make_tech("t1"))
    assert result.route == []
    assert result.total_time == 0


def test_optimize_route_orders_from_base(line_jobs, line_tech):
    result = optimize_route(line_jobs, line_tech, time_limit_seconds=0)

    assert [point.job_id for point in result.route] == ["near", "mid", "far"]
    # Base to the farthest job, about 0.3 degrees of latitude
    assert result.total_distance == pytest.approx(20.7, abs=0.5)
    assert result.route[0].distance_from_previous > 0
    assert result.total_time == sum(p.travel_time_from_previous for p in result.route) + 3 * 120


def test_optimize_route_reports_savings(line_jobs, line_tech):
    result = optimize_route(line_jobs, line_tech, time_limit_seconds=0)

    assert result.savings.distance_saved > 0
    assert result.savings.percentage_improvement > 0


def test_optimize_route_with_local_search(line_jobs, line_tech):
    result = optimize_route(line_jobs, line_tech, time_limit_seconds=1)
    assert [point.job_id for point in result.route] == ["near", "mid", "far"]


def test_optimize_route_falls_back_to_nearest_neighbor(line_jobs, line_tech):
    with patch("install_scheduler.routing._solve_open_route", return_value=None):
        result = optimize_route(line_jobs, line_tech, time_limit_seconds=0)

    assert [point.job_id for point in result.route] == ["near", "mid", "far"]


def test_optimize_route_starts_at_first_job_without_base(line_jobs, make_tech):
    tech = make_tech("t1", None)

    result = optimize_route(line_jobs, tech, time_limit_seconds=0)

    assert len(result.route) == 3
    assert result.route[0].distance_from_previous == 0.0


# --- Daily sequencing ---

@pytest.fixture
def sequencing_setup(make_job, make_tech):
    jobs = [
        make_job("fixed", scheduled_time=time(14, 0), duration=60),
        make_job("first"),
        make_job("second"),
    ]
    tech = make_tech("t1")
    request = SchedulingRequest(jobs=jobs, teams=[tech], constraints=SchedulingConstraints(buffer_time=15))
    context = OptimizationContext(request, jobs, [tech])
    assignments = [create_optimized_assignment(job, tech, context) for job in jobs]
    return context, assignments


def test_sequence_floating_jobs_then_fixed(sequencing_setup, job_day):
    context, assignments = sequencing_setup

    result = sequence_daily_routes(assignments, context)
    fixed, first, second = result

    assert result is assignments
    assert first.start_time == datetime.combine(job_day, time(8, 0))
    assert first.end_time == datetime.combine(job_day, time(10, 0))
    # Buffer after the previous job, no travel between co-located jobs
    assert second.start_time == datetime.combine(job_day, time(10, 15))
    assert fixed.start_time == datetime.combine(job_day, time(14, 0))
    assert fixed.end_time == datetime.combine(job_day, time(15, 0))


def test_sequence_links_previous_and_next(sequencing_setup):
    context, assignments = sequencing_setup

    fixed, first, second = sequence_daily_routes(assignments, context)

    assert first.previous_job_id is None
    assert first.next_job_id == "second"
    assert second.previous_job_id == "first"
    assert second.next_job_id == "fixed"
    assert fixed.previous_job_id == "second"
    assert fixed.next_job_id is None


def test_sequence_fills_travel_fields(make_job, make_tech, job_day):
    jobs = [make_job("b", 'brooklyn')]
    tech = make_tech("t1", 'manhattan')
    request = SchedulingRequest(jobs=jobs, teams=[tech])
    context = OptimizationContext(request, jobs, [tech])
    assignments = [create_optimized_assignment(jobs[0], tech, context)]

    (assignment,) = sequence_daily_routes(assignments, context)

    assert assignment.distance_from_base == assignment.estimated_travel_distance
    assert assignment.estimated_travel_distance > 0
    assert assignment.estimated_travel_time > 0
    assert assignment.start_time > datetime.combine(job_day, time(8, 0))
    assert assignment.buffer_time == 15


def test_sequence_moves_floating_job_past_early_appointment(make_job, make_tech, job_day):
    jobs = [make_job("floating"), make_job("appointment", scheduled_time=time(9, 0))]
    tech = make_tech("t1")
    request = SchedulingRequest(jobs=jobs, teams=[tech], constraints=SchedulingConstraints(buffer_time=15))
    context = OptimizationContext(request, jobs, [tech])
    assignments = [create_optimized_assignment(job, tech, context) for job in jobs]

    floating, appointment = sequence_daily_routes(assignments, context)

    assert appointment.start_time == datetime.combine(job_day, time(9, 0))
    assert appointment.end_time == datetime.combine(job_day, time(11, 0))
    assert floating.start_time == datetime.combine(job_day, time(11, 15))
    assert appointment.next_job_id == "floating"
    assert floating.previous_job_id == "appointment"


def test_sequence_fills_gap_between_appointments(make_job, make_tech, job_day):
    jobs = [
        make_job("long", duration=240),
        make_job("short", duration=60),
        make_job("morning", scheduled_time=time(8, 0), duration=60),
        make_job("afternoon", scheduled_time=time(11, 0), duration=60),
    ]
    tech = make_tech("t1")
    request = SchedulingRequest(jobs=jobs, teams=[tech], constraints=SchedulingConstraints(buffer_time=15))
    context = OptimizationContext(request, jobs, [tech])
    assignments = [create_optimized_assignment(job, tech, context) for job in jobs]

    long, short, morning, afternoon = sequence_daily_routes(assignments, context)

    # The first floating job does not fit 09:15-11:00 and keeps its place in line
    assert morning.next_job_id == "afternoon"
    assert afternoon.start_time == datetime.combine(job_day, time(11, 0))
    assert long.start_time == datetime.combine(job_day, time(12, 15))
    assert short.start_time == datetime.combine(job_day, time(16, 30))
