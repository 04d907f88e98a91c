"""Shared fixtures for scheduling engine tests."""

import pytest
from datetime import date, datetime, time

from install_scheduler.models import (
    Address, Availability, Coordinates, Installation, OptimizedAssignment,
    Priority, TeamMember, UserRole
)

# A Monday
JOB_DAY = date(2025, 6, 2)

# --- Test Data ---

@pytest.fixture
def job_day():
    return JOB_DAY


@pytest.fixture
def test_locations():
    """Real coordinates so distances are realistic."""
    return {
        'manhattan': Coordinates(lat=40.7128, lng=-74.0060),
        'brooklyn': Coordinates(lat=40.6782, lng=-73.9442),
        'queens': Coordinates(lat=40.7282, lng=-73.7949),
        'philadelphia': Coordinates(lat=39.9526, lng=-75.1652),
        'boston': Coordinates(lat=42.3601, lng=-71.0589),
        'los_angeles': Coordinates(lat=34.0522, lng=-118.2437),
    }


@pytest.fixture
def make_job(test_locations):
    """Factory for installations; coordinates default to Manhattan."""
    def _make_job(job_id, coordinates='manhattan', city="New York", state="NY",
                  day=JOB_DAY, **kwargs):
        if isinstance(coordinates, str):
            coordinates = test_locations[coordinates]
        return Installation(
            id=job_id,
            customer_name=f"Customer {job_id}",
            address=Address(
                street="1 Main St",
                city=city,
                state=state,
                zip_code="10001",
                coordinates=coordinates,
            ),
            scheduled_date=day,
            **kwargs
        )
    return _make_job


@pytest.fixture
def available_window():
    """Availability covering the whole of June 2025."""
    def _window(**kwargs):
        return Availability(
            start_date=date(2025, 6, 1),
            end_date=date(2025, 6, 30),
            **kwargs
        )
    return _window


@pytest.fixture
def make_tech(test_locations, available_window):
    """Factory for technicians available all of June; base defaults to Manhattan."""
    def _make_tech(tech_id, coordinates='manhattan', role=UserRole.LEAD, availability=None,
                   region="North", **kwargs):
        if isinstance(coordinates, str):
            coordinates = test_locations[coordinates]
        return TeamMember(
            id=tech_id,
            first_name="Tech",
            last_name=tech_id,
            role=role,
            region=region,
            coordinates=coordinates,
            availability=[available_window()] if availability is None else availability,
            **kwargs
        )
    return _make_tech


@pytest.fixture
def make_assignment():
    """Factory for assignments; times are given as (hour, minute) tuples on JOB_DAY."""
    def _make_assignment(job_id, tech_id, start=None, end=None, day=JOB_DAY,
                         priority=Priority.MEDIUM, **kwargs):
        return OptimizedAssignment(
            id=f"assignment_{job_id}",
            installation_id=job_id,
            lead_id=tech_id,
            scheduled_date=day,
            start_time=datetime.combine(day, time(*start)) if start else None,
            end_time=datetime.combine(day, time(*end)) if end else None,
            priority=priority,
            **kwargs
        )
    return _make_assignment
