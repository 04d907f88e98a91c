"""Tests for workload balancing."""

import pytest
from datetime import date

from install_scheduler.models import Priority, WorkloadStatus
from install_scheduler.workload import (
    balance_team_workload,
    calculate_workload_distribution,
    calculate_workload_score,
    find_unplaced_installations,
    identify_workload_imbalances,
    workload_status,
)


@pytest.mark.parametrize("utilization, expected", [
    (101, WorkloadStatus.CRITICAL),
    (100, WorkloadStatus.OVERLOADED),
    (91, WorkloadStatus.OVERLOADED),
    (90, WorkloadStatus.OPTIMAL),
    (60, WorkloadStatus.OPTIMAL),
    (59.9, WorkloadStatus.UNDERUTILIZED),
    (0, WorkloadStatus.UNDERUTILIZED),
])
def test_workload_status(utilization, expected):
    assert workload_status(utilization) == expected


@pytest.mark.parametrize("utilization, expected", [
    (80, 100),
    (88, 90),
    (95, 80),
    (100, 70),
    (30, 50),
])
def test_workload_score_peaks_near_eighty(utilization, expected):
    assert calculate_workload_score(utilization) == expected


# --- Balancing ---

def test_balance_spreads_jobs_evenly(make_tech, make_job):
    members = [make_tech("t1", capacity=4), make_tech("t2", capacity=4)]
    jobs = [make_job(f"j{i}") for i in range(4)]

    assignments = balance_team_workload(members, jobs)

    assert [a.team_member_id for a in assignments] == ["t1", "t2"]
    assert [len(a.scheduled_jobs) for a in assignments] == [2, 2]
    assert assignments[0].estimated_hours == 4
    assert assignments[0].travel_time == 60
    assert assignments[0].utilization_percentage == 50
    assert assignments[0].status == WorkloadStatus.UNDERUTILIZED


def test_balance_places_urgent_jobs_first(make_tech, make_job):
    members = [make_tech("t1", capacity=1)]
    jobs = [make_job("routine", priority=Priority.LOW), make_job("urgent", priority=Priority.URGENT)]

    (assignment,) = balance_team_workload(members, jobs)

    assert assignment.scheduled_jobs == ["urgent"]
    assert assignment.utilization_percentage == 100
    assert assignment.status == WorkloadStatus.OVERLOADED


def test_balance_groups_by_date(make_tech, make_job, job_day):
    later = date(2025, 6, 3)
    jobs = [make_job("a"), make_job("b", day=later), make_job("undated", day=None)]

    assignments = balance_team_workload([make_tech("t1")], jobs)

    assert [(a.date, a.scheduled_jobs) for a in assignments] == [(job_day, ["a"]), (later, ["b"])]


def test_balance_date_range_filter(make_tech, make_job, job_day):
    jobs = [make_job("a"), make_job("b", day=date(2025, 6, 10))]

    assignments = balance_team_workload([make_tech("t1")], jobs, date_range=(job_day, job_day))

    assert [a.scheduled_jobs for a in assignments] == [["a"]]


def test_balance_region_and_capacity_filters(make_tech, make_job):
    members = [
        make_tech("north", region="North"),
        make_tech("south", region="South"),
        make_tech("idle", region="North", capacity=0),
        make_tech("retired", region="North", is_active=False),
    ]

    assignments = balance_team_workload(members, [make_job("a"), make_job("b")], region="North")

    assert {a.team_member_id for a in assignments} == {"north"}


def test_unplaced_installations_are_reported(make_tech, make_job, job_day):
    members = [make_tech("t1", capacity=1)]
    jobs = [
        make_job("urgent", priority=Priority.URGENT),
        make_job("routine", priority=Priority.LOW),
        make_job("undated", day=None),
        make_job("out_of_range", day=date(2025, 6, 10)),
    ]
    date_range = (job_day, job_day)

    assignments = balance_team_workload(members, jobs, date_range=date_range)
    unplaced = find_unplaced_installations(assignments, jobs, date_range)

    assert [a.scheduled_jobs for a in assignments] == [["urgent"]]
    assert [job.id for job in unplaced] == ["routine"]


# --- Imbalances ---

def test_identify_imbalances(make_tech, make_job):
    overloaded = balance_team_workload([make_tech("busy", capacity=1)], [make_job("a")])
    underused = balance_team_workload([make_tech("quiet", capacity=8)], [make_job("b")])

    imbalances = identify_workload_imbalances(overloaded + underused)

    assert [a.team_member_id for a in imbalances.overloaded] == ["busy"]
    assert [a.team_member_id for a in imbalances.underutilized] == ["quiet"]
    assert len(imbalances.recommendations) == 3


def test_identify_imbalances_when_balanced():
    imbalances = identify_workload_imbalances([])
    assert imbalances.recommendations == []


# --- Distribution ---

def test_workload_distribution(make_tech, make_assignment):
    teams = [make_tech("t1", capacity=4), make_tech("t2", capacity=4)]
    assignments = [
        make_assignment("j1", "t1", estimated_travel_distance=10.0, estimated_travel_time=20),
        make_assignment("j2", "t1", estimated_travel_distance=5.0, estimated_travel_time=10),
    ]

    distribution = calculate_workload_distribution(assignments, teams)

    busy = distribution.team_workloads["t1"]
    assert busy.job_count == 2
    assert busy.total_distance == 15.0
    assert busy.total_time == 30
    assert busy.utilization_percentage == 50
    assert busy.efficiency_score == 50.0
    assert distribution.team_workloads["t2"].job_count == 0
    assert distribution.average_utilization == 25.0
    assert distribution.workload_variance == 625.0
    assert 'High workload imbalance detected. Consider redistributing assignments.' in distribution.recommendations


def test_workload_distribution_credits_assistant(make_tech, make_assignment):
    teams = [make_tech("t1"), make_tech("t2")]

    distribution = calculate_workload_distribution([make_assignment("j1", "t1", assistant_id="t2")], teams)

    assert distribution.team_workloads["t1"].job_count == 1
    assert distribution.team_workloads["t2"].job_count == 1
