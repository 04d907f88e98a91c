"""Tests for team pairing and performance scoring."""

import pytest
from unittest.mock import patch

from install_scheduler.models import PerformanceMetrics, Skill, UserRole, WorkPreferences
from install_scheduler.teams import (
    calculate_compatibility_score,
    calculate_experience_score,
    calculate_geographic_score,
    calculate_individual_score,
    calculate_performance_score,
    calculate_preference_score,
    calculate_skill_score,
    find_optimal_pairings,
    identify_top_performers,
    identify_underperformers,
    validate_team_assignment,
)


# --- Test Data ---

@pytest.fixture
def lead(make_tech):
    return make_tech("lead-1")


@pytest.fixture
def assistant(make_tech):
    return make_tech("asst-1", role=UserRole.ASSISTANT)


def _metrics(value, total_jobs=0):
    return PerformanceMetrics(
        completion_rate=value,
        customer_satisfaction=value,
        quality_score=value,
        safety_score=value,
        punctuality_score=value,
        communication_score=value,
        total_jobs=total_jobs,
    )


# --- Component scores ---

def test_geographic_score(make_tech, lead):
    assert calculate_geographic_score(lead, make_tech("a", region="North")) == 100
    assert calculate_geographic_score(make_tech("l", region="North", sub_regions=["East"]), make_tech("a", region="East")) == 80
    assert calculate_geographic_score(lead, make_tech("a", region="East", sub_regions=["North"])) == 70
    assert calculate_geographic_score(lead, make_tech("a", 'brooklyn', region="East")) == 60
    assert calculate_geographic_score(lead, make_tech("a", 'philadelphia', region="East")) == 40
    assert calculate_geographic_score(lead, make_tech("a", 'los_angeles', region="West")) == 0


@pytest.mark.parametrize("lead_skills, assistant_skills, expected", [
    ([], [], 40),
    (["wiring", "roofing"], ["roofing", "solar"], 100),  # 1 of 3 shared
    (["wiring"], ["wiring"], 40),  # Fully redundant
    (["wiring"], ["solar"], 40),  # Nothing shared
])
def test_skill_score(make_tech, lead_skills, assistant_skills, expected):
    lead = make_tech("l", skills=[Skill(name=name) for name in lead_skills])
    assistant = make_tech("a", skills=[Skill(name=name) for name in assistant_skills])
    assert calculate_skill_score(lead, assistant) == expected


@pytest.mark.parametrize("lead_jobs, assistant_jobs, expected", [
    (100, 50, 100),
    (60, 50, 80),
    (50, 50, 60),
    (40, 50, 30),
])
def test_experience_score(make_tech, lead_jobs, assistant_jobs, expected):
    lead = make_tech("l", performance_metrics=_metrics(8, lead_jobs))
    assistant = make_tech("a", performance_metrics=_metrics(8, assistant_jobs))
    assert calculate_experience_score(lead, assistant) == expected


def test_experience_score_without_metrics(lead, assistant):
    assert calculate_experience_score(lead, assistant) == 50


def test_preference_score(make_tech, lead, assistant):
    # Matching (empty) start times and flags
    assert calculate_preference_score(lead, assistant) == 70

    mutual_lead = make_tech("l", preferred_partners=["a"])
    mutual_assistant = make_tech("a", preferred_partners=["l"])
    assert calculate_preference_score(mutual_lead, mutual_assistant) == 100

    weekend = make_tech("a", work_preferences=WorkPreferences(weekends_available=True, preferred_start_time="07:00"))
    assert calculate_preference_score(lead, weekend) == 55


@pytest.mark.parametrize("value, expected", [(9.5, 100), (8.5, 80), (7, 60), (6, 40), (3, 20)])
def test_performance_score(make_tech, value, expected):
    lead = make_tech("l", performance_metrics=_metrics(value))
    assistant = make_tech("a", performance_metrics=_metrics(value))
    assert calculate_performance_score(lead, assistant) == expected


# --- Compatibility ---

def test_compatibility_score_defaults(lead, assistant):
    # 100*0.3 + 40*0.25 + 50*0.2 + 70*0.15 + 50*0.1
    assert calculate_compatibility_score(lead, assistant) == 65.5


def test_compatibility_score_bounded(make_tech):
    best_lead = make_tech("l", preferred_partners=["a"], performance_metrics=_metrics(10, 200),
                          skills=[Skill(name="wiring"), Skill(name="roofing")])
    best_assistant = make_tech("a", role=UserRole.ASSISTANT, preferred_partners=["l"],
                               performance_metrics=_metrics(10, 10),
                               skills=[Skill(name="roofing"), Skill(name="solar")])
    worst_assistant = make_tech("w", 'los_angeles', role=UserRole.ASSISTANT, region="West",
                                performance_metrics=_metrics(0, 500))

    best = calculate_compatibility_score(best_lead, best_assistant)
    worst = calculate_compatibility_score(best_lead, worst_assistant)

    assert best == 100.0
    assert 0 <= worst < best


# --- Pairing ---

def test_pairing_below_threshold_is_not_formed(lead, assistant):
    with patch("install_scheduler.teams.calculate_compatibility_score", return_value=59.0):
        assert find_optimal_pairings([lead, assistant]) == []


def test_distant_pair_scores_below_threshold(make_tech, lead):
    distant = make_tech("asst-2", 'los_angeles', role=UserRole.ASSISTANT, region="West")

    score = calculate_compatibility_score(lead, distant)

    # Only the geographic component differs from the 65.5 default
    assert score == 35.5
    assert find_optimal_pairings([lead, distant]) == []


def test_pairing_at_threshold_is_formed(lead, assistant):
    with patch("install_scheduler.teams.calculate_compatibility_score", return_value=60.0):
        pairings = find_optimal_pairings([lead, assistant])

    assert len(pairings) == 1
    assert pairings[0].compatibility_score == 60.0


def test_pairing_details(lead, assistant):
    (pairing,) = find_optimal_pairings([lead, assistant])

    assert pairing.lead_id == "lead-1"
    assert pairing.assistant_id == "asst-1"
    assert pairing.id.startswith("pairing_lead-1_asst-1_")
    assert pairing.region == "North"
    assert pairing.notes == "Auto-generated pairing with 65.5% compatibility"


def test_pairing_threshold_from_settings(lead, assistant, monkeypatch):
    monkeypatch.setenv("SCHEDULER_PAIRING_THRESHOLD", "70")
    assert find_optimal_pairings([lead, assistant]) == []


def test_best_lead_picks_first(make_tech, assistant):
    weaker = make_tech("lead-weak")
    stronger = make_tech("lead-strong", performance_metrics=PerformanceMetrics(completion_rate=0.95))

    pairings = find_optimal_pairings([weaker, stronger, assistant])

    assert [p.lead_id for p in pairings] == ["lead-strong"]


def test_each_assistant_used_once(make_tech):
    members = [
        make_tech("l1"), make_tech("l2"),
        make_tech("a1", role=UserRole.ASSISTANT), make_tech("a2", role=UserRole.ASSISTANT),
    ]

    pairings = find_optimal_pairings(members)

    assert len(pairings) == 2
    assert len({p.assistant_id for p in pairings}) == 2


def test_pairing_ignores_inactive_and_other_regions(make_tech, lead):
    members = [
        lead,
        make_tech("a1", role=UserRole.ASSISTANT, is_active=False),
        make_tech("a2", role=UserRole.ASSISTANT, region="South"),
    ]

    assert find_optimal_pairings(members, region="North") == []


# --- Performance composites ---

def test_individual_score(make_tech):
    assert calculate_individual_score(make_tech("t", performance_metrics=_metrics(8))) == pytest.approx(8.0)
    assert calculate_individual_score(make_tech("t")) == 0.0


def test_top_and_underperformers(make_tech):
    members = [
        make_tech("a", performance_metrics=_metrics(9)),
        make_tech("b", performance_metrics=_metrics(5)),
        make_tech("c", performance_metrics=_metrics(7)),
        make_tech("d"),
    ]

    assert [m.id for m in identify_top_performers(members, limit=2)] == ["a", "c"]
    assert [m.id for m in identify_underperformers(members)] == ["b"]


# --- Assignment validation ---

def test_validate_team_assignment(make_tech, lead, assistant):
    members = [lead, assistant, make_tech("idle", is_active=False)]

    assert validate_team_assignment("lead-1", "asst-1", members).valid
    assert validate_team_assignment("lead-1", None, members).valid

    result = validate_team_assignment("asst-1", "lead-1", members)
    assert not result.valid
    assert result.errors == ['Team member is not a lead', 'Team member is not an assistant']

    assert validate_team_assignment("nobody", None, members).errors == ['Lead team member not found']
    assert validate_team_assignment("idle", None, members).errors == ['Lead team member is not active']
