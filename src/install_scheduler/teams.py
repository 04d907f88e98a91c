"""
Team pairing module.

Scores lead/assistant compatibility and builds greedy pairings, plus the
individual performance composites used to rank technicians.

Compatibility is a weighted sum on a 0-100 scale:
- Geographic proximity: 30%
- Skill complementarity: 25%
- Experience balance: 20%
- Mutual preferences: 15%
- Combined performance: 10%
"""

import logging
import uuid
from typing import List, Optional

from .config import get_settings
from .geo import calculate_distance
from .models import (
    PairingStatus,
    PerformanceMetrics,
    TeamAssignmentValidation,
    TeamMember,
    TeamPairing,
    UserRole,
)

logger = logging.getLogger(__name__)

COMPATIBILITY_WEIGHTS = {
    'geographic': 0.30,
    'skills': 0.25,
    'experience': 0.20,
    'preferences': 0.15,
    'performance': 0.10,
}


def calculate_geographic_score(lead: TeamMember, assistant: TeamMember) -> float:
    if lead.region == assistant.region:
        return 100
    if assistant.region in lead.sub_regions:
        return 80
    if lead.region in assistant.sub_regions:
        return 70
    if lead.coordinates and assistant.coordinates:
        distance = calculate_distance(lead.coordinates, assistant.coordinates)
        if distance <= 50:
            return 60
        if distance <= 100:
            return 40
        if distance <= 200:
            return 20
    return 0


def calculate_skill_score(lead: TeamMember, assistant: TeamMember) -> float:
    """Some overlap is good, too much is redundant; the sweet spot is 30-50% of the combined skills."""
    lead_skills = {skill.name.lower() for skill in lead.skills}
    assistant_skills = {skill.name.lower() for skill in assistant.skills}
    combined = lead_skills | assistant_skills
    if not combined:
        return 40

    ratio = len(lead_skills & assistant_skills) / len(combined)
    if 0.3 <= ratio <= 0.5:
        return 100
    if 0.2 <= ratio <= 0.6:
        return 80
    if 0.1 <= ratio <= 0.7:
        return 60
    return max(40, 100 - abs(ratio - 0.4) * 200)


def calculate_experience_score(lead: TeamMember, assistant: TeamMember) -> float:
    if not lead.performance_metrics or not assistant.performance_metrics:
        return 50
    lead_jobs = lead.performance_metrics.total_jobs
    assistant_jobs = assistant.performance_metrics.total_jobs
    if lead_jobs > assistant_jobs * 1.5:
        return 100
    if lead_jobs > assistant_jobs:
        return 80
    if lead_jobs == assistant_jobs:
        return 60
    return 30 # Assistant is more experienced than the lead


def calculate_preference_score(lead: TeamMember, assistant: TeamMember) -> float:
    score = 50
    if assistant.id in lead.preferred_partners:
        score += 25
    if lead.id in assistant.preferred_partners:
        score += 25

    lead_prefs = lead.work_preferences
    assistant_prefs = assistant.work_preferences
    if lead_prefs.preferred_start_time == assistant_prefs.preferred_start_time:
        score += 10
    if lead_prefs.weekends_available == assistant_prefs.weekends_available:
        score += 5
    if lead_prefs.overtime_available == assistant_prefs.overtime_available:
        score += 5
    return min(score, 100)


def _pairing_composite(metrics: PerformanceMetrics) -> float:
    return (
        metrics.completion_rate * 0.3
        + metrics.customer_satisfaction * 0.3
        + metrics.quality_score * 0.2
        + metrics.safety_score * 0.2
    )


def calculate_performance_score(lead: TeamMember, assistant: TeamMember) -> float:
    if not lead.performance_metrics or not assistant.performance_metrics:
        return 50
    average = (_pairing_composite(lead.performance_metrics) + _pairing_composite(assistant.performance_metrics)) / 2
    if average >= 9:
        return 100
    if average >= 8:
        return 80
    if average >= 7:
        return 60
    if average >= 6:
        return 40
    return 20


def calculate_compatibility_score(lead: TeamMember, assistant: TeamMember) -> float:
    """
    Scores how well an assistant fits a lead.

    Args:
        lead (TeamMember): The lead technician.
        assistant (TeamMember): The candidate assistant.

    Returns:
        float: Weighted score in [0, 100], rounded to 2 decimals.
    """
    score = (
        calculate_geographic_score(lead, assistant) * COMPATIBILITY_WEIGHTS['geographic']
        + calculate_skill_score(lead, assistant) * COMPATIBILITY_WEIGHTS['skills']
        + calculate_experience_score(lead, assistant) * COMPATIBILITY_WEIGHTS['experience']
        + calculate_preference_score(lead, assistant) * COMPATIBILITY_WEIGHTS['preferences']
        + calculate_performance_score(lead, assistant) * COMPATIBILITY_WEIGHTS['performance']
    )
    return round(score, 2)


def _in_region(member: TeamMember, region: Optional[str]) -> bool:
    return not region or member.region == region or region in member.sub_regions


def find_optimal_pairings(
    team_members: List[TeamMember],
    region: Optional[str] = None,
    threshold: Optional[float] = None,
) -> List[TeamPairing]:
    """
    Greedily pairs leads with assistants.

    Active leads, best completion rate first, each take the highest-scoring
    unused active assistant. Pairs below the threshold are not formed and
    earlier pairings are never revisited.

    Args:
        team_members: Candidates of any role; only leads and assistants are paired.
        region: Restrict to members whose region or sub-regions include it.
        threshold: Minimum compatibility score (default from settings, 60).

    Returns:
        List[TeamPairing]: One pairing per matched lead.
    """
    if threshold is None:
        threshold = get_settings()["pairing_threshold"]

    leads = [m for m in team_members if m.role == UserRole.LEAD and m.is_active and _in_region(m, region)]
    assistants = [m for m in team_members if m.role == UserRole.ASSISTANT and m.is_active and _in_region(m, region)]
    leads.sort(
        key=lambda m: m.performance_metrics.completion_rate if m.performance_metrics else 0,
        reverse=True,
    )

    pairings: List[TeamPairing] = []
    used = set()
    for lead in leads:
        best: Optional[TeamMember] = None
        best_score = 0.0
        for assistant in assistants:
            if assistant.id in used:
                continue
            score = calculate_compatibility_score(lead, assistant)
            if score >= threshold and score > best_score:
                best, best_score = assistant, score

        if best is None:
            logger.info("No assistant reaches %.0f compatibility for lead %s", threshold, lead.id)
            continue

        used.add(best.id)
        pairings.append(TeamPairing(
            id=f"pairing_{lead.id}_{best.id}_{uuid.uuid4().hex[:8]}",
            lead_id=lead.id,
            assistant_id=best.id,
            region=region or lead.region,
            compatibility_score=best_score,
            status=PairingStatus.ACTIVE,
            notes=f"Auto-generated pairing with {best_score}% compatibility",
        ))
    return pairings


# --- Performance composites ---

def calculate_individual_score(member: TeamMember) -> float:
    """Weighted performance composite on the caller's metric scale; 0 without metrics."""
    metrics = member.performance_metrics
    if metrics is None:
        return 0.0
    return (
        metrics.completion_rate * 0.25
        + metrics.customer_satisfaction * 0.25
        + metrics.quality_score * 0.2
        + metrics.safety_score * 0.15
        + metrics.punctuality_score * 0.1
        + metrics.communication_score * 0.05
    )


def identify_top_performers(team_members: List[TeamMember], limit: int = 5) -> List[TeamMember]:
    rated = [m for m in team_members if m.performance_metrics]
    return sorted(rated, key=calculate_individual_score, reverse=True)[:limit]


def identify_underperformers(team_members: List[TeamMember], threshold: float = 6) -> List[TeamMember]:
    return [m for m in team_members if m.performance_metrics and calculate_individual_score(m) < threshold]


def validate_team_assignment(
    lead_id: str,
    assistant_id: Optional[str],
    team_members: List[TeamMember],
) -> TeamAssignmentValidation:
    """Checks that a lead (and optional assistant) exist, hold the right roles and are active."""
    members = {m.id: m for m in team_members}
    errors = []

    lead = members.get(lead_id)
    if lead is None:
        errors.append('Lead team member not found')
    elif lead.role != UserRole.LEAD:
        errors.append('Team member is not a lead')
    elif not lead.is_active:
        errors.append('Lead team member is not active')

    if assistant_id:
        assistant = members.get(assistant_id)
        if assistant is None:
            errors.append('Assistant team member not found')
        elif assistant.role != UserRole.ASSISTANT:
            errors.append('Team member is not an assistant')
        elif not assistant.is_active:
            errors.append('Assistant team member is not active')

    return TeamAssignmentValidation(valid=not errors, errors=errors)
