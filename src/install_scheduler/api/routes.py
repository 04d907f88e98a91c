import logging

from fastapi import APIRouter, Body, Depends, HTTPException, status as http_status

from ..models import SchedulingRequest, SchedulingResult
from ..scheduler import SchedulingEngine
from ..teams import calculate_compatibility_score, find_optimal_pairings
from ..workload import balance_team_workload, find_unplaced_installations, identify_workload_imbalances
from .deps import get_api_key, get_engine
from .models import (
    CompatibilityRequest,
    CompatibilityResponse,
    PairingRequest,
    PairingResponse,
    WorkloadBalanceRequest,
    WorkloadBalanceResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/schedule/optimize", response_model=SchedulingResult, tags=["schedule"])
async def optimize_schedule(
    scheduling_request: SchedulingRequest = Body(..., description="Jobs, teams, constraints and preferences"),
    engine: SchedulingEngine = Depends(get_engine),
    api_key: dict = Depends(get_api_key)
):
    """
    Run the scheduling engine on a request and return the optimized schedule.
    """
    try:
        return engine.optimize_schedule(scheduling_request)
    except ValueError as e:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.exception("Error optimizing schedule")
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to optimize schedule: {str(e)}"
        )


@router.post("/teams/pairings", response_model=PairingResponse, tags=["teams"])
async def create_pairings(
    pairing_request: PairingRequest = Body(...),
    api_key: dict = Depends(get_api_key)
):
    """
    Pair leads with their most compatible assistants.
    """
    pairings = find_optimal_pairings(
        pairing_request.team_members,
        region=pairing_request.region,
        threshold=pairing_request.threshold,
    )
    paired = {pairing.lead_id for pairing in pairings}
    unpaired = [
        member.id for member in pairing_request.team_members
        if member.role == "lead" and member.is_active and member.id not in paired
    ]
    return PairingResponse(pairings=pairings, unpaired_leads=unpaired)


@router.post("/teams/compatibility", response_model=CompatibilityResponse, tags=["teams"])
async def score_compatibility(
    compatibility_request: CompatibilityRequest = Body(...),
    api_key: dict = Depends(get_api_key)
):
    """
    Score how well an assistant fits a lead (0-100).
    """
    lead = compatibility_request.lead
    assistant = compatibility_request.assistant
    return CompatibilityResponse(
        lead_id=lead.id,
        assistant_id=assistant.id,
        compatibility_score=calculate_compatibility_score(lead, assistant),
    )


@router.post("/workload/balance", response_model=WorkloadBalanceResponse, tags=["workload"])
async def balance_workload(
    balance_request: WorkloadBalanceRequest = Body(...),
    api_key: dict = Depends(get_api_key)
):
    """
    Spread installations over team members per day and report imbalances.
    """
    date_range = None
    if balance_request.start_date and balance_request.end_date:
        date_range = (balance_request.start_date, balance_request.end_date)

    assignments = balance_team_workload(
        balance_request.team_members,
        balance_request.installations,
        region=balance_request.region,
        date_range=date_range,
    )
    unplaced = find_unplaced_installations(assignments, balance_request.installations, date_range)
    if unplaced:
        logger.warning("Workload balance left %d installations unplaced", len(unplaced))
    return WorkloadBalanceResponse(
        assignments=assignments,
        imbalances=identify_workload_imbalances(assignments),
        unplaced_installations=[job.id for job in unplaced],
    )
