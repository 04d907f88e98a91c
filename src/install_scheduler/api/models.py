from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, validator

from ..models import Installation, TeamMember, TeamPairing, WorkloadAssignment, WorkloadImbalances


# --- API Request Models ---

class PairingRequest(BaseModel):
    team_members: List[TeamMember]
    region: Optional[str] = None
    threshold: Optional[float] = Field(default=None, ge=0, le=100)

    class Config:
        json_schema_extra = {
            "example": {
                "team_members": [
                    {"id": "lead-1", "role": "lead", "region": "North"},
                    {"id": "asst-1", "role": "assistant", "region": "North"}
                ],
                "region": "North"
            }
        }

class CompatibilityRequest(BaseModel):
    lead: TeamMember
    assistant: TeamMember

class WorkloadBalanceRequest(BaseModel):
    team_members: List[TeamMember]
    installations: List[Installation]
    region: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @validator('end_date')
    def end_after_start(cls, v, values):
        start = values.get('start_date')
        if v is not None and start is not None and v < start:
            raise ValueError('end_date must not be before start_date')
        return v


# --- API Response Models ---

class PairingResponse(BaseModel):
    pairings: List[TeamPairing]
    unpaired_leads: List[str] = Field(default_factory=list)

class CompatibilityResponse(BaseModel):
    lead_id: str
    assistant_id: str
    compatibility_score: float

    class Config:
        json_schema_extra = {
            "example": {
                "lead_id": "lead-1",
                "assistant_id": "asst-1",
                "compatibility_score": 72.5
            }
        }

class WorkloadBalanceResponse(BaseModel):
    assignments: List[WorkloadAssignment]
    imbalances: WorkloadImbalances
    unplaced_installations: List[str] = Field(default_factory=list) # Ids of jobs no member had room for
