"""
API Routes for meet scheduling: pairings, mats, sequencing, attendance.
"""

from contextlib import contextmanager
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlmodel import Session

from app.database import get_session
from app.services import meet_pipeline
from app.services.bout_sequencer import DEFAULT_STRATEGY
from app.services.meet_pipeline import (
    DEFAULT_REST_PENALTY,
    MAX_CANDIDATE_LIMIT,
    AthleteNotFoundError,
    BoutNotFoundError,
    MeetNotFoundError,
)
from app.services.meet_settings import MeetConfigError
from app.services.meet_types import VALID_STATUSES
from app.utils.meet_lock import MeetLockedError, meet_lock

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class BoutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    meet_id: int
    red_id: int
    green_id: int
    pairing_score: float
    effective_weight_pct: Optional[float] = None
    notes: str
    mat: Optional[int] = None
    order: Optional[int] = None
    locked: bool
    source: str


class MatAssignRequest(BaseModel):
    min_rest_gap: Optional[int] = Field(default=None, ge=0)
    rest_penalty: float = Field(default=DEFAULT_REST_PENALTY, ge=0, le=1000)
    sequence: bool = False
    strategy: str = DEFAULT_STRATEGY
    seed: Optional[int] = None


class ReorderRequest(BaseModel):
    strategy: str = DEFAULT_STRATEGY
    seed: Optional[int] = None
    time_budget_ms: Optional[int] = Field(default=None, gt=0)
    pin_locked: bool = True


class ScheduleRequest(BaseModel):
    strategy: str = DEFAULT_STRATEGY
    seed: Optional[int] = None
    rest_penalty: float = Field(default=DEFAULT_REST_PENALTY, ge=0, le=1000)
    time_budget_ms: Optional[int] = Field(default=None, gt=0)


class AddBoutRequest(BaseModel):
    red_id: int
    green_id: int
    locked: bool = False

    @model_validator(mode="after")
    def validate_different_athletes(self):
        if self.red_id == self.green_id:
            raise ValueError("red_id and green_id must be different")
        return self


class AddBoutResponse(BaseModel):
    created: bool
    bout: BoutResponse


class CandidateResponse(BaseModel):
    athlete_id: int
    team_id: int
    weight: float
    weight_pct: float
    effective_weight_pct: float
    age_gap_days: int
    exp_gap: int
    skill_gap: int
    score: float


class CandidatesResponse(BaseModel):
    athlete_id: int
    candidates: List[CandidateResponse]


class StatusRequest(BaseModel):
    status: str

    @model_validator(mode="after")
    def validate_status(self):
        if self.status not in VALID_STATUSES:
            raise ValueError(f"status must be one of {sorted(VALID_STATUSES)}")
        return self


# ============================================================================
# Error mapping
# ============================================================================


@contextmanager
def scheduling_errors():
    """Translate pipeline exceptions into HTTP errors."""
    try:
        yield
    except (MeetNotFoundError, AthleteNotFoundError, BoutNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MeetLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MeetConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/meets/{meet_id}/bouts", response_model=List[BoutResponse])
def get_bouts(meet_id: int, session: Session = Depends(get_session)):
    """All bouts of a meet, ordered by mat then order (unplaced bouts first)"""
    with scheduling_errors():
        meet_pipeline.get_meet_or_raise(session, meet_id)
    return [BoutResponse.model_validate(b) for b in meet_pipeline.load_bouts(session, meet_id)]


@router.post("/meets/{meet_id}/pairings/generate")
def generate_pairings(meet_id: int, session: Session = Depends(get_session)) -> Dict:
    """Regenerate every non-locked bout"""
    with scheduling_errors(), meet_lock(meet_id):
        return meet_pipeline.regenerate_pairings(session, meet_id)


@router.post("/meets/{meet_id}/mats/assign")
def assign_mats(
    meet_id: int,
    request: Optional[MatAssignRequest] = None,
    session: Session = Depends(get_session),
) -> Dict:
    request = request or MatAssignRequest()
    with scheduling_errors(), meet_lock(meet_id):
        return meet_pipeline.assign_mats(
            session,
            meet_id,
            min_rest_gap=request.min_rest_gap,
            rest_penalty=request.rest_penalty,
            sequence=request.sequence,
            strategy=request.strategy,
            seed=request.seed,
        )


@router.post("/meets/{meet_id}/bouts/reorder")
def reorder_bouts(
    meet_id: int,
    request: Optional[ReorderRequest] = None,
    session: Session = Depends(get_session),
) -> Dict:
    """Reorder bouts within each mat to reduce rest conflicts"""
    request = request or ReorderRequest()
    with scheduling_errors(), meet_lock(meet_id):
        return meet_pipeline.reorder_bouts(
            session,
            meet_id,
            strategy=request.strategy,
            seed=request.seed,
            time_budget_ms=request.time_budget_ms,
            pin_locked=request.pin_locked,
        )


@router.post("/meets/{meet_id}/schedule")
def build_schedule(
    meet_id: int,
    request: Optional[ScheduleRequest] = None,
    session: Session = Depends(get_session),
) -> Dict:
    """
    Full pipeline in one transaction: pairings, mat assignment, sequencing.

    On any failure nothing is written.
    """
    request = request or ScheduleRequest()
    with scheduling_errors(), meet_lock(meet_id):
        return meet_pipeline.run_full_pipeline(
            session,
            meet_id,
            strategy=request.strategy,
            seed=request.seed,
            rest_penalty=request.rest_penalty,
            time_budget_ms=request.time_budget_ms,
        )


@router.post("/meets/{meet_id}/pairings/add", response_model=AddBoutResponse)
def add_bout(meet_id: int, request: AddBoutRequest, session: Session = Depends(get_session)):
    """Add a coach-picked bout on the best mat; existing bouts keep their slots"""
    with scheduling_errors(), meet_lock(meet_id):
        bout, created = meet_pipeline.add_manual_bout(
            session, meet_id, request.red_id, request.green_id, locked=request.locked
        )
    return AddBoutResponse(created=created, bout=BoutResponse.model_validate(bout))


@router.get("/meets/{meet_id}/candidates", response_model=CandidatesResponse)
def get_candidates(
    meet_id: int,
    athlete_id: int = Query(..., description="Athlete looking for an opponent"),
    limit: int = Query(20, ge=1, le=MAX_CANDIDATE_LIMIT),
    session: Session = Depends(get_session),
):
    with scheduling_errors():
        target, ranked = meet_pipeline.list_candidates(session, meet_id, athlete_id, limit=limit)

    return CandidatesResponse(
        athlete_id=target.id,
        candidates=[
            CandidateResponse(
                athlete_id=c.athlete.id,
                team_id=c.athlete.team_id,
                weight=c.athlete.weight,
                weight_pct=round(c.score.weight_pct, 2),
                effective_weight_pct=round(c.score.effective_weight_pct, 2),
                age_gap_days=c.score.age_gap_days,
                exp_gap=c.score.exp_gap,
                skill_gap=c.score.skill_gap,
                score=round(c.score.baseline_cost, 4),
            )
            for c in ranked
        ],
    )


@router.put("/meets/{meet_id}/athletes/{athlete_id}/status")
def set_athlete_status(
    meet_id: int, athlete_id: int, request: StatusRequest, session: Session = Depends(get_session)
) -> Dict:
    """Record attendance; NOT_COMING removes the athlete's bouts"""
    with scheduling_errors(), meet_lock(meet_id):
        return meet_pipeline.set_athlete_status(session, meet_id, athlete_id, request.status)
