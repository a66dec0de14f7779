"""
API Routes for Excluded Pairs - athletes who must never be matched at a meet
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, model_validator
from sqlmodel import Session, select

from app.database import get_session
from app.models.athlete import Athlete
from app.models.excluded_pair import ExcludedPair
from app.models.meet import Meet

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class ExcludedPairCreate(BaseModel):
    athlete_id_a: int
    athlete_id_b: int
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_different_athletes(self):
        if self.athlete_id_a == self.athlete_id_b:
            raise ValueError("athlete_id_a and athlete_id_b must be different")
        return self


class ExcludedPairResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    meet_id: int
    athlete_id_a: int
    athlete_id_b: int
    reason: Optional[str] = None
    created_at: str


def _to_response(pair: ExcludedPair) -> ExcludedPairResponse:
    return ExcludedPairResponse(
        id=pair.id,
        meet_id=pair.meet_id,
        athlete_id_a=pair.athlete_id_a,
        athlete_id_b=pair.athlete_id_b,
        reason=pair.reason,
        created_at=pair.created_at.isoformat(),
    )


def _require_meet(session: Session, meet_id: int) -> Meet:
    meet = session.get(Meet, meet_id)
    if not meet:
        raise HTTPException(status_code=404, detail="Meet not found")
    return meet


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/meets/{meet_id}/excluded-pairs", response_model=List[ExcludedPairResponse])
def get_excluded_pairs(meet_id: int, session: Session = Depends(get_session)):
    _require_meet(session, meet_id)

    pairs = session.exec(
        select(ExcludedPair)
        .where(ExcludedPair.meet_id == meet_id)
        .order_by(ExcludedPair.athlete_id_a, ExcludedPair.athlete_id_b)
    ).all()
    return [_to_response(pair) for pair in pairs]


@router.post("/meets/{meet_id}/excluded-pairs", response_model=ExcludedPairResponse, status_code=201)
def create_excluded_pair(meet_id: int, pair_data: ExcludedPairCreate, session: Session = Depends(get_session)):
    """Exclude a pair from generation; existing bouts are left alone"""
    _require_meet(session, meet_id)

    for athlete_id in (pair_data.athlete_id_a, pair_data.athlete_id_b):
        if not session.get(Athlete, athlete_id):
            raise HTTPException(status_code=404, detail=f"Athlete {athlete_id} not found")

    # Ensure athlete_id_a < athlete_id_b (database constraint)
    athlete_id_a = min(pair_data.athlete_id_a, pair_data.athlete_id_b)
    athlete_id_b = max(pair_data.athlete_id_a, pair_data.athlete_id_b)

    existing = session.exec(
        select(ExcludedPair).where(
            ExcludedPair.meet_id == meet_id,
            ExcludedPair.athlete_id_a == athlete_id_a,
            ExcludedPair.athlete_id_b == athlete_id_b,
        )
    ).first()
    if existing:
        raise HTTPException(
            status_code=409, detail=f"Pair {athlete_id_a}-{athlete_id_b} is already excluded for this meet"
        )

    pair = ExcludedPair(
        meet_id=meet_id, athlete_id_a=athlete_id_a, athlete_id_b=athlete_id_b, reason=pair_data.reason
    )
    session.add(pair)
    session.commit()
    session.refresh(pair)
    return _to_response(pair)


@router.delete("/meets/{meet_id}/excluded-pairs/{pair_id}", status_code=204)
def delete_excluded_pair(meet_id: int, pair_id: int, session: Session = Depends(get_session)):
    _require_meet(session, meet_id)

    pair = session.get(ExcludedPair, pair_id)
    if not pair or pair.meet_id != meet_id:
        raise HTTPException(status_code=404, detail="Excluded pair not found")

    session.delete(pair)
    session.commit()
    return None
