"""
API Routes for single bouts: lock toggle and delete.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from app.database import get_session
from app.models.bout import Bout
from app.routes.meets import BoutResponse, scheduling_errors
from app.services import meet_pipeline
from app.utils.meet_lock import meet_lock

router = APIRouter()


class LockRequest(BaseModel):
    locked: bool


def _meet_id_of(session: Session, bout_id: int) -> int:
    bout = session.get(Bout, bout_id)
    if not bout:
        raise meet_pipeline.BoutNotFoundError(f"Bout {bout_id} not found")
    return bout.meet_id


@router.patch("/bouts/{bout_id}/lock", response_model=BoutResponse)
def set_bout_lock(bout_id: int, request: LockRequest, session: Session = Depends(get_session)):
    """Locked bouts survive regeneration and keep their slot when reordering"""
    with scheduling_errors():
        meet_id = _meet_id_of(session, bout_id)
        with meet_lock(meet_id):
            bout = meet_pipeline.set_bout_lock(session, bout_id, request.locked)
    return BoutResponse.model_validate(bout)


@router.delete("/bouts/{bout_id}", status_code=204)
def delete_bout(bout_id: int, session: Session = Depends(get_session)):
    with scheduling_errors():
        meet_id = _meet_id_of(session, bout_id)
        with meet_lock(meet_id):
            meet_pipeline.delete_bout(session, bout_id)
    return None
