from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.meet import Meet


class Bout(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("meet_id", "mat", "order", name="uq_bout_meet_mat_order"),
        CheckConstraint("red_id <> green_id", name="ck_bout_distinct_athletes"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    meet_id: int = Field(foreign_key="meet.id", index=True)
    red_id: int = Field(foreign_key="athlete.id", index=True)
    green_id: int = Field(foreign_key="athlete.id", index=True)

    pairing_score: float = Field(default=0.0)
    effective_weight_pct: Optional[float] = Field(default=None)
    notes: str = Field(default="")  # Diagnostic breakdown of the pairing cost

    # Placement (both null until mats are assigned)
    mat: Optional[int] = Field(default=None)  # 1..num_mats
    order: Optional[int] = Field(default=None)  # 1..bouts on that mat

    locked: bool = Field(default=False)  # Never touched by generator/sequencer
    source: str = Field(default="generated")  # "generated" | "manual"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    meet: "Meet" = Relationship(back_populates="bouts")
