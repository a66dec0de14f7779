"""
Excluded Pair Model

Pairs of athletes that must never be matched at a meet. Survives
regeneration; the generator rejects these pairs outright.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class ExcludedPair(SQLModel, table=True):
    """
    Constraint: athlete_id_a < athlete_id_b to prevent duplicate pairs (A→B and B→A)
    """

    __tablename__ = "excluded_pair"

    __table_args__ = (
        SAUniqueConstraint("meet_id", "athlete_id_a", "athlete_id_b", name="uq_meet_excluded_pair"),
        CheckConstraint("athlete_id_a < athlete_id_b", name="ck_athlete_order"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    meet_id: int = Field(foreign_key="meet.id", index=True)
    athlete_id_a: int = Field(foreign_key="athlete.id", index=True)
    athlete_id_b: int = Field(foreign_key="athlete.id", index=True)
    reason: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
