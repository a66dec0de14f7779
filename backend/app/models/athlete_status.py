from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel


class AttendanceStatus(str, Enum):
    COMING = "COMING"
    NOT_COMING = "NOT_COMING"
    LATE = "LATE"
    EARLY = "EARLY"


class MeetAthleteStatus(SQLModel, table=True):
    """Per-meet attendance. No row means COMING."""

    __tablename__ = "meet_athlete_status"

    __table_args__ = (SAUniqueConstraint("meet_id", "athlete_id", name="uq_meet_athlete_status"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    meet_id: int = Field(foreign_key="meet.id", index=True)
    athlete_id: int = Field(foreign_key="athlete.id", index=True)
    status: AttendanceStatus = Field(sa_column=Column(String, nullable=False))
    updated_at: datetime = Field(default_factory=datetime.utcnow)
