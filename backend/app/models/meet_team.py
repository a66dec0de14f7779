from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class MeetTeam(SQLModel, table=True):
    """Team attending a meet (2-4 per meet)."""

    __tablename__ = "meet_team"

    __table_args__ = (SAUniqueConstraint("meet_id", "team_id", name="uq_meet_team"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    meet_id: int = Field(foreign_key="meet.id", index=True)
    team_id: int = Field(foreign_key="team.id")
