from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.team import Team


class Athlete(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="team.id", index=True)
    first: str
    last: str
    weight: float
    birthdate: date
    experience_years: int = Field(default=0)
    skill: int = Field(default=0)  # 0-5, coach rating
    active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    team: "Team" = Relationship(back_populates="athletes")
