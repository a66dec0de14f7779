from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.athlete import Athlete
    from app.models.mat_rule import TeamMatRule


class Team(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("name", name="uq_team_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    symbol: Optional[str] = Field(default=None)  # Short label used on bout sheets
    color: Optional[str] = Field(default=None)  # Display only
    # When this team hosts, keep its bouts on one mat where possible
    prefer_same_mat: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    athletes: List["Athlete"] = Relationship(back_populates="team")
    mat_rules: List["TeamMatRule"] = Relationship(back_populates="team")
