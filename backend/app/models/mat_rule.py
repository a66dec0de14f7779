from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.team import Team


class TeamMatRule(SQLModel, table=True):
    """
    Eligibility band for one mat, owned by the hosting team.

    mat_index is 1-based. Mats without a rule accept everyone.
    """

    __tablename__ = "team_mat_rule"

    __table_args__ = (
        SAUniqueConstraint("team_id", "mat_index", name="uq_team_mat_index"),
        CheckConstraint("min_experience <= max_experience", name="ck_mat_rule_experience"),
        CheckConstraint("min_age <= max_age", name="ck_mat_rule_age"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="team.id", index=True)
    mat_index: int
    min_experience: int = Field(default=0)
    max_experience: int = Field(default=10)
    min_age: float = Field(default=0.0)
    max_age: float = Field(default=100.0)
    color: Optional[str] = Field(default=None)

    # Relationships
    team: "Team" = Relationship(back_populates="mat_rules")
