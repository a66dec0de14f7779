from datetime import date, datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

from app.services.meet_settings import (
    DEFAULT_BALANCE_PENALTY,
    DEFAULT_MATCHES_PER_ATHLETE,
    DEFAULT_MAX_AGE_GAP_DAYS,
    DEFAULT_MAX_WEIGHT_DIFF_PCT,
    DEFAULT_NUM_MATS,
    DEFAULT_REST_GAP,
    MAX_MATCHES_PER_ATHLETE,
)

if TYPE_CHECKING:
    from app.models.bout import Bout


class Meet(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    date: date
    num_mats: int = Field(default=DEFAULT_NUM_MATS)
    rest_gap: int = Field(default=DEFAULT_REST_GAP)  # Slots an athlete should sit out between bouts
    home_team_id: Optional[int] = Field(default=None, foreign_key="team.id")

    # Pairing settings
    max_age_gap_days: int = Field(default=DEFAULT_MAX_AGE_GAP_DAYS)
    max_weight_diff_pct: float = Field(default=DEFAULT_MAX_WEIGHT_DIFF_PCT)
    first_year_only_with_first_year: bool = Field(default=True)
    allow_same_team_matches: bool = Field(default=False)
    balance_team_pairs: bool = Field(default=True)
    balance_penalty: float = Field(default=DEFAULT_BALANCE_PENALTY)
    matches_per_athlete: int = Field(default=DEFAULT_MATCHES_PER_ATHLETE)
    max_matches_per_athlete: int = Field(default=MAX_MATCHES_PER_ATHLETE)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    bouts: List["Bout"] = Relationship(back_populates="meet")
