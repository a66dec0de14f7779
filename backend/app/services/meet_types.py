"""
Lightweight value types shared by the meet engine.

The engine never touches the database: the pipeline converts SQLModel rows
into these structs, runs the stages, and writes the results back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Set, Tuple

from app.services.meet_settings import MeetConfigError

STATUS_COMING = "COMING"
STATUS_NOT_COMING = "NOT_COMING"
STATUS_LATE = "LATE"
STATUS_EARLY = "EARLY"

VALID_STATUSES = {STATUS_COMING, STATUS_NOT_COMING, STATUS_LATE, STATUS_EARLY}

SOURCE_GENERATED = "generated"
SOURCE_MANUAL = "manual"

PairKey = Tuple[int, int]


def pair_key(a: int, b: int) -> PairKey:
    """Unordered pair key: (low, high)."""
    return (a, b) if a < b else (b, a)


def pair_key_set(pairs: Iterable[Tuple[int, int]]) -> Set[PairKey]:
    return {pair_key(a, b) for a, b in pairs}


@dataclass(frozen=True)
class AthleteEntry:
    """Lightweight struct for pairing and mat input."""
    id: int
    team_id: int
    weight: float
    birthdate: date
    experience_years: int = 0
    skill: int = 0
    status: str = STATUS_COMING

    @property
    def attending(self) -> bool:
        return self.status != STATUS_NOT_COMING

    @property
    def first_year(self) -> bool:
        return self.experience_years <= 0

    def age_in_years(self, on_date: date) -> float:
        return (on_date - self.birthdate).days / 365.25


@dataclass(frozen=True)
class BoutEntry:
    red_id: int
    green_id: int
    id: Optional[int] = None
    score: float = 0.0
    notes: str = ""
    mat: Optional[int] = None
    order: Optional[int] = None
    locked: bool = False
    source: str = SOURCE_GENERATED
    effective_weight_pct: Optional[float] = None

    def __post_init__(self):
        if self.red_id == self.green_id:
            raise MeetConfigError(f"Bout cannot pair athlete {self.red_id} with itself")

    @property
    def athlete_ids(self) -> Tuple[int, int]:
        return (self.red_id, self.green_id)

    @property
    def key(self) -> PairKey:
        return pair_key(self.red_id, self.green_id)

    def involves(self, athlete_id: int) -> bool:
        return athlete_id == self.red_id or athlete_id == self.green_id


@dataclass(frozen=True)
class MatRule:
    """Eligibility band for one mat (experience years, age in years)."""
    min_experience: int = 0
    max_experience: int = 10
    min_age: float = 0.0
    max_age: float = 100.0
    color: Optional[str] = None

    def validate(self) -> "MatRule":
        if self.min_experience > self.max_experience:
            raise MeetConfigError(
                f"Mat rule min_experience {self.min_experience} > max_experience {self.max_experience}"
            )
        if self.min_age > self.max_age:
            raise MeetConfigError(f"Mat rule min_age {self.min_age} > max_age {self.max_age}")
        return self


DEFAULT_MAT_RULE = MatRule()
