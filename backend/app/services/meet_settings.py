"""
Meet Settings - pairing rules and scheduling tuning for the meet engine.

Two frozen structures:
- PairingSettings: the per-meet rules a coach edits (weight %, age gap,
  first-year rule, same-team, team-pair balancing, matches per athlete).
- SchedulingTuning: the engine's penalty constants and search bounds.
  Defaults reproduce production behavior; tests override single fields
  with dataclasses.replace().

Both validate eagerly and raise MeetConfigError. Nothing is clamped.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

# Absolute ceiling for matches per athlete in one generation pass
MAX_MATCHES_PER_ATHLETE = 5

DAYS_PER_YEAR = 365

DEFAULT_MAX_AGE_GAP_DAYS = 1 * DAYS_PER_YEAR
DEFAULT_MAX_WEIGHT_DIFF_PCT = 12.0
DEFAULT_MATCHES_PER_ATHLETE = 2
DEFAULT_BALANCE_PENALTY = 0.5

DEFAULT_NUM_MATS = 4
DEFAULT_REST_GAP = 4


class MeetSchedulingError(Exception):
    """Base exception for meet scheduling errors"""

    pass


class MeetConfigError(MeetSchedulingError):
    """Settings or inputs rejected before any computation"""

    pass


@dataclass(frozen=True)
class PairingSettings:
    max_age_gap_days: int = DEFAULT_MAX_AGE_GAP_DAYS
    max_weight_diff_pct: float = DEFAULT_MAX_WEIGHT_DIFF_PCT
    first_year_only_with_first_year: bool = True
    allow_same_team_matches: bool = False
    balance_team_pairs: bool = True
    balance_penalty: float = DEFAULT_BALANCE_PENALTY
    matches_per_athlete: int = DEFAULT_MATCHES_PER_ATHLETE
    max_matches_per_athlete: int = MAX_MATCHES_PER_ATHLETE

    @property
    def target_matches(self) -> int:
        """Matches each athlete should receive: min(target, hard cap)."""
        return min(self.matches_per_athlete, self.max_matches_per_athlete)

    def validate(self) -> "PairingSettings":
        if self.max_age_gap_days < 0:
            raise MeetConfigError(f"max_age_gap_days must be >= 0, got {self.max_age_gap_days}")
        if self.max_weight_diff_pct < 0:
            raise MeetConfigError(f"max_weight_diff_pct must be >= 0, got {self.max_weight_diff_pct}")
        if self.balance_penalty < 0:
            raise MeetConfigError(f"balance_penalty must be >= 0, got {self.balance_penalty}")
        if self.matches_per_athlete < 1:
            raise MeetConfigError(f"matches_per_athlete must be >= 1, got {self.matches_per_athlete}")
        if not 1 <= self.max_matches_per_athlete <= MAX_MATCHES_PER_ATHLETE:
            raise MeetConfigError(
                f"max_matches_per_athlete must be between 1 and {MAX_MATCHES_PER_ATHLETE}, "
                f"got {self.max_matches_per_athlete}"
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_age_gap_days": self.max_age_gap_days,
            "max_weight_diff_pct": self.max_weight_diff_pct,
            "first_year_only_with_first_year": self.first_year_only_with_first_year,
            "allow_same_team_matches": self.allow_same_team_matches,
            "balance_team_pairs": self.balance_team_pairs,
            "balance_penalty": self.balance_penalty,
            "matches_per_athlete": self.matches_per_athlete,
            "max_matches_per_athlete": self.max_matches_per_athlete,
        }


@dataclass(frozen=True)
class SchedulingTuning:
    # Allowance granted to the lighter athlete (percentage points)
    age_allowance_pct_per_year: float = 1.0
    experience_allowance_pct_per_year: float = 0.75
    skill_allowance_pct_per_point: float = 0.5

    # Pairing generator
    candidate_window: int = 20
    same_team_penalty: float = 10.0

    # Mat assignment
    ineligible_penalty: float = 100_000.0
    range_penalty_scale: float = 50.0
    home_team_penalty: float = 25.0
    fill_tiebreak: float = 0.01

    # Sequencing
    status_conflict_weight: int = 3
    local_search_min_attempts: int = 25
    anneal_start_fraction: float = 0.1
    anneal_min_temperature: float = 0.01
    anneal_time_budget_ms: int = 5000
    band_violation_weight: float = 1000.0

    def validate(self) -> "SchedulingTuning":
        if self.candidate_window < 1:
            raise MeetConfigError(f"candidate_window must be >= 1, got {self.candidate_window}")
        for name in (
            "age_allowance_pct_per_year",
            "experience_allowance_pct_per_year",
            "skill_allowance_pct_per_point",
            "same_team_penalty",
            "ineligible_penalty",
            "range_penalty_scale",
            "home_team_penalty",
            "band_violation_weight",
        ):
            if getattr(self, name) < 0:
                raise MeetConfigError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.fill_tiebreak <= 0:
            raise MeetConfigError(f"fill_tiebreak must be > 0, got {self.fill_tiebreak}")
        if self.status_conflict_weight < 1:
            raise MeetConfigError(f"status_conflict_weight must be >= 1, got {self.status_conflict_weight}")
        if self.local_search_min_attempts < 1:
            raise MeetConfigError(
                f"local_search_min_attempts must be >= 1, got {self.local_search_min_attempts}"
            )
        if not 0 < self.anneal_start_fraction <= 1:
            raise MeetConfigError(f"anneal_start_fraction must be in (0, 1], got {self.anneal_start_fraction}")
        if self.anneal_min_temperature <= 0:
            raise MeetConfigError(f"anneal_min_temperature must be > 0, got {self.anneal_min_temperature}")
        if self.anneal_time_budget_ms <= 0:
            raise MeetConfigError(f"anneal_time_budget_ms must be > 0, got {self.anneal_time_budget_ms}")
        return self


DEFAULT_TUNING = SchedulingTuning()


def require_mats(num_mats: int) -> int:
    """Reject assignment/sequencing when no mats are configured."""
    if num_mats < 1:
        raise MeetConfigError(f"At least one mat is required, got num_mats={num_mats}")
    return num_mats


def require_non_negative(name: str, value: float) -> float:
    if value < 0:
        raise MeetConfigError(f"{name} must be >= 0, got {value}")
    return value
