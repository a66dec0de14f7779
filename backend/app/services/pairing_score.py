"""
Pairing Score - matchup cost and eligibility for two athletes.

Pure and stateless. Two separate figures come out of a pair:

- effective_weight_pct: weight % difference (lighter athlete as base)
  reduced by an allowance when the lighter athlete is also older, more
  experienced or more skilled than the heavier one.
- baseline cost: raw weighted magnitudes used by the generator to rank
  candidates (lower is better).

Eligibility is a separate boolean gate; it never looks at either cost.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import AbstractSet, Iterable, List, Optional

from app.services.meet_settings import DAYS_PER_YEAR, DEFAULT_TUNING, PairingSettings, SchedulingTuning
from app.services.meet_types import AthleteEntry, PairKey, pair_key

INVALID_WEIGHT_PCT = 999.0


@dataclass(frozen=True)
class PairScore:
    weight_diff: float
    weight_pct: float
    age_gap_days: int
    exp_gap: int
    skill_gap: int
    allowance_pct: float
    effective_weight_pct: float
    baseline_cost: float

    def describe(self) -> str:
        return (
            f"wDiff={self.weight_diff:.1f} wPct={self.weight_pct:.1f}% "
            f"ewPct={self.effective_weight_pct:.1f}% ageGapDays={self.age_gap_days} "
            f"expGap={self.exp_gap} skillGap={self.skill_gap}"
        )


@dataclass
class CandidateOpponent:
    athlete: AthleteEntry
    score: PairScore


def weight_pct_diff(a: float, b: float) -> float:
    """Symmetric weight difference as a percentage of the lighter weight."""
    base = min(a, b)
    if base <= 0:
        return INVALID_WEIGHT_PCT
    return 100.0 * abs(a - b) / base


def age_gap_days(a: date, b: date) -> int:
    return abs((a - b).days)


def weight_allowance_pct(a: AthleteEntry, b: AthleteEntry, tuning: SchedulingTuning = DEFAULT_TUNING) -> float:
    """
    Extra weight-% tolerance for the lighter athlete.

    Only surpluses on the lighter side count: years older than the heavier
    athlete, years of extra experience, points of extra skill.
    Equal weights have no lighter athlete and get no allowance.
    """
    if a.weight == b.weight:
        return 0.0
    lighter, heavier = (a, b) if a.weight < b.weight else (b, a)

    allowance = 0.0
    if lighter.birthdate < heavier.birthdate:
        years_older = (heavier.birthdate - lighter.birthdate).days / DAYS_PER_YEAR
        allowance += years_older * tuning.age_allowance_pct_per_year
    exp_surplus = lighter.experience_years - heavier.experience_years
    if exp_surplus > 0:
        allowance += exp_surplus * tuning.experience_allowance_pct_per_year
    skill_surplus = lighter.skill - heavier.skill
    if skill_surplus > 0:
        allowance += skill_surplus * tuning.skill_allowance_pct_per_point
    return allowance


def baseline_cost(a: AthleteEntry, b: AthleteEntry) -> float:
    w_diff = abs(a.weight - b.weight)
    age_gap = age_gap_days(a.birthdate, b.birthdate)
    exp_gap = abs(a.experience_years - b.experience_years)
    skill_gap = abs(a.skill - b.skill)
    return 4 * (w_diff / 10) + 2 * (age_gap / 365) + 2 * (exp_gap / 3) + 2 * (skill_gap / 3)


def score_pair(a: AthleteEntry, b: AthleteEntry, tuning: SchedulingTuning = DEFAULT_TUNING) -> PairScore:
    w_pct = weight_pct_diff(a.weight, b.weight)
    allowance = weight_allowance_pct(a, b, tuning)
    return PairScore(
        weight_diff=abs(a.weight - b.weight),
        weight_pct=w_pct,
        age_gap_days=age_gap_days(a.birthdate, b.birthdate),
        exp_gap=abs(a.experience_years - b.experience_years),
        skill_gap=abs(a.skill - b.skill),
        allowance_pct=allowance,
        effective_weight_pct=abs(w_pct - allowance),
        baseline_cost=baseline_cost(a, b),
    )


def ineligibility_reason(
    a: AthleteEntry,
    b: AthleteEntry,
    settings: PairingSettings,
    excluded: AbstractSet[PairKey] = frozenset(),
    allow_same_team: Optional[bool] = None,
) -> Optional[str]:
    """
    Why two athletes may not be paired, or None when they may.

    allow_same_team overrides settings.allow_same_team_matches (the generator
    runs a cross-team-only phase first).
    """
    if a.id == b.id:
        return "SAME_ATHLETE"
    same_team_ok = settings.allow_same_team_matches if allow_same_team is None else allow_same_team
    if a.team_id == b.team_id and not same_team_ok:
        return "SAME_TEAM"
    if pair_key(a.id, b.id) in excluded:
        return "EXCLUDED_PAIR"
    if age_gap_days(a.birthdate, b.birthdate) > settings.max_age_gap_days:
        return "AGE_GAP"
    if weight_pct_diff(a.weight, b.weight) > settings.max_weight_diff_pct:
        return "WEIGHT_DIFF"
    if settings.first_year_only_with_first_year and a.first_year != b.first_year:
        return "FIRST_YEAR"
    return None


def is_eligible(
    a: AthleteEntry,
    b: AthleteEntry,
    settings: PairingSettings,
    excluded: AbstractSet[PairKey] = frozenset(),
    allow_same_team: Optional[bool] = None,
) -> bool:
    return ineligibility_reason(a, b, settings, excluded, allow_same_team) is None


def rank_candidates(
    target: AthleteEntry,
    pool: Iterable[AthleteEntry],
    settings: PairingSettings,
    excluded: AbstractSet[PairKey] = frozenset(),
    limit: int = 20,
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> List[CandidateOpponent]:
    """
    Eligible opponents for one athlete, best first.

    Ranked by effective weight % then baseline cost; used when a coach picks
    a match by hand.
    """
    rows: List[CandidateOpponent] = []
    for opp in pool:
        if opp.id == target.id or not opp.attending:
            continue
        if not is_eligible(target, opp, settings, excluded):
            continue
        rows.append(CandidateOpponent(athlete=opp, score=score_pair(target, opp, tuning)))

    rows.sort(key=lambda c: (c.score.effective_weight_pct, c.score.baseline_cost))
    return rows[:limit]
