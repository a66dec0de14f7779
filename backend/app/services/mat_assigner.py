"""
Mat Assigner - put bouts on mats.

Two entry points sharing one penalty model (lowest penalty wins, a small
fill-count term spreads load deterministically when penalties tie):

assign_all (batch):
  - Bouts processed locked-first, then ascending pairing score.
  - Locked bouts that already have a mat stay on it.
  - Rest penalty per athlete: rest_penalty * max(0, min_rest_gap - gap),
    where gap is measured from the athlete's last appearance when that
    appearance is on the same mat (0 otherwise).
  - Mat band and home affinity penalties as below, when the roster and
    meet date are supplied. A home athlete's affinity is to the mat of
    their previous bout in this run.
  - order = mat fill count + 1.

assign_one (single manual insertion):
  - Per-mat eligibility bands, padded with permissive defaults.
  - Ineligibility penalty only when at least one mat fits the pair;
    otherwise a soft out-of-band penalty scaled by distance.
  - Home-team affinity penalty when the bout leaves the home mat.
  - Appends after the last bout on the chosen mat; never renumbers other
    bouts.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from app.services.meet_settings import (
    DEFAULT_TUNING,
    MeetConfigError,
    SchedulingTuning,
    require_mats,
    require_non_negative,
)
from app.services.meet_types import DEFAULT_MAT_RULE, AthleteEntry, BoutEntry, MatRule

logger = logging.getLogger(__name__)


@dataclass
class MatPlacement:
    mat: int
    order: int
    penalty: float
    eligible_mats: List[int]
    home_mat: Optional[int] = None


class MatLoadTracker:
    """Per-run fill counts and last-seen (mat, order) for each athlete."""

    def __init__(self, num_mats: int):
        self.fill: Dict[int, int] = {m: 0 for m in range(1, num_mats + 1)}
        self.last_seen: Dict[int, Tuple[int, int]] = {}

    def next_order(self, mat: int) -> int:
        return self.fill[mat] + 1

    def rest_shortfall(self, athlete_id: int, mat: int, min_rest_gap: int) -> int:
        seen = self.last_seen.get(athlete_id)
        if seen is None or seen[0] != mat:
            return 0
        gap = self.next_order(mat) - seen[1]
        return max(0, min_rest_gap - gap)

    def place(self, bout: BoutEntry, mat: int) -> int:
        order = self.next_order(mat)
        self.fill[mat] = order
        for athlete_id in bout.athlete_ids:
            self.last_seen[athlete_id] = (mat, order)
        return order


def _batch_sort_key(item: Tuple[int, BoutEntry]) -> Tuple:
    idx, bout = item
    if bout.locked:
        # Locked bouts keep their previous relative order
        return (0, bout.mat or 0, bout.order or 0, idx)
    return (1, bout.score, idx)


def assign_all(
    bouts: Sequence[BoutEntry],
    num_mats: int,
    min_rest_gap: int,
    rest_penalty: float,
    tuning: SchedulingTuning = DEFAULT_TUNING,
    *,
    athletes: Optional[Mapping[int, AthleteEntry]] = None,
    mat_rules: Sequence[MatRule] = (),
    meet_date: Optional[date] = None,
    home_team_id: Optional[int] = None,
    prefer_same_mat_for_home: bool = False,
) -> List[BoutEntry]:
    """
    Fresh mat assignment for every bout.

    Mat bands only apply when both `athletes` and `meet_date` are given;
    a bout with an athlete missing from `athletes` fits every mat.

    Returns new BoutEntry objects (inputs untouched) sorted by (mat, order).
    """
    rules = pad_mat_rules(mat_rules, num_mats)
    require_non_negative("min_rest_gap", min_rest_gap)
    require_non_negative("rest_penalty", rest_penalty)
    tuning.validate()

    for bout in bouts:
        if bout.locked and bout.mat is not None and not 1 <= bout.mat <= num_mats:
            raise MeetConfigError(f"Locked bout {bout.id} is on mat {bout.mat}, outside 1..{num_mats}")

    roster = athletes or {}
    track_home = prefer_same_mat_for_home and home_team_id is not None and bool(roster)
    home_mat_of: Dict[int, int] = {}

    tracker = MatLoadTracker(num_mats)
    assigned: List[BoutEntry] = []

    for _idx, bout in sorted(enumerate(bouts), key=_batch_sort_key):
        if bout.locked and bout.mat is not None:
            mat = bout.mat
        else:
            fixed: Dict[int, float] = {}
            pair = [roster.get(a) for a in bout.athlete_ids]
            if meet_date is not None and all(pair):
                fixed, _eligible = _band_penalties(pair, rules, meet_date, tuning)
            home_mat = next((home_mat_of[a] for a in bout.athlete_ids if a in home_mat_of), None)
            if home_mat is not None:
                for m in range(1, num_mats + 1):
                    if m != home_mat:
                        fixed[m] = fixed.get(m, 0.0) + tuning.home_team_penalty
            mat = _best_batch_mat(bout, tracker, num_mats, min_rest_gap, rest_penalty, tuning, fixed)
        order = tracker.place(bout, mat)
        assigned.append(replace(bout, mat=mat, order=order))
        if track_home:
            for athlete_id in bout.athlete_ids:
                athlete = roster.get(athlete_id)
                if athlete is not None and athlete.team_id == home_team_id:
                    home_mat_of[athlete_id] = mat

    logger.info(
        "MAT_ASSIGN: bouts=%s mats=%s fill=%s",
        len(assigned),
        num_mats,
        [tracker.fill[m] for m in range(1, num_mats + 1)],
    )
    return sorted(assigned, key=lambda b: (b.mat, b.order))


def _best_batch_mat(
    bout: BoutEntry,
    tracker: MatLoadTracker,
    num_mats: int,
    min_rest_gap: int,
    rest_penalty: float,
    tuning: SchedulingTuning,
    fixed_penalty: Mapping[int, float],
) -> int:
    best_mat = 1
    best_penalty = float("inf")
    for mat in range(1, num_mats + 1):
        penalty = fixed_penalty.get(mat, 0.0)
        for athlete_id in bout.athlete_ids:
            penalty += rest_penalty * tracker.rest_shortfall(athlete_id, mat, min_rest_gap)
        penalty += tracker.fill[mat] * tuning.fill_tiebreak
        if penalty < best_penalty:
            best_penalty = penalty
            best_mat = mat
    return best_mat


# ============================================================================
# Mat bands and single-bout insertion
# ============================================================================


def pad_mat_rules(rules: Sequence[MatRule], num_mats: int) -> List[MatRule]:
    """One rule per mat: extra rules dropped, missing mats get the permissive default."""
    require_mats(num_mats)
    padded = [rule.validate() for rule in list(rules)[:num_mats]]
    while len(padded) < num_mats:
        padded.append(DEFAULT_MAT_RULE)
    return padded


def _range_distance(value: float, low: float, high: float) -> float:
    if value < low:
        return low - value
    if value > high:
        return value - high
    return 0.0


def band_distance(athletes: Sequence[AthleteEntry], rule: MatRule, meet_date: date) -> float:
    """How far the athletes fall outside a mat band (0 when all fit)."""
    total = 0.0
    for athlete in athletes:
        total += _range_distance(athlete.experience_years, rule.min_experience, rule.max_experience)
        total += _range_distance(athlete.age_in_years(meet_date), rule.min_age, rule.max_age)
    return total


def _band_penalties(
    pair: Sequence[AthleteEntry],
    rules: Sequence[MatRule],
    meet_date: date,
    tuning: SchedulingTuning,
) -> Tuple[Dict[int, float], List[int]]:
    """Band penalty per mat and the mats whose band fits the whole pair."""
    distances = {m: band_distance(pair, rule, meet_date) for m, rule in enumerate(rules, start=1)}
    eligible = [m for m, d in distances.items() if d == 0]
    penalties: Dict[int, float] = {}
    for mat, distance in distances.items():
        if distance == 0:
            penalties[mat] = 0.0
        elif eligible:
            penalties[mat] = tuning.ineligible_penalty
        else:
            penalties[mat] = distance * tuning.range_penalty_scale
    return penalties, eligible


def find_home_mat(
    existing_bouts: Sequence[BoutEntry],
    athletes: Mapping[int, AthleteEntry],
    home_team_id: Optional[int],
) -> Optional[int]:
    """Mat already holding the most home-team bouts (lowest mat on ties)."""
    if home_team_id is None:
        return None
    counts: Dict[int, int] = defaultdict(int)
    for bout in existing_bouts:
        if bout.mat is None:
            continue
        if _is_home_bout(bout, athletes, home_team_id):
            counts[bout.mat] += 1
    if not counts:
        return None
    return min(counts, key=lambda m: (-counts[m], m))


def _is_home_bout(bout: BoutEntry, athletes: Mapping[int, AthleteEntry], home_team_id: int) -> bool:
    for athlete_id in bout.athlete_ids:
        athlete = athletes.get(athlete_id)
        if athlete is not None and athlete.team_id == home_team_id:
            return True
    return False


def assign_one(
    bout: BoutEntry,
    existing_bouts: Sequence[BoutEntry],
    athletes: Mapping[int, AthleteEntry],
    mat_rules: Sequence[MatRule],
    num_mats: int,
    meet_date: date,
    home_team_id: Optional[int] = None,
    prefer_same_mat_for_home: bool = False,
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> MatPlacement:
    """
    Choose a mat for one new bout without touching existing bouts.

    Raises:
        MeetConfigError: zero mats, invalid band, or unknown athlete
    """
    rules = pad_mat_rules(mat_rules, num_mats)
    tuning.validate()

    pair: List[AthleteEntry] = []
    for athlete_id in bout.athlete_ids:
        athlete = athletes.get(athlete_id)
        if athlete is None:
            raise MeetConfigError(f"Athlete {athlete_id} not found for bout insertion")
        pair.append(athlete)

    fill: Dict[int, int] = {m: 0 for m in range(1, num_mats + 1)}
    last_order: Dict[int, int] = {m: 0 for m in range(1, num_mats + 1)}
    for other in existing_bouts:
        if other.mat is None:
            continue
        if not 1 <= other.mat <= num_mats:
            raise MeetConfigError(f"Bout {other.id} is on mat {other.mat}, outside 1..{num_mats}")
        fill[other.mat] += 1
        last_order[other.mat] = max(last_order[other.mat], other.order or 0)

    band_penalty, eligible_mats = _band_penalties(pair, rules, meet_date, tuning)

    home_mat = None
    if prefer_same_mat_for_home and home_team_id is not None:
        if any(a.team_id == home_team_id for a in pair):
            home_mat = find_home_mat(existing_bouts, athletes, home_team_id)

    best_mat = 1
    best_penalty = float("inf")
    for mat in range(1, num_mats + 1):
        penalty = band_penalty[mat]
        if home_mat is not None and mat != home_mat:
            penalty += tuning.home_team_penalty
        penalty += fill[mat] * tuning.fill_tiebreak
        if penalty < best_penalty:
            best_penalty = penalty
            best_mat = mat

    # Orders on a mat can have gaps; never reuse one already taken
    placement = MatPlacement(
        mat=best_mat,
        order=max(fill[best_mat], last_order[best_mat]) + 1,
        penalty=round(best_penalty, 4),
        eligible_mats=eligible_mats,
        home_mat=home_mat,
    )
    logger.info(
        "MAT_INSERT: red=%s green=%s mat=%s order=%s penalty=%s eligible=%s home_mat=%s",
        bout.red_id,
        bout.green_id,
        placement.mat,
        placement.order,
        placement.penalty,
        eligible_mats,
        home_mat,
    )
    return placement
