"""
Pairing Generator - weight-sorted nearest-neighbour matching with
team-pair balancing.

Algorithm (per round, one round per target match):
  1. Athletes in locked bouts are removed from the pool up front.
  2. Remaining pool sorted by weight (stable: equal weights keep input order).
  3. Phase 1 - cross-team only. Phase 2 - same-team allowed, only when
     allow_same_team_matches is set and only for athletes still unmatched
     in this round.
  4. For each unmatched athlete A, scan the next `candidate_window` pool
     entries (by index) and take the cheapest eligible partner:
        baseline cost
        + balance_penalty * count(A.team, B.team)   (cross-team, balancing on)
        + same_team_penalty                          (same team, phase 2)
     Ties keep the first found.

An athlete gets at most one new bout per round and rounds are capped at
min(matches_per_athlete, max_matches_per_athlete). A pair is never emitted
twice. Athletes left without a partner are reported, not treated as errors.

Same inputs → same outputs (no randomness, no module state).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from app.services.meet_settings import DEFAULT_TUNING, PairingSettings, SchedulingTuning
from app.services.meet_types import (
    SOURCE_GENERATED,
    AthleteEntry,
    BoutEntry,
    PairKey,
    pair_key,
    pair_key_set,
)
from app.services.pairing_score import is_eligible, score_pair

logger = logging.getLogger(__name__)


@dataclass
class PairingResult:
    bouts: List[BoutEntry]
    new_bouts: List[BoutEntry]
    unmatched_ids: List[int] = field(default_factory=list)
    short_ids: List[int] = field(default_factory=list)
    team_pair_counts: Dict[PairKey, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "created": len(self.new_bouts),
            "locked_kept": len(self.bouts) - len(self.new_bouts),
            "unmatched_count": len(self.unmatched_ids),
            "below_target_count": len(self.short_ids),
            "team_pair_counts": {f"{a}-{b}": n for (a, b), n in sorted(self.team_pair_counts.items())},
        }


class TeamPairCounter:
    """Cross-team bout counts keyed by unordered team pair."""

    def __init__(self):
        self.counts: Dict[PairKey, int] = defaultdict(int)

    def get(self, team_a: int, team_b: int) -> int:
        if team_a == team_b:
            return 0
        return self.counts.get(pair_key(team_a, team_b), 0)

    def record(self, team_a: int, team_b: int) -> None:
        if team_a != team_b:
            self.counts[pair_key(team_a, team_b)] += 1


def _seed_team_pairs(
    locked_bouts: Sequence[BoutEntry], team_of: Dict[int, int]
) -> TeamPairCounter:
    counter = TeamPairCounter()
    for bout in locked_bouts:
        red_team = team_of.get(bout.red_id)
        green_team = team_of.get(bout.green_id)
        if red_team is None or green_team is None:
            continue
        counter.record(red_team, green_team)
    return counter


def generate_pairings(
    pool: Iterable[AthleteEntry],
    settings: PairingSettings,
    locked_bouts: Sequence[BoutEntry] = (),
    excluded_pairs: Iterable[Tuple[int, int]] = (),
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> PairingResult:
    """
    Generate bouts for the attending pool.

    Args:
        pool: Attending athletes (NOT_COMING entries are ignored)
        settings: Meet pairing settings
        locked_bouts: Bouts that must survive unchanged
        excluded_pairs: Athlete id pairs that must never meet

    Returns:
        PairingResult with locked bouts first, then new bouts in creation order
    """
    settings.validate()
    tuning.validate()

    athletes = [a for a in pool if a.attending]
    team_of = {a.id: a.team_id for a in athletes}
    excluded = pair_key_set(excluded_pairs)

    locked_athlete_ids: Set[int] = set()
    for bout in locked_bouts:
        locked_athlete_ids.update(bout.athlete_ids)

    candidates = sorted(
        (a for a in athletes if a.id not in locked_athlete_ids),
        key=lambda a: a.weight,
    )
    team_pairs = _seed_team_pairs(locked_bouts, team_of)

    target = settings.target_matches
    match_counts: Dict[int, int] = defaultdict(int)
    paired: Set[PairKey] = {b.key for b in locked_bouts}
    new_bouts: List[BoutEntry] = []

    phases = [False, True] if settings.allow_same_team_matches else [False]

    for _round in range(target):
        used: Set[int] = set()
        for allow_same_team in phases:
            for i, a in enumerate(candidates):
                if a.id in used or match_counts[a.id] >= target:
                    continue

                best: Optional[AthleteEntry] = None
                best_cost = 0.0
                best_extra = ""
                window_end = min(len(candidates), i + 1 + tuning.candidate_window)
                for j in range(i + 1, window_end):
                    b = candidates[j]
                    if b.id in used or match_counts[b.id] >= target:
                        continue
                    if pair_key(a.id, b.id) in paired:
                        continue
                    if not is_eligible(a, b, settings, excluded, allow_same_team=allow_same_team):
                        continue

                    cost, extra = _candidate_cost(a, b, settings, tuning, team_pairs)
                    if best is None or cost < best_cost:
                        best, best_cost, best_extra = b, cost, extra

                if best is None:
                    continue

                score = score_pair(a, best, tuning)
                notes = score.describe() + best_extra
                new_bouts.append(
                    BoutEntry(
                        red_id=a.id,
                        green_id=best.id,
                        score=round(best_cost, 4),
                        notes=notes,
                        source=SOURCE_GENERATED,
                        effective_weight_pct=round(score.effective_weight_pct, 4),
                    )
                )
                used.add(a.id)
                used.add(best.id)
                match_counts[a.id] += 1
                match_counts[best.id] += 1
                paired.add(pair_key(a.id, best.id))
                team_pairs.record(a.team_id, best.team_id)

        if not used:
            # Nothing matched this round; later rounds see the same state.
            break

    unmatched_ids = [a.id for a in candidates if match_counts[a.id] == 0]
    short_ids = [a.id for a in candidates if match_counts[a.id] < target]

    logger.info(
        "PAIRINGS: pool=%s locked=%s created=%s unmatched=%s below_target=%s",
        len(athletes),
        len(locked_bouts),
        len(new_bouts),
        len(unmatched_ids),
        len(short_ids),
    )

    return PairingResult(
        bouts=list(locked_bouts) + new_bouts,
        new_bouts=new_bouts,
        unmatched_ids=unmatched_ids,
        short_ids=short_ids,
        team_pair_counts=dict(team_pairs.counts),
    )


def _candidate_cost(
    a: AthleteEntry,
    b: AthleteEntry,
    settings: PairingSettings,
    tuning: SchedulingTuning,
    team_pairs: TeamPairCounter,
) -> Tuple[float, str]:
    score = score_pair(a, b, tuning)
    cost = score.baseline_cost
    extra = ""
    if a.team_id == b.team_id:
        cost += tuning.same_team_penalty
        extra += f" sameTeam=+{tuning.same_team_penalty:.1f}"
    elif settings.balance_team_pairs:
        penalty = settings.balance_penalty * team_pairs.get(a.team_id, b.team_id)
        if penalty > 0:
            cost += penalty
            extra += f" teamPair=+{penalty:.2f}"
    return cost, extra
