"""
Bout Sequencer - reorder bouts within each mat to reduce rest conflicts.

Three interchangeable ConflictReducer strategies over the same objective
(arrival-band violation first, then the weighted conflict histogram from
conflict_summary):

  local       LocalSearchReducer - per mat, bounded random swaps that never
              make the objective worse, then a deterministic pass that moves
              distance-0 conflicts to the nearest clean slot, re-matching
              the whole mat when single swaps cannot clear them.
  anneal      AnnealingReducer - whole schedule, simulated annealing under a
              wall-clock budget, returns the best schedule seen.
  sequential  SlotFillReducer - per mat, relocate each conflicting bout near
              the top, then randomly, then fall back to a random top slot.

All strategies keep every bout on its mat, keep the bout count, and leave
pinned locked bouts at their slot index. Randomness comes from an injected
random.Random; every loop is bounded by an attempt count or a deadline.
"""

from __future__ import annotations

import logging
import math
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from app.services.conflict_summary import (
    MatLists,
    band_violation,
    compare_histograms,
    conflict_histogram,
    has_cross_mat_conflict,
    has_same_mat_conflict,
    has_zero_gap_conflict,
    order_band,
    other_mat_orders,
    schedule_band_violation,
    status_weights,
    weighted_cost,
)
from app.services.meet_settings import DEFAULT_TUNING, MeetConfigError, SchedulingTuning, require_mats
from app.services.meet_types import BoutEntry

logger = logging.getLogger(__name__)

ScheduleKey = Tuple[int, List[int]]

DEFAULT_STRATEGY = "sequential"


def _next_pow2(value: int) -> int:
    power = 1
    while power < value:
        power <<= 1
    return power


def _index_of(bouts: Sequence[BoutEntry], bout: BoutEntry) -> int:
    for idx, candidate in enumerate(bouts):
        if candidate is bout:
            return idx
    raise ValueError("bout not on this mat")


def _match_slots(items: Sequence[int], allowed: Mapping[int, Sequence[int]]) -> Optional[Dict[int, int]]:
    """
    Perfect matching of items to slots by augmenting paths.

    Each item tries its slots in the given order, so an item whose first
    choice is free keeps it. Returns item -> slot, or None when some item
    cannot be placed.
    """
    owner: Dict[int, int] = {}

    def augment(item: int, seen: set) -> bool:
        for slot in allowed[item]:
            if slot in seen:
                continue
            seen.add(slot)
            if slot not in owner or augment(owner[slot], seen):
                owner[slot] = item
                return True
        return False

    for item in items:
        if not augment(item, set()):
            return None
    return {item: slot for slot, item in owner.items()}


class ConflictReducer(ABC):
    """Base class for sequencing strategies."""

    name = "base"

    def __init__(
        self,
        conflict_gap: int,
        *,
        rng: Optional[random.Random] = None,
        statuses: Optional[Mapping[int, str]] = None,
        pin_locked: bool = True,
        cross_mat: bool = True,
        tuning: SchedulingTuning = DEFAULT_TUNING,
    ):
        if conflict_gap < 0:
            raise MeetConfigError(f"conflict_gap must be >= 0, got {conflict_gap}")
        self.conflict_gap = conflict_gap
        self.rng = rng if rng is not None else random.Random()
        self.statuses: Dict[int, str] = dict(statuses or {})
        self.weights = status_weights(self.statuses, tuning)
        self.pin_locked = pin_locked
        self.cross_mat = cross_mat
        self.tuning = tuning.validate()

    @abstractmethod
    def reduce(self, mats: MatLists) -> MatLists:
        """Return reordered copies of the mat lists."""

    # -- shared helpers -------------------------------------------------------

    def histogram(self, mats: MatLists) -> List[int]:
        return conflict_histogram(mats, self.conflict_gap, self.weights, self.cross_mat)

    def key(self, mats: MatLists) -> ScheduleKey:
        return schedule_band_violation(mats, self.statuses), self.histogram(mats)

    @staticmethod
    def not_worse(candidate: ScheduleKey, current: ScheduleKey) -> bool:
        if candidate[0] != current[0]:
            return candidate[0] < current[0]
        return compare_histograms(candidate[1], current[1]) <= 0

    def cost(self, mats: MatLists) -> float:
        band = schedule_band_violation(mats, self.statuses)
        return band * self.tuning.band_violation_weight + weighted_cost(self.histogram(mats))

    def is_pinned(self, bout: BoutEntry) -> bool:
        return self.pin_locked and bout.locked

    def pinned_positions(self, bouts: Sequence[BoutEntry]) -> Dict[int, BoutEntry]:
        return {idx: b for idx, b in enumerate(bouts) if self.is_pinned(b)}

    def movable_positions(self, bouts: Sequence[BoutEntry]) -> List[int]:
        return [idx for idx, b in enumerate(bouts) if not self.is_pinned(b)]

    @staticmethod
    def respects_pins(bouts: Sequence[BoutEntry], pins: Mapping[int, BoutEntry]) -> bool:
        return all(idx < len(bouts) and bouts[idx] is bout for idx, bout in pins.items())

    @staticmethod
    def copy_mats(mats: Sequence[Sequence[BoutEntry]]) -> MatLists:
        return [list(bouts) for bouts in mats]


# ============================================================================
# Strategy 1: per-mat local search
# ============================================================================


class LocalSearchReducer(ConflictReducer):
    name = "local"

    def reduce(self, mats: MatLists) -> MatLists:
        result = self.copy_mats(mats)
        for mat_index in range(len(result)):
            self.reorder_mat(result, mat_index)
        return result

    def reorder_mat(self, mats: MatLists, mat_index: int) -> List[BoutEntry]:
        """Reorder one mat in place with the other mats held fixed."""
        bouts = mats[mat_index]
        movable = self.movable_positions(bouts)
        if len(movable) < 2:
            return bouts

        best_key = self.key(mats)
        attempts = max(self.tuning.local_search_min_attempts, _next_pow2(len(bouts) * 4))
        for _ in range(attempts):
            if self.rng.random() < 0.5:
                k = self.rng.randrange(len(movable) - 1)
                i, j = movable[k], movable[k + 1]
            else:
                i, j = self.rng.sample(movable, 2)
            bouts[i], bouts[j] = bouts[j], bouts[i]
            candidate = self.key(mats)
            if self.not_worse(candidate, best_key):
                best_key = candidate
            else:
                bouts[i], bouts[j] = bouts[j], bouts[i]

        self.resolve_zero_gap(mats, mat_index)
        return bouts

    def resolve_zero_gap(self, mats: MatLists, mat_index: int) -> int:
        """
        Swap bouts that share a slot index with the same athlete on another
        mat to the nearest slot where neither swapped bout has a distance-0
        conflict. Each swap clears at least one conflicting slot.

        When no single swap helps but conflicts remain, the movable bouts
        are re-matched to the movable slots as a whole: with the other mats
        held fixed, any arrangement free of distance-0 conflicts is found.

        Returns the number of swaps made (bouts moved, for a re-match).
        """
        bouts = mats[mat_index]
        others = other_mat_orders(mats, mat_index)
        swaps = 0
        for _ in range(len(bouts) + 1):
            moved = False
            for idx in range(len(bouts) - 1, -1, -1):
                if self.is_pinned(bouts[idx]):
                    continue
                if not has_zero_gap_conflict(bouts[idx], idx + 1, others):
                    continue
                target = self._nearest_clean_slot(bouts, idx, others)
                if target is None:
                    continue
                bouts[idx], bouts[target] = bouts[target], bouts[idx]
                swaps += 1
                moved = True
                break
            if not moved:
                break

        if self._zero_gap_positions(bouts, others):
            before = list(bouts)
            if self._rematch_slots(bouts, others):
                swaps += sum(1 for old, new in zip(before, bouts) if old is not new)
        return swaps

    def _zero_gap_positions(self, bouts: Sequence[BoutEntry], others: Mapping[int, set]) -> List[int]:
        return [
            idx
            for idx, bout in enumerate(bouts)
            if not self.is_pinned(bout) and has_zero_gap_conflict(bout, idx + 1, others)
        ]

    def _rematch_slots(self, bouts: List[BoutEntry], others: Mapping[int, set]) -> bool:
        """
        Place every movable bout in a movable slot free of distance-0
        conflicts. Arrival bands are kept when possible and never made
        worse. Returns False (bouts untouched) when no such placement exists.
        """
        slots = self.movable_positions(bouts)
        size = len(bouts)
        baseline_band = band_violation(bouts, self.statuses)
        for keep_bands in (True, False):
            allowed: Dict[int, List[int]] = {}
            for idx in slots:
                bout = bouts[idx]
                low, high = order_band(bout, size, self.statuses)
                clean = [
                    s
                    for s in slots
                    if not has_zero_gap_conflict(bout, s + 1, others) and (not keep_bands or low <= s + 1 <= high)
                ]
                allowed[idx] = sorted(clean, key=lambda s, idx=idx: (abs(s - idx), s))
            assignment = _match_slots(slots, allowed)
            if assignment is None:
                continue
            candidate = list(bouts)
            for idx, slot in assignment.items():
                candidate[slot] = bouts[idx]
            if band_violation(candidate, self.statuses) <= baseline_band:
                bouts[:] = candidate
                return True
        return False

    def _nearest_clean_slot(self, bouts: List[BoutEntry], idx: int, others: Mapping[int, set]) -> Optional[int]:
        baseline_band = band_violation(bouts, self.statuses)
        for distance in range(1, len(bouts)):
            for target in (idx - distance, idx + distance):
                if target < 0 or target >= len(bouts):
                    continue
                if self.is_pinned(bouts[target]):
                    continue
                if has_zero_gap_conflict(bouts[idx], target + 1, others):
                    continue
                if has_zero_gap_conflict(bouts[target], idx + 1, others):
                    continue
                bouts[idx], bouts[target] = bouts[target], bouts[idx]
                band_ok = band_violation(bouts, self.statuses) <= baseline_band
                bouts[idx], bouts[target] = bouts[target], bouts[idx]
                if band_ok:
                    return target
        return None


# ============================================================================
# Strategy 2: global simulated annealing
# ============================================================================


class AnnealingReducer(ConflictReducer):
    name = "anneal"

    def __init__(
        self,
        conflict_gap: int,
        *,
        time_budget_ms: Optional[int] = None,
        max_steps: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        **kwargs,
    ):
        super().__init__(conflict_gap, **kwargs)
        budget = self.tuning.anneal_time_budget_ms if time_budget_ms is None else time_budget_ms
        if budget <= 0:
            raise MeetConfigError(f"time_budget_ms must be > 0, got {budget}")
        if max_steps is not None and max_steps < 0:
            raise MeetConfigError(f"max_steps must be >= 0, got {max_steps}")
        self.time_budget_ms = budget
        self.max_steps = max_steps
        self.clock = clock
        self.steps_taken = 0

    def reduce(self, mats: MatLists) -> MatLists:
        current = self.copy_mats(mats)
        current_cost = self.cost(current)
        best = self.copy_mats(current)
        best_cost = current_cost
        self.steps_taken = 0
        if current_cost == 0:
            return best

        movable = {idx: self.movable_positions(bouts) for idx, bouts in enumerate(current)}
        candidates = [idx for idx, positions in movable.items() if len(positions) >= 2]
        if not candidates:
            return best

        t_start = max(self.tuning.anneal_start_fraction * current_cost, self.tuning.anneal_min_temperature)
        t_floor = min(self.tuning.anneal_min_temperature, t_start)
        budget_s = self.time_budget_ms / 1000.0
        started = self.clock()

        while True:
            elapsed = self.clock() - started
            if elapsed >= budget_s:
                break
            if self.max_steps is not None and self.steps_taken >= self.max_steps:
                break
            self.steps_taken += 1

            temperature = t_start * (t_floor / t_start) ** (elapsed / budget_s)
            mat_index = self.rng.choice(candidates)
            i, j = self.rng.sample(movable[mat_index], 2)
            bouts = current[mat_index]
            bouts[i], bouts[j] = bouts[j], bouts[i]

            new_cost = self.cost(current)
            delta = new_cost - current_cost
            if delta <= 0 or self.rng.random() < math.exp(-delta / temperature):
                current_cost = new_cost
                if current_cost < best_cost:
                    best_cost = current_cost
                    best = self.copy_mats(current)
                    if best_cost == 0:
                        break
            else:
                bouts[i], bouts[j] = bouts[j], bouts[i]

        logger.debug("ANNEAL: steps=%s best_cost=%s", self.steps_taken, best_cost)
        return best


# ============================================================================
# Strategy 3: sequential slot filling
# ============================================================================


class SlotFillReducer(ConflictReducer):
    name = "sequential"

    def reduce(self, mats: MatLists) -> MatLists:
        result = self.copy_mats(mats)
        window = max(5, self.conflict_gap)
        for mat_index in range(len(result)):
            bouts = result[mat_index]
            if len(bouts) < 2:
                continue
            pins = self.pinned_positions(bouts)
            if len(pins) >= len(bouts):
                continue
            others = other_mat_orders(result, mat_index)
            top = min(window, len(bouts))

            for bout in list(bouts):
                if self.is_pinned(bout):
                    continue
                idx = _index_of(bouts, bout)
                if not self._in_conflict(bouts, idx, others):
                    continue

                placed = False
                for target in range(top):
                    if target != idx and self._try_move(bouts, idx, target, others, pins, require_clean=True):
                        placed = True
                        break
                if not placed:
                    for _ in range(len(bouts)):
                        target = self.rng.randrange(len(bouts))
                        if target != idx and self._try_move(bouts, idx, target, others, pins, require_clean=True):
                            placed = True
                            break
                if not placed:
                    target = self.rng.randrange(top)
                    if target != idx:
                        self._try_move(bouts, idx, target, others, pins, require_clean=False)
        return result

    def _in_conflict(self, bouts: List[BoutEntry], idx: int, others: Mapping[int, set]) -> bool:
        if self.cross_mat and has_cross_mat_conflict(bouts[idx], idx + 1, others, self.conflict_gap):
            return True
        return has_same_mat_conflict(bouts, idx, self.conflict_gap)

    def _try_move(
        self,
        bouts: List[BoutEntry],
        idx: int,
        target: int,
        others: Mapping[int, set],
        pins: Mapping[int, BoutEntry],
        require_clean: bool,
    ) -> bool:
        bout = bouts.pop(idx)
        bouts.insert(target, bout)
        ok = self.respects_pins(bouts, pins)
        if ok and require_clean:
            low, high = order_band(bout, len(bouts), self.statuses)
            ok = low <= target + 1 <= high and not self._in_conflict(bouts, target, others)
        if not ok:
            bouts.pop(target)
            bouts.insert(idx, bout)
        return ok


STRATEGIES = {
    LocalSearchReducer.name: LocalSearchReducer,
    AnnealingReducer.name: AnnealingReducer,
    SlotFillReducer.name: SlotFillReducer,
}


# ============================================================================
# Entry point
# ============================================================================


@dataclass
class SequenceResult:
    bouts: List[BoutEntry]
    strategy: str
    histogram_before: List[int]
    histogram_after: List[int]

    def to_dict(self) -> Dict:
        return {
            "strategy": self.strategy,
            "reordered": len(self.bouts),
            "conflicts_before": self.histogram_before,
            "conflicts_after": self.histogram_after,
        }


def group_by_mat(bouts: Sequence[BoutEntry], num_mats: int) -> MatLists:
    """Mat lists (index 0 = mat 1) in current order; unordered bouts go last."""
    require_mats(num_mats)
    indexed: List[Tuple[int, BoutEntry]] = []
    for idx, bout in enumerate(bouts):
        if bout.mat is None:
            raise MeetConfigError(f"Bout {bout.id} ({bout.red_id} v {bout.green_id}) has no mat")
        if not 1 <= bout.mat <= num_mats:
            raise MeetConfigError(f"Bout {bout.id} is on mat {bout.mat}, outside 1..{num_mats}")
        indexed.append((idx, bout))

    def order_key(item: Tuple[int, BoutEntry]) -> Tuple:
        idx, bout = item
        return (bout.order is None, bout.order or 0, idx)

    mats: MatLists = [[] for _ in range(num_mats)]
    for _idx, bout in sorted(indexed, key=order_key):
        mats[bout.mat - 1].append(bout)
    return mats


def number_mats(mats: Sequence[Sequence[BoutEntry]]) -> List[BoutEntry]:
    """Flatten mat lists, assigning mat and dense 1..m order."""
    numbered: List[BoutEntry] = []
    for mat_index, bouts in enumerate(mats):
        for pos, bout in enumerate(bouts):
            numbered.append(replace(bout, mat=mat_index + 1, order=pos + 1))
    return numbered


def build_reducer(strategy: str, conflict_gap: int, **kwargs) -> ConflictReducer:
    reducer_cls = STRATEGIES.get(strategy)
    if reducer_cls is None:
        raise MeetConfigError(f"Unknown sequencing strategy '{strategy}'. Expected one of {sorted(STRATEGIES)}")
    if reducer_cls is not AnnealingReducer:
        for anneal_only in ("time_budget_ms", "max_steps", "clock"):
            kwargs.pop(anneal_only, None)
    return reducer_cls(conflict_gap, **kwargs)


def sequence_bouts(
    bouts: Sequence[BoutEntry],
    num_mats: int,
    conflict_gap: int,
    strategy: str = DEFAULT_STRATEGY,
    *,
    rng: Optional[random.Random] = None,
    statuses: Optional[Mapping[int, str]] = None,
    pin_locked: bool = True,
    cross_mat: bool = True,
    time_budget_ms: Optional[int] = None,
    max_steps: Optional[int] = None,
    clock: Callable[[], float] = time.monotonic,
    tuning: SchedulingTuning = DEFAULT_TUNING,
) -> SequenceResult:
    """
    Reorder already-assigned bouts and renumber each mat 1..m.

    Raises:
        MeetConfigError: zero mats, bout without a mat or outside 1..num_mats,
            negative gap, non-positive budget, unknown strategy
    """
    reducer = build_reducer(
        strategy,
        conflict_gap,
        rng=rng,
        statuses=statuses,
        pin_locked=pin_locked,
        cross_mat=cross_mat,
        tuning=tuning,
        time_budget_ms=time_budget_ms,
        max_steps=max_steps,
        clock=clock,
    )
    mats = group_by_mat(bouts, num_mats)
    before = reducer.histogram(mats)
    reordered = reducer.reduce(mats)
    after = reducer.histogram(reordered)

    logger.info(
        "SEQUENCE: strategy=%s bouts=%s mats=%s gap=%s before=%s after=%s",
        strategy,
        len(bouts),
        num_mats,
        conflict_gap,
        before,
        after,
    )
    return SequenceResult(
        bouts=number_mats(reordered),
        strategy=strategy,
        histogram_before=before,
        histogram_after=after,
    )
