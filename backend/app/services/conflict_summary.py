"""
Conflict Summary - the shared objective for every bout sequencing strategy.

A conflict is one athlete appearing twice within `gap` slots of itself.
Slot = 1-based position on a mat, so two mats running in parallel share
slot numbers. Distance 0 therefore only happens across mats (the athlete
would have to be in two places at once) and is the worst case.

The histogram counts conflicts by distance: counts[d] for d in 0..gap.
Histograms compare lexicographically from distance 0, so removing one
distance-0 conflict beats removing any number of distance-1 conflicts.

Athletes arriving late or leaving early also restrict where their bouts
may sit on a mat (order bands): EARLY in the first third, LATE in the last
third, a bout with both in the middle third.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from app.services.meet_settings import DEFAULT_TUNING, SchedulingTuning
from app.services.meet_types import STATUS_EARLY, STATUS_LATE, BoutEntry

MatLists = List[List[BoutEntry]]


def status_weights(
    statuses: Optional[Mapping[int, str]], tuning: SchedulingTuning = DEFAULT_TUNING
) -> Dict[int, int]:
    """Conflict weight per athlete: EARLY/LATE athletes count heavier."""
    weights: Dict[int, int] = {}
    for athlete_id, status in (statuses or {}).items():
        if status in (STATUS_EARLY, STATUS_LATE):
            weights[athlete_id] = tuning.status_conflict_weight
    return weights


def _athlete_slots(mats: Sequence[Sequence[BoutEntry]]) -> Dict[int, List[Tuple[int, int]]]:
    slots: Dict[int, List[Tuple[int, int]]] = defaultdict(list)
    for mat_idx, bouts in enumerate(mats):
        for pos, bout in enumerate(bouts):
            order = pos + 1
            slots[bout.red_id].append((order, mat_idx))
            slots[bout.green_id].append((order, mat_idx))
    return slots


def conflict_histogram(
    mats: Sequence[Sequence[BoutEntry]],
    gap: int,
    weights: Optional[Mapping[int, int]] = None,
    cross_mat: bool = True,
) -> List[int]:
    """
    Weighted conflict counts by distance 0..gap.

    cross_mat=False only counts appearances on the same mat.
    """
    counts = [0] * (gap + 1)
    if gap < 0:
        return counts
    weights = weights or {}
    for athlete_id, entries in _athlete_slots(mats).items():
        if len(entries) < 2:
            continue
        weight = weights.get(athlete_id, 1)
        entries.sort()
        for i in range(len(entries)):
            for j in range(i + 1, len(entries)):
                diff = entries[j][0] - entries[i][0]
                if diff > gap:
                    break
                if not cross_mat and entries[i][1] != entries[j][1]:
                    continue
                counts[diff] += weight
    return counts


def compare_histograms(a: Sequence[int], b: Sequence[int]) -> int:
    """Negative when `a` is better than `b`, 0 when equal, positive when worse."""
    for x, y in zip(a, b):
        if x != y:
            return x - y
    return len(a) - len(b)


def weighted_cost(histogram: Sequence[int]) -> float:
    """Scalar conflict cost; distance 0 weighs (gap+1)^2, distance gap weighs 1."""
    gap = len(histogram) - 1
    return float(sum(count * (gap + 1 - d) ** 2 for d, count in enumerate(histogram)))


def total_conflicts(histogram: Sequence[int]) -> int:
    return sum(histogram)


# ============================================================================
# Order bands (arrival windows)
# ============================================================================


def order_band(bout: BoutEntry, size: int, statuses: Optional[Mapping[int, str]]) -> Tuple[int, int]:
    """Allowed 1-based (min_order, max_order) for a bout on a mat of `size` bouts."""
    size = max(1, size)
    if not statuses:
        return 1, size
    early_max = max(1, math.ceil(size / 3))
    late_min = max(1, (2 * size) // 3 + 1)
    fallback = ((size + 1) // 2, math.ceil((size + 1) / 2))

    red_status = statuses.get(bout.red_id)
    green_status = statuses.get(bout.green_id)
    has_early = STATUS_EARLY in (red_status, green_status)
    has_late = STATUS_LATE in (red_status, green_status)

    low, high = 1, size
    if has_early and has_late:
        if early_max + 1 <= late_min - 1:
            low, high = early_max + 1, late_min - 1
        else:
            low, high = fallback
    elif has_early:
        high = early_max
    elif has_late:
        low = late_min
    if low > high:
        low, high = fallback
    return low, high


def band_violation(bouts: Sequence[BoutEntry], statuses: Optional[Mapping[int, str]]) -> int:
    """Total slots by which bouts sit outside their arrival band."""
    if not statuses:
        return 0
    size = len(bouts)
    total = 0
    for pos, bout in enumerate(bouts):
        order = pos + 1
        low, high = order_band(bout, size, statuses)
        if order < low:
            total += low - order
        elif order > high:
            total += order - high
    return total


def schedule_band_violation(mats: Sequence[Sequence[BoutEntry]], statuses: Optional[Mapping[int, str]]) -> int:
    return sum(band_violation(bouts, statuses) for bouts in mats)


def other_mat_orders(mats: Sequence[Sequence[BoutEntry]], mat_index: int) -> Dict[int, set]:
    """athlete_id → set of orders the athlete holds on every other mat."""
    orders: Dict[int, set] = defaultdict(set)
    for idx, bouts in enumerate(mats):
        if idx == mat_index:
            continue
        for pos, bout in enumerate(bouts):
            for athlete_id in bout.athlete_ids:
                orders[athlete_id].add(pos + 1)
    return orders


def has_zero_gap_conflict(bout: BoutEntry, order: int, others: Mapping[int, set]) -> bool:
    return any(order in others.get(athlete_id, ()) for athlete_id in bout.athlete_ids)


def has_cross_mat_conflict(bout: BoutEntry, order: int, others: Mapping[int, set], gap: int) -> bool:
    for athlete_id in bout.athlete_ids:
        taken = others.get(athlete_id)
        if not taken:
            continue
        for delta in range(gap + 1):
            if (order - delta) in taken or (order + delta) in taken:
                return True
    return False


def has_same_mat_conflict(bouts: Sequence[BoutEntry], idx: int, gap: int) -> bool:
    bout = bouts[idx]
    start = max(0, idx - gap)
    end = min(len(bouts) - 1, idx + gap)
    for i in range(start, end + 1):
        if i == idx:
            continue
        other = bouts[i]
        if other.involves(bout.red_id) or other.involves(bout.green_id):
            return True
    return False
