"""
Tests for bout sequencing: the shared conflict histogram and the three
ConflictReducer strategies.
"""

import itertools
import random
from dataclasses import replace

import pytest

from app.services.bout_sequencer import (
    STRATEGIES,
    AnnealingReducer,
    LocalSearchReducer,
    SlotFillReducer,
    group_by_mat,
    sequence_bouts,
)
from app.services.conflict_summary import (
    band_violation,
    compare_histograms,
    conflict_histogram,
    order_band,
    status_weights,
    weighted_cost,
)
from app.services.meet_settings import MeetConfigError
from app.services.meet_types import STATUS_EARLY, STATUS_LATE, BoutEntry


def _bout(id: int, red: int, green: int, mat: int = 1, order: int | None = None, **kwargs) -> BoutEntry:
    return BoutEntry(id=id, red_id=red, green_id=green, mat=mat, order=order if order is not None else id, **kwargs)


def _dense(bouts) -> bool:
    by_mat: dict[int, list[int]] = {}
    for bout in bouts:
        by_mat.setdefault(bout.mat, []).append(bout.order)
    return all(sorted(orders) == list(range(1, len(orders) + 1)) for orders in by_mat.values())


class TestConflictHistogram:
    def test_same_mat_distance(self):
        mats = [[_bout(1, 1, 2), _bout(2, 1, 3)]]
        assert conflict_histogram(mats, gap=2) == [0, 1, 0]

    def test_cross_mat_distance_zero(self):
        mats = [[_bout(1, 1, 2)], [_bout(2, 1, 3, mat=2, order=1)]]
        assert conflict_histogram(mats, gap=1) == [1, 0]
        assert conflict_histogram(mats, gap=1, cross_mat=False) == [0, 0]

    def test_beyond_gap_not_counted(self):
        mats = [[_bout(1, 1, 2), _bout(2, 3, 4), _bout(3, 5, 6), _bout(4, 1, 7)]]
        assert conflict_histogram(mats, gap=2) == [0, 0, 0]
        assert conflict_histogram(mats, gap=3) == [0, 0, 0, 1]

    def test_early_and_late_athletes_weigh_more(self):
        mats = [[_bout(1, 1, 2), _bout(2, 1, 3)]]
        weights = status_weights({1: STATUS_LATE})
        assert conflict_histogram(mats, gap=1, weights=weights) == [0, 3]

    def test_compare_is_lexicographic_from_zero(self):
        assert compare_histograms([0, 5, 5], [1, 0, 0]) < 0
        assert compare_histograms([1, 0], [1, 0]) == 0
        assert compare_histograms([0, 2], [0, 1]) > 0

    def test_weighted_cost(self):
        assert weighted_cost([1, 0, 0]) == 9
        assert weighted_cost([0, 0, 1]) == 1
        assert weighted_cost([0, 2, 1]) == 9


class TestOrderBands:
    def test_bands_split_in_thirds(self):
        statuses = {1: STATUS_EARLY, 2: STATUS_LATE}
        assert order_band(_bout(1, 1, 9), 6, statuses) == (1, 2)
        assert order_band(_bout(2, 2, 9), 6, statuses) == (5, 6)
        assert order_band(_bout(3, 1, 2), 6, statuses) == (3, 4)
        assert order_band(_bout(4, 8, 9), 6, statuses) == (1, 6)

    def test_violation_counts_slots_outside_band(self):
        statuses = {1: STATUS_EARLY}
        bouts = [_bout(i, 10 + i, 20 + i) for i in range(1, 6)] + [_bout(6, 1, 30)]
        # EARLY bout at slot 6 of 6, band ends at 2
        assert band_violation(bouts, statuses) == 4
        assert band_violation(bouts, None) == 0


class TestGrouping:
    def test_group_by_mat_uses_current_order(self):
        bouts = [_bout(1, 1, 2, mat=2, order=2), _bout(2, 3, 4, mat=2, order=1), _bout(3, 5, 6, mat=1, order=1)]
        mats = group_by_mat(bouts, 2)
        assert [b.id for b in mats[0]] == [3]
        assert [b.id for b in mats[1]] == [2, 1]

    def test_unassigned_bout_rejected(self):
        with pytest.raises(MeetConfigError):
            group_by_mat([BoutEntry(id=1, red_id=1, green_id=2)], 2)

    def test_mat_out_of_range_rejected(self):
        with pytest.raises(MeetConfigError):
            group_by_mat([_bout(1, 1, 2, mat=3)], 2)


class TestLocalSearch:
    def test_zero_gap_conflicts_resolved(self):
        bouts = [
            _bout(1, 1, 2, mat=1, order=1),
            _bout(2, 3, 4, mat=1, order=2),
            _bout(3, 1, 5, mat=2, order=1),
            _bout(4, 6, 7, mat=2, order=2),
        ]
        result = sequence_bouts(bouts, 2, conflict_gap=1, strategy="local", rng=random.Random(3))
        assert result.histogram_before[0] == 1
        assert result.histogram_after[0] == 0
        assert _dense(result.bouts)

    def test_back_to_back_bouts_separated(self):
        bouts = [_bout(1, 1, 2), _bout(2, 1, 3), _bout(3, 4, 5), _bout(4, 6, 7)]
        reducer = LocalSearchReducer(3, rng=random.Random(0))
        mats = reducer.reduce(group_by_mat(bouts, 1))
        positions = [idx for idx, b in enumerate(mats[0]) if b.involves(1)]
        assert positions[1] - positions[0] > 1

    def test_never_worse(self):
        bouts = [_bout(i, i, i + 10) for i in range(1, 7)] + [_bout(7, 1, 2), _bout(8, 3, 4)]
        result = sequence_bouts(bouts, 1, conflict_gap=3, strategy="local", rng=random.Random(11))
        assert compare_histograms(result.histogram_after, result.histogram_before) <= 0

    def test_resolve_zero_gap_is_deterministic_pass(self):
        mats = [
            [_bout(1, 1, 2), _bout(2, 3, 4)],
            [_bout(3, 1, 5, mat=2, order=1), _bout(4, 6, 7, mat=2, order=2)],
        ]
        reducer = LocalSearchReducer(1, rng=random.Random(0))
        swaps = reducer.resolve_zero_gap(mats, 0)
        assert swaps == 1
        assert [b.id for b in mats[0]] == [2, 1]

    def _rotation_only(self):
        # Only a three-way rotation of mat 1 clears the shared slot for athlete 1
        mat_one = [_bout(1, 1, 3), _bout(2, 6, 5), _bout(3, 8, 3), _bout(4, 7, 1)]
        mat_two = [
            _bout(5, 2, 7, mat=2, order=1),
            _bout(6, 8, 2, mat=2, order=2),
            _bout(7, 7, 1, mat=2, order=3),
            _bout(8, 6, 1, mat=2, order=4),
        ]
        return [mat_one, mat_two]

    def test_rematch_when_no_single_swap_helps(self):
        mats = self._rotation_only()
        assert conflict_histogram(mats, gap=0)[0] == 1

        reducer = LocalSearchReducer(1, rng=random.Random(0))
        moved = reducer.resolve_zero_gap(mats, 0)

        assert [b.id for b in mats[0]] == [1, 4, 2, 3]
        assert moved == 3
        assert conflict_histogram(mats, gap=0) == [0]

    def test_rematch_keeps_pinned_slots(self):
        mats = self._rotation_only()
        mats[0][3] = replace(mats[0][3], locked=True)
        reducer = LocalSearchReducer(1, rng=random.Random(0))
        reducer.resolve_zero_gap(mats, 0)
        assert mats[0][3].id == 4

    @pytest.mark.parametrize("seed", [0, 98, 173])
    def test_local_search_clears_zero_gap_when_possible(self, seed):
        bouts = [b for mat in self._rotation_only() for b in mat]
        result = sequence_bouts(bouts, 2, conflict_gap=3, strategy="local", rng=random.Random(seed))
        assert result.histogram_after[0] == 0
        assert _dense(result.bouts)


class TestAnnealing:
    def _unavoidable(self):
        # Athlete 1 wrestles three times on one mat; some conflict always remains
        return [_bout(1, 1, 2), _bout(2, 1, 3), _bout(3, 1, 4)]

    def test_fake_clock_bounds_steps(self):
        ticks = itertools.count()
        reducer = AnnealingReducer(
            1, rng=random.Random(5), time_budget_ms=3500, clock=lambda: float(next(ticks))
        )
        reducer.reduce(group_by_mat(self._unavoidable(), 1))
        assert reducer.steps_taken == 3

    def test_max_steps_bounds_steps(self):
        reducer = AnnealingReducer(1, rng=random.Random(5), max_steps=40, clock=lambda: 0.0)
        reducer.reduce(group_by_mat(self._unavoidable(), 1))
        assert reducer.steps_taken == 40

    def test_returns_best_seen(self):
        bouts = [_bout(1, 1, 2), _bout(2, 1, 3), _bout(3, 4, 5), _bout(4, 6, 7), _bout(5, 8, 9)]
        result = sequence_bouts(
            bouts, 1, conflict_gap=2, strategy="anneal", rng=random.Random(2), max_steps=500, clock=lambda: 0.0
        )
        assert compare_histograms(result.histogram_after, result.histogram_before) <= 0
        assert _dense(result.bouts)

    def test_non_positive_budget_rejected(self):
        with pytest.raises(MeetConfigError):
            AnnealingReducer(1, time_budget_ms=0)


class TestSlotFill:
    def test_seeded_runs_are_identical(self):
        bouts = [_bout(i, i % 4 + 1, 10 + i) for i in range(1, 13)]
        first = sequence_bouts(bouts, 1, conflict_gap=2, strategy="sequential", rng=random.Random(42))
        second = sequence_bouts(bouts, 1, conflict_gap=2, strategy="sequential", rng=random.Random(42))
        assert first.bouts == second.bouts

    def test_count_and_membership_preserved(self):
        bouts = [_bout(i, i % 3 + 1, 10 + i, mat=1 + i % 2, order=i) for i in range(1, 11)]
        result = sequence_bouts(bouts, 2, conflict_gap=2, rng=random.Random(1))
        assert result.strategy == "sequential"
        assert sorted(b.id for b in result.bouts) == list(range(1, 11))
        before = {b.id: b.mat for b in bouts}
        assert all(before[b.id] == b.mat for b in result.bouts)
        assert _dense(result.bouts)


class TestPinnedAndErrors:
    @pytest.mark.parametrize("strategy", sorted(STRATEGIES))
    def test_locked_bouts_keep_their_slot(self, strategy):
        bouts = [_bout(1, 1, 2), _bout(2, 1, 3, locked=True), _bout(3, 1, 4), _bout(4, 5, 6), _bout(5, 7, 8)]
        result = sequence_bouts(
            bouts, 1, conflict_gap=2, strategy=strategy, rng=random.Random(9), max_steps=200, clock=lambda: 0.0
        )
        locked = next(b for b in result.bouts if b.id == 2)
        assert locked.order == 2

    def test_unknown_strategy(self):
        with pytest.raises(MeetConfigError):
            sequence_bouts([_bout(1, 1, 2)], 1, conflict_gap=1, strategy="greedy")

    def test_negative_gap(self):
        with pytest.raises(MeetConfigError):
            SlotFillReducer(-1)

    def test_zero_mats(self):
        with pytest.raises(MeetConfigError):
            sequence_bouts([], 0, conflict_gap=1)

    def test_empty_schedule(self):
        result = sequence_bouts([], 2, conflict_gap=1)
        assert result.bouts == []
        assert result.histogram_after == [0, 0]
