"""
Tests for mat assignment: batch placement and single-bout insertion.
"""

from datetime import date

import pytest

from app.services.mat_assigner import (
    assign_all,
    assign_one,
    band_distance,
    find_home_mat,
    pad_mat_rules,
)
from app.services.meet_settings import MeetConfigError
from app.services.meet_types import DEFAULT_MAT_RULE, AthleteEntry, BoutEntry, MatRule

MEET_DATE = date(2024, 1, 13)


def _athlete(id: int, team_id: int, experience_years: int = 1, birthdate: date = date(2014, 1, 1)):
    return AthleteEntry(id=id, team_id=team_id, weight=50 + id, birthdate=birthdate, experience_years=experience_years)


def _by_mat(bouts):
    mats = {}
    for bout in bouts:
        mats.setdefault(bout.mat, []).append(bout.order)
    return mats


class TestAssignAll:
    def test_spreads_and_numbers_densely(self):
        bouts = [BoutEntry(id=i, red_id=2 * i, green_id=2 * i + 1, score=float(i)) for i in range(1, 5)]
        placed = assign_all(bouts, num_mats=2, min_rest_gap=0, rest_penalty=0)

        mats = _by_mat(placed)
        assert mats == {1: [1, 2], 2: [1, 2]}
        assert [b.id for b in placed] == [1, 3, 2, 4]

    def test_inputs_untouched(self):
        bout = BoutEntry(id=1, red_id=1, green_id=2)
        assign_all([bout], num_mats=1, min_rest_gap=0, rest_penalty=0)
        assert bout.mat is None and bout.order is None

    def test_rest_penalty_moves_back_to_back_bout(self):
        bouts = [
            BoutEntry(id=1, red_id=1, green_id=2, score=1.0),
            BoutEntry(id=2, red_id=1, green_id=3, score=2.0),
        ]
        placed = assign_all(bouts, num_mats=2, min_rest_gap=3, rest_penalty=10)
        mats = {b.id: b.mat for b in placed}
        assert mats == {1: 1, 2: 2}

    def test_locked_bout_keeps_mat_and_goes_first(self):
        bouts = [
            BoutEntry(id=1, red_id=1, green_id=2, score=0.1),
            BoutEntry(id=2, red_id=3, green_id=4, score=9.0, mat=2, order=5, locked=True),
        ]
        placed = {b.id: b for b in assign_all(bouts, num_mats=2, min_rest_gap=0, rest_penalty=0)}
        assert placed[2].mat == 2
        assert placed[2].order == 1
        assert placed[2].locked

    def test_processed_by_ascending_score(self):
        bouts = [
            BoutEntry(id=1, red_id=1, green_id=2, score=5.0),
            BoutEntry(id=2, red_id=3, green_id=4, score=1.0),
        ]
        placed = {b.id: b for b in assign_all(bouts, num_mats=1, min_rest_gap=0, rest_penalty=0)}
        assert placed[2].order == 1
        assert placed[1].order == 2

    def test_zero_mats_rejected(self):
        with pytest.raises(MeetConfigError):
            assign_all([BoutEntry(red_id=1, green_id=2)], num_mats=0, min_rest_gap=0, rest_penalty=0)

    def test_negative_gap_rejected(self):
        with pytest.raises(MeetConfigError):
            assign_all([], num_mats=1, min_rest_gap=-1, rest_penalty=0)

    def test_locked_bout_outside_mats_rejected(self):
        bouts = [BoutEntry(id=1, red_id=1, green_id=2, mat=3, order=1, locked=True)]
        with pytest.raises(MeetConfigError):
            assign_all(bouts, num_mats=2, min_rest_gap=0, rest_penalty=0)


class TestAssignAllBandsAndHome:
    def setup_method(self):
        self.athletes = {
            1: _athlete(1, team_id=1, experience_years=5),
            2: _athlete(2, team_id=2, experience_years=5),
            3: _athlete(3, team_id=1, experience_years=0),
            4: _athlete(4, team_id=2, experience_years=0),
        }
        self.bouts = [
            BoutEntry(id=1, red_id=1, green_id=2, score=1.0),
            BoutEntry(id=2, red_id=3, green_id=4, score=2.0),
        ]

    def test_bands_ignored_without_roster(self):
        rules = [MatRule(min_experience=3), MatRule(max_experience=2)]
        placed = assign_all(self.bouts, num_mats=2, min_rest_gap=0, rest_penalty=0, mat_rules=rules)
        assert {b.id: b.mat for b in placed} == {1: 1, 2: 2}

    def test_bouts_follow_mat_bands(self):
        rules = [MatRule(max_experience=2), MatRule(min_experience=3)]
        placed = assign_all(
            self.bouts,
            num_mats=2,
            min_rest_gap=0,
            rest_penalty=0,
            athletes=self.athletes,
            mat_rules=rules,
            meet_date=MEET_DATE,
        )
        assert {b.id: b.mat for b in placed} == {1: 2, 2: 1}
        assert _by_mat(placed) == {1: [1], 2: [1]}

    def test_band_beats_load_balance(self):
        rules = [MatRule(max_experience=2), MatRule(min_experience=3)]
        veterans = [BoutEntry(id=i, red_id=1, green_id=2, score=float(i)) for i in range(1, 4)]
        placed = assign_all(
            veterans,
            num_mats=2,
            min_rest_gap=0,
            rest_penalty=0,
            athletes=self.athletes,
            mat_rules=rules,
            meet_date=MEET_DATE,
        )
        assert all(b.mat == 2 for b in placed)
        assert [b.order for b in placed] == [1, 2, 3]

    def test_no_mat_fits_picks_nearest_band(self):
        rules = [MatRule(max_experience=0), MatRule(max_experience=4)]
        placed = assign_all(
            self.bouts[:1],
            num_mats=2,
            min_rest_gap=0,
            rest_penalty=0,
            athletes=self.athletes,
            mat_rules=rules,
            meet_date=MEET_DATE,
        )
        assert placed[0].mat == 2

    def test_home_athlete_stays_on_earlier_mat(self):
        bouts = [
            BoutEntry(id=1, red_id=1, green_id=2, score=1.0),
            BoutEntry(id=2, red_id=1, green_id=4, score=2.0),
        ]
        kwargs = dict(num_mats=2, min_rest_gap=0, rest_penalty=0, athletes=self.athletes, meet_date=MEET_DATE)

        spread = {b.id: b for b in assign_all(bouts, **kwargs)}
        assert spread[2].mat == 2

        together = {b.id: b for b in assign_all(bouts, home_team_id=1, prefer_same_mat_for_home=True, **kwargs)}
        assert together[2].mat == 1
        assert together[2].order == 2

    def test_away_athletes_have_no_affinity(self):
        bouts = [
            BoutEntry(id=1, red_id=2, green_id=3, score=1.0),
            BoutEntry(id=2, red_id=2, green_id=4, score=2.0),
        ]
        placed = {
            b.id: b
            for b in assign_all(
                bouts,
                num_mats=2,
                min_rest_gap=0,
                rest_penalty=0,
                athletes=self.athletes,
                meet_date=MEET_DATE,
                home_team_id=1,
                prefer_same_mat_for_home=True,
            )
        }
        assert placed[2].mat == 2


class TestMatRules:
    def test_pad_and_truncate(self):
        rules = [MatRule(max_experience=2)]
        padded = pad_mat_rules(rules, 3)
        assert padded == [MatRule(max_experience=2), DEFAULT_MAT_RULE, DEFAULT_MAT_RULE]
        assert len(pad_mat_rules(rules * 4, 2)) == 2

    def test_invalid_band_rejected(self):
        with pytest.raises(MeetConfigError):
            pad_mat_rules([MatRule(min_experience=5, max_experience=1)], 2)

    def test_band_distance(self):
        athlete = _athlete(1, team_id=1, experience_years=5)
        assert band_distance([athlete], MatRule(), MEET_DATE) == 0
        assert band_distance([athlete], MatRule(max_experience=2), MEET_DATE) == 3


class TestAssignOne:
    def setup_method(self):
        self.athletes = {i: _athlete(i, team_id=1 if i % 2 else 2) for i in range(1, 9)}

    def test_home_affinity_prefers_established_mat(self):
        existing = [BoutEntry(id=10, red_id=1, green_id=2, mat=2, order=1)]
        placement = assign_one(
            BoutEntry(red_id=3, green_id=4),
            existing,
            self.athletes,
            [],
            num_mats=2,
            meet_date=MEET_DATE,
            home_team_id=1,
            prefer_same_mat_for_home=True,
        )
        assert placement.mat == 2
        assert placement.order == 2
        assert placement.home_mat == 2

    def test_without_preference_least_filled_mat_wins(self):
        existing = [BoutEntry(id=10, red_id=1, green_id=2, mat=2, order=1)]
        placement = assign_one(
            BoutEntry(red_id=3, green_id=4), existing, self.athletes, [], num_mats=2, meet_date=MEET_DATE
        )
        assert placement.mat == 1
        assert placement.order == 1

    def test_eligible_band_beats_fill(self):
        veterans = {
            1: _athlete(1, team_id=1, experience_years=5),
            2: _athlete(2, team_id=2, experience_years=5),
        }
        existing = [BoutEntry(id=10, red_id=5, green_id=6, mat=2, order=1)]
        rules = [MatRule(max_experience=2), MatRule(min_experience=3)]
        placement = assign_one(
            BoutEntry(red_id=1, green_id=2), existing, veterans, rules, num_mats=2, meet_date=MEET_DATE
        )
        assert placement.mat == 2
        assert placement.eligible_mats == [2]

    def test_no_mat_fits_picks_nearest_band(self):
        veterans = {
            1: _athlete(1, team_id=1, experience_years=9),
            2: _athlete(2, team_id=2, experience_years=9),
        }
        rules = [MatRule(max_experience=1), MatRule(max_experience=7)]
        placement = assign_one(BoutEntry(red_id=1, green_id=2), [], veterans, rules, 2, MEET_DATE)
        assert placement.mat == 2
        assert placement.eligible_mats == []

    def test_order_follows_last_bout_when_mat_has_gaps(self):
        existing = [
            BoutEntry(id=10, red_id=1, green_id=2, mat=1, order=2, locked=True),
            BoutEntry(id=11, red_id=5, green_id=6, mat=2, order=1),
            BoutEntry(id=12, red_id=7, green_id=8, mat=2, order=2),
        ]
        placement = assign_one(BoutEntry(red_id=3, green_id=4), existing, self.athletes, [], 2, MEET_DATE)
        assert placement.mat == 1
        assert placement.order == 3

    def test_unknown_athlete_rejected(self):
        with pytest.raises(MeetConfigError):
            assign_one(BoutEntry(red_id=1, green_id=99), [], self.athletes, [], 2, MEET_DATE)

    def test_zero_mats_rejected(self):
        with pytest.raises(MeetConfigError):
            assign_one(BoutEntry(red_id=1, green_id=2), [], self.athletes, [], 0, MEET_DATE)

    def test_find_home_mat_lowest_on_tie(self):
        existing = [
            BoutEntry(id=1, red_id=1, green_id=2, mat=3, order=1),
            BoutEntry(id=2, red_id=3, green_id=4, mat=2, order=1),
            BoutEntry(id=3, red_id=6, green_id=8, mat=1, order=1),
        ]
        assert find_home_mat(existing, self.athletes, home_team_id=1) == 2
        assert find_home_mat(existing, self.athletes, home_team_id=None) is None
