"""Unit tests for fantasy points calculation."""

import pytest

from conftest import make_settings
from live_events.models import EventKind
from live_events.scoring import FantasyScoringEngine, distance_bonus, field_goal_band_key

engine = FantasyScoringEngine()

PPR = make_settings(
    "ppr",
    pass_td=4, rush_td=6, rec_td=6, rec=1,
    pass_yd=0.04, rush_yd=0.1, rec_yd=0.1,
    pass_int=-2, fum_lost=-2, safe=2,
)


class TestTouchdowns:
    """Tests for touchdown kinds."""

    def test_receiving_td_adds_reception(self):
        stats = {"yards": 12, "touchdowns": 1, "receptions": 1}
        assert engine.points_for(EventKind.RECEIVING_TD, stats, PPR) == 7.0

    def test_receiving_td_standard_league(self):
        standard = make_settings("std", rec_td=6, rec=0)
        stats = {"yards": 12, "touchdowns": 1, "receptions": 1}
        assert engine.points_for(EventKind.RECEIVING_TD, stats, standard) == 6.0

    def test_passing_and_rushing_td(self):
        assert engine.points_for(EventKind.PASSING_TD, {"touchdowns": 1}, PPR) == 4.0
        assert engine.points_for(EventKind.RUSHING_TD, {"touchdowns": 1, "yards": 3}, PPR) == 6.0

    def test_missing_coefficient_scores_zero(self):
        assert engine.points_for(EventKind.PASSING_TD, {"touchdowns": 1}, make_settings("empty")) == 0.0


class TestYardage:
    """Tests for yardage kinds."""

    def test_rushing_yards(self):
        assert engine.points_for(EventKind.RUSHING_YARDS, {"yards": 25}, PPR) == 2.5

    def test_receiving_yards_adds_reception(self):
        assert engine.points_for(EventKind.RECEIVING_YARDS, {"yards": 31, "receptions": 1}, PPR) == 4.1

    def test_passing_yards_rounded(self):
        assert engine.points_for(EventKind.PASSING_YARDS, {"yards": 33}, PPR) == 1.32


class TestFieldGoals:
    """Tests for distance-banded field goals."""

    @pytest.mark.parametrize("distance,key", [
        (19, "fgm_0_19"),
        (20, "fgm_20_29"),
        (39, "fgm_30_39"),
        (49, "fgm_40_49"),
        (50, "fgm_50p"),
        (63, "fgm_50p"),
    ])
    def test_band_boundaries(self, distance, key):
        assert field_goal_band_key(distance) == key

    def test_fifty_five_yarder_with_distance_bonus(self):
        """55 yards under fgm_50p=5 plus fg_50_plus=1 is 6.0."""
        settings = make_settings("kick", custom_rules={"fg_50_plus": 1}, fgm_50p=5)
        assert engine.points_for(EventKind.FIELD_GOAL, {"field_goal_distance": 55}, settings) == 6.0

    def test_flat_fgm_fallback(self):
        settings = make_settings("flat", fgm=3)
        assert engine.points_for(EventKind.FIELD_GOAL, {"field_goal_distance": 42}, settings) == 3.0

    def test_highest_matching_bonus_wins(self):
        bonus = distance_bonus(57, {"fg_40_plus": 0.5, "fg_50_plus": 1, "fg_60_plus": 3})
        assert bonus.category == "fg_50_plus"
        assert bonus.points == 1.0

    def test_no_bonus_below_threshold(self):
        assert distance_bonus(45, {"fg_50_plus": 1}) is None


class TestTurnovers:
    """Tests for safety, fumble and interception."""

    def test_turnover_coefficients(self):
        assert engine.points_for(EventKind.INTERCEPTION, {"interceptions": 1}, PPR) == -2.0
        assert engine.points_for(EventKind.FUMBLE, {"fumbles": 1}, PPR) == -2.0
        assert engine.points_for(EventKind.SAFETY, {"safeties": 1}, PPR) == 2.0

    def test_breakdown_lines(self):
        lines = engine.breakdown(EventKind.RECEIVING_TD, {"receptions": 1}, PPR)
        assert [line.category for line in lines] == ["rec_td", "rec"]
