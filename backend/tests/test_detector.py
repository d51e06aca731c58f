"""Unit tests for play-by-play event detection."""

import logging

import pytest

from conftest import FakeClock
from database.kv_store import MemoryKeyValueStore
from live_events.detector import GAME_STATES_STORAGE_KEY, GameEventDetector, classify_play, extract_field_goal_distance
from live_events.models import EventKind, ProviderPlayer

GAME_ID = "20241027_KC@LV"

DIRECTORY = {
    "77": ProviderPlayer("77", "Pat Victory", "WR", "KC"),
    "12": ProviderPlayer("12", "Quinn Back", "QB", "KC"),
    "31": ProviderPlayer("31", "Kai Leg", "K", "LV"),
}


def play(sequence, description, player_id="77", **extra):
    data = {
        "playID": str(sequence),
        "sequence": str(sequence),
        "playerID": player_id,
        "playDescription": description,
        "quarter": "2nd",
        "gameClock": "08:14",
    }
    data.update(extra)
    return data


@pytest.fixture
def detector():
    return GameEventDetector(DIRECTORY.get, clock=FakeClock())


class TestClassifyPlay:
    """Tests for the ordered classification rules."""

    @pytest.mark.parametrize("text,yards,expected", [
        ("p victory 12 yard touchdown reception", 12, EventKind.RECEIVING_TD),
        ("q back pass complete for 12 yards, touchdown", 12, EventKind.PASSING_TD),
        ("r runner 3 yard run, touchdown", 3, EventKind.RUSHING_TD),
        ("k leg 48 yard field goal is good", 48, EventKind.FIELD_GOAL),
        ("pass intercepted by s safety", None, EventKind.INTERCEPTION),
        ("r runner fumble, recovered by lv", None, EventKind.FUMBLE),
        ("q back sacked in end zone, safety", None, EventKind.SAFETY),
        ("p victory 25 yard reception", 25, EventKind.RECEIVING_YARDS),
        ("r runner rush for 21 yards", 21, EventKind.RUSHING_YARDS),
        ("q back pass deep for 40 yards", 40, EventKind.PASSING_YARDS),
    ])
    def test_kinds(self, text, yards, expected):
        assert classify_play(text, yards) == expected

    @pytest.mark.parametrize("text", [
        "k leg 52 yard field goal is no good",
        "k leg 44 yard field goal missed wide right",
        "k leg 38 yard field goal blocked",
    ])
    def test_failed_field_goals_ignored(self, text):
        assert classify_play(text, None) is None

    def test_short_gain_ignored(self):
        assert classify_play("r runner rush for 19 yards", 19) is None

    def test_non_scoring_play_ignored(self):
        assert classify_play("timeout #1 by kc", None) is None


class TestFieldGoalDistance:
    """Tests for kick distance extraction."""

    def test_distance_from_description(self):
        assert extract_field_goal_distance({}, "k leg 48 yard field goal is good", 48) == 48

    def test_distance_from_yard_line(self):
        """Line of scrimmage plus 17 when nothing else gives the distance."""
        assert extract_field_goal_distance({"yardLine": "KC 35"}, "k leg field goal is good", None) == 52

    def test_unknown_distance(self):
        assert extract_field_goal_distance({}, "k leg field goal is good", None) is None


class TestDetect:
    """Tests for GameEventDetector.detect."""

    def test_receiving_touchdown_event(self, detector):
        events = detector.detect([play(101, "P. Victory 12 yard touchdown reception", yards="12")], GAME_ID)

        assert len(events) == 1
        event = events[0]
        assert event.id == "tank01-101"
        assert event.kind == EventKind.RECEIVING_TD
        assert event.player.name == "Pat Victory"
        assert event.stats == {"yards": 12, "touchdowns": 1, "receptions": 1}
        assert event.period == 2
        assert event.clock == "08:14"
        assert event.game_id == GAME_ID

    def test_field_goal_stats_carry_distance_only(self, detector):
        events = detector.detect([play(5, "K. Leg 48 yard field goal is good", player_id="31")], GAME_ID)
        assert events[0].kind == EventKind.FIELD_GOAL
        assert events[0].stats == {"field_goal_distance": 48}

    def test_same_plays_twice_yields_nothing_new(self, detector):
        plays = [play(101, "P. Victory 12 yard touchdown reception")]
        assert len(detector.detect(plays, GAME_ID)) == 1
        assert detector.detect(plays, GAME_ID) == []

    def test_only_newer_plays_reported(self, detector):
        plays = [play(101, "P. Victory 12 yard touchdown reception")]
        detector.detect(plays, GAME_ID)

        plays.append(play(102, "Q. Back pass deep for 40 yards", player_id="12"))
        events = detector.detect(plays, GAME_ID)
        assert [event.id for event in events] == ["tank01-102"]
        assert detector.game_state(GAME_ID).last_sequence == 102

    def test_events_returned_in_sequence_order(self, detector):
        plays = [
            play(9, "Q. Back pass deep for 40 yards", player_id="12"),
            play(3, "P. Victory 25 yard reception"),
        ]
        events = detector.detect(plays, GAME_ID)
        assert [event.sequence for event in events] == [3, 9]

    def test_sequence_advances_past_irrelevant_plays(self, detector):
        detector.detect([play(50, "Timeout #1 by KC")], GAME_ID)
        assert detector.game_state(GAME_ID).last_sequence == 50
        assert detector.game_state(GAME_ID).last_play_id == "50"

    def test_missed_field_goal_produces_nothing(self, detector):
        assert detector.detect([play(7, "K. Leg 52 yard field goal is no good", player_id="31")], GAME_ID) == []

    def test_malformed_plays_skipped(self, detector, caplog):
        plays = [
            "not a play",
            play(4, 12345),
            play(5, "P. Victory 25 yard reception"),
        ]
        with caplog.at_level(logging.WARNING, logger="live_events.detector"):
            events = detector.detect(plays, GAME_ID)

        assert [event.sequence for event in events] == [5]
        assert any(r.getMessage() == "Malformed play skipped" for r in caplog.records)

    def test_unknown_player_skipped(self, detector, caplog):
        with caplog.at_level(logging.WARNING, logger="live_events.detector"):
            events = detector.detect([play(6, "Z. Nobody 30 yard reception", player_id="999")], GAME_ID)
        assert events == []
        assert any(r.getMessage() == "Player not found in directory" for r in caplog.records)

    def test_player_id_from_player_stats(self, detector):
        raw = play(8, "P. Victory 25 yard reception")
        del raw["playerID"]
        raw["playerStats"] = {"77": {"Receiving": {"recYds": "25"}}}
        events = detector.detect([raw], GAME_ID)
        assert events[0].player.provider_id == "77"

    def test_non_list_payload(self, detector):
        assert detector.detect({"error": "no plays"}, GAME_ID) == []

    def test_games_tracked_independently(self, detector):
        detector.detect([play(101, "P. Victory 12 yard touchdown reception")], GAME_ID)
        events = detector.detect([play(101, "P. Victory 12 yard touchdown reception")], "20241027_BUF@MIA")
        assert len(events) == 1


class TestGameStates:
    """Tests for per-game bookkeeping."""

    def test_mark_inactive_and_reset(self, detector):
        detector.detect([], GAME_ID)
        detector.detect([], "20241027_BUF@MIA")
        assert detector.active_game_count == 2

        detector.mark_inactive(GAME_ID)
        assert detector.active_game_count == 1

        detector.reset(GAME_ID)
        assert GAME_ID not in detector.game_states
        detector.reset()
        assert detector.game_states == {}


class TestPersistedGameStates:
    """Tests for game progress kept through the key-value store."""

    def test_progress_survives_restart(self):
        store = MemoryKeyValueStore()
        plays = [play(101, "P. Victory 12 yard touchdown reception")]
        assert len(GameEventDetector(DIRECTORY.get, clock=FakeClock(), store=store).detect(plays, GAME_ID)) == 1

        restarted = GameEventDetector(DIRECTORY.get, clock=FakeClock(), store=store)
        assert restarted.detect(plays, GAME_ID) == []
        assert restarted.game_state(GAME_ID).last_play_id == "101"

    def test_restored_games_start_inactive(self):
        store = MemoryKeyValueStore()
        GameEventDetector(DIRECTORY.get, clock=FakeClock(), store=store).detect(
            [play(101, "P. Victory 12 yard touchdown reception")], GAME_ID)
        restarted = GameEventDetector(DIRECTORY.get, clock=FakeClock(), store=store)
        assert GAME_ID in restarted.game_states
        assert restarted.active_game_count == 0

    def test_malformed_entry_cleared(self):
        store = MemoryKeyValueStore({GAME_STATES_STORAGE_KEY: ["not", "a", "dict"]})
        detector = GameEventDetector(DIRECTORY.get, clock=FakeClock(), store=store)
        assert detector.game_states == {}
        assert GAME_STATES_STORAGE_KEY not in store.keys()
