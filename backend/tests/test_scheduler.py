"""Unit tests for the polling scheduler."""

import asyncio
import logging
import time

import pytest

from conftest import FakeClock, FakeTank01Client, live_game, make_config, touchdown_play
from database.kv_store import MemoryKeyValueStore
from live_events.detector import GameEventDetector
from live_events.models import ProviderPlayer
from live_events.rate_governor import BreakerState, OpenReason, RateGovernor
from live_events.scheduler import EmergencyStopError, PollingScheduler, is_game_active
from tank01_api.client import Tank01APIError, Tank01APIRateLimitError

DIRECTORY = {"77": ProviderPlayer("77", "Pat Victory", "WR", "KC")}


class Harness:
    """Scheduler wired to a fake client, collecting emitted events."""

    def __init__(self, client, **overrides):
        self.config = make_config(**overrides)
        self.clock = FakeClock()
        self.governor = RateGovernor(self.config, MemoryKeyValueStore(), clock=self.clock)
        self.detector = GameEventDetector(DIRECTORY.get, clock=self.clock)
        self.client = client
        self.batches = []
        self.scheduler = PollingScheduler(
            self.config, self.governor, client, self.detector, self.batches.append, clock=self.clock
        )


def run(coro_fn):
    return asyncio.run(coro_fn())


class TestIsGameActive:
    """Tests for the live game filter."""

    @pytest.mark.parametrize("game,expected", [
        ({"gameStatusCode": "1"}, True),
        ({"gameStatusCode": 1}, True),
        ({"gameStatus": "Live - In Progress"}, True),
        ({"gameStatusCode": "0", "gameStatus": "Scheduled"}, False),
        ({"gameStatusCode": "2", "gameStatus": "Completed"}, False),
        ({}, False),
    ])
    def test_status(self, game, expected):
        assert is_game_active(game) is expected


class TestInterval:
    """Tests for interval clamping."""

    def test_hint_below_floor_clamped(self, caplog):
        async def scenario():
            harness = Harness(FakeTank01Client())
            with caplog.at_level(logging.WARNING, logger="live_events.scheduler"):
                await harness.scheduler.start(interval_hint=30)
            interval = harness.scheduler.interval
            await harness.scheduler.stop()
            return interval

        assert run(scenario) == 90
        assert any(r.getMessage() == "Polling interval below floor, clamping" for r in caplog.records)

    def test_default_and_explicit_interval(self):
        async def scenario():
            harness = Harness(FakeTank01Client())
            return harness.scheduler.clamp_interval(None), harness.scheduler.clamp_interval(120)

        assert run(scenario) == (180.0, 120.0)


class TestPollOnce:
    """Tests for a single poll cycle."""

    def test_detects_events_in_live_games_only(self):
        client = FakeTank01Client(
            games=[live_game("20241027_KC@LV"), live_game("20241027_BUF@MIA", status_code="2")],
            plays={"20241027_KC@LV": [touchdown_play()]},
        )

        async def scenario():
            harness = Harness(client)
            active = await harness.scheduler.poll_once()
            return harness, active

        harness, active = run(scenario)
        assert [game["gameID"] for game in active] == ["20241027_KC@LV"]
        assert client.calls == ["games", "plays:20241027_KC@LV"]
        assert len(harness.batches) == 1
        assert harness.batches[0][0].id == "tank01-101"
        assert harness.scheduler.events_detected == 1
        assert harness.governor.quota.request_count == 2

    def test_repeated_poll_emits_nothing_new(self):
        client = FakeTank01Client(games=[live_game("g1")], plays={"g1": [touchdown_play()]})

        async def scenario():
            harness = Harness(client)
            await harness.scheduler.poll_once()
            await harness.scheduler.poll_once()
            return harness

        harness = run(scenario)
        assert len(harness.batches) == 1
        assert harness.scheduler.poll_count == 2

    def test_per_game_failure_does_not_abort_poll(self):
        client = FakeTank01Client(
            games=[live_game("g1"), live_game("g2")],
            plays={"g1": Tank01APIError("upstream 502"), "g2": [touchdown_play()]},
        )

        async def scenario():
            harness = Harness(client)
            await harness.scheduler.poll_once()
            return harness

        harness = run(scenario)
        assert len(harness.batches) == 1
        assert harness.governor.metrics.failed_requests == 1
        assert harness.scheduler.last_error == "upstream 502"

    def test_game_list_failure_raised_and_recorded(self):
        client = FakeTank01Client(games=Tank01APIError("upstream 500"))

        async def scenario():
            harness = Harness(client)
            with pytest.raises(Tank01APIError):
                await harness.scheduler.poll_once()
            return harness

        harness = run(scenario)
        assert harness.governor.breaker.failure_count == 1
        assert harness.scheduler.last_error == "upstream 500"

    def test_open_breaker_skips_upstream(self):
        client = FakeTank01Client(games=[live_game("g1")])

        async def scenario():
            harness = Harness(client)
            for _ in range(3):
                harness.governor.record_failure()
            return await harness.scheduler.poll_once()

        assert run(scenario) == []
        assert client.calls == []

    def test_budget_exhausted_mid_poll_defers_games(self):
        client = FakeTank01Client(games=[live_game("g1"), live_game("g2"), live_game("g3")])

        async def scenario():
            harness = Harness(client, max_requests_per_minute=2)
            await harness.scheduler.poll_once()

        run(scenario)
        assert client.calls == ["games", "plays:g1"]

    def test_finished_game_marked_inactive(self):
        client = FakeTank01Client(games=[live_game("g1")], plays={"g1": []})

        async def scenario():
            harness = Harness(client)
            await harness.scheduler.poll_once()
            client.games = [live_game("g1", status_code="2")]
            await harness.scheduler.poll_once()
            return harness

        harness = run(scenario)
        assert harness.detector.game_state("g1").is_active is False
        assert harness.scheduler.active_game_ids == []

    def test_handler_failure_logged(self, caplog):
        client = FakeTank01Client(games=[live_game("g1")], plays={"g1": [touchdown_play()]})

        def broken(events):
            raise RuntimeError("handler down")

        async def scenario():
            harness = Harness(client)
            harness.scheduler.on_events = broken
            with caplog.at_level(logging.ERROR, logger="live_events.scheduler"):
                return await harness.scheduler.poll_once()

        assert len(run(scenario)) == 1
        assert any(r.getMessage() == "Event handler failed" for r in caplog.records)


class TimedClient(FakeTank01Client):
    """Records when each game list request starts and finishes."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.windows = []

    async def list_games(self):
        started = time.monotonic()
        await asyncio.sleep(0.05)
        games = await super().list_games()
        self.windows.append((started, time.monotonic()))
        return games


class TestPollSpacing:
    """Tests for the minimum gap between polls."""

    def test_concurrent_polls_spaced_and_never_overlap(self):
        client = TimedClient(games=[])

        async def scenario():
            harness = Harness(client, min_poll_spacing=0.3)
            await asyncio.gather(harness.scheduler.poll_once(), harness.scheduler.poll_once())
            return harness.scheduler.poll_count

        assert run(scenario) == 2
        (first_start, first_end), (second_start, _) = sorted(client.windows)
        assert first_end <= second_start
        assert second_start - first_start >= 0.29

    def test_back_to_back_polls_spaced(self):
        client = TimedClient(games=[])

        async def scenario():
            harness = Harness(client, min_poll_spacing=0.3)
            await harness.scheduler.poll_once()
            await harness.scheduler.poll_once()

        run(scenario)
        (first_start, _), (second_start, _) = sorted(client.windows)
        assert second_start - first_start >= 0.29


class TestQuotaExhaustion:
    """Tests for the upstream quota signal."""

    def test_rate_limit_halts_and_sets_emergency_stop(self):
        client = FakeTank01Client(games=Tank01APIRateLimitError("Rate limited on /getNFLScoresOnly"))

        async def scenario():
            harness = Harness(client)
            with pytest.raises(Tank01APIRateLimitError):
                await harness.scheduler.poll_once()
            with pytest.raises(EmergencyStopError):
                await harness.scheduler.start()
            return harness

        harness = run(scenario)
        assert harness.scheduler.emergency_stopped is True
        assert harness.governor.breaker.state == BreakerState.OPEN
        assert harness.governor.breaker.open_reason == OpenReason.QUOTA

    def test_rate_limit_without_emergency_stop(self):
        client = FakeTank01Client(
            games=[live_game("g1")],
            plays={"g1": Tank01APIRateLimitError("quota")},
        )

        async def scenario():
            harness = Harness(client, emergency_stop_on_quota=False)
            with pytest.raises(Tank01APIRateLimitError):
                await harness.scheduler.poll_once()
            return harness

        harness = run(scenario)
        assert harness.scheduler.emergency_stopped is False
        assert harness.governor.breaker.open_reason == OpenReason.QUOTA


class TestLifecycle:
    """Tests for start, stop and the emergency stop."""

    def test_loop_polls_then_stops(self):
        client = FakeTank01Client(games=[live_game("g1")], plays={"g1": [touchdown_play()]})

        async def scenario():
            harness = Harness(client)
            await harness.scheduler.start()
            for _ in range(100):
                if harness.scheduler.poll_count:
                    break
                await asyncio.sleep(0.01)
            await harness.scheduler.stop()
            return harness

        harness = run(scenario)
        assert harness.scheduler.poll_count == 1
        assert harness.scheduler.is_polling is False
        assert len(harness.batches) == 1

    def test_loop_survives_poll_errors(self):
        client = FakeTank01Client(games=Tank01APIError("upstream 500"))

        async def scenario():
            harness = Harness(client)
            await harness.scheduler.start()
            for _ in range(100):
                if harness.scheduler.poll_count:
                    break
                await asyncio.sleep(0.01)
            polling = harness.scheduler.is_polling
            await harness.scheduler.stop()
            return polling

        assert run(scenario) is True

    def test_emergency_stop_blocks_manual_poll_until_reset(self):
        client = FakeTank01Client()

        async def scenario():
            harness = Harness(client)
            harness.scheduler.emergency_stop()
            with pytest.raises(EmergencyStopError):
                await harness.scheduler.poll_once()
            harness.scheduler.reset_emergency_stop()
            return await harness.scheduler.poll_once()

        assert run(scenario) == []
        assert client.calls == ["games"]

    def test_status(self):
        async def scenario():
            harness = Harness(FakeTank01Client(games=[live_game("g1")]))
            await harness.scheduler.poll_once()
            return harness.scheduler.status()

        status = run(scenario)
        assert status["is_polling"] is False
        assert status["poll_count"] == 1
        assert status["active_games"] == 1
        assert status["interval_seconds"] == 180
        assert status["last_poll_time"] == "2024-10-27T17:00:00+00:00"
