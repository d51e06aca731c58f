"""Shared fixtures for the live events test suite."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from config import Config
from database.kv_store import MemoryKeyValueStore
from live_events.models import (
    EventKind,
    FantasyImpact,
    FantasyPlayer,
    FantasyRoster,
    LeagueScoringSettings,
    Platform,
    PlayerRef,
    ProviderPlayer,
    ScoringEvent,
)


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = datetime(2024, 10, 27, 17, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_config(**overrides) -> Config:
    """Config with test-friendly defaults (no spacing waits, memory storage)."""
    values = {
        "rapidapi_key": "test-key",
        "storage_backend": "memory",
        "min_poll_spacing": 0.0,
        "leagues": [],
    }
    values.update(overrides)
    return Config(**values)


def make_event(
    provider_id: str = "77",
    name: str = "Pat Victory",
    kind: EventKind = EventKind.RECEIVING_TD,
    stats=None,
    description: str = "P victory: 12-yard touchdown reception",
    detected_at: datetime = datetime(2024, 10, 27, 17, 0, tzinfo=timezone.utc),
    event_id: str = "tank01-101",
) -> ScoringEvent:
    return ScoringEvent(
        id=event_id,
        player=PlayerRef(provider_id=provider_id, name=name, position="WR", team="KC"),
        kind=kind,
        stats=stats if stats is not None else {"yards": 12, "touchdowns": 1, "receptions": 1},
        game_id="20241027_KC@LV",
        period=2,
        clock="08:14",
        scoring_play=True,
        detected_at=detected_at,
        description=description,
        sequence=101,
    )


def make_impact(league_id: str = "league-a", points: float = 7.0, event: ScoringEvent = None,
                team_id: str = "1", player_name: str = "Pat Victory", is_starter: bool = True) -> FantasyImpact:
    event = event or make_event(name=player_name)
    player = FantasyPlayer(platform_player_id="4034", name=player_name, position="WR", team="KC",
                           is_starter=is_starter, league_id=league_id, platform=Platform.SLEEPER)
    return FantasyImpact(
        league_id=league_id,
        team_id=team_id,
        team_name="Victory Formation",
        platform=Platform.SLEEPER,
        player=player,
        points=points,
        is_starter=is_starter,
        kind=event.kind,
        description=f"{event.description} ({points:+g} pts)",
        event=event,
    )


def make_roster(league_id: str, platform: Platform, players, team_id: str = "1",
                team_name: str = "Victory Formation") -> FantasyRoster:
    return FantasyRoster(
        league_id=league_id,
        team_id=team_id,
        team_name=team_name,
        platform=platform,
        players=tuple(players),
        loaded_at=datetime(2024, 10, 27, 16, 0, tzinfo=timezone.utc),
    )


def make_settings(league_id: str, platform: Platform = Platform.SLEEPER, custom_rules=None, **coefficients):
    return LeagueScoringSettings(
        league_id=league_id,
        platform=platform,
        coefficients=coefficients,
        custom_rules=custom_rules or {},
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def victory_provider_player():
    return ProviderPlayer(provider_id="77", name="Pat Victory", position="WR", team="KC")


@pytest.fixture
def victory_in_two_leagues():
    """Same real player rostered in two Sleeper leagues."""
    return [
        FantasyPlayer(platform_player_id="4034", name="Pat Victory", position="WR", team="KC",
                      is_starter=True, league_id="league-a", platform=Platform.SLEEPER),
        FantasyPlayer(platform_player_id="4034", name="Pat Victory", position="WR", team="KC",
                      is_starter=False, league_id="league-b", platform=Platform.SLEEPER),
    ]


class FakeTank01Client:
    """Stand-in for Tank01APIClient; set an attribute to an exception to make that call raise."""

    def __init__(self, games=None, plays=None, players=None):
        self.games = games if games is not None else []
        self.plays = plays if plays is not None else {}
        self.players = players if players is not None else []
        self.calls = []
        self.closed = False

    @staticmethod
    def _result(value):
        if isinstance(value, Exception):
            raise value
        return value

    async def list_games(self):
        self.calls.append("games")
        return self._result(self.games)

    async def list_plays(self, game_id):
        self.calls.append(f"plays:{game_id}")
        return self._result(self.plays.get(game_id, []))

    async def list_players(self):
        self.calls.append("players")
        return self._result(self.players)

    async def close(self):
        self.closed = True


def live_game(game_id: str, status_code: str = "1") -> dict:
    return {"gameID": game_id, "gameStatus": "Live - In Progress" if status_code == "1" else "Completed",
            "gameStatusCode": status_code}


def touchdown_play(sequence: int = 101, player_id: str = "77") -> dict:
    return {
        "playID": str(sequence),
        "sequence": str(sequence),
        "playerID": player_id,
        "playDescription": "P victory: 12-yard touchdown reception",
        "yards": "12",
        "quarter": "2nd",
        "gameClock": "08:14",
        "isScoringPlay": "true",
    }
