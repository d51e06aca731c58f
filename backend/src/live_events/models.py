"""
Data model shared across the live events pipeline.

Events and impacts are frozen dataclasses: created once, never mutated.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Platform(str, Enum):
    """Fantasy platforms with a roster provider."""
    SLEEPER = "sleeper"
    YAHOO = "yahoo"

    @classmethod
    def parse(cls, value: Any) -> "Platform":
        if isinstance(value, Platform):
            return value
        return cls(str(value).strip().lower())


class EventKind(str, Enum):
    """Closed set of canonical event kinds."""
    PASSING_TD = "passing_td"
    RUSHING_TD = "rushing_td"
    RECEIVING_TD = "receiving_td"
    PASSING_YARDS = "passing_yards"
    RUSHING_YARDS = "rushing_yards"
    RECEIVING_YARDS = "receiving_yards"
    FIELD_GOAL = "field_goal"
    SAFETY = "safety"
    FUMBLE = "fumble"
    INTERCEPTION = "interception"


@dataclass(frozen=True)
class PlayerRef:
    """Provider-side player reference carried on a ScoringEvent."""
    provider_id: str
    name: str
    position: str
    team: str


@dataclass(frozen=True)
class ProviderPlayer:
    """Entry of the upstream provider's player directory."""
    provider_id: str
    name: str
    position: str
    team: str
    # Cross-reference ids supplied by the provider, keyed by platform value
    platform_ids: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "name": self.name,
            "position": self.position,
            "team": self.team,
            "platform_ids": dict(self.platform_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderPlayer":
        return cls(
            provider_id=str(data["provider_id"]),
            name=str(data["name"]),
            position=str(data.get("position") or ""),
            team=str(data.get("team") or ""),
            platform_ids={str(k): str(v) for k, v in (data.get("platform_ids") or {}).items() if v},
        )


@dataclass(frozen=True)
class ScoringEvent:
    """Canonical, provider-agnostic representation of one detected play."""
    id: str
    player: PlayerRef
    kind: EventKind
    stats: Dict[str, float]
    game_id: str
    period: int
    clock: str
    scoring_play: bool
    detected_at: datetime
    description: str = ""
    sequence: int = 0


@dataclass
class GameState:
    """Per-game detection progress. Sequence only moves forward."""
    game_id: str
    last_play_id: Optional[str] = None
    last_sequence: int = 0
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "last_play_id": self.last_play_id,
            "last_sequence": self.last_sequence,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["GameState"]:
        if not isinstance(data, dict) or not isinstance(data.get("game_id"), str):
            return None
        if not isinstance(data.get("last_sequence"), int):
            return None
        last_play_id = data.get("last_play_id")
        return cls(
            game_id=data["game_id"],
            last_play_id=str(last_play_id) if last_play_id is not None else None,
            last_sequence=data["last_sequence"],
            is_active=bool(data.get("is_active", True)),
        )


@dataclass(frozen=True)
class FantasyPlayer:
    """A player on a fantasy roster, as the platform identifies it."""
    platform_player_id: str
    name: str
    position: str
    team: str
    is_starter: bool = False
    is_active: bool = True
    league_id: str = ""
    platform: Optional[Platform] = None


@dataclass(frozen=True)
class FantasyRoster:
    """Snapshot of one tracked fantasy team in one league."""
    league_id: str
    team_id: str
    team_name: str
    platform: Platform
    players: Tuple[FantasyPlayer, ...]
    loaded_at: datetime

    def find_player(self, platform_player_id: str) -> Optional[FantasyPlayer]:
        for player in self.players:
            if player.platform_player_id == platform_player_id:
                return player
        return None


@dataclass(frozen=True)
class LeagueScoringSettings:
    """Point coefficients for one league (Sleeper-style stat keys)."""
    league_id: str
    platform: Platform
    coefficients: Dict[str, float]
    custom_rules: Dict[str, float] = field(default_factory=dict)
    loaded_at: Optional[datetime] = None

    def coefficient(self, key: str) -> Optional[float]:
        value = self.coefficients.get(key)
        if value is None:
            return None
        return float(value)


@dataclass(frozen=True)
class LeagueConfig:
    """One league the user tracks."""
    league_id: str
    platform: Platform
    enabled: bool = True
    custom_team_name: Optional[str] = None
    # Sleeper: which roster is the user's
    sleeper_username: Optional[str] = None
    sleeper_user_id: Optional[str] = None
    # Yahoo: team key within the league (e.g. "423.l.12345.t.3")
    yahoo_team_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeagueConfig":
        league_id = data.get("league_id") or data.get("leagueId")
        if not league_id:
            raise ValueError("league entry is missing league_id")
        return cls(
            league_id=str(league_id),
            platform=Platform.parse(data["platform"]),
            enabled=bool(data.get("enabled", True)),
            custom_team_name=data.get("custom_team_name") or data.get("customTeamName"),
            sleeper_username=data.get("sleeper_username") or data.get("sleeperUsername"),
            sleeper_user_id=data.get("sleeper_user_id") or data.get("sleeperUserId"),
            yahoo_team_key=data.get("yahoo_team_key") or data.get("yahooTeamKey"),
        )


@dataclass(frozen=True)
class FantasyImpact:
    """Points one ScoringEvent is worth to one fantasy team."""
    league_id: str
    team_id: str
    team_name: str
    platform: Platform
    player: FantasyPlayer
    points: float
    is_starter: bool
    kind: EventKind
    description: str
    event: ScoringEvent


@dataclass
class StoredEvent:
    """Display projection of a FantasyImpact plus its storage envelope."""
    id: str
    player_name: str
    position: str
    action: str
    score_impact: float
    timestamp: str
    league_id: str
    team_id: str
    kind: str
    is_starter: bool
    stored_at: str
    ttl: int
    hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "player_name": self.player_name,
            "position": self.position,
            "action": self.action,
            "score_impact": self.score_impact,
            "timestamp": self.timestamp,
            "league_id": self.league_id,
            "team_id": self.team_id,
            "kind": self.kind,
            "is_starter": self.is_starter,
            "stored_at": self.stored_at,
            "ttl": self.ttl,
            "hash": self.hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["StoredEvent"]:
        """Rebuild from persisted form; None when required fields are missing."""
        required = ("id", "player_name", "timestamp", "stored_at", "hash")
        if not isinstance(data, dict) or not all(isinstance(data.get(k), str) for k in required):
            return None
        if not isinstance(data.get("ttl"), int):
            return None
        try:
            score = float(data.get("score_impact", 0))
        except (TypeError, ValueError):
            return None
        return cls(
            id=data["id"],
            player_name=data["player_name"],
            position=str(data.get("position") or ""),
            action=str(data.get("action") or ""),
            score_impact=score,
            timestamp=data["timestamp"],
            league_id=str(data.get("league_id") or ""),
            team_id=str(data.get("team_id") or ""),
            kind=str(data.get("kind") or ""),
            is_starter=bool(data.get("is_starter", False)),
            stored_at=data["stored_at"],
            ttl=data["ttl"],
            hash=data["hash"],
        )


@dataclass
class RosterLoadResult:
    """Outcome of one RosterCache.load call."""
    loaded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: bool = False
