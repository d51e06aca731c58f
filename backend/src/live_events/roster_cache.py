"""
Roster cache.

Holds one roster and one scoring-settings snapshot per (platform, league).
A load builds a complete new snapshot and swaps it in at once; readers never
see a half-loaded cache. A league that fails to load keeps serving its
previous snapshot.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from config import Config
from fantasy_platforms.base import LeagueSnapshot, RosterProvider
from live_events.models import (
    FantasyPlayer,
    FantasyRoster,
    LeagueConfig,
    LeagueScoringSettings,
    Platform,
    RosterLoadResult,
)

logger = logging.getLogger(__name__)

CacheKey = Tuple[Platform, str]


class RosterCache:
    """Per-league roster snapshots and scoring rules with a staleness policy."""

    def __init__(
        self,
        config: Config,
        providers: Dict[Platform, RosterProvider],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.providers = providers
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.ttl = timedelta(seconds=config.roster_cache_ttl)
        self._rosters: Dict[CacheKey, FantasyRoster] = {}
        self._settings: Dict[CacheKey, LeagueScoringSettings] = {}
        self.last_loaded: Optional[datetime] = None

    def is_stale(self) -> bool:
        if self.last_loaded is None:
            return True
        return self.clock() - self.last_loaded >= self.ttl

    async def _load_one(self, league: LeagueConfig) -> LeagueSnapshot:
        provider = self.providers.get(league.platform)
        if provider is None:
            raise LookupError(f"No roster provider for platform {league.platform.value}")
        return await provider.load_league(league)

    async def load(self, leagues: Iterable[LeagueConfig], force_refresh: bool = False) -> RosterLoadResult:
        """
        Load every enabled league and replace the cache.

        Args:
            leagues: Tracked league configurations
            force_refresh: Reload even if the current snapshot is fresh

        Returns:
            RosterLoadResult listing loaded and failed league ids
        """
        if not force_refresh and not self.is_stale():
            return RosterLoadResult(skipped=True)

        enabled = [league for league in leagues if league.enabled]
        results = await asyncio.gather(*(self._load_one(league) for league in enabled), return_exceptions=True)

        rosters: Dict[CacheKey, FantasyRoster] = {}
        settings: Dict[CacheKey, LeagueScoringSettings] = {}
        outcome = RosterLoadResult()
        for league, result in zip(enabled, results):
            key = (league.platform, league.league_id)
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error("Failed to load league roster", extra={
                    "league_id": league.league_id,
                    "platform": league.platform.value,
                    "error": str(result),
                    "error_type": type(result).__name__
                })
                outcome.failed.append(league.league_id)
                if key in self._rosters:
                    rosters[key] = self._rosters[key]
                    settings[key] = self._settings[key]
                continue
            rosters[key] = result.roster
            settings[key] = result.settings
            outcome.loaded.append(league.league_id)

        self._rosters = rosters
        self._settings = settings
        # Failed leagues keep their previous snapshot and the cache stays stale until a clean load
        if not outcome.failed:
            self.last_loaded = self.clock()

        logger.info("Roster cache loaded", extra={
            "loaded": len(outcome.loaded),
            "failed": len(outcome.failed),
            "carried_over": len(rosters) - len(outcome.loaded),
            "players": sum(len(r.players) for r in rosters.values())
        })
        return outcome

    def _lookup(self, table: Dict[CacheKey, object], league_id: str, platform: Optional[Platform]):
        if platform is not None:
            return table.get((platform, league_id))
        for (_, cached_league_id), value in table.items():
            if cached_league_id == league_id:
                return value
        return None

    def get(self, league_id: str, platform: Optional[Platform] = None) -> Optional[FantasyRoster]:
        return self._lookup(self._rosters, league_id, platform)

    def settings(self, league_id: str, platform: Optional[Platform] = None) -> Optional[LeagueScoringSettings]:
        return self._lookup(self._settings, league_id, platform)

    def rosters(self) -> List[FantasyRoster]:
        return list(self._rosters.values())

    def all_players(self) -> List[FantasyPlayer]:
        return [player for roster in self._rosters.values() for player in roster.players]

    def replace(self, snapshots: Iterable[LeagueSnapshot]):
        """Swap in snapshots directly (used when rosters come from elsewhere)."""
        rosters = {}
        settings = {}
        for snapshot in snapshots:
            key = (snapshot.roster.platform, snapshot.roster.league_id)
            rosters[key] = snapshot.roster
            settings[key] = snapshot.settings
        self._rosters = rosters
        self._settings = settings
        self.last_loaded = self.clock()

    def stats(self) -> Dict:
        age = None
        if self.last_loaded is not None:
            age = (self.clock() - self.last_loaded).total_seconds()
        return {
            "rosters": len(self._rosters),
            "players": sum(len(roster.players) for roster in self._rosters.values()),
            "last_loaded": self.last_loaded.isoformat() if self.last_loaded else None,
            "age_seconds": age,
            "is_expired": self.is_stale(),
        }
