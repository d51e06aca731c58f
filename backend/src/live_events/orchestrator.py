"""
Live Events Orchestrator - owns every pipeline component and its lifecycle.

Construction wires the pipeline explicitly:
scheduler -> detector -> attribution (resolver, roster cache, scoring) -> event store.
All shared state is mutated from coroutines on one event loop.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from config import Config
from database.kv_store import KeyValueStore, create_kv_store, read_json_entry
from fantasy_platforms.base import RosterProvider
from fantasy_platforms.sleeper import SleeperRosterProvider
from fantasy_platforms.yahoo import YahooRosterProvider
from live_events.attribution import EventAttributionEngine, ImpactCallback
from live_events.detector import GameEventDetector
from live_events.event_store import EventStore
from live_events.identity import PlayerIdentityResolver
from live_events.models import FantasyImpact, LeagueConfig, Platform, ProviderPlayer, RosterLoadResult, ScoringEvent
from live_events.rate_governor import RateGovernor, utc_now
from live_events.roster_cache import RosterCache
from live_events.scheduler import PollingScheduler
from live_events.scoring import FantasyScoringEngine
from tank01_api.client import Tank01APIClient, Tank01APIError, Tank01APIRateLimitError

logger = logging.getLogger(__name__)

PLAYER_DIRECTORY_KEY = "tank01_player_directory"


def parse_leagues(entries: List[Dict[str, Any]]) -> List[LeagueConfig]:
    leagues = []
    for entry in entries:
        try:
            leagues.append(LeagueConfig.from_dict(entry))
        except (KeyError, ValueError) as e:
            logger.error("Invalid league configuration skipped", extra={"entry": entry, "error": str(e)})
    return leagues


class LiveEventsOrchestrator:
    """Constructs the live events pipeline and runs its loops."""

    def __init__(
        self,
        config: Config,
        store: Optional[KeyValueStore] = None,
        client: Optional[Tank01APIClient] = None,
        providers: Optional[Dict[Platform, RosterProvider]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.clock = clock
        self.store = store if store is not None else create_kv_store(config)
        self.client = client if client is not None else Tank01APIClient(config)
        self.providers = providers if providers is not None else {
            Platform.SLEEPER: SleeperRosterProvider(config, clock=clock),
            Platform.YAHOO: YahooRosterProvider(config, clock=clock),
        }
        self.leagues = parse_leagues(config.leagues)

        self.governor = RateGovernor(config, self.store, clock=clock)
        self.resolver = PlayerIdentityResolver(clock=clock)
        self.roster_cache = RosterCache(config, self.providers, clock=clock)
        self.detector = GameEventDetector(self.resolver.provider_player, clock=clock, store=self.store)
        self.scoring = FantasyScoringEngine()
        self.attribution = EventAttributionEngine(self.resolver, self.roster_cache, self.scoring)
        self.event_store = EventStore(config, self.store, clock=clock)
        self.scheduler = PollingScheduler(
            config, self.governor, self.client, self.detector, self._handle_events, clock=clock
        )

        # Storage is the first subscriber so the feed is durable before anyone is notified
        self.attribution.on_impact(self._store_impacts)

        self.running = False
        self._shutdown_event = asyncio.Event()
        self.started_at: Optional[datetime] = None
        self.player_directory_loaded_at: Optional[datetime] = None

    # Pipeline glue

    def _handle_events(self, events: List[ScoringEvent]):
        for event in events:
            self.attribution.attribute(event)

    def _store_impacts(self, impacts: List[FantasyImpact]):
        saved = self.event_store.save_batch(impacts)
        logger.debug("Impacts stored", extra={"received": len(impacts), "saved": saved})

    def on_impact(self, callback: ImpactCallback) -> Callable[[], None]:
        """Subscribe to attributed impacts. Returns an unsubscribe function."""
        return self.attribution.on_impact(callback)

    # Player directory

    def _restore_player_directory(self, allow_stale: bool) -> bool:
        cached = read_json_entry(self.store, PLAYER_DIRECTORY_KEY)
        if cached is None:
            return False
        try:
            fetched_at = datetime.fromisoformat(cached["fetched_at"])
            players = [ProviderPlayer.from_dict(entry) for entry in cached["players"]]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Cached player directory malformed, clearing", extra={"error": str(e)})
            self.store.delete(PLAYER_DIRECTORY_KEY)
            return False

        age = self.clock() - fetched_at
        if not allow_stale and age >= timedelta(seconds=self.config.player_directory_cache_ttl):
            return False

        self.resolver.load_provider_players(players)
        self.player_directory_loaded_at = fetched_at
        logger.info("Player directory restored from cache", extra={
            "players": len(players),
            "age_hours": round(age.total_seconds() / 3600, 1),
            "stale": allow_stale
        })
        return True

    async def load_player_directory(self, force_refresh: bool = False) -> int:
        """
        Load the upstream player directory, preferring the 24 hour cache.

        Returns:
            Number of players in the directory after loading
        """
        if not force_refresh and self._restore_player_directory(allow_stale=False):
            return self.resolver.provider_player_count

        if not self.governor.try_acquire():
            logger.warning("Player directory fetch not permitted, using stale cache if present")
            self._restore_player_directory(allow_stale=True)
            return self.resolver.provider_player_count

        try:
            players = await self.client.list_players()
        except Tank01APIRateLimitError:
            self.governor.record_quota_exhausted()
            self._restore_player_directory(allow_stale=True)
            raise
        except Tank01APIError as e:
            self.governor.record_failure()
            logger.error("Failed to fetch player directory", extra={"error": str(e)})
            self._restore_player_directory(allow_stale=True)
            raise
        self.governor.record_success()

        self.resolver.load_provider_players(players)
        self.player_directory_loaded_at = self.clock()
        self.store.set(PLAYER_DIRECTORY_KEY, {
            "fetched_at": self.player_directory_loaded_at.isoformat(),
            "players": [player.to_dict() for player in players],
        })
        return len(players)

    # Rosters

    async def refresh_rosters(self, force_refresh: bool = False) -> RosterLoadResult:
        """Reload rosters when stale (or forced) and rebuild the identity index."""
        result = await self.roster_cache.load(self.leagues, force_refresh=force_refresh)
        if not result.skipped:
            self.resolver.build_index(self.roster_cache.all_players())
        return result

    # Polling controls

    async def start_polling(self, interval_hint: Optional[float] = None):
        await self.scheduler.start(interval_hint)

    async def stop_polling(self):
        await self.scheduler.stop()

    async def poll_now(self) -> List[Dict[str, Any]]:
        """Manual poll trigger (still spaced and gated)."""
        return await self.scheduler.poll_once()

    def emergency_stop(self):
        self.scheduler.emergency_stop()

    def reset(self):
        """Clear the emergency stop and close the breaker."""
        self.scheduler.reset_emergency_stop()
        self.governor.reset()

    # Lifecycle

    async def initialize(self):
        """Load the player directory and rosters."""
        logger.info("Orchestrator starting", extra={"leagues": len(self.leagues)})

        try:
            await self.load_player_directory()
        except Tank01APIError as e:
            logger.error("Player directory unavailable, events cannot be attributed until it loads", extra={
                "error": str(e)
            })

        result = await self.refresh_rosters(force_refresh=True)
        logger.info("Orchestrator ready", extra={
            "leagues_loaded": len(result.loaded),
            "leagues_failed": len(result.failed)
        })

    async def _sleep_until_shutdown(self, seconds: float) -> bool:
        """Sleep; returns True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run_cleanup_loop(self):
        """Hourly TTL sweep of the event store."""
        while self.running:
            if await self._sleep_until_shutdown(self.config.event_cleanup_interval):
                break
            try:
                removed = self.event_store.evict_expired()
                logger.debug("Event cleanup sweep", extra={"removed": removed})
            except Exception as e:
                logger.error("Event cleanup failed", extra={"error": str(e)}, exc_info=True)

    async def _run_roster_loop(self):
        """Reload rosters when they go stale; refresh the player directory daily."""
        while self.running:
            # A cache left stale by a failed league is retried sooner than the full TTL
            delay = self.config.roster_retry_interval if self.roster_cache.is_stale() else self.config.roster_cache_ttl
            if await self._sleep_until_shutdown(delay):
                break
            try:
                await self.refresh_rosters()
            except Exception as e:
                logger.error("Roster refresh failed", extra={"error": str(e)}, exc_info=True)
            try:
                await self.load_player_directory()
            except Tank01APIError as e:
                logger.warning("Player directory refresh failed", extra={"error": str(e)})

    async def run(self):
        """Start polling and run the maintenance loops until shutdown."""
        logger.info("Live events loops started (polling + cleanup + rosters)")
        self.running = True
        self.started_at = self.clock()
        self._shutdown_event = asyncio.Event()
        await self.scheduler.start()
        try:
            await asyncio.gather(
                self._run_cleanup_loop(),
                self._run_roster_loop(),
            )
        except asyncio.CancelledError:
            logger.info("Live events loops cancelled")
        finally:
            self.running = False

    async def shutdown(self):
        """Shutdown orchestrator gracefully."""
        logger.info("Orchestrator shutting down")
        self.running = False
        self._shutdown_event.set()

        await self.scheduler.stop()
        await self.client.close()
        for provider in self.providers.values():
            await provider.close()

        logger.info("Orchestrator stopped")

    # Diagnostics

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "leagues": [
                {"league_id": league.league_id, "platform": league.platform.value, "enabled": league.enabled}
                for league in self.leagues
            ],
            "polling": self.scheduler.status(),
            "rate_governor": self.governor.status(),
            "active_games": self.detector.active_game_count,
            "event_store": self.event_store.stats(),
            "roster_cache": self.roster_cache.stats(),
            "player_mapping": self.resolver.stats(),
            "player_directory_loaded_at": (
                self.player_directory_loaded_at.isoformat() if self.player_directory_loaded_at else None
            ),
            "attribution": {
                "events_attributed": self.attribution.events_attributed,
                "impacts_emitted": self.attribution.impacts_emitted,
            },
        }
