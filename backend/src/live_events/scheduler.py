"""
Polling scheduler.

Drives the upstream fetch cycle: game list, then play-by-play for each live
game, then detection. Every upstream request goes through the RateGovernor.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from asyncio_throttle import Throttler

from config import Config
from live_events.detector import GameEventDetector
from live_events.models import ScoringEvent
from live_events.rate_governor import RateGovernor
from tank01_api.client import Tank01APIClient, Tank01APIError, Tank01APIRateLimitError

logger = logging.getLogger(__name__)

LIVE_STATUS_CODE = "1"
LIVE_STATUS_MARKERS = ("Live", "In Progress")

EventsHandler = Callable[[List[ScoringEvent]], Any]


class EmergencyStopError(RuntimeError):
    """Raised when polling is requested while the emergency stop is set."""
    pass


def is_game_active(game: Dict[str, Any]) -> bool:
    """gameStatusCode "1" is live; "0" not started, "2" completed."""
    if str(game.get("gameStatusCode", "")) == LIVE_STATUS_CODE:
        return True
    status = str(game.get("gameStatus") or "")
    return any(marker in status for marker in LIVE_STATUS_MARKERS)


class PollingScheduler:
    """Repeating poll loop with spacing, single-flight and emergency stop guards."""

    def __init__(
        self,
        config: Config,
        governor: RateGovernor,
        client: Tank01APIClient,
        detector: GameEventDetector,
        on_events: EventsHandler,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.governor = governor
        self.client = client
        self.detector = detector
        self.on_events = on_events
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.min_interval = config.min_polling_interval
        self.interval = self.clamp_interval(config.polling_interval)
        self.emergency_stop_on_quota = config.emergency_stop_on_quota

        # At most one poll per spacing window, manual triggers included
        self.throttler = Throttler(rate_limit=1, period=config.min_poll_spacing)
        self._poll_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        self.emergency_stopped = False
        self.poll_count = 0
        self.events_detected = 0
        self.last_poll_time: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.active_game_ids: List[str] = []

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def clamp_interval(self, interval_hint: Optional[float]) -> float:
        if interval_hint is None:
            return float(max(self.config.polling_interval, self.min_interval))
        if interval_hint < self.min_interval:
            logger.warning("Polling interval below floor, clamping", extra={
                "requested": interval_hint,
                "floor": self.min_interval
            })
            return float(self.min_interval)
        return float(interval_hint)

    async def start(self, interval_hint: Optional[float] = None):
        """
        Start the background poll loop.

        Raises:
            EmergencyStopError: If the emergency stop is set
        """
        if self.emergency_stopped:
            logger.error("Cannot start polling, emergency stop is active")
            raise EmergencyStopError("Emergency stop is active; reset it before starting")
        if self.is_polling:
            logger.warning("Polling already active, ignoring start request")
            return

        self.interval = self.clamp_interval(interval_hint)
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Polling started", extra={"interval_seconds": self.interval})

    def _halt(self):
        self._stop_event.set()

    async def stop(self):
        """Stop after any in-flight poll; no further tick is scheduled."""
        self._halt()
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await task
        logger.info("Polling stopped", extra={"poll_count": self.poll_count})

    async def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except EmergencyStopError:
                break
            except Exception as e:
                logger.error("Poll failed", extra={
                    "error": str(e),
                    "error_type": type(e).__name__
                })

            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def poll_once(self) -> List[Dict[str, Any]]:
        """
        Run one poll cycle.

        Returns:
            The live games seen this cycle

        Raises:
            EmergencyStopError: If the emergency stop is set
            Tank01APIError: If the game list fetch fails
        """
        if self.emergency_stopped:
            raise EmergencyStopError("Emergency stop is active")

        async with self._poll_lock:
            async with self.throttler:
                return await self._poll()

    async def _poll(self) -> List[Dict[str, Any]]:
        self.poll_count += 1
        self.last_poll_time = self.clock()

        if not self.governor.try_acquire():
            logger.info("Poll skipped, upstream request not permitted")
            return []

        try:
            games = await self.client.list_games()
        except Tank01APIRateLimitError as e:
            self._handle_quota_exhausted(e)
            raise
        except Tank01APIError as e:
            self.governor.record_failure()
            self.last_error = str(e)
            raise
        self.governor.record_success()

        active = [game for game in games if is_game_active(game)]
        active_ids = [str(game["gameID"]) for game in active if game.get("gameID")]
        for game_id in self.active_game_ids:
            if game_id not in active_ids:
                self.detector.mark_inactive(game_id)
        self.active_game_ids = active_ids

        for game_id in active_ids:
            if self._stop_event.is_set() and self.emergency_stopped:
                break
            if not self.governor.try_acquire():
                logger.info("Request budget exhausted mid-poll, deferring remaining games", extra={
                    "game_id": game_id
                })
                break
            try:
                plays = await self.client.list_plays(game_id)
            except Tank01APIRateLimitError as e:
                self._handle_quota_exhausted(e)
                raise
            except Tank01APIError as e:
                self.governor.record_failure()
                self.last_error = str(e)
                logger.warning("Failed to fetch plays", extra={"game_id": game_id, "error": str(e)})
                continue
            self.governor.record_success()

            events = self.detector.detect(plays, game_id)
            if not events:
                continue
            self.events_detected += len(events)
            try:
                self.on_events(events)
            except Exception as e:
                logger.error("Event handler failed", extra={
                    "game_id": game_id,
                    "error": str(e)
                }, exc_info=True)

        logger.info("Poll completed", extra={
            "total_games": len(games),
            "active_games": len(active_ids),
            "poll_count": self.poll_count
        })
        return active

    def _handle_quota_exhausted(self, error: Exception):
        self.governor.record_quota_exhausted()
        self.last_error = str(error)
        self._halt()
        if self.emergency_stop_on_quota:
            self.emergency_stopped = True
        logger.error("Upstream quota exhausted, polling halted", extra={
            "emergency_stop": self.emergency_stopped,
            "error": str(error)
        })

    def emergency_stop(self):
        """Stop polling and refuse to start until reset."""
        self.emergency_stopped = True
        self._halt()
        logger.error("EMERGENCY STOP activated")

    def reset_emergency_stop(self):
        self.emergency_stopped = False
        logger.info("Emergency stop reset")

    def status(self) -> Dict[str, Any]:
        return {
            "is_polling": self.is_polling,
            "interval_seconds": self.interval,
            "min_interval_seconds": self.min_interval,
            "emergency_stop": self.emergency_stopped,
            "poll_count": self.poll_count,
            "events_detected": self.events_detected,
            "active_games": len(self.active_game_ids),
            "last_poll_time": self.last_poll_time.isoformat() if self.last_poll_time else None,
            "last_error": self.last_error,
        }
