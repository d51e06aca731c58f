"""
Deduplicating, TTL-bound store of emitted fantasy events.

Events are persisted through the key-value port so the recent feed survives
a restart. The whole store is small (capped), so it is written as one entry.
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from config import Config
from database.kv_store import KeyValueStore, read_json_entry
from live_events.models import FantasyImpact, ScoringEvent, StoredEvent

logger = logging.getLogger(__name__)

EVENTS_STORAGE_KEY = "fantasy_events_store"


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def play_stamp(event: ScoringEvent) -> str:
    return f"{event.game_id}:{event.id}:{event.sequence}"


def event_hash(league_id: str, player_name: str, action: str, play_key: str, points: float) -> str:
    """
    Content hash identifying one logical event within one league.

    play_key stamps the upstream play itself (game, play id, sequence), so a
    play detected again after a restart hashes the same as the first time.
    """
    payload = f"{league_id}|{player_name}|{action}|{play_key}|{points:.2f}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


class EventStore:
    """Stores FantasyImpacts in display form, at most once each."""

    def __init__(
        self,
        config: Config,
        store: KeyValueStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.default_ttl = config.event_ttl_seconds
        self.max_events = config.max_stored_events
        self._events: Dict[str, StoredEvent] = {}
        self._load()

    # Persistence

    def _load(self):
        data = read_json_entry(self.store, EVENTS_STORAGE_KEY)
        if data is None:
            return
        if not isinstance(data, dict) or not isinstance(data.get("events"), list):
            logger.warning("Persisted event store malformed, clearing")
            self.store.delete(EVENTS_STORAGE_KEY)
            return

        invalid = 0
        for raw in data["events"]:
            stored = StoredEvent.from_dict(raw)
            if stored is None:
                invalid += 1
                continue
            self._events[stored.hash] = stored

        removed = self.evict_expired(persist=False)
        logger.info("Loaded persisted events", extra={
            "loaded": len(self._events),
            "invalid": invalid,
            "expired": removed
        })

    def _persist(self):
        try:
            self.store.set(EVENTS_STORAGE_KEY, {
                "events": [event.to_dict() for event in self._events.values()],
                "saved_at": self.clock().isoformat(),
            })
        except Exception as e:
            logger.error("Failed to persist event store", extra={"error": str(e)})

    # Writes

    def save(self, impact: FantasyImpact, ttl: Optional[int] = None) -> bool:
        """
        Store one impact.

        Args:
            impact: Impact produced by attribution
            ttl: Optional lifetime in seconds (defaults to the configured TTL)

        Returns:
            True if stored, False if the same logical event was already present
        """
        self.evict_expired(persist=False)

        timestamp = impact.event.detected_at.isoformat()
        digest = event_hash(impact.league_id, impact.player.name, impact.description,
                            play_stamp(impact.event), impact.points)
        if digest in self._events:
            logger.debug("Duplicate event skipped", extra={
                "hash": digest,
                "player": impact.player.name,
                "league_id": impact.league_id
            })
            return False

        stored = StoredEvent(
            id=f"{impact.event.id}-{impact.league_id}-{impact.team_id}",
            player_name=impact.player.name,
            position=impact.player.position,
            action=impact.description,
            score_impact=impact.points,
            timestamp=timestamp,
            league_id=impact.league_id,
            team_id=impact.team_id,
            kind=impact.kind.value,
            is_starter=impact.is_starter,
            stored_at=self.clock().isoformat(),
            ttl=ttl if ttl is not None else self.default_ttl,
            hash=digest,
        )
        self._events[digest] = stored
        self._enforce_capacity()
        self._persist()

        logger.info("Event stored", extra={
            "hash": digest,
            "player": stored.player_name,
            "league_id": stored.league_id,
            "points": stored.score_impact
        })
        return True

    def save_batch(self, impacts: List[FantasyImpact]) -> int:
        return sum(1 for impact in impacts if self.save(impact))

    def _enforce_capacity(self):
        overflow = len(self._events) - self.max_events
        if overflow <= 0:
            return
        oldest = sorted(self._events.values(), key=lambda event: _parse_time(event.timestamp))[:overflow]
        for event in oldest:
            del self._events[event.hash]
        logger.info("Evicted oldest events over capacity", extra={
            "evicted": overflow,
            "max_events": self.max_events
        })

    def evict_expired(self, persist: bool = True) -> int:
        """Drop events whose TTL has elapsed. Returns the number removed."""
        now = self.clock()
        expired = [
            digest for digest, event in self._events.items()
            if _parse_time(event.stored_at) + timedelta(seconds=event.ttl) <= now
        ]
        for digest in expired:
            del self._events[digest]
        if expired:
            logger.info("Expired events removed", extra={"removed": len(expired)})
            if persist:
                self._persist()
        return len(expired)

    def clear(self):
        count = len(self._events)
        self._events.clear()
        self._persist()
        logger.info("Cleared all events", extra={"cleared": count})

    # Reads

    def filtered(
        self,
        league_id: Optional[str] = None,
        window_minutes: Optional[float] = None,
        player_name: Optional[str] = None,
        min_points: Optional[float] = None,
    ) -> List[StoredEvent]:
        """Events matching every given filter, newest first."""
        events = list(self._events.values())
        if league_id is not None:
            events = [event for event in events if event.league_id == league_id]
        if window_minutes is not None:
            cutoff = self.clock() - timedelta(minutes=window_minutes)
            events = [event for event in events if _parse_time(event.timestamp) >= cutoff]
        if player_name:
            needle = player_name.lower()
            events = [event for event in events if needle in event.player_name.lower()]
        if min_points is not None:
            events = [event for event in events if abs(event.score_impact) >= min_points]
        return sorted(events, key=lambda event: _parse_time(event.timestamp), reverse=True)

    def recent(self, window_minutes: float = 60) -> List[StoredEvent]:
        return self.filtered(window_minutes=window_minutes)

    def by_league(self, league_id: str, window_minutes: Optional[float] = None) -> List[StoredEvent]:
        return self.filtered(league_id=league_id, window_minutes=window_minutes)

    def __len__(self) -> int:
        return len(self._events)

    def stats(self) -> Dict[str, Any]:
        now = self.clock()
        timestamps = [_parse_time(event.timestamp) for event in self._events.values()]
        by_league: Dict[str, int] = {}
        for event in self._events.values():
            if event.league_id:
                by_league[event.league_id] = by_league.get(event.league_id, 0) + 1
        return {
            "total_events": len(self._events),
            "events_last_24h": sum(1 for ts in timestamps if ts >= now - timedelta(hours=24)),
            "events_by_league": by_league,
            "oldest_event": min(timestamps).isoformat() if timestamps else None,
            "newest_event": max(timestamps).isoformat() if timestamps else None,
            "max_events": self.max_events,
        }

    # Export / import

    def export_json(self, **filters) -> str:
        events = self.filtered(**filters) if filters else list(self._events.values())
        return json.dumps({
            "exported_at": self.clock().isoformat(),
            "event_count": len(events),
            "filter": filters or None,
            "events": [event.to_dict() for event in events],
        }, indent=2)

    def import_json(self, payload: str, merge: bool = True) -> int:
        """
        Import events from an export payload.

        Raises:
            ValueError: If the payload is not valid JSON or has no events list
        """
        data = json.loads(payload)
        if not isinstance(data, dict) or not isinstance(data.get("events"), list):
            raise ValueError("Import payload must be an object with an 'events' list")

        if not merge:
            self._events.clear()

        imported = 0
        for raw in data["events"]:
            stored = StoredEvent.from_dict(raw)
            if stored is None:
                continue
            self._events[stored.hash] = stored
            imported += 1

        self._enforce_capacity()
        self._persist()
        logger.info("Import completed", extra={
            "total": len(data["events"]),
            "imported": imported,
            "merge": merge
        })
        return imported
