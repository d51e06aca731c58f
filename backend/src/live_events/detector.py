"""
Game event detection.

Turns raw upstream play-by-play records into canonical ScoringEvents.
Plays are treated as opaque JSON; only the fields below are read:
playID / sequence, playerID (or the first key of playerStats),
playDescription, playType, yards, yardLine, quarter, gameClock,
isScoringPlay / scoringPlay.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from database.kv_store import KeyValueStore, read_json_entry
from live_events.models import EventKind, GameState, PlayerRef, ProviderPlayer, ScoringEvent

logger = logging.getLogger(__name__)

GAME_STATES_STORAGE_KEY = "live_game_states"

BIG_PLAY_YARDS = 20

# Kicking distance is line of scrimmage plus end zone and the snap/hold depth
FIELD_GOAL_YARDLINE_OFFSET = 17

YARDS_PATTERNS = [
    re.compile(r"(-?\d+)[- ]yard"),
    re.compile(r"for (-?\d+) yards?"),
]
FIELD_GOAL_DISTANCE_PATTERN = re.compile(r"(\d+)[- ]yard field goal")
MISSED_FIELD_GOAL_MARKERS = ("no good", "missed", "blocked")
RECEPTION_MARKERS = ("reception", "caught", "catch")
RUSH_MARKERS = ("rush", "run", "scramble")


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _parse_period(value: Any) -> int:
    match = re.search(r"\d+", str(value or ""))
    return int(match.group()) if match else 1


def extract_yards(play: Dict[str, Any], text: str) -> Optional[int]:
    yards = _as_int(play.get("yards"))
    if yards is not None:
        return yards
    for pattern in YARDS_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def extract_field_goal_distance(play: Dict[str, Any], text: str, yards: Optional[int]) -> Optional[int]:
    match = FIELD_GOAL_DISTANCE_PATTERN.search(text)
    if match:
        return int(match.group(1))
    if yards:
        return yards
    yard_line = _as_int(re.sub(r"[^\d-]", "", str(play.get("yardLine") or "")) or None)
    if yard_line is not None:
        return yard_line + FIELD_GOAL_YARDLINE_OFFSET
    return None


def classify_play(text: str, yards: Optional[int]) -> Optional[EventKind]:
    """
    Ordered classification of one play's lowercased description and type.

    Returns None for plays that carry no fantasy relevance.
    """
    if "touchdown" in text:
        if any(marker in text for marker in RECEPTION_MARKERS):
            return EventKind.RECEIVING_TD
        if "pass" in text:
            return EventKind.PASSING_TD
        return EventKind.RUSHING_TD

    if "field goal" in text:
        if any(marker in text for marker in MISSED_FIELD_GOAL_MARKERS):
            return None
        return EventKind.FIELD_GOAL

    if "interception" in text or "intercepted" in text:
        return EventKind.INTERCEPTION
    if "fumble" in text:
        return EventKind.FUMBLE
    if "safety" in text:
        return EventKind.SAFETY

    if yards is not None and yards >= BIG_PLAY_YARDS:
        if any(marker in text for marker in RECEPTION_MARKERS):
            return EventKind.RECEIVING_YARDS
        if "pass" in text:
            return EventKind.PASSING_YARDS
        if any(marker in text for marker in RUSH_MARKERS):
            return EventKind.RUSHING_YARDS
    return None


def build_stats(kind: EventKind, yards: Optional[int], fg_distance: Optional[int]) -> Dict[str, float]:
    stats: Dict[str, float] = {}
    if yards:
        stats["yards"] = yards

    if kind in (EventKind.PASSING_TD, EventKind.RUSHING_TD, EventKind.RECEIVING_TD):
        stats["touchdowns"] = 1
    if kind in (EventKind.RECEIVING_TD, EventKind.RECEIVING_YARDS):
        stats["receptions"] = 1
    if kind == EventKind.FIELD_GOAL:
        stats.pop("yards", None)
        if fg_distance is not None:
            stats["field_goal_distance"] = fg_distance
    elif kind == EventKind.INTERCEPTION:
        stats["interceptions"] = 1
    elif kind == EventKind.FUMBLE:
        stats["fumbles"] = 1
    elif kind == EventKind.SAFETY:
        stats["safeties"] = 1
    return stats


class GameEventDetector:
    """Detects new scoring events per game, remembering how far each game has been read."""

    def __init__(
        self,
        player_lookup: Callable[[str], Optional[ProviderPlayer]],
        clock: Optional[Callable[[], datetime]] = None,
        store: Optional[KeyValueStore] = None,
    ):
        self.player_lookup = player_lookup
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.store = store
        self.game_states: Dict[str, GameState] = {}
        self._load()

    # Persistence

    def _load(self):
        if self.store is None:
            return
        data = read_json_entry(self.store, GAME_STATES_STORAGE_KEY)
        if data is None:
            return
        if not isinstance(data, dict) or not isinstance(data.get("games"), list):
            logger.warning("Persisted game states malformed, clearing")
            self.store.delete(GAME_STATES_STORAGE_KEY)
            return

        for raw in data["games"]:
            state = GameState.from_dict(raw)
            if state is not None:
                # Activity is re-established by the next poll
                state.is_active = False
                self.game_states[state.game_id] = state
        logger.info("Loaded persisted game states", extra={"games": len(self.game_states)})

    def _persist(self):
        if self.store is None:
            return
        try:
            self.store.set(GAME_STATES_STORAGE_KEY, {
                "games": [state.to_dict() for state in self.game_states.values()],
                "saved_at": self.clock().isoformat(),
            })
        except Exception as e:
            logger.error("Failed to persist game states", extra={"error": str(e)})

    def game_state(self, game_id: str) -> GameState:
        state = self.game_states.get(game_id)
        if state is None:
            state = GameState(game_id=game_id)
            self.game_states[game_id] = state
        return state

    def mark_inactive(self, game_id: str):
        state = self.game_states.get(game_id)
        if state is not None and state.is_active:
            state.is_active = False
            self._persist()

    def reset(self, game_id: Optional[str] = None):
        if game_id is None:
            self.game_states.clear()
        else:
            self.game_states.pop(game_id, None)
        self._persist()

    @property
    def active_game_count(self) -> int:
        return sum(1 for state in self.game_states.values() if state.is_active)

    def detect(self, raw_plays: Any, game_id: str) -> List[ScoringEvent]:
        """
        Detect new scoring events in a game's play list.

        Args:
            raw_plays: Full play-by-play list as returned upstream
            game_id: Upstream game id

        Returns:
            Events for plays newer than the last one seen, in sequence order
        """
        if not isinstance(raw_plays, list):
            logger.warning("Play list is not a list, skipping", extra={
                "game_id": game_id,
                "type": type(raw_plays).__name__
            })
            return []

        state = self.game_state(game_id)
        state.is_active = True

        sequenced: List[Tuple[int, int, Dict[str, Any]]] = []
        for index, play in enumerate(raw_plays):
            if not isinstance(play, dict):
                logger.warning("Malformed play skipped", extra={"game_id": game_id, "index": index})
                continue
            sequenced.append((self._sequence_of(play, index), index, play))
        sequenced.sort(key=lambda item: (item[0], item[1]))

        events: List[ScoringEvent] = []
        highest = state.last_sequence
        last_play_id = state.last_play_id
        for sequence, index, play in sequenced:
            if sequence <= state.last_sequence:
                continue
            if sequence > highest:
                highest = sequence
                last_play_id = str(play.get("playID") or sequence)
            event = self._to_event(play, game_id, sequence)
            if event is not None:
                events.append(event)

        if highest > state.last_sequence:
            state.last_sequence = highest
            state.last_play_id = last_play_id
            self._persist()

        if events:
            logger.info("Detected scoring events", extra={
                "game_id": game_id,
                "count": len(events),
                "last_sequence": state.last_sequence
            })
        return events

    def _sequence_of(self, play: Dict[str, Any], index: int) -> int:
        for key in ("sequence", "playSequence"):
            value = _as_int(play.get(key))
            if value is not None:
                return value
        value = _as_int(play.get("playID"))
        if value is not None:
            return value
        return index + 1

    def _player_id_of(self, play: Dict[str, Any]) -> Optional[str]:
        player_id = play.get("playerID")
        if player_id:
            return str(player_id)
        player_stats = play.get("playerStats")
        if isinstance(player_stats, dict) and player_stats:
            return str(next(iter(player_stats)))
        return None

    def _to_event(self, play: Dict[str, Any], game_id: str, sequence: int) -> Optional[ScoringEvent]:
        description = play.get("playDescription") or play.get("description") or ""
        play_type = play.get("playType") or ""
        if not isinstance(description, str) or not isinstance(play_type, str):
            logger.warning("Malformed play skipped", extra={"game_id": game_id, "sequence": sequence})
            return None
        if not description and not play_type:
            logger.warning("Play without description skipped", extra={"game_id": game_id, "sequence": sequence})
            return None

        text = f"{play_type} {description}".lower()
        yards = extract_yards(play, text)
        kind = classify_play(text, yards)
        if kind is None:
            return None

        player_id = self._player_id_of(play)
        if player_id is None:
            logger.warning("Scoring play without player id skipped", extra={
                "game_id": game_id,
                "sequence": sequence,
                "kind": kind.value
            })
            return None

        provider = self.player_lookup(player_id)
        if provider is None:
            logger.warning("Player not found in directory", extra={
                "game_id": game_id,
                "player_id": player_id,
                "kind": kind.value
            })
            return None

        fg_distance = extract_field_goal_distance(play, text, yards) if kind == EventKind.FIELD_GOAL else None
        play_id = play.get("playID") or f"{game_id}-{sequence}"
        scoring_play = _as_bool(play.get("isScoringPlay", play.get("scoringPlay", False)))

        return ScoringEvent(
            id=f"tank01-{play_id}",
            player=PlayerRef(
                provider_id=provider.provider_id,
                name=provider.name,
                position=provider.position,
                team=provider.team,
            ),
            kind=kind,
            stats=build_stats(kind, yards, fg_distance),
            game_id=game_id,
            period=_parse_period(play.get("quarter")),
            clock=str(play.get("gameClock") or ""),
            scoring_play=scoring_play,
            detected_at=self.clock(),
            description=description,
            sequence=sequence,
        )
