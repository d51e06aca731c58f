"""
Event attribution.

Maps one ScoringEvent to the fantasy teams that roster the player and
prices it under each league's rules.
"""

import logging
from typing import Callable, List, Optional, Set, Tuple

from live_events.identity import PlayerIdentityResolver
from live_events.models import FantasyImpact, FantasyPlayer, ScoringEvent
from live_events.roster_cache import RosterCache
from live_events.scoring import FantasyScoringEngine

logger = logging.getLogger(__name__)

ImpactCallback = Callable[[List[FantasyImpact]], None]

KIND_LABELS = {
    "passing_td": "passing TD",
    "rushing_td": "rushing TD",
    "receiving_td": "receiving TD",
    "passing_yards": "passing yards",
    "rushing_yards": "rushing yards",
    "receiving_yards": "receiving yards",
    "field_goal": "field goal",
    "safety": "safety",
    "fumble": "fumble lost",
    "interception": "interception",
}


def describe_impact(event: ScoringEvent, points: float) -> str:
    base = event.description.strip() or f"{event.player.name} {KIND_LABELS.get(event.kind.value, event.kind.value)}"
    return f"{base} ({points:+g} pts)"


class EventAttributionEngine:
    """Resolves owners, scores per league and notifies subscribers."""

    def __init__(
        self,
        resolver: PlayerIdentityResolver,
        roster_cache: RosterCache,
        scoring: Optional[FantasyScoringEngine] = None,
    ):
        self.resolver = resolver
        self.roster_cache = roster_cache
        self.scoring = scoring or FantasyScoringEngine()
        self._subscribers: List[ImpactCallback] = []
        self.events_attributed = 0
        self.impacts_emitted = 0

    def on_impact(self, callback: ImpactCallback) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, impacts: List[FantasyImpact]):
        for callback in list(self._subscribers):
            try:
                callback(impacts)
            except Exception as e:
                logger.error("Impact subscriber failed", extra={
                    "subscriber": getattr(callback, "__qualname__", repr(callback)),
                    "error": str(e)
                }, exc_info=True)

    def _impact_for(self, event: ScoringEvent, owner: FantasyPlayer) -> Optional[FantasyImpact]:
        roster = self.roster_cache.get(owner.league_id, owner.platform)
        settings = self.roster_cache.settings(owner.league_id, owner.platform)
        if roster is None or settings is None:
            logger.debug("No cached roster for owner league", extra={
                "league_id": owner.league_id,
                "platform": owner.platform.value if owner.platform else None
            })
            return None

        points = self.scoring.points_for(event.kind, event.stats, settings)
        if points == 0:
            return None

        return FantasyImpact(
            league_id=roster.league_id,
            team_id=roster.team_id,
            team_name=roster.team_name,
            platform=roster.platform,
            player=owner,
            points=points,
            is_starter=owner.is_starter,
            kind=event.kind,
            description=describe_impact(event, points),
            event=event,
        )

    def attribute(self, event: ScoringEvent) -> Optional[List[FantasyImpact]]:
        """
        Compute the fantasy impacts of one event.

        Args:
            event: Detected scoring event

        Returns:
            Non-zero impacts, one per owning team, or None when nothing applies
        """
        owners = self.resolver.resolve(event.player.provider_id)
        if not owners:
            logger.debug("Event not attributed to any roster", extra={
                "event_id": event.id,
                "player": event.player.name
            })
            return None

        impacts: List[FantasyImpact] = []
        seen: Set[Tuple] = set()
        for owner in owners:
            owner_key = (owner.platform, owner.league_id, owner.platform_player_id)
            if owner_key in seen:
                continue
            seen.add(owner_key)
            impact = self._impact_for(event, owner)
            if impact is not None:
                impacts.append(impact)

        if not impacts:
            return None

        self.events_attributed += 1
        self.impacts_emitted += len(impacts)
        logger.info("Event attributed", extra={
            "event_id": event.id,
            "player": event.player.name,
            "kind": event.kind.value,
            "impacts": len(impacts),
            "leagues": [impact.league_id for impact in impacts]
        })
        self._notify(impacts)
        return impacts
