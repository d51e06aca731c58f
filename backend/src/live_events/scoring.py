"""
Fantasy points calculation.

Maps one canonical event kind plus its stat deltas to points under a
league's Sleeper-style coefficients. Pure: no I/O, no state.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from live_events.models import EventKind, LeagueScoringSettings

logger = logging.getLogger(__name__)

TOUCHDOWN_KEYS = {
    EventKind.PASSING_TD: "pass_td",
    EventKind.RUSHING_TD: "rush_td",
    EventKind.RECEIVING_TD: "rec_td",
}

YARDS_KEYS = {
    EventKind.PASSING_YARDS: "pass_yd",
    EventKind.RUSHING_YARDS: "rush_yd",
    EventKind.RECEIVING_YARDS: "rec_yd",
}

TURNOVER_KEYS = {
    EventKind.SAFETY: "safe",
    EventKind.FUMBLE: "fum_lost",
    EventKind.INTERCEPTION: "pass_int",
}

# (upper bound inclusive, coefficient key); anything above the last band is 50+
FIELD_GOAL_BANDS = [
    (19, "fgm_0_19"),
    (29, "fgm_20_29"),
    (39, "fgm_30_39"),
    (49, "fgm_40_49"),
]
FIELD_GOAL_LONG_KEY = "fgm_50p"

DISTANCE_BONUS_RULE = re.compile(r"^fg_(\d+)_plus$")


@dataclass(frozen=True)
class PointsLine:
    """One line of a points breakdown."""
    category: str
    points: float
    description: str


def field_goal_band_key(distance: float) -> str:
    for upper, key in FIELD_GOAL_BANDS:
        if distance <= upper:
            return key
    return FIELD_GOAL_LONG_KEY


def distance_bonus(distance: float, custom_rules: Dict[str, float]) -> Optional[PointsLine]:
    """Highest `fg_N_plus` rule whose threshold the kick reaches."""
    best_threshold = None
    best_value = 0.0
    for rule, value in custom_rules.items():
        match = DISTANCE_BONUS_RULE.match(rule)
        if not match:
            continue
        threshold = int(match.group(1))
        if distance >= threshold and (best_threshold is None or threshold > best_threshold):
            best_threshold = threshold
            best_value = float(value)
    if best_threshold is None:
        return None
    return PointsLine(
        category=f"fg_{best_threshold}_plus",
        points=best_value,
        description=f"{distance:g}yd FG bonus ({best_threshold}+ yds) = {best_value:g}"
    )


class FantasyScoringEngine:
    """Calculates the fantasy value of a single scoring event."""

    def breakdown(
        self,
        kind: EventKind,
        stats: Dict[str, float],
        settings: LeagueScoringSettings
    ) -> List[PointsLine]:
        """
        Itemize the points an event is worth.

        Args:
            kind: Canonical event kind
            stats: Stat deltas extracted from the play
            settings: League scoring coefficients

        Returns:
            Breakdown lines; empty when the kind is unknown or no coefficient applies
        """
        lines: List[PointsLine] = []

        if kind in TOUCHDOWN_KEYS:
            key = TOUCHDOWN_KEYS[kind]
            value = settings.coefficient(key)
            if value is not None:
                lines.append(PointsLine(key, value, f"TD × {value:g} = {value:g}"))
            if kind == EventKind.RECEIVING_TD:
                lines.extend(self._reception_line(stats, settings))

        elif kind in YARDS_KEYS:
            key = YARDS_KEYS[kind]
            value = settings.coefficient(key)
            yards = float(stats.get("yards", 0) or 0)
            if value is not None and yards:
                points = yards * value
                lines.append(PointsLine(key, points, f"{yards:g} yards × {value:g} = {points:g}"))
            if kind == EventKind.RECEIVING_YARDS:
                lines.extend(self._reception_line(stats, settings))

        elif kind == EventKind.FIELD_GOAL:
            distance = float(stats.get("field_goal_distance", 0) or 0)
            band_key = field_goal_band_key(distance)
            value = settings.coefficient(band_key)
            if value is None:
                band_key = "fgm"
                value = settings.coefficient("fgm")
            if value is not None:
                lines.append(PointsLine(band_key, value, f"FG ({distance:g}yd) × {value:g} = {value:g}"))
            bonus = distance_bonus(distance, settings.custom_rules)
            if bonus is not None:
                lines.append(bonus)

        elif kind in TURNOVER_KEYS:
            key = TURNOVER_KEYS[kind]
            value = settings.coefficient(key)
            if value is not None:
                lines.append(PointsLine(key, value, f"{kind.value} × {value:g} = {value:g}"))

        else:
            logger.debug("No scoring rule for event kind", extra={"kind": str(kind)})

        return lines

    def points_for(
        self,
        kind: EventKind,
        stats: Dict[str, float],
        settings: LeagueScoringSettings
    ) -> float:
        """Total points for an event, rounded to 2 decimal places."""
        total = sum(line.points for line in self.breakdown(kind, stats, settings))
        return round(total, 2)

    def _reception_line(self, stats: Dict[str, float], settings: LeagueScoringSettings) -> List[PointsLine]:
        value = settings.coefficient("rec")
        receptions = float(stats.get("receptions", 1) or 0)
        if value is None or not receptions:
            return []
        points = receptions * value
        return [PointsLine("rec", points, f"{receptions:g} catches × {value:g} = {points:g}")]
