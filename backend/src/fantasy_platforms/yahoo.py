"""
Yahoo Fantasy roster provider.

Requires an OAuth access token from configuration; acquiring and refreshing
it happens elsewhere. Yahoo's JSON wraps most objects in lists of
single-key fragments, which are merged before reading.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from config import Config
from fantasy_platforms.base import LeagueSnapshot, PlatformAPIError, RosterProvider
from live_events.models import FantasyPlayer, FantasyRoster, LeagueConfig, LeagueScoringSettings, Platform

logger = logging.getLogger(__name__)

# Yahoo NFL stat ids mapped to the Sleeper-style keys used for scoring
YAHOO_STAT_KEYS = {
    "4": "pass_yd",
    "5": "pass_td",
    "6": "pass_int",
    "9": "rush_yd",
    "10": "rush_td",
    "11": "rec",
    "12": "rec_yd",
    "13": "rec_td",
    "18": "fum_lost",
    "19": "fgm_0_19",
    "20": "fgm_20_29",
    "21": "fgm_30_39",
    "22": "fgm_40_49",
    "23": "fgm_50p",
    "33": "safe",
}

BENCH_POSITIONS = {"BN", "IR", "IR+", "NA"}


def merge_fragments(fragments: Any) -> Dict[str, Any]:
    """Flatten Yahoo's [{a: 1}, {b: 2}, []] fragment lists into one dict."""
    merged: Dict[str, Any] = {}
    if isinstance(fragments, dict):
        return dict(fragments)
    if not isinstance(fragments, list):
        return merged
    for fragment in fragments:
        if isinstance(fragment, dict):
            merged.update(fragment)
        elif isinstance(fragment, list):
            merged.update(merge_fragments(fragment))
    return merged


def league_key_for(league_id: str) -> str:
    if ".l." in league_id:
        return league_id
    return f"nfl.l.{league_id}"


def parse_stat_modifiers(payload: Dict[str, Any]) -> Dict[str, float]:
    """Read league settings stat modifiers as Sleeper-style coefficients."""
    try:
        league = payload["fantasy_content"]["league"]
        settings = merge_fragments(league[1]["settings"])
        stats = settings["stat_modifiers"]["stats"]
    except (KeyError, IndexError, TypeError) as e:
        raise PlatformAPIError("Yahoo settings payload has no stat modifiers", Platform.YAHOO) from e

    coefficients: Dict[str, float] = {}
    for entry in stats:
        stat = entry.get("stat") if isinstance(entry, dict) else None
        if not isinstance(stat, dict):
            continue
        key = YAHOO_STAT_KEYS.get(str(stat.get("stat_id")))
        if key is None:
            continue
        try:
            coefficients[key] = float(stat.get("value"))
        except (TypeError, ValueError):
            logger.warning("Unparseable Yahoo stat modifier", extra={"stat": stat})
    return coefficients


def parse_roster_players(payload: Dict[str, Any], league_id: str) -> Dict[str, Any]:
    """Extract team identity and roster entries from a team/roster payload."""
    try:
        team = payload["fantasy_content"]["team"]
        team_info = merge_fragments(team[0])
        roster = team[1]["roster"]
        players_block = roster["0"]["players"]
    except (KeyError, IndexError, TypeError) as e:
        raise PlatformAPIError("Yahoo roster payload is malformed", Platform.YAHOO) from e

    players: List[FantasyPlayer] = []
    for index, wrapper in players_block.items():
        if index == "count" or not isinstance(wrapper, dict):
            continue
        parts = wrapper.get("player") or []
        info = merge_fragments(parts[0] if parts else [])
        selection = merge_fragments(parts[1].get("selected_position")) if len(parts) > 1 and isinstance(parts[1], dict) else {}
        player_id = info.get("player_id")
        if not player_id:
            continue
        name = info.get("name", {}).get("full") if isinstance(info.get("name"), dict) else info.get("name")
        players.append(FantasyPlayer(
            platform_player_id=str(player_id),
            name=name or f"Player {player_id}",
            position=info.get("display_position") or info.get("primary_position") or "",
            team=str(info.get("editorial_team_abbr") or "").upper(),
            is_starter=selection.get("position", "BN") not in BENCH_POSITIONS,
            is_active=info.get("status") not in ("O", "IR", "NA"),
            league_id=league_id,
            platform=Platform.YAHOO,
        ))

    return {
        "team_key": team_info.get("team_key"),
        "team_id": str(team_info.get("team_id") or team_info.get("team_key") or ""),
        "team_name": team_info.get("name") or "",
        "players": players,
    }


class YahooRosterProvider(RosterProvider):
    """Loads a team's roster and league scoring settings from Yahoo Fantasy."""

    platform = Platform.YAHOO

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        headers = {}
        if config.yahoo_access_token:
            headers["Authorization"] = f"Bearer {config.yahoo_access_token}"
        super().__init__(config.yahoo_api_base_url, timeout=config.request_timeout, headers=headers,
                         transport=transport)
        self.has_token = bool(config.yahoo_access_token)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def load_league(self, league: LeagueConfig) -> LeagueSnapshot:
        """
        Fetch the configured team's roster and the league's stat modifiers.

        Raises:
            PlatformAPIError: Without a token or team key, or on request failure
        """
        if not self.has_token:
            raise PlatformAPIError("YAHOO_ACCESS_TOKEN is not configured", self.platform)
        if not league.yahoo_team_key:
            raise PlatformAPIError(f"No Yahoo team key configured for league {league.league_id}", self.platform)

        league_key = league_key_for(league.league_id)
        settings_payload = await self._get_json(f"league/{league_key}/settings", params={"format": "json"})
        roster_payload = await self._get_json(f"team/{league.yahoo_team_key}/roster", params={"format": "json"})

        coefficients = parse_stat_modifiers(settings_payload)
        team = parse_roster_players(roster_payload, league.league_id)
        now = self.clock()

        logger.info("Loaded Yahoo league", extra={
            "league_id": league.league_id,
            "team_key": team["team_key"],
            "players": len(team["players"])
        })
        return LeagueSnapshot(
            roster=FantasyRoster(
                league_id=league.league_id,
                team_id=team["team_id"],
                team_name=league.custom_team_name or team["team_name"],
                platform=self.platform,
                players=tuple(team["players"]),
                loaded_at=now,
            ),
            settings=LeagueScoringSettings(
                league_id=league.league_id,
                platform=self.platform,
                coefficients=coefficients,
                loaded_at=now,
            ),
        )
