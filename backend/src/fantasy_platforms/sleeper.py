"""
Sleeper roster provider (public API, no auth).
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from config import Config
from fantasy_platforms.base import LeagueSnapshot, PlatformAPIError, RosterProvider
from live_events.models import FantasyPlayer, FantasyRoster, LeagueConfig, LeagueScoringSettings, Platform

logger = logging.getLogger(__name__)

CUSTOM_RULE_PATTERN = re.compile(r"^fg_\d+_plus$")


def split_scoring_settings(raw: Dict[str, Any]):
    """Separate flat coefficients from distance-bonus rules."""
    coefficients: Dict[str, float] = {}
    custom_rules: Dict[str, float] = {}
    for key, value in (raw or {}).items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if CUSTOM_RULE_PATTERN.match(key):
            custom_rules[key] = float(value)
        else:
            coefficients[key] = float(value)
    return coefficients, custom_rules


class SleeperRosterProvider(RosterProvider):
    """Loads a user's roster and scoring settings from a Sleeper league."""

    platform = Platform.SLEEPER

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(config.sleeper_api_base_url, timeout=config.request_timeout, transport=transport)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        # Sleeper's NFL player dump is several MB; refresh at most daily
        self._players_cache: Optional[Dict[str, Dict[str, Any]]] = None
        self._players_cache_time: Optional[datetime] = None
        self._players_cache_ttl = timedelta(seconds=config.player_directory_cache_ttl)

    async def get_players(self) -> Dict[str, Dict[str, Any]]:
        now = self.clock()
        if self._players_cache is not None and self._players_cache_time is not None:
            if now - self._players_cache_time < self._players_cache_ttl:
                return self._players_cache

        data = await self._get_json("players/nfl")
        if not isinstance(data, dict):
            raise PlatformAPIError("Sleeper players payload is not an object", self.platform)
        self._players_cache = data
        self._players_cache_time = now
        logger.info("Fetched Sleeper player directory", extra={"players_count": len(data)})
        return data

    def _find_roster(self, league: LeagueConfig, users: List[Dict[str, Any]], rosters: List[Dict[str, Any]]):
        owner_id = league.sleeper_user_id
        user = None
        if owner_id is None and league.sleeper_username:
            wanted = league.sleeper_username.lower()
            for candidate in users:
                names = {str(candidate.get("username") or "").lower(), str(candidate.get("display_name") or "").lower()}
                if wanted in names:
                    owner_id = candidate.get("user_id")
                    break
        if owner_id is None:
            raise PlatformAPIError(
                f"No Sleeper user configured or found for league {league.league_id}", self.platform
            )

        for candidate in users:
            if candidate.get("user_id") == owner_id:
                user = candidate
                break
        for roster in rosters:
            if roster.get("owner_id") == owner_id:
                return roster, user
        raise PlatformAPIError(f"User {owner_id} has no roster in league {league.league_id}", self.platform)

    async def load_league(self, league: LeagueConfig) -> LeagueSnapshot:
        """
        Fetch the configured user's roster and the league scoring settings.

        Args:
            league: League configuration with sleeper_user_id or sleeper_username

        Returns:
            LeagueSnapshot with roster and settings

        Raises:
            PlatformAPIError: On request failure or when the user's roster cannot be found
        """
        league_data = await self._get_json(f"league/{league.league_id}")
        users = await self._get_json(f"league/{league.league_id}/users")
        rosters = await self._get_json(f"league/{league.league_id}/rosters")
        if not isinstance(league_data, dict) or not isinstance(users, list) or not isinstance(rosters, list):
            raise PlatformAPIError(f"Unexpected Sleeper payload for league {league.league_id}", self.platform)

        roster, user = self._find_roster(league, users, rosters)
        directory = await self.get_players()
        starters = set(str(pid) for pid in (roster.get("starters") or []))
        now = self.clock()

        players = []
        for player_id in roster.get("players") or []:
            player_id = str(player_id)
            info = directory.get(player_id) or {}
            name = info.get("full_name") or " ".join(
                part for part in (info.get("first_name"), info.get("last_name")) if part
            )
            position = info.get("position") or ""
            if not name and player_id.isalpha():
                # Team defenses are keyed by team abbreviation
                name, position = f"{player_id} D/ST", "DEF"
            players.append(FantasyPlayer(
                platform_player_id=player_id,
                name=name or f"Player {player_id}",
                position=position,
                team=info.get("team") or (player_id if player_id.isalpha() else ""),
                is_starter=player_id in starters,
                is_active=info.get("status", "Active") != "Inactive",
                league_id=league.league_id,
                platform=self.platform,
            ))

        metadata = (user or {}).get("metadata") or {}
        team_name = (
            league.custom_team_name
            or metadata.get("team_name")
            or (user or {}).get("display_name")
            or f"Team {roster.get('roster_id')}"
        )

        coefficients, custom_rules = split_scoring_settings(league_data.get("scoring_settings") or {})
        logger.info("Loaded Sleeper league", extra={
            "league_id": league.league_id,
            "team_name": team_name,
            "players": len(players)
        })
        return LeagueSnapshot(
            roster=FantasyRoster(
                league_id=league.league_id,
                team_id=str(roster.get("roster_id")),
                team_name=team_name,
                platform=self.platform,
                players=tuple(players),
                loaded_at=now,
            ),
            settings=LeagueScoringSettings(
                league_id=league.league_id,
                platform=self.platform,
                coefficients=coefficients,
                custom_rules=custom_rules,
                loaded_at=now,
            ),
        )
