"""
Common interface for fantasy platform roster providers.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from live_events.models import FantasyRoster, LeagueConfig, LeagueScoringSettings, Platform

logger = logging.getLogger(__name__)


class PlatformAPIError(Exception):
    """Raised when a fantasy platform request or payload fails."""

    def __init__(self, message: str, platform: Optional[Platform] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.platform = platform
        self.status_code = status_code


@dataclass(frozen=True)
class LeagueSnapshot:
    """Roster and scoring settings fetched together for one league."""
    roster: FantasyRoster
    settings: LeagueScoringSettings


class RosterProvider:
    """Loads the tracked team's roster and the league's scoring rules from one platform."""

    platform: Platform

    def __init__(self, base_url: str, timeout: float = 30.0, headers: Optional[Dict[str, str]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        request_headers = {"Accept": "application/json"}
        request_headers.update(headers or {})
        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
            headers=request_headers,
        )

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise PlatformAPIError(f"{self.platform.value} request failed: {e}", self.platform) from e

        if not response.is_success:
            logger.error("Platform API error", extra={
                "platform": self.platform.value,
                "path": path,
                "status_code": response.status_code,
                "error": response.text[:500]
            })
            raise PlatformAPIError(
                f"{self.platform.value} returned {response.status_code} for {path}",
                self.platform,
                response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise PlatformAPIError(f"{self.platform.value} returned invalid JSON for {path}", self.platform) from e

    async def load_league(self, league: LeagueConfig) -> LeagueSnapshot:
        raise NotImplementedError

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
