"""
Tank01 NFL API client (RapidAPI).

Single-attempt requests: retry timing belongs to the RateGovernor, so a
failure is classified and raised for the caller to record.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import Config
from live_events.models import ProviderPlayer

logger = logging.getLogger(__name__)

QUOTA_MESSAGE_MARKERS = ("exceeded the daily quota", "rate limit", "too many requests", "quota")


class Tank01APIError(Exception):
    """Base exception for Tank01 API errors (transient)."""
    pass


class Tank01APIRateLimitError(Tank01APIError):
    """Raised when the upstream reports quota or rate exhaustion."""
    pass


class Tank01APINonRetryableError(Tank01APIError):
    """Raised for non-retryable errors (4xx except 429)."""
    pass


class Tank01APIClient:
    """Client for the Tank01 NFL live statistics API."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not config.rapidapi_key:
            raise ValueError("RAPIDAPI_KEY is required for the Tank01 client")

        self.config = config
        self.base_url = config.tank01_api_base_url.rstrip("/")

        self.client = httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            transport=transport,
            headers={
                "Accept": "application/json",
                "X-RapidAPI-Host": config.tank01_api_host,
                "X-RapidAPI-Key": config.rapidapi_key,
            }
        )

    async def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make one GET request and return the decoded `body` field.

        Raises:
            Tank01APIRateLimitError: On HTTP 429 or a quota message in the payload
            Tank01APINonRetryableError: On other 4xx responses
            Tank01APIError: On 5xx, timeouts, network errors and undecodable payloads
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            response = await self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            logger.warning("Timeout from Tank01 API", extra={"endpoint": endpoint})
            raise Tank01APIError(f"Request timeout: {endpoint}") from e
        except httpx.NetworkError as e:
            logger.warning("Network error from Tank01 API", extra={"endpoint": endpoint, "error": str(e)})
            raise Tank01APIError(f"Network error: {endpoint}") from e

        status_code = response.status_code
        if status_code == 429:
            logger.error("Tank01 API quota exceeded", extra={
                "endpoint": endpoint,
                "retry_after": response.headers.get("Retry-After")
            })
            raise Tank01APIRateLimitError(f"Rate limited on {endpoint}")

        if not response.is_success:
            error_text = response.text[:500]
            if self._mentions_quota(error_text):
                raise Tank01APIRateLimitError(f"Quota exhausted on {endpoint}: {error_text}")
            if 400 <= status_code < 500:
                logger.error("Non-retryable error from Tank01 API", extra={
                    "endpoint": endpoint,
                    "status_code": status_code,
                    "error": error_text
                })
                raise Tank01APINonRetryableError(f"Non-retryable error {status_code}: {error_text}")
            raise Tank01APIError(f"Upstream error {status_code}: {error_text}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error("JSON parse failed", extra={
                "endpoint": endpoint,
                "status_code": status_code,
                "response_preview": response.text[:500]
            })
            raise Tank01APIError(f"Failed to parse JSON: {e}") from e

        if not isinstance(data, dict):
            raise Tank01APIError(f"Unexpected payload type from {endpoint}: {type(data).__name__}")

        # RapidAPI reports quota problems in a 200 response body
        message = data.get("message") or data.get("error")
        if isinstance(message, str) and self._mentions_quota(message):
            raise Tank01APIRateLimitError(f"Quota exhausted on {endpoint}: {message}")

        return data.get("body")

    @staticmethod
    def _mentions_quota(text: str) -> bool:
        lowered = text.lower()
        return any(marker in lowered for marker in QUOTA_MESSAGE_MARKERS)

    async def list_games(self) -> List[Dict[str, Any]]:
        """
        Get today's games with their status.

        Returns:
            List of game dictionaries (gameID, gameStatus, gameStatusCode, ...)
        """
        body = await self._request("/getNFLScoresOnly")
        if isinstance(body, dict):
            games = [game for game in body.values() if isinstance(game, dict)]
        elif isinstance(body, list):
            games = [game for game in body if isinstance(game, dict)]
        else:
            games = []

        logger.debug("Fetched games", extra={"games_count": len(games)})
        return games

    async def list_plays(self, game_id: str) -> List[Dict[str, Any]]:
        """
        Get the full play-by-play list for a game.

        Args:
            game_id: Tank01 game id (e.g. "20241027_KC@LV")

        Returns:
            Raw play dictionaries, oldest first
        """
        body = await self._request("/getNFLBoxScore", params={"gameID": game_id, "playByPlay": "true"})
        plays = body.get("playByPlay") if isinstance(body, dict) else None
        if not isinstance(plays, list):
            logger.warning("Box score without play-by-play", extra={"game_id": game_id})
            return []

        logger.debug("Fetched plays", extra={"game_id": game_id, "plays_count": len(plays)})
        return plays

    async def list_players(self) -> List[ProviderPlayer]:
        """
        Get the upstream player directory.

        Returns:
            ProviderPlayer entries with Sleeper/Yahoo cross-reference ids when present
        """
        body = await self._request("/getNFLPlayerList")
        if not isinstance(body, list):
            raise Tank01APIError("Player list payload is not a list")

        players = []
        for entry in body:
            if not isinstance(entry, dict) or not entry.get("playerID"):
                continue
            platform_ids = {}
            if entry.get("sleeperBotID"):
                platform_ids["sleeper"] = str(entry["sleeperBotID"])
            if entry.get("yahooPlayerID"):
                platform_ids["yahoo"] = str(entry["yahooPlayerID"])
            players.append(ProviderPlayer(
                provider_id=str(entry["playerID"]),
                name=str(entry.get("longName") or entry.get("espnName") or ""),
                position=str(entry.get("pos") or ""),
                team=str(entry.get("team") or ""),
                platform_ids=platform_ids,
            ))

        logger.info("Fetched player directory", extra={"players_count": len(players)})
        return players

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
