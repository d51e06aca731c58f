"""
Configuration management for the Live Fantasy Events Service.

Loads configuration from environment variables with sensible defaults.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Tank01 (RapidAPI) Configuration
    rapidapi_key: str = os.getenv("RAPIDAPI_KEY", "")
    tank01_api_host: str = os.getenv(
        "TANK01_API_HOST", "tank01-nfl-live-in-game-real-time-statistics-nfl.p.rapidapi.com"
    )
    tank01_api_base_url: str = os.getenv(
        "TANK01_API_BASE_URL",
        "https://tank01-nfl-live-in-game-real-time-statistics-nfl.p.rapidapi.com",
    )
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "30.0"))

    # Fantasy platforms
    sleeper_api_base_url: str = os.getenv("SLEEPER_API_BASE_URL", "https://api.sleeper.app/v1")
    yahoo_api_base_url: str = os.getenv(
        "YAHOO_API_BASE_URL", "https://fantasysports.yahooapis.com/fantasy/v2"
    )
    # Token acquisition/refresh happens outside this service
    yahoo_access_token: Optional[str] = os.getenv("YAHOO_ACCESS_TOKEN", None)

    # Storage backend: "memory" or "supabase"
    storage_backend: str = os.getenv("STORAGE_BACKEND", "memory")
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_service_key: Optional[str] = os.getenv("SUPABASE_SERVICE_KEY", None)
    supabase_kv_table: str = os.getenv("SUPABASE_KV_TABLE", "live_events_kv")

    # Circuit breaker
    circuit_breaker_threshold: int = int(os.getenv("CIRCUIT_BREAKER_THRESHOLD", "3"))
    circuit_breaker_cooldown_seconds: int = int(os.getenv("CIRCUIT_BREAKER_COOLDOWN_SECONDS", "120"))
    # Extended cooldown after the daily quota hard stop or an upstream 429
    quota_cooldown_seconds: int = int(os.getenv("QUOTA_COOLDOWN_SECONDS", "3600"))

    # Rate limiting (tuned to the upstream plan: 500 req/day ≈ 8/min safe)
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "8"))
    max_daily_requests: int = int(os.getenv("MAX_DAILY_REQUESTS", "500"))
    daily_quota_warning_ratio: float = float(os.getenv("DAILY_QUOTA_WARNING_RATIO", "0.7"))
    daily_quota_hard_ratio: float = float(os.getenv("DAILY_QUOTA_HARD_RATIO", "0.85"))

    # Polling (in seconds)
    polling_interval: int = int(os.getenv("POLLING_INTERVAL", "180"))
    # Floor for any requested interval; the upstream does not refresh faster than this
    min_polling_interval: int = int(os.getenv("MIN_POLLING_INTERVAL", "90"))
    # Spacing between any two polls, manual triggers included
    min_poll_spacing: float = float(os.getenv("MIN_POLL_SPACING", "10.0"))
    emergency_stop_on_quota: bool = os.getenv("EMERGENCY_STOP_ON_QUOTA", "true").lower() == "true"

    # Cache Configuration
    roster_cache_ttl: int = int(os.getenv("ROSTER_CACHE_TTL", "3600"))  # 1 hour
    roster_retry_interval: int = int(os.getenv("ROSTER_RETRY_INTERVAL", "300"))
    player_directory_cache_ttl: int = int(os.getenv("PLAYER_DIRECTORY_CACHE_TTL", "86400"))  # 24 hours

    # Event store
    event_ttl_seconds: int = int(os.getenv("EVENT_TTL_SECONDS", "86400"))  # 24 hours
    max_stored_events: int = int(os.getenv("MAX_STORED_EVENTS", "1000"))
    event_cleanup_interval: int = int(os.getenv("EVENT_CLEANUP_INTERVAL", "3600"))

    # Leagues to track: JSON list of {"league_id", "platform", "enabled", ...}
    leagues: List[Dict[str, Any]] = field(default_factory=list)

    # Diagnostics API
    api_enabled: bool = os.getenv("API_ENABLED", "true").lower() == "true"
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if not self.rapidapi_key:
            errors.append("RAPIDAPI_KEY is required")
        if self.storage_backend not in ("memory", "supabase"):
            errors.append(f"STORAGE_BACKEND must be 'memory' or 'supabase', got {self.storage_backend!r}")
        if self.storage_backend == "supabase":
            if not self.supabase_url:
                errors.append("SUPABASE_URL is required when STORAGE_BACKEND=supabase")
            if not self.supabase_key:
                errors.append("SUPABASE_KEY is required when STORAGE_BACKEND=supabase")
        if self.circuit_breaker_threshold < 1:
            errors.append("CIRCUIT_BREAKER_THRESHOLD must be at least 1")
        if self.max_requests_per_minute < 1:
            errors.append("MAX_REQUESTS_PER_MINUTE must be at least 1")
        if self.max_daily_requests < 1:
            errors.append("MAX_DAILY_REQUESTS must be at least 1")
        if not 0 < self.daily_quota_warning_ratio < self.daily_quota_hard_ratio <= 1:
            errors.append("Quota ratios must satisfy 0 < DAILY_QUOTA_WARNING_RATIO < DAILY_QUOTA_HARD_RATIO <= 1")
        if self.min_polling_interval < 1:
            errors.append("MIN_POLLING_INTERVAL must be at least 1 second")
        if self.roster_retry_interval < 1:
            errors.append("ROSTER_RETRY_INTERVAL must be at least 1 second")
        if self.max_stored_events < 1:
            errors.append("MAX_STORED_EVENTS must be at least 1")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Parse league list and validate after initialization."""
        if not self.leagues:
            raw = os.getenv("LEAGUES")
            if raw:
                try:
                    parsed = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Configuration errors: LEAGUES is not valid JSON ({e.msg})") from e
                if not isinstance(parsed, list):
                    raise ValueError("Configuration errors: LEAGUES must be a JSON list")
                self.leagues = [entry for entry in parsed if isinstance(entry, dict)]
        self.validate()
