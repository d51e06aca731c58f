"""
Rate Governor - gates every upstream request.

Three independent gates must all pass before a request is allowed:
a three-state circuit breaker, a per-minute limiter and a durable
calendar-day quota. Callers never implement their own retry timing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config import Config
from database.kv_store import KeyValueStore, read_json_entry

logger = logging.getLogger(__name__)

QUOTA_STORAGE_KEY = "tank01_daily_quota"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BreakerState(Enum):
    """Circuit breaker state enumeration."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class OpenReason(Enum):
    """Why the breaker was opened."""
    FAILURES = "failures"
    QUOTA = "quota"


@dataclass
class CircuitBreakerState:
    state: BreakerState = BreakerState.CLOSED
    failure_count: int = 0
    last_failure_time: Optional[datetime] = None
    next_retry_time: Optional[datetime] = None
    open_reason: Optional[OpenReason] = None
    probe_in_flight: bool = False


@dataclass
class QuotaTracker:
    date: str
    request_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "request_count": self.request_count}


@dataclass
class RequestMetrics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_request_time: Optional[datetime] = None
    requests_this_minute: int = 0
    last_minute_reset: Optional[datetime] = None


class RateGovernor:
    """Circuit breaker + per-minute limiter + daily quota for the upstream provider."""

    def __init__(
        self,
        config: Config,
        store: KeyValueStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.store = store
        self.clock = clock

        self.failure_threshold = config.circuit_breaker_threshold
        self.cooldown = timedelta(seconds=config.circuit_breaker_cooldown_seconds)
        self.quota_cooldown = timedelta(seconds=config.quota_cooldown_seconds)
        self.max_requests_per_minute = config.max_requests_per_minute
        self.max_daily_requests = config.max_daily_requests
        self.warning_ratio = config.daily_quota_warning_ratio
        self.hard_ratio = config.daily_quota_hard_ratio

        self.breaker = CircuitBreakerState()
        self.metrics = RequestMetrics(last_minute_reset=self.clock())
        self.quota = self._load_quota()
        self._warned_date: Optional[str] = None

    # Quota persistence

    def _today(self) -> str:
        return self.clock().astimezone(timezone.utc).date().isoformat()

    def _load_quota(self) -> QuotaTracker:
        today = self._today()
        stored = read_json_entry(self.store, QUOTA_STORAGE_KEY)
        if stored is None:
            return QuotaTracker(date=today)
        try:
            tracker = QuotaTracker(date=str(stored["date"]), request_count=int(stored["request_count"]))
        except (KeyError, TypeError, ValueError):
            logger.warning("Persisted quota tracker malformed, starting fresh", extra={"stored": stored})
            self.store.delete(QUOTA_STORAGE_KEY)
            return QuotaTracker(date=today)
        if tracker.date != today:
            return QuotaTracker(date=today)
        logger.info("Restored daily quota", extra=tracker.to_dict())
        return tracker

    def _persist_quota(self):
        try:
            self.store.set(QUOTA_STORAGE_KEY, self.quota.to_dict())
        except Exception as e:
            logger.warning("Failed to persist daily quota", extra={"error": str(e)})

    def _roll_quota_day(self):
        """Reset the counter when the calendar date changes."""
        today = self._today()
        if self.quota.date == today:
            return
        logger.info("Daily quota reset", extra={
            "previous_date": self.quota.date,
            "previous_count": self.quota.request_count,
            "new_date": today
        })
        self.quota = QuotaTracker(date=today)
        self._persist_quota()
        if self.breaker.state != BreakerState.CLOSED and self.breaker.open_reason == OpenReason.QUOTA:
            logger.info("Releasing quota circuit breaker for new day")
            self._close_breaker()

    @property
    def quota_used_ratio(self) -> float:
        return self.quota.request_count / self.max_daily_requests

    @property
    def quota_hard_limit(self) -> int:
        return int(self.max_daily_requests * self.hard_ratio)

    def _check_daily_quota(self) -> bool:
        self._roll_quota_day()
        ratio = self.quota_used_ratio

        if ratio >= self.hard_ratio:
            if self.breaker.state != BreakerState.OPEN or self.breaker.open_reason != OpenReason.QUOTA:
                logger.error("Daily quota hard stop triggered", extra={
                    "request_count": self.quota.request_count,
                    "limit": self.max_daily_requests,
                    "percent_used": round(ratio * 100, 1)
                })
                self._open_breaker(OpenReason.QUOTA, self.quota_cooldown)
            return False

        if ratio >= self.warning_ratio and self._warned_date != self.quota.date:
            self._warned_date = self.quota.date
            logger.warning("Daily quota warning", extra={
                "request_count": self.quota.request_count,
                "limit": self.max_daily_requests,
                "percent_used": round(ratio * 100, 1),
                "remaining": self.max_daily_requests - self.quota.request_count
            })
        return True

    # Circuit breaker

    def _open_breaker(self, reason: OpenReason, cooldown: timedelta):
        now = self.clock()
        self.breaker.state = BreakerState.OPEN
        self.breaker.open_reason = reason
        self.breaker.next_retry_time = now + cooldown
        self.breaker.probe_in_flight = False

    def _close_breaker(self):
        self.breaker = CircuitBreakerState()

    def _check_breaker(self) -> bool:
        if self.breaker.state == BreakerState.CLOSED:
            return True
        if self.breaker.state == BreakerState.HALF_OPEN:
            # Only one probe at a time
            return not self.breaker.probe_in_flight
        now = self.clock()
        if self.breaker.next_retry_time is not None and now >= self.breaker.next_retry_time:
            self.breaker.state = BreakerState.HALF_OPEN
            self.breaker.probe_in_flight = False
            logger.info("Circuit breaker half-open, allowing probe request")
            return True
        return False

    # Per-minute limiter

    def _check_minute_window(self) -> bool:
        now = self.clock()
        if self.metrics.last_minute_reset is None or now - self.metrics.last_minute_reset >= timedelta(seconds=60):
            self.metrics.requests_this_minute = 0
            self.metrics.last_minute_reset = now
        if self.metrics.requests_this_minute >= self.max_requests_per_minute:
            logger.warning("Per-minute rate limit reached", extra={
                "requests_this_minute": self.metrics.requests_this_minute,
                "limit": self.max_requests_per_minute
            })
            return False
        return True

    # Public contract

    def try_acquire(self) -> bool:
        """
        Ask for permission to make one upstream request.

        Returns True and counts the request against both budgets when all
        gates pass; returns False without side effects on the budgets otherwise.
        """
        if not self._check_daily_quota():
            return False
        if not self._check_breaker():
            logger.debug("Request denied by circuit breaker", extra={
                "state": self.breaker.state.value,
                "next_retry_time": self.breaker.next_retry_time.isoformat() if self.breaker.next_retry_time else None
            })
            return False
        if not self._check_minute_window():
            return False

        now = self.clock()
        if self.breaker.state == BreakerState.HALF_OPEN:
            self.breaker.probe_in_flight = True
        self.metrics.total_requests += 1
        self.metrics.requests_this_minute += 1
        self.metrics.last_request_time = now
        self.quota.request_count += 1
        self._persist_quota()
        return True

    def record_success(self):
        """Record a successful upstream response."""
        self.metrics.successful_requests += 1
        if self.breaker.state == BreakerState.HALF_OPEN:
            logger.info("Probe request succeeded, circuit breaker closed")
        self._close_breaker()

    def record_failure(self):
        """Record a transient upstream failure; may open the breaker."""
        now = self.clock()
        self.metrics.failed_requests += 1
        self.breaker.failure_count += 1
        self.breaker.last_failure_time = now

        if self.breaker.state == BreakerState.HALF_OPEN:
            self._open_breaker(OpenReason.FAILURES, self.cooldown)
            logger.warning("Probe request failed, circuit breaker re-opened", extra={
                "next_retry_time": self.breaker.next_retry_time.isoformat()
            })
        elif self.breaker.state == BreakerState.CLOSED and self.breaker.failure_count >= self.failure_threshold:
            self._open_breaker(OpenReason.FAILURES, self.cooldown)
            logger.warning("Circuit breaker opened due to failures", extra={
                "failure_count": self.breaker.failure_count,
                "next_retry_time": self.breaker.next_retry_time.isoformat()
            })

    def record_quota_exhausted(self):
        """Upstream reported quota exhaustion (HTTP 429): hard stop for the extended cooldown."""
        self.metrics.failed_requests += 1
        self.breaker.last_failure_time = self.clock()
        self._open_breaker(OpenReason.QUOTA, self.quota_cooldown)
        logger.error("Upstream quota exceeded, circuit breaker forced open", extra={
            "daily_requests": self.quota.request_count,
            "next_retry_time": self.breaker.next_retry_time.isoformat()
        })

    def reset(self):
        """Operator override: close the breaker. Quota counts are left alone."""
        self._close_breaker()
        logger.info("Circuit breaker reset")

    @property
    def is_open(self) -> bool:
        return self.breaker.state == BreakerState.OPEN

    def status(self) -> Dict[str, Any]:
        """Snapshot for diagnostics."""
        self._roll_quota_day()
        next_retry = self.breaker.next_retry_time
        last_request = self.metrics.last_request_time
        return {
            "circuit_breaker": {
                "state": self.breaker.state.value,
                "is_open": self.breaker.state == BreakerState.OPEN,
                "failure_count": self.breaker.failure_count,
                "open_reason": self.breaker.open_reason.value if self.breaker.open_reason else None,
                "next_retry_time": next_retry.isoformat() if next_retry else None,
            },
            "request_metrics": {
                "total_requests": self.metrics.total_requests,
                "successful_requests": self.metrics.successful_requests,
                "failed_requests": self.metrics.failed_requests,
                "requests_this_minute": self.metrics.requests_this_minute,
                "last_request_time": last_request.isoformat() if last_request else None,
            },
            "daily_quota": {
                "date": self.quota.date,
                "used": self.quota.request_count,
                "limit": self.max_daily_requests,
                "remaining": self.max_daily_requests - self.quota.request_count,
                "percent_used": f"{self.quota_used_ratio * 100:.1f}%",
                "warning_threshold": int(self.max_daily_requests * self.warning_ratio),
                "circuit_breaker_threshold": self.quota_hard_limit,
            },
        }
