#!/usr/bin/env python3
"""
Check live events service health through its diagnostics API.
Shows breaker state, daily quota usage and when the last poll ran.
Usage:
  python backend/scripts/check_service_health.py
  python scripts/check_service_health.py --url http://localhost:8000 --max-age-minutes 10
Exit code: 0 if polling is healthy, 1 if stopped/open/stale, 2 if the API is unreachable.
"""

import os
import sys
from pathlib import Path
from datetime import datetime, timezone

# Load .env from backend or repo root
backend_dir = Path(__file__).resolve().parent.parent
for env_path in [backend_dir / ".env", backend_dir.parent / ".env"]:
    if env_path.exists():
        from dotenv import load_dotenv
        load_dotenv(env_path)
        break


def main():
    import argparse
    import httpx

    default_url = "http://localhost:%s" % os.getenv("API_PORT", "8000")
    parser = argparse.ArgumentParser(description="Check live events service health")
    parser.add_argument("--url", default=default_url, help="Service base URL (default %s)" % default_url)
    parser.add_argument("--max-age-minutes", type=int, default=10,
                        help="Consider polling healthy if the last poll ran within this many minutes (default 10)")
    args = parser.parse_args()

    try:
        response = httpx.get(args.url.rstrip("/") + "/api/v1/status", timeout=10.0)
        response.raise_for_status()
        status = response.json()
    except httpx.HTTPError as e:
        print("Error reaching diagnostics API:", e, file=sys.stderr)
        sys.exit(2)

    polling = status.get("polling", {})
    governor = status.get("rate_governor", {})
    breaker = governor.get("circuit_breaker", {})
    quota = governor.get("daily_quota", {})

    print("Circuit breaker: %s (failures=%s, reason=%s)" % (
        breaker.get("state"), breaker.get("failure_count"), breaker.get("open_reason")))
    print("Daily quota: %s/%s used (%s)" % (quota.get("used"), quota.get("limit"), quota.get("percent_used")))
    print("Polling: active=%s interval=%ss polls=%s active_games=%s" % (
        polling.get("is_polling"), polling.get("interval_seconds"),
        polling.get("poll_count"), polling.get("active_games")))
    print("Stored events: %s" % status.get("event_store", {}).get("total_events"))

    unhealthy = []
    if polling.get("emergency_stop"):
        unhealthy.append("emergency stop is active")
    if breaker.get("is_open"):
        unhealthy.append("circuit breaker is open until %s" % breaker.get("next_retry_time"))

    last_poll = polling.get("last_poll_time")
    if last_poll:
        last_dt = datetime.fromisoformat(last_poll.replace("Z", "+00:00"))
        age_min = (datetime.now(timezone.utc) - last_dt).total_seconds() / 60
        print("Last poll: %.1f minutes ago" % age_min)
        if age_min > args.max_age_minutes:
            unhealthy.append("no poll in the last %d minutes" % args.max_age_minutes)
    else:
        unhealthy.append("no poll has run yet")

    if unhealthy:
        print("\nService appears UNHEALTHY: " + "; ".join(unhealthy))
        print("Reset after investigating: curl -X POST %s/api/v1/polling/reset" % args.url.rstrip("/"))
        sys.exit(1)

    print("\nService appears healthy.")
    sys.exit(0)


if __name__ == "__main__":
    main()
