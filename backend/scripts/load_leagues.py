#!/usr/bin/env python3
"""
Load the configured leagues and report what the roster cache would hold.

This script:
1. Reads LEAGUES from the environment (backend/.env)
2. Loads each league's roster and scoring settings from its platform
3. Rebuilds the player identity index from the loaded rosters
4. Prints per-league roster sizes and key scoring coefficients

No upstream (Tank01) requests are made.
"""

import asyncio
import sys
import time
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from fantasy_platforms.sleeper import SleeperRosterProvider
from fantasy_platforms.yahoo import YahooRosterProvider
from live_events.identity import PlayerIdentityResolver
from live_events.models import Platform
from live_events.orchestrator import parse_leagues
from live_events.roster_cache import RosterCache
from utils.logger import setup_logging

KEY_COEFFICIENTS = ("pass_td", "rush_td", "rec_td", "rec", "pass_yd", "rush_yd", "rec_yd", "fgm_50p")


async def main():
    config = Config()
    setup_logging(config)

    leagues = parse_leagues(config.leagues)
    if not leagues:
        print("No leagues configured. Set LEAGUES to a JSON list in backend/.env")
        return 1

    providers = {
        Platform.SLEEPER: SleeperRosterProvider(config),
        Platform.YAHOO: YahooRosterProvider(config),
    }
    cache = RosterCache(config, providers)
    resolver = PlayerIdentityResolver()

    start = time.time()
    try:
        result = await cache.load(leagues, force_refresh=True)
    finally:
        for provider in providers.values():
            await provider.close()
    elapsed = time.time() - start

    resolver.build_index(cache.all_players())

    print(f"\n📊 Loaded {len(result.loaded)} of {len(leagues)} leagues in {elapsed:.1f}s")
    for league in leagues:
        roster = cache.get(league.league_id, league.platform)
        if roster is None:
            print(f"   ❌ {league.platform.value} {league.league_id}: not loaded")
            continue
        settings = cache.settings(league.league_id, league.platform)
        starters = sum(1 for player in roster.players if player.is_starter)
        print(f"   ✅ {league.platform.value} {league.league_id}: {roster.team_name} "
              f"({len(roster.players)} players, {starters} starters)")
        coefficients = {key: settings.coefficient(key) for key in KEY_COEFFICIENTS if settings.coefficient(key) is not None}
        print(f"      scoring: {coefficients}")
        if settings.custom_rules:
            print(f"      custom rules: {settings.custom_rules}")

    stats = resolver.stats()
    print(f"\n🔎 Identity index: {stats['total_players']} players, coverage {stats['platform_coverage']}")
    return 0 if not result.failed else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
