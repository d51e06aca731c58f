"""
Player identity resolution.

Bridges upstream provider player ids to the platform-specific ids found on
fantasy rosters. Provider-supplied cross-reference ids are used first, then
an exact match on the normalized (name, team, position) triple, then a fuzzy
name match restricted to the same team and position.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from rapidfuzz.distance import Levenshtein

from live_events.models import FantasyPlayer, Platform, ProviderPlayer

logger = logging.getLogger(__name__)

# Similarity needed to enter the candidate pool, and to be accepted
FUZZY_CANDIDATE_THRESHOLD = 0.6
FUZZY_ACCEPT_THRESHOLD = 0.7

NAME_SUFFIXES = {"jr", "sr", "ii", "iii", "iv", "v"}

TEAM_ALIASES = {
    "LV": "LV", "LVR": "LV", "OAK": "LV",
    "WSH": "WAS",
    "JAC": "JAX",
    "LA": "LAR", "STL": "LAR",
    "SD": "LAC",
}

POSITION_ALIASES = {
    "DEF": "D/ST",
    "DST": "D/ST",
    "D/ST": "D/ST",
    "D": "D/ST",
    "PK": "K",
}


def normalize_name(name: str) -> str:
    """Lowercase, drop generational suffixes and punctuation, collapse whitespace."""
    if not name:
        return ""
    cleaned = re.sub(r"[.'’`]", "", name.lower())
    cleaned = re.sub(r"[^a-z\s]", " ", cleaned)
    tokens = [token for token in cleaned.split() if token not in NAME_SUFFIXES]
    return " ".join(tokens)


def normalize_team(team: str) -> str:
    normalized = (team or "").upper().strip()
    return TEAM_ALIASES.get(normalized, normalized)


def normalize_position(position: str) -> str:
    normalized = (position or "").upper().strip()
    return POSITION_ALIASES.get(normalized, normalized)


def name_similarity(a: str, b: str) -> float:
    """
    1 - distance / max length, on normalized names with whitespace removed.

    "Rob Griffin" vs "Robert Griffin" scores 0.77; "Robert Green" vs
    "Robert Griffin" scores 0.69.
    """
    left = normalize_name(a).replace(" ", "")
    right = normalize_name(b).replace(" ", "")
    return Levenshtein.normalized_similarity(left, right)


def mapping_key(name: str, team: str, position: str) -> str:
    return f"{normalize_name(name)}-{normalize_team(team)}-{normalize_position(position)}"


@dataclass
class PlayerMapping:
    """One real-world player and the ids each platform knows them by."""
    key: str
    name: str
    team: str
    position: str
    platform_ids: Dict[Platform, str] = field(default_factory=dict)
    alternate_names: List[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    @property
    def team_position(self) -> Tuple[str, str]:
        return normalize_team(self.team), normalize_position(self.position)


OwnerKey = Tuple[Platform, str]


class PlayerIdentityResolver:
    """Index of roster players keyed by platform id and by normalized identity."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._mappings: Dict[str, PlayerMapping] = {}
        self._by_name: Dict[str, Set[str]] = defaultdict(set)
        self._by_team_position: Dict[Tuple[str, str], Set[str]] = defaultdict(set)
        self._by_platform_id: Dict[OwnerKey, str] = {}
        self._owners: Dict[OwnerKey, List[FantasyPlayer]] = {}
        self._provider_players: Dict[str, ProviderPlayer] = {}
        self.last_built: Optional[datetime] = None

    # Provider directory

    def load_provider_players(self, players: Iterable[ProviderPlayer]) -> int:
        """Replace the upstream player directory."""
        self._provider_players = {player.provider_id: player for player in players}
        logger.info("Loaded provider player directory", extra={"count": len(self._provider_players)})
        return len(self._provider_players)

    def provider_player(self, provider_player_id: str) -> Optional[ProviderPlayer]:
        return self._provider_players.get(str(provider_player_id))

    @property
    def provider_player_count(self) -> int:
        return len(self._provider_players)

    # Roster index

    def build_index(self, roster_players: Iterable[FantasyPlayer]):
        """Rebuild every index from the current roster snapshot."""
        previous = self._mappings
        self._mappings = {}
        self._by_name = defaultdict(set)
        self._by_team_position = defaultdict(set)
        self._by_platform_id = {}
        self._owners = {}

        skipped = 0
        for player in roster_players:
            if player.platform is None or not player.platform_player_id:
                skipped += 1
                continue
            owner_key = (player.platform, player.platform_player_id)
            self._owners.setdefault(owner_key, []).append(player)
            self._add_mapping(player, previous)

        self.last_built = self.clock()
        logger.info("Player identity index rebuilt", extra={
            "mappings": len(self._mappings),
            "owned_ids": len(self._owners),
            "skipped": skipped
        })

    def _add_mapping(self, player: FantasyPlayer, previous: Dict[str, PlayerMapping]):
        key = mapping_key(player.name, player.team, player.position)
        mapping = self._mappings.get(key)
        if mapping is None:
            mapping = PlayerMapping(
                key=key,
                name=player.name,
                team=player.team,
                position=player.position,
                alternate_names=[player.name],
            )
            # Alternate names learned by fuzzy matches survive a rebuild
            earlier = previous.get(key)
            if earlier is not None:
                for alias in earlier.alternate_names:
                    if alias not in mapping.alternate_names:
                        mapping.alternate_names.append(alias)
            self._mappings[key] = mapping
            self._index_mapping(mapping)

        existing_id = mapping.platform_ids.get(player.platform)
        if existing_id is not None and existing_id != player.platform_player_id:
            logger.warning("Conflicting platform id for player, keeping existing", extra={
                "player": player.name,
                "platform": player.platform.value,
                "existing_id": existing_id,
                "conflicting_id": player.platform_player_id
            })
            return
        mapping.platform_ids[player.platform] = player.platform_player_id
        mapping.last_updated = self.clock()
        self._by_platform_id[(player.platform, player.platform_player_id)] = key

    def _index_mapping(self, mapping: PlayerMapping):
        for name in mapping.alternate_names:
            self._by_name[normalize_name(name)].add(mapping.key)
        self._by_team_position[mapping.team_position].add(mapping.key)

    def _unindex_mapping(self, mapping: PlayerMapping):
        for name in mapping.alternate_names:
            self._by_name[normalize_name(name)].discard(mapping.key)
        self._by_team_position[mapping.team_position].discard(mapping.key)

    # Lookups

    def find_by_name_team_position(self, name: str, team: str, position: str) -> Optional[PlayerMapping]:
        """
        Find the mapping for a real-world player.

        Args:
            name: Player name as the caller spells it
            team: NFL team abbreviation (aliases accepted)
            position: Position abbreviation (D/ST synonyms accepted)

        Returns:
            The exact or fuzzy-matched mapping, or None
        """
        normalized = normalize_name(name)
        team_position = (normalize_team(team), normalize_position(position))

        for key in sorted(self._by_name.get(normalized, ())):
            mapping = self._mappings[key]
            if mapping.team_position == team_position:
                return mapping

        best: Optional[PlayerMapping] = None
        best_score = 0.0
        for key in sorted(self._by_team_position.get(team_position, ())):
            mapping = self._mappings[key]
            score = max(name_similarity(name, alias) for alias in mapping.alternate_names)
            if score < FUZZY_CANDIDATE_THRESHOLD:
                continue
            if score > best_score:
                best, best_score = mapping, score

        if best is None or best_score < FUZZY_ACCEPT_THRESHOLD:
            return None

        if name not in best.alternate_names:
            best.alternate_names.append(name)
            self._by_name[normalized].add(best.key)
        logger.debug("Fuzzy player match accepted", extra={
            "query": name,
            "matched": best.name,
            "similarity": round(best_score, 3)
        })
        return best

    def owners(self, platform: Platform, platform_player_id: str) -> List[FantasyPlayer]:
        return list(self._owners.get((platform, str(platform_player_id)), []))

    def resolve(self, provider_player_id: str) -> List[FantasyPlayer]:
        """All roster entries, across leagues and platforms, for a provider player."""
        provider = self.provider_player(provider_player_id)
        if provider is None:
            logger.debug("Provider player not in directory", extra={"provider_player_id": provider_player_id})
            return []

        found: List[FantasyPlayer] = []
        covered: Set[Platform] = set()
        for platform_value, platform_id in provider.platform_ids.items():
            try:
                platform = Platform.parse(platform_value)
            except ValueError:
                continue
            owners = self.owners(platform, platform_id)
            if owners:
                found.extend(owners)
                covered.add(platform)

        mapping = self.find_by_name_team_position(provider.name, provider.team, provider.position)
        if mapping is not None:
            for platform, platform_id in mapping.platform_ids.items():
                if platform in covered:
                    continue
                found.extend(self.owners(platform, platform_id))

        if not found:
            logger.debug("No roster owners for provider player", extra={
                "provider_player_id": provider_player_id,
                "name": provider.name
            })
        return found

    # Maintenance

    def update_player_team(self, platform: Platform, platform_player_id: str, new_team: str) -> bool:
        """Move a mapping to a new team after a trade. Returns False when the id is unknown."""
        key = self._by_platform_id.get((platform, str(platform_player_id)))
        if key is None:
            return False
        mapping = self._mappings.pop(key)
        self._unindex_mapping(mapping)

        old_team = mapping.team
        mapping.team = new_team
        mapping.key = mapping_key(mapping.name, new_team, mapping.position)
        mapping.last_updated = self.clock()

        self._mappings[mapping.key] = mapping
        self._index_mapping(mapping)
        for mapped_platform, mapped_id in mapping.platform_ids.items():
            self._by_platform_id[(mapped_platform, mapped_id)] = mapping.key

        logger.info("Player team updated", extra={
            "player": mapping.name,
            "old_team": old_team,
            "new_team": new_team
        })
        return True

    def stats(self) -> Dict:
        coverage: Dict[str, int] = defaultdict(int)
        last_updated = None
        for mapping in self._mappings.values():
            for platform in mapping.platform_ids:
                coverage[platform.value] += 1
            if mapping.last_updated and (last_updated is None or mapping.last_updated > last_updated):
                last_updated = mapping.last_updated
        return {
            "total_players": len(self._mappings),
            "platform_coverage": dict(coverage),
            "owned_ids": len(self._owners),
            "provider_players": len(self._provider_players),
            "last_updated": last_updated.isoformat() if last_updated else None,
        }
