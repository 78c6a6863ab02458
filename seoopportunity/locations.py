# ABOUTME: Resolves free-text US state/city input to DataForSEO location codes
# ABOUTME: Fuzzy matching (exact > prefix/suffix > substring > word overlap > Levenshtein)

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .dataforseo_client import DataForSEOClient
from .errors import GatewayError, LocationDataError, ValidationError
from .models import LocationEntry, LocationMatch, LocationTable

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6
SUGGESTION_MIN_SCORE = 0.4
MAX_SUGGESTIONS = 3
WORD_SIMILARITY = 0.8
CACHE_TTL_SECONDS = 24 * 60 * 60


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance (insert/delete/substitute, all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Case-insensitive similarity in [0, 1]: (maxLen - distance) / maxLen."""
    max_length = max(len(a), len(b))
    if max_length == 0:
        return 1.0
    return (max_length - levenshtein_distance(a.lower(), b.lower())) / max_length


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


@dataclass
class MatchResult:
    """Best fuzzy match for a search term."""
    match: Optional[LocationEntry]
    score: float
    method: str


def _word_overlap(search: str, name: str) -> float:
    search_words = search.split()
    name_words = name.split()
    matches = [
        word for word in search_words
        if any(
            other in word or word in other or similarity(word, other) > WORD_SIMILARITY
            for other in name_words
        )
    ]
    if not matches:
        return 0.0
    return len(matches) / max(len(search_words), len(name_words))


def find_best_match(
    items: list[LocationEntry],
    search_term: str,
    threshold: float = DEFAULT_THRESHOLD,
) -> MatchResult:
    """
    Find the best entry for search_term.

    An exact (case/whitespace-insensitive) match returns immediately with score 1.0.
    Otherwise the highest score >= threshold wins; on equal scores the entry
    that comes first in items is kept.
    """
    search = _normalize(search_term)
    if not items or not search:
        return MatchResult(None, 0.0, "none")

    best: Optional[LocationEntry] = None
    best_score = 0.0
    best_method = "none"

    for item in items:
        name = _normalize(item.name)
        if name == search:
            return MatchResult(item, 1.0, "exact")

        if name.startswith(search) or name.endswith(search):
            score, method = 0.9, "starts_ends_with"
        elif search in name or name in search:
            score, method = 0.8, "contains"
        else:
            score = _word_overlap(search, name)
            method = "word_match" if score else ""

        fuzzy = similarity(search, name)
        if fuzzy > score and fuzzy > threshold:
            score, method = fuzzy, "fuzzy"

        if score > best_score and score >= threshold:
            best, best_score, best_method = item, score, method

    return MatchResult(best, best_score, best_method)


def suggest(
    items: list[LocationEntry],
    search_term: str,
    limit: int = MAX_SUGGESTIONS,
    min_score: float = SUGGESTION_MIN_SCORE,
) -> list[str]:
    """Names scoring above min_score, best first (stable on ties)."""
    search = _normalize(search_term)
    scored = [(item.name, similarity(search, _normalize(item.name))) for item in items]
    scored = [entry for entry in scored if entry[1] > min_score]
    scored.sort(key=lambda entry: entry[1], reverse=True)
    return [name for name, _ in scored[:limit]]


def assign_cities_to_states(
    states: list[LocationEntry],
    cities: list[LocationEntry],
) -> dict[str, list[LocationEntry]]:
    """
    Group city entries under the state named in the city string.

    States are tried longest name first so "Richmond, West Virginia" never lands
    under "Virginia". Cities matching no state are dropped.
    """
    by_length = sorted(states, key=lambda state: len(state.name), reverse=True)
    patterns = {
        state.name: re.compile(
            r"\b" + r"\s+".join(re.escape(word) for word in state.name.lower().split()) + r"\b",
            re.IGNORECASE,
        )
        for state in by_length
    }
    assigned: dict[str, list[LocationEntry]] = {state.name: [] for state in states}

    for city in cities:
        city_lower = city.name.lower()
        owner = next(
            (
                state.name for state in by_length
                if f", {state.name.lower()}," in city_lower
                or city_lower.endswith(f", {state.name.lower()}")
            ),
            None,
        )
        if owner is None:
            owner = next(
                (state.name for state in by_length if patterns[state.name].search(city_lower)),
                None,
            )
        if owner is None:
            logger.debug(f"No state found for city '{city.name}'")
            continue
        assigned[owner].append(city)

    return assigned


def build_location_table(rows: list[dict]) -> LocationTable:
    """
    Build the state/city table from raw DataForSEO location rows.

    Raises:
        LocationDataError: no states in the provider data
    """
    states = [
        LocationEntry(name=row["location_name"], code=row["location_code"])
        for row in rows if row.get("location_type") == "State"
    ]
    if not states:
        raise LocationDataError("DataForSEO returned no state locations")

    cities = [
        LocationEntry(name=row["location_name"], code=row["location_code"])
        for row in rows if row.get("location_type") == "City"
    ]
    assigned = assign_cities_to_states(states, cities)

    return LocationTable(
        states=sorted(states, key=lambda entry: entry.name),
        cities={
            name: sorted(entries, key=lambda entry: entry.name)
            for name, entries in assigned.items()
        },
    )


class LocationCache:
    """
    Holds one LocationTable for ttl_seconds.

    Rebuilds replace the table wholesale; concurrent rebuilds are harmless
    (last writer wins).
    """

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._table: Optional[LocationTable] = None
        self._stored_at = 0.0

    def get(self) -> Optional[LocationTable]:
        """Cached table, or None when empty or expired."""
        if self._table is None:
            return None
        if self._clock() - self._stored_at >= self.ttl_seconds:
            return None
        return self._table

    def store(self, table: LocationTable) -> None:
        self._table = table
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._table = None
        self._stored_at = 0.0


class LocationResolver:
    """
    Map free-text state/city names to DataForSEO location codes.

    Usage:
        resolver = LocationResolver(DataForSEOClient())
        match = await resolver.resolve("texas", "austin")
        if match.found:
            print(match.code, match.matched_name)
        else:
            print("Did you mean:", match.suggestions)
    """

    def __init__(
        self,
        client: DataForSEOClient,
        cache: Optional[LocationCache] = None,
        threshold: float = DEFAULT_THRESHOLD,
        country: str = "us",
    ):
        self.client = client
        self.cache = cache or LocationCache()
        self.threshold = threshold
        self.country = country

    async def load_table(self) -> LocationTable:
        """
        Cached table, reloading from DataForSEO when missing or stale.

        Raises:
            LocationDataError: provider failure or empty location list
        """
        table = self.cache.get()
        if table is not None:
            return table

        logger.info(f"Loading {self.country.upper()} locations from DataForSEO")
        try:
            rows = await self.client.get_locations(self.country)
            table = build_location_table(rows)
        except (GatewayError, LocationDataError) as e:
            self.cache.invalidate()
            raise LocationDataError(f"Failed to load location data from DataForSEO: {e}") from e

        city_count = sum(len(entries) for entries in table.cities.values())
        logger.info(f"Cached {len(table.states)} states and {city_count} cities")
        self.cache.store(table)
        return table

    async def states(self) -> list[LocationEntry]:
        return (await self.load_table()).states

    async def cities(self, state: str) -> list[LocationEntry]:
        return (await self.load_table()).cities.get(state, [])

    async def resolve(self, state_query: str, city_query: Optional[str] = None) -> LocationMatch:
        """
        Resolve a state (and optionally a city inside it).

        Returns a LocationMatch; when the state cannot be matched, code is None
        and suggestions lists up to three similar state names.
        """
        if not state_query or not state_query.strip():
            raise ValidationError("State is required", field="state")

        table = await self.load_table()
        state_match = find_best_match(table.states, state_query, self.threshold)

        if state_match.match is None:
            logger.info(f"No state match for '{state_query}'")
            return LocationMatch(suggestions=suggest(table.states, state_query))

        state = state_match.match
        logger.info(
            f"State match: '{state.name}' (score: {state_match.score:.2f}, method: {state_match.method})"
        )
        state_result = LocationMatch(
            code=state.code,
            matched_name=state.name,
            type="state",
            score=state_match.score,
            method=state_match.method,
            state_name=state.name,
            state_code=state.code,
        )

        if not city_query or not city_query.strip():
            return state_result

        state_cities = table.cities.get(state.name, [])
        city_match = find_best_match(state_cities, city_query, self.threshold)

        if city_match.match is None:
            logger.warning(f"No city match for '{city_query}' in {state.name}, falling back to state")
            return state_result.model_copy(update={
                "warning": f'City "{city_query}" not found in {state.name}',
                "suggestions": suggest(state_cities, city_query),
            })

        city = city_match.match
        logger.info(
            f"City match: '{city.name}' (score: {city_match.score:.2f}, method: {city_match.method})"
        )
        return state_result.model_copy(update={
            "code": city.code,
            "matched_name": city.name,
            "type": "city",
            "score": city_match.score,
            "method": city_match.method,
            "city_name": city.name,
            "city_code": city.code,
        })
