"""
Contracts the search pipeline expects from its collaborators, plus the
in-process implementations used by the command-line runner.
"""
import csv
from typing import Dict, List, Optional, Protocol

from loguru import logger

from merchant_locator.models import (
    CategoryQuery,
    KeywordQuery,
    Location,
    MatchResult,
    ProviderResponse,
    RosterEntry,
    SearchSummary,
)


class PlaceSearchProvider(Protocol):
    async def category_search(self, query: CategoryQuery, page: int = 1) -> ProviderResponse:
        ...

    async def keyword_search(self, query: KeywordQuery) -> ProviderResponse:
        ...


class LocationStore(Protocol):
    async def get_cached_location(self, roster_id: int) -> Optional[Location]:
        ...

    async def save_location(self, roster_id: int, location: Location) -> None:
        ...


class ResultRenderer(Protocol):
    def render(self, results: List[MatchResult], summary: SearchSummary) -> None:
        ...


class InMemoryLocationStore:
    """Location store backed by a dict; survives across sessions of one process."""

    def __init__(self, locations: Optional[Dict[int, Location]] = None):
        self.locations: Dict[int, Location] = dict(locations or {})

    async def get_cached_location(self, roster_id: int) -> Optional[Location]:
        return self.locations.get(roster_id)

    async def save_location(self, roster_id: int, location: Location) -> None:
        self.locations[roster_id] = location


CSV_HEADER = [
    "id", "상호명", "읍면동명", "matchType", "similarity", "distance",
    "lat", "lng", "roadAddress", "oldAddress", "placeName",
]


class CsvResultRenderer:
    """Writes final results to a CSV file, one row per located roster entry."""

    def __init__(self, output_path: str, roster: Optional[List[RosterEntry]] = None):
        self.output_path = output_path
        self.roster = roster or []

    def render(self, results: List[MatchResult], summary: SearchSummary) -> None:
        with open(self.output_path, "w", newline="", encoding="utf-8-sig") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for r in results:
                writer.writerow([
                    r.roster_id,
                    r.roster_name,
                    r.administrative_area,
                    r.match_type.value,
                    f"{r.similarity:.2f}",
                    r.distance_meters,
                    r.location.lat,
                    r.location.lng,
                    r.location.road_address,
                    r.location.old_address,
                    r.candidate_name,
                ])

        located = {r.roster_id for r in results}
        missing = [e for e in self.roster if e.id not in located]
        logger.info(
            f"📄 Wrote {len(results)} results to {self.output_path} "
            f"({summary.match_types}, avg similarity {summary.avg_similarity}, "
            f"avg distance {summary.avg_distance}m)"
        )
        if missing:
            logger.info(f"{len(missing)} roster entries without a location")
