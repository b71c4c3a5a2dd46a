"""
Typed data models for the merchant location pipeline.
All data structures used throughout the codebase should be defined here.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from merchant_locator import config
from merchant_locator.errors import InvalidViewport, NoRosterData
from merchant_locator.locality import LocalityTable


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


@dataclass(frozen=True)
class Viewport:
    """Bounding rectangle of the map area to search, plus its center."""
    south_west: LatLng
    north_east: LatLng
    center: Optional[LatLng] = None

    @property
    def center_point(self) -> LatLng:
        if self.center is not None:
            return self.center
        return LatLng(
            lat=(self.south_west.lat + self.north_east.lat) / 2,
            lng=(self.south_west.lng + self.north_east.lng) / 2,
        )

    def contains(self, lat: float, lng: float) -> bool:
        return (
            self.south_west.lat <= lat <= self.north_east.lat
            and self.south_west.lng <= lng <= self.north_east.lng
        )


@dataclass(frozen=True)
class RosterEntry:
    """Merchant record loaded from the uploaded roster."""
    id: int
    name: str
    administrative_area: str
    road_address: Optional[str] = None
    old_address: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    """Place returned by the search provider for a single query."""
    name: str
    lat: float
    lng: float
    road_address: str = ""
    old_address: str = ""
    category_path: str = ""
    provider_id: Optional[str] = None


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    road_address: str = ""
    old_address: str = ""

    @property
    def address(self) -> str:
        return self.road_address or self.old_address or ""

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> "Location":
        return cls(
            lat=candidate.lat,
            lng=candidate.lng,
            road_address=candidate.road_address or "",
            old_address=candidate.old_address or "",
        )


class MatchType(str, Enum):
    EXACT = "exact"
    SIMILAR = "similar"
    KEYWORD = "keyword"
    NEARBY = "nearby"

    @property
    def priority(self) -> int:
        return _MATCH_TYPE_PRIORITY[self]


_MATCH_TYPE_PRIORITY = {
    MatchType.EXACT: 4,
    MatchType.SIMILAR: 3,
    MatchType.KEYWORD: 2,
    MatchType.NEARBY: 1,
}


@dataclass
class MatchResult:
    """Assignment of a roster entry to a location."""
    roster_id: int
    location: Location
    match_type: MatchType
    similarity: float
    distance_meters: Optional[int] = None
    roster_name: str = ""
    administrative_area: str = ""
    provider_id: Optional[str] = None
    candidate_name: str = ""
    source: str = ""  # category name or keyword that produced the match
    sequence: int = 0  # acceptance order within the session

    @property
    def confidence(self) -> tuple:
        return (self.match_type.priority, self.similarity)


@dataclass
class Cluster:
    """Matches judged to sit at the same physical location."""
    key: str
    members: List[MatchResult] = field(default_factory=list)

    @property
    def anchor(self) -> MatchResult:
        return self.members[0]


class ProviderStatus(str, Enum):
    OK = "OK"
    ZERO_RESULT = "ZERO_RESULT"
    ERROR = "ERROR"


@dataclass
class ProviderResponse:
    status: ProviderStatus
    items: List[Candidate] = field(default_factory=list)
    has_next_page: bool = False

    @classmethod
    def zero_result(cls) -> "ProviderResponse":
        return cls(status=ProviderStatus.ZERO_RESULT)


@dataclass(frozen=True)
class CategoryQuery:
    code: str
    name: str
    center: LatLng
    radius_meters: int
    page_size: int = config.PAGE_SIZE


@dataclass(frozen=True)
class KeywordQuery:
    keyword: str
    center: LatLng
    radius_meters: int
    page_size: int = config.KEYWORD_PAGE_SIZE


@dataclass
class KeywordTask:
    """Keyword variants to try, in order, for one unmatched roster entry."""
    entry: RosterEntry
    queries: List[KeywordQuery]


@dataclass
class QueryPlan:
    category_queries: List[CategoryQuery]
    radius_meters: int


@dataclass
class RetryPolicy:
    max_retries: int = config.MAX_RETRIES
    delay: float = config.RETRY_DELAY
    backoff: str = "exponential"  # exponential | linear | fixed


@dataclass
class SearchSettings:
    """Tunable thresholds, delays and caps for one search session."""
    categories: List[tuple] = field(default_factory=lambda: list(config.CATEGORIES))
    max_radius: int = config.MAX_RADIUS
    page_size: int = config.PAGE_SIZE
    keyword_page_size: int = config.KEYWORD_PAGE_SIZE
    max_pages: int = config.MAX_PAGES
    min_results_per_category: int = config.MIN_RESULTS_PER_CATEGORY
    keyword_sample_count: int = config.KEYWORD_SEARCH_COUNT
    keyword_batch_size: int = config.KEYWORD_BATCH_SIZE
    keyword_shuffle_seed: Optional[int] = None
    keyword_search_enabled: bool = True

    api_delay: float = config.API_DELAY
    keyword_batch_delay: float = config.KEYWORD_BATCH_DELAY
    keyword_variant_delay: float = config.KEYWORD_VARIANT_DELAY
    request_timeout: float = config.REQUEST_TIMEOUT
    retry_policy: Optional[RetryPolicy] = field(default_factory=RetryPolicy)

    similarity_threshold: float = config.SIMILARITY_THRESHOLD
    keyword_similarity_threshold: float = config.KEYWORD_SIMILARITY_THRESHOLD
    containment_similarity: float = config.CONTAINMENT_SIMILARITY
    nearby_similarity_threshold: float = config.NEARBY_SIMILARITY_THRESHOLD
    min_similarity: float = config.MIN_SIMILARITY

    grouping_threshold: float = config.GROUPING_THRESHOLD
    suspicious_distance: float = config.SUSPICIOUS_DISTANCE
    nearby_threshold: float = config.NEARBY_THRESHOLD
    max_distance: float = config.MAX_DISTANCE
    building_number_tolerance: int = config.BUILDING_NUMBER_TOLERANCE
    find_nearby_matches: bool = True


@dataclass
class CancellationToken:
    """Mutable flag shared between a session and whoever may cancel it."""
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class SearchSummary:
    total_matched: int = 0
    final_results: int = 0
    duplicates_removed: int = 0
    match_types: Dict[str, int] = field(
        default_factory=lambda: {t.value: 0 for t in MatchType}
    )
    avg_similarity: float = 0.0
    avg_distance: int = 0
    queries_completed: int = 0
    queries_failed: int = 0
    cancelled: bool = False


@dataclass
class SessionOutcome:
    results: List[MatchResult]
    summary: SearchSummary
    from_cache: bool = False


def _is_coordinate(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_viewport(viewport: Optional[Viewport]) -> Viewport:
    """
    Check that a viewport describes a usable, non-degenerate rectangle.

    Raises:
        InvalidViewport: If the bounds are missing or malformed.
    """
    if viewport is None or viewport.south_west is None or viewport.north_east is None:
        raise InvalidViewport("Viewport bounds are missing")
    sw, ne = viewport.south_west, viewport.north_east
    points = [sw, ne] + ([viewport.center] if viewport.center is not None else [])
    for point in points:
        if not (_is_coordinate(point.lat) and _is_coordinate(point.lng)):
            raise InvalidViewport(f"Non-numeric viewport coordinate: {point}")
        if not (-90 <= point.lat <= 90 and -180 <= point.lng <= 180):
            raise InvalidViewport(f"Viewport coordinate out of range: {point}")
    if sw.lat >= ne.lat or sw.lng >= ne.lng:
        raise InvalidViewport(f"South-west corner {sw} is not below/left of north-east corner {ne}")
    return viewport


@dataclass
class SearchSession:
    """
    State of one end-to-end search invocation.

    Created per call and passed by reference through the pipeline; holds the
    cancellation token, the consumed roster/candidate sets and the matches
    accepted so far.
    """
    roster: List[RosterEntry]
    viewport: Viewport
    settings: SearchSettings = field(default_factory=SearchSettings)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    user_location: Optional[LatLng] = None
    prior_matches: Dict[int, MatchResult] = field(default_factory=dict)
    locality_table: Optional[LocalityTable] = None

    consumed_roster_ids: Set[int] = field(default_factory=set)
    consumed_provider_ids: Set[str] = field(default_factory=set)
    matches: List[MatchResult] = field(default_factory=list)
    completed_queries: int = 0
    failed_queries: int = 0
    total_queries: int = 0

    @classmethod
    def create(
        cls,
        roster: List[RosterEntry],
        viewport: Viewport,
        settings: Optional[SearchSettings] = None,
        cancel_token: Optional[CancellationToken] = None,
        user_location: Optional[LatLng] = None,
        prior_matches: Optional[Dict[int, MatchResult]] = None,
        locality_table: Optional[LocalityTable] = None,
    ) -> "SearchSession":
        """
        Validate preconditions and build a session.

        Raises:
            InvalidViewport: If the viewport is missing or malformed.
            NoRosterData: If the roster is empty.
        """
        validate_viewport(viewport)
        if not roster:
            raise NoRosterData("No roster entries to search for")
        return cls(
            roster=list(roster),
            viewport=viewport,
            settings=settings or SearchSettings(),
            cancel_token=cancel_token or CancellationToken(),
            user_location=user_location,
            prior_matches=dict(prior_matches or {}),
            locality_table=locality_table,
        )

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def unmatched_entries(self) -> List[RosterEntry]:
        return [e for e in self.roster if e.id not in self.consumed_roster_ids]

    def record_match(self, result: MatchResult) -> MatchResult:
        """Mark the roster entry and provider candidate as consumed and keep the match."""
        result.sequence = len(self.matches)
        self.consumed_roster_ids.add(result.roster_id)
        if result.provider_id is not None:
            self.consumed_provider_ids.add(result.provider_id)
        self.matches.append(result)
        return result
