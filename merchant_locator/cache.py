import hashlib
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

from loguru import logger

from merchant_locator.config import CACHE_KEY_PRECISION, SEARCH_CACHE_TTL
from merchant_locator.models import LatLng, RosterEntry, SearchSettings, SessionOutcome, Viewport


@dataclass
class _CacheEntry:
    outcome: SessionOutcome
    stored_at: float


def _point_key(point: Optional[LatLng]) -> str:
    if point is None:
        return "-"
    return f"{point.lat:.{CACHE_KEY_PRECISION}f}_{point.lng:.{CACHE_KEY_PRECISION}f}"


def _settings_key(settings: Optional[SearchSettings]) -> str:
    if settings is None:
        return "-"
    return hashlib.sha1(repr(settings).encode("utf-8")).hexdigest()[:12]


class SearchResultCache:
    """
    In-memory cache of finished search sessions.

    Keyed by the viewport center rounded to CACHE_KEY_PRECISION decimals
    (about 100 m), the set of roster ids searched, the user location at the
    same precision and a digest of the search settings. Entries older than
    `ttl` seconds are evicted when read.
    """

    def __init__(self, ttl: float = SEARCH_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}

    @staticmethod
    def key(
        viewport: Viewport,
        roster: Sequence[RosterEntry],
        user_location: Optional[LatLng] = None,
        settings: Optional[SearchSettings] = None,
    ) -> str:
        ids = ",".join(str(i) for i in sorted({e.id for e in roster}))
        return "_".join(
            [_point_key(viewport.center_point), ids, _point_key(user_location), _settings_key(settings)]
        )

    def get(
        self,
        viewport: Viewport,
        roster: Sequence[RosterEntry],
        user_location: Optional[LatLng] = None,
        settings: Optional[SearchSettings] = None,
    ) -> Optional[SessionOutcome]:
        key = self.key(viewport, roster, user_location, settings)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self.ttl:
            del self._entries[key]
            logger.debug(f"Cache expired: {key[:40]}")
            return None
        return entry.outcome

    def put(
        self,
        viewport: Viewport,
        roster: Sequence[RosterEntry],
        outcome: SessionOutcome,
        user_location: Optional[LatLng] = None,
        settings: Optional[SearchSettings] = None,
    ) -> None:
        key = self.key(viewport, roster, user_location, settings)
        self._entries[key] = _CacheEntry(outcome=outcome, stored_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
