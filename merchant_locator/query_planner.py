import random
import re
from typing import List, Optional

from loguru import logger

from merchant_locator.geo import search_radius
from merchant_locator.models import (
    CategoryQuery,
    KeywordQuery,
    KeywordTask,
    QueryPlan,
    RosterEntry,
    SearchSettings,
    Viewport,
)

_PARENTHETICAL = re.compile(r"[\(（][^\)）]*[\)）]")
_BRANCH_SUFFIX = re.compile(r"점$")
_WHITESPACE = re.compile(r"\s+")
MIN_KEYWORD_LENGTH = 2


def plan_category_queries(viewport: Viewport, settings: SearchSettings) -> QueryPlan:
    """
    Build one category query per configured category code.

    Every query is centered on the viewport and uses the half-diagonal of the
    viewport, capped at settings.max_radius, as its radius.

    Args:
        viewport (Viewport): Validated search area.
        settings (SearchSettings): Category list, radius cap and page size.

    Returns:
        QueryPlan: Ordered category queries and the radius they share.
    """
    radius = search_radius(viewport, settings.max_radius)
    center = viewport.center_point
    queries = [
        CategoryQuery(
            code=code,
            name=name,
            center=center,
            radius_meters=radius,
            page_size=settings.page_size,
        )
        for code, name in settings.categories
    ]
    logger.debug(f"Planned {len(queries)} category queries (radius {radius}m)")
    return QueryPlan(category_queries=queries, radius_meters=radius)


def _clean(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def keyword_variants(entry: RosterEntry) -> List[str]:
    """
    Keyword variants for one roster entry, in increasing specificity.

    Raw name, name without parenthetical text, name without the trailing
    branch suffix "점", then name plus administrative area. Duplicates and
    keywords shorter than two characters are dropped.
    """
    name = _clean(entry.name or "")
    if not name:
        return []
    candidates = [
        name,
        _clean(_PARENTHETICAL.sub(" ", name)),
        _clean(_BRANCH_SUFFIX.sub("", name)),
    ]
    area = _clean(entry.administrative_area or "")
    if area:
        candidates.append(f"{name} {area}")

    variants: List[str] = []
    for keyword in candidates:
        if len(keyword) >= MIN_KEYWORD_LENGTH and keyword not in variants:
            variants.append(keyword)
    return variants


def plan_keyword_tasks(
    unmatched: List[RosterEntry],
    viewport: Viewport,
    settings: SearchSettings,
    radius: Optional[int] = None,
) -> List[KeywordTask]:
    """
    Build keyword tasks for roster entries left unmatched by the category phase.

    At most settings.keyword_sample_count entries are planned. With a shuffle
    seed the sample is drawn at random, otherwise roster order is kept.

    Args:
        unmatched (List[RosterEntry]): Entries still without a match.
        viewport (Viewport): Search area.
        settings (SearchSettings): Sample cap, shuffle seed and page size.
        radius (Optional[int]): Radius already computed for the category phase.

    Returns:
        List[KeywordTask]: One task per distinct roster entry.
    """
    if radius is None:
        radius = search_radius(viewport, settings.max_radius)
    center = viewport.center_point

    entries = list({entry.id: entry for entry in unmatched}.values())
    if settings.keyword_shuffle_seed is not None:
        random.Random(settings.keyword_shuffle_seed).shuffle(entries)
    entries = entries[: max(settings.keyword_sample_count, 0)]

    tasks = []
    for entry in entries:
        queries = [
            KeywordQuery(
                keyword=keyword,
                center=center,
                radius_meters=radius,
                page_size=settings.keyword_page_size,
            )
            for keyword in keyword_variants(entry)
        ]
        if queries:
            tasks.append(KeywordTask(entry=entry, queries=queries))
    logger.debug(f"Planned keyword search for {len(tasks)} of {len(unmatched)} unmatched entries")
    return tasks


def batch_iter(tasks: List[KeywordTask], batch_size: int):
    """
    Yield index and KeywordTask slices of size `batch_size` for batched processing.

    Each task targets a distinct roster entry, so the tasks in a batch never
    compete for the same entry.
    """
    batch_size = max(batch_size, 1)
    for i in range(0, len(tasks), batch_size):
        yield i, tasks[i:i + batch_size]
