from dataclasses import replace
from typing import Dict, List, Sequence, Tuple

from loguru import logger

from merchant_locator.config import DEDUP_PRECISION
from merchant_locator.geo import coordinate_key, haversine_m
from merchant_locator.matchers.name_similarity import name_similarity, normalize
from merchant_locator.models import (
    LatLng,
    Location,
    MatchResult,
    MatchType,
    RosterEntry,
    SearchSession,
    SearchSettings,
    SearchSummary,
)


def dedup_key(result: MatchResult) -> str:
    loc = result.location
    return f"{normalize(result.roster_name)}_{coordinate_key(loc.lat, loc.lng, DEDUP_PRECISION)}"


def is_better_match(new: MatchResult, existing: MatchResult) -> bool:
    """Higher match-type priority wins, then higher similarity."""
    return new.confidence > existing.confidence


def remove_duplicates(results: Sequence[MatchResult]) -> List[MatchResult]:
    """
    Collapse duplicates by (normalized name, ~10cm coordinates), then by roster id.

    The better match of each duplicate pair takes the slot of the first one seen.
    """
    deduped: List[MatchResult] = []
    for key_fn in (dedup_key, lambda r: r.roster_id):
        slots: Dict[object, int] = {}
        deduped = []
        for result in results:
            key = key_fn(result)
            if key not in slots:
                slots[key] = len(deduped)
                deduped.append(result)
            elif is_better_match(result, deduped[slots[key]]):
                deduped[slots[key]] = result
        results = deduped
    return deduped


def calculate_distances(results: Sequence[MatchResult], reference: LatLng) -> List[MatchResult]:
    return [
        replace(
            r,
            distance_meters=round(
                haversine_m(reference.lat, reference.lng, r.location.lat, r.location.lng)
            ),
        )
        for r in results
    ]


def filter_results(results: Sequence[MatchResult], settings: SearchSettings) -> List[MatchResult]:
    """Drop matches that are too far away or, except keyword matches, too dissimilar."""
    kept = []
    for r in results:
        if r.distance_meters is not None and r.distance_meters > settings.max_distance:
            logger.debug(f"Filtered '{r.roster_name}': {r.distance_meters}m away")
            continue
        if r.match_type != MatchType.KEYWORD and r.similarity < settings.min_similarity:
            logger.debug(f"Filtered '{r.roster_name}': similarity {r.similarity:.2f}")
            continue
        kept.append(r)
    return kept


def sort_results(results: Sequence[MatchResult]) -> List[MatchResult]:
    """Match-type priority, then similarity (both descending), then distance ascending."""
    return sorted(
        results,
        key=lambda r: (
            -r.match_type.priority,
            -r.similarity,
            r.distance_meters if r.distance_meters is not None else float("inf"),
        ),
    )


def find_nearby_matches(
    results: Sequence[MatchResult],
    unmatched: Sequence[RosterEntry],
    cached_locations: Dict[int, Location],
    settings: SearchSettings,
) -> List[MatchResult]:
    """
    Place unmatched roster entries at their cached location when a match nearby corroborates it.

    An entry qualifies when its cached location lies within
    settings.nearby_threshold meters of an accepted match whose roster name is
    at least settings.nearby_similarity_threshold similar to its own.
    """
    nearby = []
    for entry in unmatched:
        cached = cached_locations.get(entry.id)
        if cached is None:
            continue
        for result in results:
            distance = haversine_m(cached.lat, cached.lng, result.location.lat, result.location.lng)
            if distance > settings.nearby_threshold:
                continue
            score = name_similarity(entry.name, result.roster_name)
            if score >= settings.nearby_similarity_threshold:
                nearby.append(
                    MatchResult(
                        roster_id=entry.id,
                        location=cached,
                        match_type=MatchType.NEARBY,
                        similarity=score,
                        roster_name=entry.name,
                        administrative_area=entry.administrative_area or "",
                        source=f"near:{result.roster_name}",
                    )
                )
                logger.debug(f"Nearby match: '{entry.name}' {distance:.0f}m from '{result.roster_name}'")
                break
    return nearby


def summarize(
    results: Sequence[MatchResult],
    total_matched: int,
    session: SearchSession,
) -> SearchSummary:
    counts = {t.value: 0 for t in MatchType}
    for r in results:
        counts[r.match_type.value] += 1
    avg_similarity = 0.0
    avg_distance = 0
    if results:
        avg_similarity = round(sum(r.similarity for r in results) / len(results), 2)
        avg_distance = round(sum(r.distance_meters or 0 for r in results) / len(results))
    return SearchSummary(
        total_matched=total_matched,
        final_results=len(results),
        duplicates_removed=0,
        match_types=counts,
        avg_similarity=avg_similarity,
        avg_distance=avg_distance,
        queries_completed=session.completed_queries,
        queries_failed=session.failed_queries,
        cancelled=session.cancelled,
    )


def aggregate_results(
    session: SearchSession,
    matches: Sequence[MatchResult],
) -> Tuple[List[MatchResult], SearchSummary]:
    """
    Final pass: dedupe, measure, filter and rank the resolved matches.

    Distances are measured from the user's location when the session has one,
    otherwise from the viewport center.

    Args:
        session (SearchSession): Session providing settings and reference point.
        matches (Sequence[MatchResult]): Resolved matches (any order).

    Returns:
        Tuple[List[MatchResult], SearchSummary]: Ranked results and statistics.
    """
    unique = remove_duplicates(matches)
    reference = session.user_location or session.viewport.center_point
    measured = calculate_distances(unique, reference)
    ranked = sort_results(filter_results(measured, session.settings))

    summary = summarize(ranked, len(matches), session)
    summary.duplicates_removed = len(matches) - len(unique)
    logger.info(
        f"Aggregated {len(matches)} matches -> {len(ranked)} results "
        f"({summary.duplicates_removed} duplicates removed)"
    )
    return ranked, summary
