from typing import Dict, List, Sequence, Set, Tuple

from loguru import logger

from merchant_locator.config import SUSPICIOUS_DISTANCE
from merchant_locator.geo import haversine_m
from merchant_locator.matchers.geo_clusterer import normalize_address
from merchant_locator.models import Cluster, MatchResult


def address_specificity(result: MatchResult) -> int:
    """Length of the normalized road address, falling back to the old address."""
    loc = result.location
    return len(normalize_address(loc.road_address or loc.old_address))


def _distance(a: MatchResult, b: MatchResult) -> float:
    return haversine_m(a.location.lat, a.location.lng, b.location.lat, b.location.lng)


def resolve_conflicts(
    clusters: Sequence[Cluster],
    suspicious_distance: float = SUSPICIOUS_DISTANCE,
) -> List[Cluster]:
    """
    Drop matches that overlap a match from a different administrative area.

    Matches are replayed in acceptance order. A match within
    `suspicious_distance` meters of kept matches from other areas is kept only
    if its address is strictly more specific than every one of them, in which
    case those matches are dropped; otherwise the new match is dropped, so
    ties favor the earlier match.

    Args:
        clusters (Sequence[Cluster]): Output of the geo clusterer.
        suspicious_distance (float): Overlap distance in meters.

    Returns:
        List[Cluster]: Clusters without the losing matches; empty clusters removed.
    """
    ordered = sorted((m for c in clusters for m in c.members), key=lambda m: m.sequence)
    kept: List[MatchResult] = []

    for result in ordered:
        conflicts = [
            existing
            for existing in kept
            if existing.administrative_area != result.administrative_area
            and _distance(existing, result) <= suspicious_distance
        ]
        if not conflicts:
            kept.append(result)
            continue

        specificity = address_specificity(result)
        if all(specificity > address_specificity(existing) for existing in conflicts):
            for existing in conflicts:
                logger.info(
                    f"🚨 '{result.roster_name}' ({result.administrative_area}) replaces "
                    f"'{existing.roster_name}' ({existing.administrative_area}) "
                    f"{_distance(existing, result):.1f}m away: more specific address"
                )
                kept.remove(existing)
            kept.append(result)
        else:
            logger.info(
                f"🚨 '{result.roster_name}' ({result.administrative_area}) dropped: overlaps "
                f"{', '.join(repr(e.roster_name) for e in conflicts)} from another area"
            )

    kept_ids = {id(m) for m in kept}
    resolved = []
    for cluster in clusters:
        members = [m for m in cluster.members if id(m) in kept_ids]
        if members:
            resolved.append(Cluster(key=cluster.key, members=members))
    return resolved


def _overlaps_other_area(
    result: MatchResult,
    others: Sequence[MatchResult],
    suspicious_distance: float,
) -> bool:
    return any(
        other is not result
        and other.administrative_area != result.administrative_area
        and _distance(other, result) <= suspicious_distance
        for other in others
    )


def preserve_prior_matches(
    results: Sequence[MatchResult],
    prior_matches: Dict[int, MatchResult],
    dropped: Sequence[MatchResult] = (),
    suspicious_distance: float = SUSPICIOUS_DISTANCE,
) -> Tuple[List[MatchResult], Set[int]]:
    """
    Keep matches from earlier sessions unless the new match is strictly more confident.

    Confidence compares match-type priority, then similarity. An entry whose
    new match lost a cross-area conflict falls back to its prior match.
    Preserved priors sit at their own coordinates, so each one is checked
    again against the other final matches: a prior overlapping a match from
    another area within `suspicious_distance` is dropped in favor of the new
    match it displaced, if that one does not overlap either.

    Args:
        results (Sequence[MatchResult]): Matches that survived conflict resolution.
        prior_matches (Dict[int, MatchResult]): Earlier accepted matches by roster id.
        dropped (Sequence[MatchResult]): This session's matches that lost a conflict.
        suspicious_distance (float): Overlap distance in meters.

    Returns:
        Tuple[List[MatchResult], Set[int]]: Final matches and the roster ids whose prior match was kept.
    """
    final = []
    preserved: Set[int] = set()
    displaced: Dict[int, MatchResult] = {}
    for result in results:
        prior = prior_matches.get(result.roster_id)
        if prior is not None and not result.confidence > prior.confidence:
            logger.debug(
                f"Keeping earlier match for '{result.roster_name}' "
                f"({prior.match_type.value} {prior.similarity:.2f} >= "
                f"{result.match_type.value} {result.similarity:.2f})"
            )
            final.append(prior)
            preserved.add(result.roster_id)
            displaced[result.roster_id] = result
        else:
            final.append(result)

    located = {r.roster_id for r in final}
    for lost in dropped:
        prior = prior_matches.get(lost.roster_id)
        if prior is None or lost.roster_id in located:
            continue
        logger.debug(f"Restoring earlier match for '{lost.roster_name}' after conflict loss")
        final.append(prior)
        preserved.add(lost.roster_id)
        located.add(lost.roster_id)

    i = 0
    while i < len(final):
        result = final[i]
        if result.roster_id not in preserved or not _overlaps_other_area(result, final, suspicious_distance):
            i += 1
            continue
        preserved.discard(result.roster_id)
        fallback = displaced.get(result.roster_id)
        others = final[:i] + final[i + 1:]
        if fallback is not None and not _overlaps_other_area(fallback, others, suspicious_distance):
            logger.info(f"🚨 Earlier match for '{result.roster_name}' overlaps another area, using new match")
            final[i] = fallback
            i += 1
        else:
            logger.info(f"🚨 Earlier match for '{result.roster_name}' dropped: overlaps another area")
            del final[i]
    return final, preserved
