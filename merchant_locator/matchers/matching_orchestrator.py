from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set, Tuple

from loguru import logger

from merchant_locator.cache import SearchResultCache
from merchant_locator.collaborators import LocationStore, PlaceSearchProvider, ResultRenderer
from merchant_locator.locality import LocalityTable, load_locality_table
from merchant_locator.matchers.conflict_resolver import preserve_prior_matches, resolve_conflicts
from merchant_locator.matchers.geo_clusterer import cluster_matches
from merchant_locator.matchers.result_aggregator import aggregate_results, find_nearby_matches
from merchant_locator.models import (
    CancellationToken,
    LatLng,
    Location,
    MatchResult,
    MatchType,
    RosterEntry,
    SearchSession,
    SearchSettings,
    SessionOutcome,
    Viewport,
)
from merchant_locator.search_orchestrator import ProgressCallback, SearchOrchestrator


def resolve_matches(
    session: SearchSession,
    matches: Sequence[MatchResult],
) -> Tuple[List[MatchResult], List[MatchResult]]:
    """Cluster the session's matches and drop cross-area overlaps. Returns (kept, dropped)."""
    settings = session.settings
    clusters = cluster_matches(
        matches,
        threshold=settings.grouping_threshold,
        tolerance=settings.building_number_tolerance,
    )
    resolved = resolve_conflicts(clusters, settings.suspicious_distance)
    kept = [m for cluster in resolved for m in cluster.members]
    kept_ids = {id(m) for m in kept}
    dropped = [m for m in matches if id(m) not in kept_ids]
    if dropped:
        logger.info(f"🚨 Conflict resolution dropped {len(dropped)} matches")
    return kept, dropped


async def _cached_locations(
    entries: Sequence[RosterEntry],
    store: LocationStore,
) -> Dict[int, Location]:
    cached: Dict[int, Location] = {}
    for entry in entries:
        try:
            location = await store.get_cached_location(entry.id)
        except Exception as e:
            logger.warning(f"⚠️ Could not read cached location for '{entry.name}': {e}")
            continue
        if location is not None:
            cached[entry.id] = location
    return cached


async def _save_new_matches(
    results: Sequence[MatchResult],
    preserved: Set[int],
    store: LocationStore,
) -> int:
    saved = 0
    for result in results:
        if result.roster_id in preserved or result.match_type == MatchType.NEARBY:
            continue
        try:
            await store.save_location(result.roster_id, result.location)
            saved += 1
        except Exception as e:
            logger.warning(f"⚠️ Could not save location for '{result.roster_name}': {e}")
    return saved


async def run_search_session(
    roster: List[RosterEntry],
    viewport: Viewport,
    provider: PlaceSearchProvider,
    settings: Optional[SearchSettings] = None,
    cancel_token: Optional[CancellationToken] = None,
    user_location: Optional[LatLng] = None,
    prior_matches: Optional[Dict[int, MatchResult]] = None,
    location_store: Optional[LocationStore] = None,
    renderer: Optional[ResultRenderer] = None,
    cache: Optional[SearchResultCache] = None,
    on_progress: Optional[ProgressCallback] = None,
    locality_table: Optional[LocalityTable] = None,
) -> SessionOutcome:
    """
    Locate roster entries inside a viewport, end to end.

    Search (category then keyword phase), cluster, resolve conflicts, keep
    stronger prior matches (falling back to them when a new match lost a
    conflict), add nearby matches from cached locations, then
    aggregate. New matches are saved to `location_store` and the outcome is
    handed to `renderer`.

    Args:
        roster (List[RosterEntry]): Entries to locate.
        viewport (Viewport): Map area to search.
        provider (PlaceSearchProvider): Category and keyword place search.
        settings (Optional[SearchSettings]): Thresholds and pacing, defaults if None.
        cancel_token (Optional[CancellationToken]): Shared flag to stop issuing queries.
        user_location (Optional[LatLng]): Reference point for distances.
        prior_matches (Optional[Dict[int, MatchResult]]): Matches from earlier sessions by roster id.
        location_store (Optional[LocationStore]): Persistence for located entries.
        renderer (Optional[ResultRenderer]): Receives the final results and summary.
        cache (Optional[SearchResultCache]): Cache of finished sessions.
        on_progress (Optional[ProgressCallback]): Called with (done, total) queries.
        locality_table (Optional[LocalityTable]): Area table for the locality gate.

    Returns:
        SessionOutcome: Ranked results and summary statistics.

    Raises:
        InvalidViewport: If the viewport is missing or malformed.
        NoRosterData: If the roster is empty.
    """
    session = SearchSession.create(
        roster,
        viewport,
        settings=settings,
        cancel_token=cancel_token,
        user_location=user_location,
        prior_matches=prior_matches,
        locality_table=locality_table or load_locality_table(),
    )

    if cache is not None:
        cached = cache.get(viewport, session.roster, session.user_location, session.settings)
        if cached is not None:
            logger.info(f"♻️ Using cached results ({len(cached.results)} located)")
            outcome = replace(cached, from_cache=True)
            if renderer is not None:
                renderer.render(outcome.results, outcome.summary)
            return outcome

    logger.info(f"🚀 Searching {len(session.roster)} roster entries")
    matches = await SearchOrchestrator(provider, session, on_progress).run()

    kept, dropped = resolve_matches(session, matches)
    final, preserved = preserve_prior_matches(
        kept, session.prior_matches, dropped, session.settings.suspicious_distance
    )

    if session.settings.find_nearby_matches and location_store is not None:
        located = {r.roster_id for r in final}
        unmatched = [e for e in session.roster if e.id not in located]
        cached_locations = await _cached_locations(unmatched, location_store)
        nearby = find_nearby_matches(final, unmatched, cached_locations, session.settings)
        if nearby:
            logger.info(f"📍 {len(nearby)} nearby matches from cached locations")
        final = final + nearby

    results, summary = aggregate_results(session, final)

    if location_store is not None:
        saved = await _save_new_matches(results, preserved, location_store)
        logger.debug(f"Saved {saved} locations")

    if renderer is not None:
        renderer.render(results, summary)

    outcome = SessionOutcome(results=results, summary=summary)
    if cache is not None and not session.cancelled:
        cache.put(viewport, session.roster, outcome, session.user_location, session.settings)
    logger.info(
        f"🏁 Search finished: {summary.final_results} located, "
        f"{summary.queries_completed} queries ok, {summary.queries_failed} failed"
        + (" (cancelled)" if summary.cancelled else "")
    )
    return outcome
