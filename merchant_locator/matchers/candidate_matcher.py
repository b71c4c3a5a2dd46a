from typing import List, Optional, Sequence

from loguru import logger

from merchant_locator.locality import LocalityTable, extract_locality_hints, has_common_locality
from merchant_locator.matchers.name_similarity import is_contained, normalize, similarity
from merchant_locator.models import (
    Candidate,
    Location,
    MatchResult,
    MatchType,
    RosterEntry,
    SearchSession,
)


def candidate_key(candidate: Candidate) -> str:
    """Provider id, or a name/coordinate key for candidates the provider did not identify."""
    if candidate.provider_id:
        return str(candidate.provider_id)
    return f"{normalize(candidate.name)}_{candidate.lat:.6f}_{candidate.lng:.6f}"


def in_bounds(session: SearchSession, candidates: Sequence[Candidate]) -> List[Candidate]:
    return [c for c in candidates if session.viewport.contains(c.lat, c.lng)]


def passes_area_gate(
    candidate: Candidate,
    entry: RosterEntry,
    table: Optional[LocalityTable] = None,
) -> bool:
    """
    Administrative-area gate applied to every name match.

    The candidate's hints come from its name and addresses, the roster entry's
    from its name and declared administrative area.
    """
    candidate_text = " ".join(
        part for part in (candidate.name, candidate.road_address, candidate.old_address) if part
    )
    roster_text = f"{entry.name} {entry.administrative_area or ''}"
    return has_common_locality(
        extract_locality_hints(candidate_text, table),
        extract_locality_hints(roster_text, table),
        table,
    )


def _accept(
    session: SearchSession,
    candidate: Candidate,
    entry: RosterEntry,
    match_type: MatchType,
    score: float,
    source: str,
) -> MatchResult:
    result = MatchResult(
        roster_id=entry.id,
        location=Location.from_candidate(candidate),
        match_type=match_type,
        similarity=score,
        roster_name=entry.name,
        administrative_area=entry.administrative_area or "",
        provider_id=candidate_key(candidate),
        candidate_name=candidate.name,
        source=source,
    )
    logger.debug(
        f"✅ {match_type.value} match: '{entry.name}' ({entry.administrative_area}) "
        f"<-> '{candidate.name}' [{score:.2f}]"
    )
    return session.record_match(result)


def match_candidate(
    session: SearchSession,
    candidate: Candidate,
    entries: Sequence[RosterEntry],
    threshold: float,
    keyword_phase: bool = False,
    source: str = "",
) -> Optional[MatchResult]:
    """
    Try to assign one provider candidate to one unconsumed roster entry.

    Tiers, in order: exact normalized name (1.0), containment in either
    direction (settings.containment_similarity), best edit similarity at or
    above `threshold`. Every tier requires the administrative-area gate to
    pass. Category-phase matches are typed exact/similar; keyword-phase
    matches are always typed keyword.

    Args:
        session (SearchSession): Session whose consumed sets are updated on acceptance.
        candidate (Candidate): Provider hit, assumed in bounds.
        entries (Sequence[RosterEntry]): Roster entries eligible for this query.
        threshold (float): Minimum edit similarity for the last tier.
        keyword_phase (bool): Whether the candidate came from a keyword query.
        source (str): Category name or keyword recorded on the match.

    Returns:
        Optional[MatchResult]: The accepted match, or None.
    """
    if candidate_key(candidate) in session.consumed_provider_ids:
        return None
    place_name = normalize(candidate.name)
    if not place_name:
        return None

    table = session.locality_table
    available = [e for e in entries if e.id not in session.consumed_roster_ids]
    normalized = [(e, normalize(e.name)) for e in available]

    exact_type = MatchType.KEYWORD if keyword_phase else MatchType.EXACT
    similar_type = MatchType.KEYWORD if keyword_phase else MatchType.SIMILAR

    for entry, name in normalized:
        if name == place_name and passes_area_gate(candidate, entry, table):
            return _accept(session, candidate, entry, exact_type, 1.0, source)

    for entry, name in normalized:
        if is_contained(name, place_name) and passes_area_gate(candidate, entry, table):
            return _accept(
                session, candidate, entry, similar_type, session.settings.containment_similarity, source
            )

    scored = [(similarity(name, place_name), idx) for idx, (_, name) in enumerate(normalized) if name]
    scored.sort(key=lambda item: (-item[0], item[1]))
    for score, idx in scored:
        if score < threshold:
            break
        entry = normalized[idx][0]
        if passes_area_gate(candidate, entry, table):
            return _accept(session, candidate, entry, similar_type, score, source)
    return None


def match_category_candidates(
    session: SearchSession,
    candidates: Sequence[Candidate],
    source: str = "",
) -> List[MatchResult]:
    """
    Match one category-query page against every unconsumed roster entry.

    Args:
        session (SearchSession): Current session.
        candidates (Sequence[Candidate]): Provider hits in provider order.
        source (str): Category name, recorded on each match.

    Returns:
        List[MatchResult]: Matches accepted from this page.
    """
    matches = []
    outside = 0
    for candidate in candidates:
        if not session.viewport.contains(candidate.lat, candidate.lng):
            outside += 1
            continue
        result = match_candidate(
            session,
            candidate,
            session.roster,
            session.settings.similarity_threshold,
            keyword_phase=False,
            source=source,
        )
        if result is not None:
            matches.append(result)
    logger.debug(
        f"Category '{source}': {len(candidates)} candidates, {outside} outside viewport, "
        f"{len(matches)} matched"
    )
    return matches


def match_keyword_candidates(
    session: SearchSession,
    entry: RosterEntry,
    candidates: Sequence[Candidate],
    keyword: str,
) -> Optional[MatchResult]:
    """
    Match keyword-query results against the single roster entry they target.

    Only the first accepted candidate is used.
    """
    if entry.id in session.consumed_roster_ids:
        return None
    for candidate in in_bounds(session, candidates):
        result = match_candidate(
            session,
            candidate,
            [entry],
            session.settings.keyword_similarity_threshold,
            keyword_phase=True,
            source=keyword,
        )
        if result is not None:
            return result
    return None
