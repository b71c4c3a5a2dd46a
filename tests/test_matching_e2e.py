import pytest
from unittest.mock import AsyncMock, MagicMock

from merchant_locator.cache import SearchResultCache
from merchant_locator.collaborators import InMemoryLocationStore
from merchant_locator.errors import InvalidViewport, NoRosterData
from merchant_locator.matchers.matching_orchestrator import run_search_session
from merchant_locator.models import (
    CancellationToken,
    Candidate,
    LatLng,
    Location,
    MatchResult,
    MatchType,
    ProviderResponse,
    ProviderStatus,
    RosterEntry,
    SearchSettings,
    Viewport,
)

GS25 = RosterEntry(id=1, name="GS25 은평점", administrative_area="녹번동")

GS25_PLACE = Candidate(
    name="GS25은평점",
    lat=37.65,
    lng=126.95,
    road_address="서울 은평구 통일로 684",
    old_address="서울 은평구 녹번동 123",
    provider_id="26338954",
)


def ok(*items, has_next_page=False):
    return ProviderResponse(status=ProviderStatus.OK, items=list(items), has_next_page=has_next_page)


@pytest.mark.asyncio
async def test_scenario_exact_match(viewport, fake_provider, fast_settings):
    fake_provider.category_pages["CS2"] = [ok(GS25_PLACE)]
    renderer = MagicMock()

    outcome = await run_search_session([GS25], viewport, fake_provider, settings=fast_settings, renderer=renderer)

    assert len(outcome.results) == 1
    result = outcome.results[0]
    assert result.roster_id == 1
    assert result.match_type == MatchType.EXACT
    assert result.similarity == 1.0
    assert result.distance_meters == 0
    assert outcome.summary.match_types["exact"] == 1
    renderer.render.assert_called_once_with(outcome.results, outcome.summary)


@pytest.mark.asyncio
async def test_scenario_zero_results_everywhere(viewport, fake_provider, fast_settings):
    outcome = await run_search_session([GS25], viewport, fake_provider, settings=fast_settings)

    assert outcome.results == []
    assert outcome.summary.final_results == 0
    assert outcome.summary.queries_failed == 0
    assert len(fake_provider.category_calls) == 11
    assert fake_provider.keyword_calls == ["GS25 은평점", "GS25 은평", "GS25 은평점 녹번동"]


@pytest.mark.asyncio
async def test_scenario_cross_area_conflict(viewport, fake_provider, fast_settings):
    roster = [
        RosterEntry(id=1, name="행복약국", administrative_area="녹번동"),
        RosterEntry(id=2, name="미소약국", administrative_area="대조동"),
    ]
    fake_provider.category_pages["PM9"] = [
        ok(
            Candidate(
                name="행복약국",
                lat=37.65,
                lng=126.95,
                road_address="서울 은평구 통일로 684",
                old_address="서울 은평구 녹번동 1",
                provider_id="a",
            ),
            # ~10 m north, more specific road address
            Candidate(
                name="미소약국",
                lat=37.65009,
                lng=126.95,
                road_address="서울 은평구 연서로12길 34-5",
                old_address="서울 은평구 대조동 9",
                provider_id="b",
            ),
        )
    ]

    outcome = await run_search_session(roster, viewport, fake_provider, settings=fast_settings)

    assert [r.roster_id for r in outcome.results] == [2]
    assert outcome.summary.total_matched == 1


@pytest.mark.asyncio
async def test_scenario_timeout_does_not_stop_session(viewport, fake_provider):
    settings = SearchSettings(
        api_delay=0,
        keyword_batch_delay=0,
        keyword_variant_delay=0,
        retry_policy=None,
        request_timeout=0.05,
    )
    fake_provider.slow["CS2"] = 0.5
    fake_provider.category_pages["FD6"] = [ok(GS25_PLACE)]

    outcome = await run_search_session([GS25], viewport, fake_provider, settings=settings)

    assert [r.roster_id for r in outcome.results] == [1]
    assert outcome.summary.queries_failed == 1
    assert outcome.summary.queries_completed == 10
    assert len(fake_provider.category_calls) == 11


@pytest.mark.asyncio
async def test_scenario_cancel_after_two_category_queries(viewport, fake_provider, fast_settings):
    roster = [RosterEntry(id=i, name=f"가게{i}", administrative_area="녹번동") for i in range(1, 12)]
    codes = [code for code, _ in fast_settings.categories]
    for i, code in enumerate(codes, start=1):
        fake_provider.category_pages[code] = [
            ok(
                Candidate(
                    name=f"가게{i}",
                    lat=37.61 + i * 0.005,
                    lng=126.95,
                    old_address=f"서울 은평구 녹번동 {i}",
                    provider_id=f"p{i}",
                )
            )
        ]
    token = CancellationToken()

    def on_progress(done, total):
        if done == 2:
            token.cancel()

    outcome = await run_search_session(
        roster, viewport, fake_provider, settings=fast_settings, cancel_token=token, on_progress=on_progress
    )

    assert sorted(r.roster_id for r in outcome.results) == [1, 2]
    assert fake_provider.category_calls == [(codes[0], 1), (codes[1], 1)]
    assert fake_provider.keyword_calls == []
    assert outcome.summary.cancelled is True


@pytest.mark.asyncio
async def test_invalid_input_fails_before_any_call(viewport, fake_provider):
    inverted = Viewport(south_west=LatLng(37.70, 127.00), north_east=LatLng(37.60, 126.90))

    with pytest.raises(InvalidViewport):
        await run_search_session([GS25], inverted, fake_provider)
    with pytest.raises(InvalidViewport):
        await run_search_session([GS25], None, fake_provider)
    with pytest.raises(NoRosterData):
        await run_search_session([], viewport, fake_provider)

    assert fake_provider.call_count == 0


@pytest.mark.asyncio
async def test_new_matches_are_saved_and_save_failures_swallowed(viewport, fake_provider, fast_settings):
    fake_provider.category_pages["CS2"] = [ok(GS25_PLACE)]
    store = InMemoryLocationStore()

    await run_search_session([GS25], viewport, fake_provider, settings=fast_settings, location_store=store)
    assert store.locations[1] == Location(37.65, 126.95, "서울 은평구 통일로 684", "서울 은평구 녹번동 123")

    failing = MagicMock()
    failing.get_cached_location = AsyncMock(return_value=None)
    failing.save_location = AsyncMock(side_effect=OSError("disk full"))
    outcome = await run_search_session([GS25], viewport, fake_provider, settings=fast_settings, location_store=failing)

    assert [r.roster_id for r in outcome.results] == [1]
    failing.save_location.assert_awaited_once()


@pytest.mark.asyncio
async def test_stronger_prior_match_is_preserved(viewport, fake_provider, fast_settings):
    entry = RosterEntry(id=1, name="스타벅스", administrative_area="녹번동")
    fake_provider.category_pages["CE7"] = [
        ok(
            Candidate(
                name="스타벅스 은평녹번점",
                lat=37.65,
                lng=126.95,
                old_address="서울 은평구 녹번동 5",
                provider_id="s1",
            )
        )
    ]
    prior = MatchResult(
        roster_id=1,
        location=Location(lat=37.651, lng=126.951, road_address="서울 은평구 통일로 700"),
        match_type=MatchType.EXACT,
        similarity=1.0,
        roster_name="스타벅스",
        administrative_area="녹번동",
    )
    store = InMemoryLocationStore()

    outcome = await run_search_session(
        [entry], viewport, fake_provider, settings=fast_settings, prior_matches={1: prior}, location_store=store
    )

    assert outcome.results[0].location == prior.location
    assert outcome.results[0].match_type == MatchType.EXACT
    assert store.locations == {}


@pytest.mark.asyncio
async def test_nearby_match_from_location_store(viewport, fake_provider, fast_settings):
    sister = RosterEntry(id=2, name="GS25 은평2호점", administrative_area="녹번동")
    fake_provider.category_pages["CS2"] = [ok(GS25_PLACE)]
    store = InMemoryLocationStore({2: Location(lat=37.6501, lng=126.95)})

    outcome = await run_search_session([GS25, sister], viewport, fake_provider, settings=fast_settings, location_store=store)

    by_id = {r.roster_id: r for r in outcome.results}
    assert by_id[1].match_type == MatchType.EXACT
    assert by_id[2].match_type == MatchType.NEARBY
    assert outcome.summary.match_types["nearby"] == 1
    assert store.locations[2] == Location(lat=37.6501, lng=126.95)


@pytest.mark.asyncio
async def test_prior_match_survives_when_new_match_loses_conflict(viewport, fake_provider, fast_settings):
    roster = [
        RosterEntry(id=1, name="행복약국", administrative_area="녹번동"),
        RosterEntry(id=2, name="미소약국", administrative_area="대조동"),
    ]
    fake_provider.category_pages["PM9"] = [
        ok(
            Candidate(
                name="행복약국",
                lat=37.65,
                lng=126.95,
                road_address="서울 은평구 통일로 684",
                old_address="서울 은평구 녹번동 1",
                provider_id="a",
            ),
            Candidate(
                name="미소약국",
                lat=37.65009,
                lng=126.95,
                road_address="서울 은평구 연서로12길 34-5",
                old_address="서울 은평구 대조동 9",
                provider_id="b",
            ),
        )
    ]
    prior = MatchResult(
        roster_id=1,
        location=Location(lat=37.66, lng=126.96, road_address="서울 은평구 통일로 800"),
        match_type=MatchType.EXACT,
        similarity=1.0,
        roster_name="행복약국",
        administrative_area="녹번동",
    )
    store = InMemoryLocationStore()

    outcome = await run_search_session(
        roster, viewport, fake_provider, settings=fast_settings, prior_matches={1: prior}, location_store=store
    )

    by_id = {r.roster_id: r for r in outcome.results}
    assert sorted(by_id) == [1, 2]
    assert by_id[1].location == prior.location
    assert 1 not in store.locations


@pytest.mark.asyncio
async def test_repeated_search_is_served_from_cache(viewport, fake_provider, fast_settings):
    fake_provider.category_pages["CS2"] = [ok(GS25_PLACE)]
    cache = SearchResultCache()

    first = await run_search_session([GS25], viewport, fake_provider, settings=fast_settings, cache=cache)
    calls = fake_provider.call_count
    second = await run_search_session([GS25], viewport, fake_provider, settings=fast_settings, cache=cache)

    assert first.from_cache is False
    assert second.from_cache is True
    assert second.results == first.results
    assert fake_provider.call_count == calls


def test_cache_entries_expire():
    now = [0.0]
    cache = SearchResultCache(ttl=60, clock=lambda: now[0])
    viewport = Viewport(south_west=LatLng(37.60, 126.90), north_east=LatLng(37.70, 127.00))
    outcome = MagicMock()

    cache.put(viewport, [GS25], outcome)
    assert cache.get(viewport, [GS25]) is outcome

    now[0] = 61.0
    assert cache.get(viewport, [GS25]) is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_cache_misses_for_another_user_location(viewport, fake_provider, fast_settings):
    fake_provider.category_pages["CS2"] = [ok(GS25_PLACE)]
    cache = SearchResultCache()

    first = await run_search_session([GS25], viewport, fake_provider, settings=fast_settings, cache=cache)
    calls = fake_provider.call_count
    moved = await run_search_session(
        [GS25], viewport, fake_provider, settings=fast_settings, cache=cache, user_location=LatLng(37.66, 126.95)
    )

    assert first.results[0].distance_meters == 0
    assert moved.from_cache is False
    assert fake_provider.call_count > calls
    assert moved.results[0].distance_meters > 1000
    assert len(cache) == 2
