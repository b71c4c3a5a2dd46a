from merchant_locator.matchers.result_aggregator import (
    aggregate_results,
    filter_results,
    find_nearby_matches,
    remove_duplicates,
    sort_results,
)
from merchant_locator.models import LatLng, Location, MatchResult, MatchType, RosterEntry, SearchSettings


def result(roster_id, name, lat=37.65, lng=126.95, match_type=MatchType.EXACT, similarity=1.0, distance=None):
    return MatchResult(
        roster_id=roster_id,
        location=Location(lat=lat, lng=lng, road_address="서울 은평구 통일로 684"),
        match_type=match_type,
        similarity=similarity,
        distance_meters=distance,
        roster_name=name,
        administrative_area="녹번동",
    )


def test_duplicates_keep_higher_priority_then_similarity():
    keyword = result(1, "GS25 은평점", match_type=MatchType.KEYWORD)
    exact = result(2, "GS25은평점")
    assert remove_duplicates([keyword, exact]) == [exact]

    low = result(3, "CU", lat=37.66, match_type=MatchType.SIMILAR, similarity=0.7)
    high = result(4, "CU", lat=37.66, match_type=MatchType.SIMILAR, similarity=0.9)
    assert remove_duplicates([low, high]) == [high]


def test_one_result_per_roster_id():
    near = result(1, "GS25 은평점", lat=37.65, match_type=MatchType.SIMILAR, similarity=0.9)
    far = result(1, "GS25 은평점", lat=37.66)

    assert remove_duplicates([near, far]) == [far]


def test_filter_drops_far_and_dissimilar():
    settings = SearchSettings()
    kept = filter_results(
        [
            result(1, "a", distance=100),
            result(2, "b", distance=10001),
            result(3, "c", match_type=MatchType.SIMILAR, similarity=0.4, distance=10),
            result(4, "d", match_type=MatchType.KEYWORD, similarity=0.4, distance=10),
        ],
        settings,
    )
    assert [r.roster_id for r in kept] == [1, 4]


def test_sort_by_priority_similarity_distance():
    ranked = sort_results(
        [
            result(1, "a", match_type=MatchType.KEYWORD, distance=5),
            result(2, "b", match_type=MatchType.SIMILAR, similarity=0.7, distance=5),
            result(3, "c", match_type=MatchType.SIMILAR, similarity=0.9, distance=50),
            result(4, "d", distance=300),
            result(5, "e", distance=100),
        ]
    )
    assert [r.roster_id for r in ranked] == [5, 4, 3, 2, 1]


def test_aggregate_measures_from_user_location(make_session):
    roster = [RosterEntry(id=1, name="GS25 은평점", administrative_area="녹번동")]
    match = result(1, "GS25 은평점", lat=37.65, lng=126.95)

    session = make_session(roster, user_location=LatLng(37.65, 126.95))
    ranked, summary = aggregate_results(session, [match, match])

    assert ranked[0].distance_meters == 0
    assert summary.total_matched == 2
    assert summary.final_results == 1
    assert summary.duplicates_removed == 1
    assert summary.match_types["exact"] == 1
    assert summary.avg_similarity == 1.0


def test_aggregate_measures_from_viewport_center(make_session):
    roster = [RosterEntry(id=1, name="GS25 은평점", administrative_area="녹번동")]
    session = make_session(roster)

    ranked, _ = aggregate_results(session, [result(1, "GS25 은평점", lat=37.65, lng=126.95)])

    # viewport fixture is centered on the match
    assert ranked[0].distance_meters == 0


def test_nearby_match_from_cached_location():
    accepted = [result(1, "GS25 은평점")]
    unmatched = [
        RosterEntry(id=2, name="GS25 은평2호점", administrative_area="녹번동"),
        RosterEntry(id=3, name="이디야커피", administrative_area="녹번동"),
        RosterEntry(id=4, name="GS25 은평3호점", administrative_area="녹번동"),
    ]
    cached = {
        2: Location(lat=37.6501, lng=126.95),
        3: Location(lat=37.6501, lng=126.95),
        4: Location(lat=37.66, lng=126.95),
    }

    nearby = find_nearby_matches(accepted, unmatched, cached, SearchSettings())

    assert [n.roster_id for n in nearby] == [2]
    assert nearby[0].match_type == MatchType.NEARBY
    assert nearby[0].location == cached[2]
    assert nearby[0].similarity >= 0.6
