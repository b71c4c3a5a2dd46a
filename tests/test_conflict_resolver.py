from merchant_locator.geo import haversine_m
from merchant_locator.matchers.conflict_resolver import (
    address_specificity,
    preserve_prior_matches,
    resolve_conflicts,
)
from merchant_locator.matchers.geo_clusterer import cluster_matches
from merchant_locator.models import Location, MatchResult, MatchType

METER = 1 / 111195


def match(roster_id, lat, area, road, match_type=MatchType.EXACT, similarity=1.0):
    return MatchResult(
        roster_id=roster_id,
        location=Location(lat=lat, lng=126.95, road_address=road),
        match_type=match_type,
        similarity=similarity,
        roster_name=f"가게{roster_id}",
        administrative_area=area,
        sequence=roster_id,
    )


def resolved_ids(matches):
    clusters = resolve_conflicts(cluster_matches(matches))
    return sorted(m.roster_id for c in clusters for m in c.members)


def test_more_specific_address_wins_across_areas():
    vague = match(1, 37.65, "녹번동", "서울 은평구 통일로 684")
    specific = match(2, 37.65 + 10 * METER, "대조동", "서울 은평구 연서로12길 34-5")
    assert address_specificity(specific) > address_specificity(vague)

    assert resolved_ids([vague, specific]) == [2]


def test_earlier_match_wins_ties():
    first = match(1, 37.65, "녹번동", "서울 은평구 통일로 684")
    second = match(2, 37.65 + 10 * METER, "대조동", "서울 은평구 연서로 684")

    assert resolved_ids([first, second]) == [1]


def test_same_area_neighbours_are_kept():
    a = match(1, 37.65, "녹번동", "서울 은평구 통일로 684")
    b = match(2, 37.65 + 30 * METER, "녹번동", "서울 은평구 통일로 700")

    assert resolved_ids([a, b]) == [1, 2]


def test_far_apart_areas_do_not_conflict():
    a = match(1, 37.65, "녹번동", "서울 은평구 통일로 684")
    b = match(2, 37.65 + 80 * METER, "대조동", "서울 은평구 연서로 1")

    assert resolved_ids([a, b]) == [1, 2]


def test_no_cross_area_pair_within_suspicious_distance_survives():
    matches = [
        match(1, 37.65, "녹번동", "서울 은평구 통일로 684"),
        match(2, 37.65 + 10 * METER, "대조동", "서울 은평구 연서로 9"),
        match(3, 37.65 + 20 * METER, "불광동", "서울 은평구 불광로 100-12"),
        match(4, 37.65 + 200 * METER, "대조동", "서울 은평구 연서로 30"),
    ]
    kept = [m for c in resolve_conflicts(cluster_matches(matches)) for m in c.members]

    for a in kept:
        for b in kept:
            if a.administrative_area != b.administrative_area:
                assert haversine_m(a.location.lat, a.location.lng, b.location.lat, b.location.lng) > 50


def test_prior_match_kept_unless_strictly_better():
    prior = match(1, 37.64, "녹번동", "서울 은평구 통일로 600")
    weaker = match(1, 37.65, "녹번동", "서울 은평구 통일로 684", MatchType.SIMILAR, 0.9)
    equal = match(1, 37.65, "녹번동", "서울 은평구 통일로 684")

    final, preserved = preserve_prior_matches([weaker], {1: prior})
    assert final == [prior]
    assert preserved == {1}

    final, preserved = preserve_prior_matches([equal], {1: prior})
    assert final == [prior]

    prior_similar = match(1, 37.64, "녹번동", "서울 은평구 통일로 600", MatchType.SIMILAR, 0.7)
    final, preserved = preserve_prior_matches([weaker], {1: prior_similar})
    assert final == [weaker]
    assert preserved == set()


def test_prior_match_restored_when_new_match_loses_conflict():
    specific = match(1, 37.65, "대조동", "서울 은평구 연서로12길 34-5")
    loser = match(2, 37.65 + 10 * METER, "녹번동", "서울 은평구 통일로 684")
    prior = match(2, 37.66, "녹번동", "서울 은평구 통일로 700")

    final, preserved = preserve_prior_matches([specific], {2: prior}, dropped=[loser])

    assert final == [specific, prior]
    assert preserved == {2}


def test_restored_prior_overlapping_another_area_is_dropped():
    specific = match(1, 37.65, "대조동", "서울 은평구 연서로12길 34-5")
    loser = match(2, 37.65 + 10 * METER, "녹번동", "서울 은평구 통일로 684")
    prior = match(2, 37.65 + 20 * METER, "녹번동", "서울 은평구 통일로 700")

    final, preserved = preserve_prior_matches([specific], {2: prior}, dropped=[loser])

    assert final == [specific]
    assert preserved == set()


def test_overlapping_prior_falls_back_to_new_match():
    neighbour = match(1, 37.65, "대조동", "서울 은평구 연서로12길 34-5")
    new = match(2, 37.65 + 100 * METER, "녹번동", "서울 은평구 통일로 684")
    prior = match(2, 37.65 + 20 * METER, "녹번동", "서울 은평구 통일로 700")

    final, preserved = preserve_prior_matches([neighbour, new], {2: prior})

    assert final == [neighbour, new]
    assert preserved == set()
