import re
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from merchant_locator.config import BUILDING_NUMBER_TOLERANCE, CLUSTER_KEY_PRECISION, GROUPING_THRESHOLD
from merchant_locator.geo import coordinate_key, haversine_m
from merchant_locator.models import Cluster, MatchResult

_ADDRESS_NOISE = re.compile(r"[\s\-()]")
_ROAD_TOKEN = re.compile(r"[가-힣0-9]*[가-힣0-9](?:로|길)")
_LEADING_NUMBER = re.compile(r"^(\d+)")


def normalize_address(address: Optional[str]) -> str:
    if not address:
        return ""
    return _ADDRESS_NOISE.sub("", address).lower()


def road_and_number(address: Optional[str]) -> Tuple[Optional[str], Optional[int]]:
    """
    Last road name in a road address and the building number that follows it.

    "서울 은평구 통일로 684" -> ("통일로", 684)
    """
    if not address:
        return None, None
    tokens = address.split()
    road, number = None, None
    for i, token in enumerate(tokens):
        if _ROAD_TOKEN.fullmatch(token):
            road, number = token, None
            if i + 1 < len(tokens):
                m = _LEADING_NUMBER.match(tokens[i + 1])
                if m:
                    number = int(m.group(1))
    return road, number


def is_address_similar(
    address1: Optional[str],
    address2: Optional[str],
    tolerance: int = BUILDING_NUMBER_TOLERANCE,
) -> bool:
    """
    Whether two addresses plausibly describe the same building group.

    True when identical after normalization, or when they share a road name
    and their building numbers differ by at most `tolerance`.
    """
    if not address1 or not address2:
        return False
    if normalize_address(address1) == normalize_address(address2):
        return True
    road1, number1 = road_and_number(address1)
    road2, number2 = road_and_number(address2)
    if not road1 or road1 != road2:
        return False
    if number1 is None or number2 is None:
        return True
    return abs(number1 - number2) <= tolerance


def _joins(
    result: MatchResult,
    cluster: Cluster,
    threshold: float,
    tolerance: int,
) -> bool:
    anchor = cluster.anchor
    if result.administrative_area != anchor.administrative_area:
        return False
    if not is_address_similar(result.location.address, anchor.location.address, tolerance):
        return False
    loc = result.location
    return all(
        haversine_m(loc.lat, loc.lng, m.location.lat, m.location.lng) <= threshold
        for m in cluster.members
    )


def cluster_matches(
    matches: Sequence[MatchResult],
    threshold: float = GROUPING_THRESHOLD,
    tolerance: int = BUILDING_NUMBER_TOLERANCE,
    precision: int = CLUSTER_KEY_PRECISION,
) -> List[Cluster]:
    """
    Group accepted matches into clusters of the same physical location.

    A match joins the first cluster whose anchor shares its administrative
    area and has a similar address, provided it is within `threshold` meters
    of every member. Otherwise it founds a cluster keyed by its rounded
    coordinates. Proximity alone never merges different administrative areas.

    Args:
        matches (Sequence[MatchResult]): Matches in acceptance order.
        threshold (float): Grouping distance in meters.
        tolerance (int): Building-number tolerance for address similarity.
        precision (int): Decimal places of the cluster key.

    Returns:
        List[Cluster]: Clusters in creation order.
    """
    clusters: List[Cluster] = []
    keys = set()
    for result in matches:
        target = next((c for c in clusters if _joins(result, c, threshold, tolerance)), None)
        if target is not None:
            target.members.append(result)
            logger.debug(f"Cluster {target.key}: + '{result.roster_name}' ({result.administrative_area})")
            continue

        key = coordinate_key(result.location.lat, result.location.lng, precision)
        if key in keys:
            suffix = 2
            while f"{key}#{suffix}" in keys:
                suffix += 1
            key = f"{key}#{suffix}"
        keys.add(key)
        clusters.append(Cluster(key=key, members=[result]))

    logger.debug(f"Grouped {len(matches)} matches into {len(clusters)} clusters")
    return clusters
