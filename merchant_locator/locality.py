"""
Locality hints for the administrative-area gate.

A hint is a neighbourhood token ("녹번동", "응암2동"), a station name
("연신내역" -> "연신내"), a road name ("통일로") or a configured area alias
("새절"). Hints resolve to neighbourhood families: numbered sub-areas fold onto
their base ("응암2동" -> "응암동"), aliases and roads resolve through the
LocalityTable. Two places share a locality when their families intersect.
"""
import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Set

from loguru import logger

from merchant_locator import config

_DONG_PATTERN = re.compile(r"(?<![가-힣])([가-힣]{1,4}\d{0,2}동)(?![가-힣])")
_STATION_PATTERN = re.compile(r"(?<![가-힣])([가-힣]{2,6})역(?![가-힣])")
_ROAD_PATTERN = re.compile(r"(?<![가-힣0-9])([가-힣0-9]{1,10}(?:로|길))(?![가-힣])")
_NUMBERED_DONG = re.compile(r"\d+동$")

DEFAULT_AREAS = [
    "응암동", "응암1동", "응암2동", "응암3동",
    "역촌동", "녹번동",
    "불광동", "불광1동", "불광2동",
    "갈현동", "갈현1동", "갈현2동",
    "구산동", "대조동", "신사동", "증산동", "수색동", "진관동",
]

DEFAULT_ALIASES = {
    "응암": ["응암동"],
    "새절": ["응암2동", "응암3동"],
    "연신내": ["불광동"],
    "불광": ["불광동"],
    "구산": ["구산동"],
    "진관": ["진관동"],
    "대조": ["대조동"],
    "역촌": ["역촌동"],
    "갈현": ["갈현동"],
    "녹번": ["녹번동"],
    "홍제": ["홍제동"],
    "증산": ["증산동"],
    "수색": ["수색동"],
    "신사": ["신사동"],
}


@dataclass
class LocalityTable:
    """Known neighbourhoods, area aliases and road-to-neighbourhood hints."""
    areas: List[str] = field(default_factory=lambda: list(DEFAULT_AREAS))
    aliases: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_ALIASES))
    roads: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, path: str) -> "LocalityTable":
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        return cls(
            areas=list(raw.get("areas", DEFAULT_AREAS)),
            aliases={k: list(v) for k, v in raw.get("aliases", DEFAULT_ALIASES).items()},
            roads={k: list(v) for k, v in raw.get("roads", {}).items()},
        )

    def is_known_area(self, area: str) -> bool:
        return any(known in area for known in self.areas)


@lru_cache(maxsize=None)
def load_locality_table(path: Optional[str] = None) -> LocalityTable:
    """Load the table from `path` (or LOCALITY_TABLE_PATH), else the built-in default."""
    path = path or config.LOCALITY_TABLE_PATH
    if not path:
        return LocalityTable()
    logger.info(f"Loading locality table from {path}")
    return LocalityTable.from_json(path)


def fold_area(area: str) -> str:
    """Fold a numbered neighbourhood onto its base: "응암2동" -> "응암동"."""
    return _NUMBERED_DONG.sub("동", area.strip())


def extract_locality_hints(text: Optional[str], table: Optional[LocalityTable] = None) -> Set[str]:
    """
    Extract locality hints from a place name, address or declared area.

    Args:
        text (Optional[str]): Free text to scan.
        table (Optional[LocalityTable]): Alias table, default table if None.

    Returns:
        Set[str]: Raw hints; station names are returned without the "역" suffix.
    """
    if not text:
        return set()
    table = table or load_locality_table()
    hints: Set[str] = set()
    hints.update(_DONG_PATTERN.findall(text))
    hints.update(_STATION_PATTERN.findall(text))
    hints.update(road for road in _ROAD_PATTERN.findall(text) if len(road) >= 2)
    hints.update(alias for alias in table.aliases if alias in text)
    return hints


def resolve_families(hints: Iterable[str], table: Optional[LocalityTable] = None) -> Set[str]:
    """Map raw hints to the neighbourhood families they imply."""
    table = table or load_locality_table()
    families: Set[str] = set()
    for hint in hints:
        if hint.endswith("동"):
            families.add(fold_area(hint))
        if hint in table.aliases:
            families.update(fold_area(a) for a in table.aliases[hint])
        if hint in table.roads:
            families.update(fold_area(a) for a in table.roads[hint])
    return families


def has_common_locality(
    candidate_hints: Set[str],
    roster_hints: Set[str],
    table: Optional[LocalityTable] = None,
) -> bool:
    """
    Whether two hint sets point at the same neighbourhood.

    Missing hints on either side reject the pair: an ambiguous match is never
    accepted silently.
    """
    if not candidate_hints or not roster_hints:
        logger.debug(f"❌ Missing locality hints: {sorted(candidate_hints)} vs {sorted(roster_hints)}")
        return False
    shared = resolve_families(candidate_hints, table) & resolve_families(roster_hints, table)
    if not shared:
        logger.debug(f"❌ No shared locality: {sorted(candidate_hints)} vs {sorted(roster_hints)}")
        return False
    return True
