from typing import Optional
from rapidfuzz.distance import Levenshtein


def normalize(name: Optional[str]) -> str:
    """
    Canonicalize a merchant name for comparison.

    Lower-cases the name and drops whitespace and every character that is not a
    Unicode letter or digit, so "GS25 은평점" and "GS25은평점" compare equal.

    Args:
        name (Optional[str]): Raw merchant or place name.

    Returns:
        str: Normalized name, "" for empty input.
    """
    if not name:
        return ""
    lowered = str(name).strip().lower()
    return "".join(ch for ch in lowered if ch.isalnum())


def similarity(a: str, b: str) -> float:
    """
    Edit-distance similarity in [0, 1]: (max_len - levenshtein(a, b)) / max_len.

    Inputs are compared as given; callers normalize first.
    """
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return (max_len - Levenshtein.distance(a, b)) / max_len


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Similarity of two raw names after normalization."""
    return similarity(normalize(a), normalize(b))


def is_contained(a: str, b: str) -> bool:
    """Whether either normalized name contains the other (both non-empty)."""
    if not a or not b:
        return False
    return a in b or b in a
