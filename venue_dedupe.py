"""
Deduplication of search results.

Query-stage stubs are collapsed on provider:externalId before detail
fetches.  Finished venues from different providers are collapsed on
normalised name plus distance, since Google and Yelp give the same
shop different ids and slightly different names ("Philz Coffee" vs
"Philz Coffee #204").
"""

import re
import unicodedata
from typing import Dict, List

from search_config import SEARCH_POLICY
from venue_types import NormalizedVenue, RawPlaceRecord

_STORE_NUMBER_RE = re.compile(r"#\s*\d+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize_name_key(name: str) -> str:
    """'Philz Coffee #204' -> 'philzcoffee'."""
    folded = unicodedata.normalize("NFKD", name or "")
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch)).lower()
    folded = _STORE_NUMBER_RE.sub(" ", folded)
    return _NON_ALNUM_RE.sub("", folded)


def dedupe_by_external_id(records: List[RawPlaceRecord]) -> List[RawPlaceRecord]:
    """Remove duplicate stubs by provider:externalId, preserving first occurrence."""
    seen: set = set()
    unique: List[RawPlaceRecord] = []
    for r in records:
        if r.external_id and r.key not in seen:
            seen.add(r.key)
            unique.append(r)
    return unique


def dedupe_venues(
    venues: List[NormalizedVenue],
    tolerance_miles: float = SEARCH_POLICY.plan.dedupe_tolerance_miles,
) -> List[NormalizedVenue]:
    """Drop venues whose name key matches an earlier venue within tolerance.

    First seen wins, so dedupe_venues(r + r) == dedupe_venues(r).
    """
    kept: List[NormalizedVenue] = []
    distances_by_key: Dict[str, List[float]] = {}
    for venue in venues:
        key = normalize_name_key(venue.name) or venue.id
        distances = distances_by_key.setdefault(key, [])
        # 1e-9 absorbs float error at exactly the tolerance
        if any(abs(venue.distance_miles - d) <= tolerance_miles + 1e-9 for d in distances):
            continue
        distances.append(venue.distance_miles)
        kept.append(venue)
    return kept
