"""
Place-type classification.

Decides from a provider's ordered type list (first tag = primary) and
the venue name whether a place is eligible at all, which evidence path
it took, and which VenueKind it is.  Work evidence is judged separately
in work_evidence.py; a cafe can be classified here and still be
rejected there.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from keyword_match import normalize_text
from search_config import SEARCH_POLICY, SearchPolicy
from venue_types import ClassificationPath, VenueKind

_KIND_BY_TYPE = {
    "cafe": VenueKind.CAFE,
    "coffee_shop": VenueKind.CAFE,
    "bakery": VenueKind.CAFE,
    "library": VenueKind.LIBRARY,
    "lodging": VenueKind.HOTEL,
    "food_court": VenueKind.FOOD_COURT,
}


@dataclass(frozen=True)
class ClassificationResult:
    eligible: bool
    path: Optional[ClassificationPath]
    venue_kind: VenueKind
    reason: str = ""


def venue_kind_for(types: Sequence[str]) -> VenueKind:
    """First tag with a known kind wins; otherwise OTHER."""
    for tag in types:
        kind = _KIND_BY_TYPE.get(tag)
        if kind is not None:
            return kind
    return VenueKind.OTHER


def _rejected(reason: str, kind: VenueKind = VenueKind.OTHER) -> ClassificationResult:
    return ClassificationResult(eligible=False, path=None, venue_kind=kind, reason=reason)


def _hotel_exclusion(name: str, price_level: Optional[int], policy: SearchPolicy) -> str:
    hotel = policy.hotel
    folded = normalize_text(name)
    for marker in hotel.budget_chain_names:
        if normalize_text(marker) in folded:
            return f"budget lodging ({marker})"
    if (
        hotel.min_price_level is not None
        and price_level is not None
        and price_level < hotel.min_price_level
    ):
        return f"price tier {price_level} below {hotel.min_price_level}"
    return ""


def classify_place(
    types: Sequence[str],
    name: str = "",
    price_level: Optional[int] = None,
    policy: SearchPolicy = SEARCH_POLICY,
) -> ClassificationResult:
    """Classify one place.  Rules are ordered; the first that matches decides.

    1. Name carries a cafe/coffee marker -> name-asserted (unless the
       primary type is on the rejection list).
    2. Primary type is an accepted type -> type-validated.
    3. Primary type is rejected -> reject.
    4. Primary type is conditional and a secondary tag is cafe-like ->
       conditional (stronger work evidence required downstream).
    5. Otherwise reject.

    Lodging that fails the hotel policy is rejected whatever the path.
    """
    rules = policy.types
    types = [t for t in (types or []) if t]
    primary = types[0] if types else ""
    kind = venue_kind_for(types)
    folded_name = normalize_text(name)

    if folded_name and any(marker in folded_name for marker in rules.cafe_name_markers):
        if primary in rules.rejected:
            return _rejected(f"primary type {primary} rejected despite cafe name", kind)
        path = ClassificationPath.NAME_ASSERTED
        if kind == VenueKind.OTHER:
            kind = VenueKind.CAFE
    elif primary in rules.accepted:
        path = ClassificationPath.TYPE_VALIDATED
    elif primary in rules.rejected:
        return _rejected(f"primary type {primary} rejected", kind)
    elif primary in rules.conditional and any(
        t in rules.conditional_secondary for t in types[1:]
    ):
        path = ClassificationPath.CONDITIONAL
    else:
        return _rejected(f"primary type {primary or 'missing'} not eligible", kind)

    if kind == VenueKind.HOTEL:
        exclusion = _hotel_exclusion(name, price_level, policy)
        if exclusion:
            return _rejected(exclusion, kind)

    return ClassificationResult(eligible=True, path=path, venue_kind=kind, reason=path.value)


def is_cafe_like(kind: VenueKind) -> bool:
    return kind in (VenueKind.CAFE, VenueKind.FOOD_COURT)
