"""
Amenity filter matching.

Every active filter must pass (logical AND).  Filters are judged on the
combined review text, the venue name and its type tags.  wifi and
outlets have no rule here: the work-friendliness gate already demands
work evidence, and the two tags only steer the summary wording.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List

from keyword_match import contains_any, covered, normalize_text, term_spans
from search_config import SEARCH_POLICY, SearchPolicy
from venue_types import FilterTag, RawPlaceRecord, VenueKind, ordered_filters
from work_evidence import review_text


@dataclass
class FilterMatch:
    passed: bool
    failed_filters: List[FilterTag] = field(default_factory=list)


@dataclass
class _Context:
    record: RawPlaceRecord
    kind: VenueKind
    text: str           # normalised reviews
    name: str           # normalised name
    now: datetime
    policy: SearchPolicy


def _pet_friendly(ctx: _Context) -> bool:
    terms = ctx.policy.amenity.pet_friendly
    return contains_any(ctx.text, terms) or contains_any(ctx.name, terms)


def _quiet(ctx: _Context) -> bool:
    if ctx.kind == VenueKind.LIBRARY:
        return True
    amenity = ctx.policy.amenity
    quiet_spans = []
    for term in amenity.quiet:
        quiet_spans.extend(term_spans(ctx.text, term, inflect=False))
    if not quiet_spans:
        return False
    # "not too loud" is a quiet mention, not a loud one
    loud = 0
    for term in amenity.loud:
        loud += sum(1 for s in term_spans(ctx.text, term) if not covered(s, quiet_spans))
    return loud <= amenity.max_loud_mentions


def _transit(ctx: _Context) -> bool:
    # No transit-stop data source is wired in; the tag never excludes.
    return True


def _boba(ctx: _Context) -> bool:
    if ctx.kind != VenueKind.CAFE:
        return False
    terms = ctx.policy.amenity.boba
    return contains_any(ctx.text, terms) or contains_any(ctx.name, terms)


def _food(ctx: _Context) -> bool:
    amenity = ctx.policy.amenity
    if any(t in amenity.food_types for t in ctx.record.types):
        return True
    if ctx.kind in (VenueKind.HOTEL, VenueKind.CAFE):
        return contains_any(ctx.text, amenity.food)
    return False


def _late(ctx: _Context) -> bool:
    hours = ctx.record.hours
    if hours is None:
        # hotels without posted hours count as 24-hour
        return ctx.kind == VenueKind.HOTEL
    if hours.is_24_hours:
        return True
    last = hours.last_period_today(ctx.now)
    if last is None:
        return False
    if last.open_ended or last.overnight:
        return True
    return last.close_minute >= ctx.policy.amenity.late_close_minute


_RULES: Dict[FilterTag, Callable[[_Context], bool]] = {
    FilterTag.PET_FRIENDLY: _pet_friendly,
    FilterTag.QUIET: _quiet,
    FilterTag.TRANSIT: _transit,
    FilterTag.BOBA: _boba,
    FilterTag.FOOD: _food,
    FilterTag.LATE: _late,
}


def match_filters(
    record: RawPlaceRecord,
    kind: VenueKind,
    filters: Iterable[FilterTag],
    now: datetime,
    policy: SearchPolicy = SEARCH_POLICY,
) -> FilterMatch:
    """Check a record against every active filter."""
    ctx = _Context(
        record=record,
        kind=kind,
        text=review_text(record.reviews),
        name=normalize_text(record.name),
        now=now,
        policy=policy,
    )
    failed = [
        tag for tag in ordered_filters(filters)
        if tag in _RULES and not _RULES[tag](ctx)
    ]
    return FilterMatch(passed=not failed, failed_filters=failed)

