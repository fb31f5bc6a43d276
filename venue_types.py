"""
Data model for the venue search pipeline.

RawPlaceRecord is the provider-neutral shape every adapter normalises
into.  NormalizedVenue is what the search surfaces to callers; one is
built only after a record has passed classification, work evaluation
and the active amenity filters.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from geo import format_distance


# =============================================================================
# Enums
# =============================================================================

class VenueKind(str, Enum):
    CAFE = "cafe"
    LIBRARY = "library"
    HOTEL = "hotel"
    FOOD_COURT = "food_court"
    OTHER = "other"


class ClassificationPath(str, Enum):
    NAME_ASSERTED = "name_asserted"
    TYPE_VALIDATED = "type_validated"
    CONDITIONAL = "conditional"


class FilterTag(str, Enum):
    WIFI = "wifi"
    OUTLETS = "outlets"
    PET_FRIENDLY = "pet-friendly"
    QUIET = "quiet"
    TRANSIT = "transit"
    BOBA = "boba"
    FOOD = "food"
    LATE = "late"


# Chip order on the search screen; summaries walk filters in this order.
FILTER_ORDER: Tuple[FilterTag, ...] = tuple(FilterTag)
DEFAULT_FILTERS: FrozenSet[FilterTag] = frozenset({FilterTag.WIFI, FilterTag.OUTLETS})


class SearchState(str, Enum):
    IDLE = "idle"
    GEOCODING = "geocoding"
    QUERYING_PROVIDERS = "querying_providers"
    FETCHING_DETAILS = "fetching_details"
    CLASSIFYING = "classifying"
    FILTERING = "filtering"
    DEDUPLICATING = "deduplicating"
    SORTING = "sorting"
    DONE = "done"
    FAILED = "failed"


def parse_filters(values: Optional[Iterable[Any]]) -> FrozenSet[FilterTag]:
    """Coerce filter ids ('wifi', 'pet-friendly', FilterTag.LATE) to a set.

    Raises ValueError on an unknown id so callers can report it.
    """
    tags = set()
    for value in values or ():
        if isinstance(value, FilterTag):
            tags.add(value)
            continue
        text = str(value).strip().lower().replace("_", "-")
        if not text:
            continue
        try:
            tags.add(FilterTag(text))
        except ValueError:
            raise ValueError(f"Unknown filter: {value!r}") from None
    return frozenset(tags)


def ordered_filters(filters: Iterable[FilterTag]) -> List[FilterTag]:
    active = set(filters)
    return [f for f in FILTER_ORDER if f in active]


# =============================================================================
# Opening hours
# =============================================================================

def format_clock(minute_of_day: int) -> str:
    """960 -> '4 pm', 1290 -> '9:30 pm', 0 -> '12 am'."""
    minute_of_day %= 24 * 60
    hour, minute = divmod(minute_of_day, 60)
    suffix = "am" if hour < 12 else "pm"
    hour12 = hour % 12 or 12
    if minute:
        return f"{hour12}:{minute:02d} {suffix}"
    return f"{hour12} {suffix}"


@dataclass(frozen=True)
class Period:
    """One opening interval.  Days use Monday = 0."""
    day: int
    open_minute: int
    close_day: Optional[int] = None      # None with close_minute None: never closes
    close_minute: Optional[int] = None

    @property
    def open_ended(self) -> bool:
        return self.close_minute is None

    @property
    def overnight(self) -> bool:
        return self.close_day is not None and self.close_day != self.day


@dataclass
class OpeningHours:
    periods: List[Period] = field(default_factory=list)
    is_24_hours: bool = False
    open_now: Optional[bool] = None       # as reported by the provider

    def periods_on(self, day: int) -> List[Period]:
        return sorted(
            (p for p in self.periods if p.day == day),
            key=lambda p: p.open_minute,
        )

    def current_period(self, when: datetime) -> Optional[Period]:
        """The period covering *when*, including one carried over from yesterday."""
        day = when.weekday()
        minute = when.hour * 60 + when.minute
        for p in self.periods:
            if p.day == day and minute >= p.open_minute:
                if p.open_ended or p.overnight or minute < p.close_minute:
                    return p
            if p.overnight and not p.open_ended and p.close_day == day and minute < p.close_minute:
                return p
        return None

    def is_open_at(self, when: datetime) -> bool:
        if self.is_24_hours:
            return True
        return self.current_period(when) is not None

    def last_period_today(self, when: datetime) -> Optional[Period]:
        todays = self.periods_on(when.weekday())
        return todays[-1] if todays else None


# =============================================================================
# Records
# =============================================================================

@dataclass
class Review:
    text: str
    author: str = ""
    rating: Optional[float] = None


@dataclass
class RawPlaceRecord:
    """Provider-neutral place record (search stub or full detail)."""
    provider: str                       # "google" | "yelp"
    external_id: str
    name: str
    lat: float
    lng: float
    types: List[str] = field(default_factory=list)   # first entry = primary
    rating: Optional[float] = None
    rating_count: int = 0
    reviews: List[Review] = field(default_factory=list)
    hours: Optional[OpeningHours] = None
    photo_refs: List[str] = field(default_factory=list)
    address: str = ""
    price_level: Optional[int] = None
    wheelchair_accessible: Optional[bool] = None
    url: Optional[str] = None
    details_fetched: bool = False

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.external_id}"

    @property
    def coordinates(self) -> Tuple[float, float]:
        return (self.lat, self.lng)


@dataclass
class NormalizedVenue:
    id: str
    name: str
    coordinates: Tuple[float, float]
    distance_miles: float
    venue_kind: VenueKind
    rating: Optional[float] = None
    review_count: int = 0
    is_open_now: bool = False
    closing_time_display: str = "Unknown"
    is_wheelchair_accessible: bool = False
    address_text: str = ""
    cover_photo_url: str = ""
    work_friendly_summary: str = ""
    data_source: str = ""
    source_url: Optional[str] = None
    classification_path: Optional[ClassificationPath] = None
    source_reviews: List[Review] = field(default_factory=list)

    @property
    def distance_display(self) -> str:
        return format_distance(self.distance_miles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.venue_kind.value,
            "location": {"lat": self.coordinates[0], "lng": self.coordinates[1]},
            "distance_miles": round(self.distance_miles, 2),
            "distance": self.distance_display,
            "rating": self.rating,
            "review_count": self.review_count,
            "is_open": self.is_open_now,
            "closing_time": self.closing_time_display,
            "is_wheelchair_accessible": self.is_wheelchair_accessible,
            "address": self.address_text,
            "cover_photo": self.cover_photo_url,
            "work_friendly_summary": self.work_friendly_summary,
            "data_source": self.data_source,
            "source_url": self.source_url,
            "classification_path": (
                self.classification_path.value if self.classification_path else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizedVenue":
        """Inverse of to_dict(), used to re-sort venues a client sends back."""
        location = data.get("location") or {}
        path = data.get("classification_path")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            coordinates=(float(location.get("lat", 0.0)), float(location.get("lng", 0.0))),
            distance_miles=float(data.get("distance_miles", 0.0)),
            venue_kind=VenueKind(data.get("type", VenueKind.OTHER.value)),
            rating=data.get("rating"),
            review_count=int(data.get("review_count") or 0),
            is_open_now=bool(data.get("is_open", False)),
            closing_time_display=data.get("closing_time") or "Unknown",
            is_wheelchair_accessible=bool(data.get("is_wheelchair_accessible", False)),
            address_text=data.get("address") or "",
            cover_photo_url=data.get("cover_photo") or "",
            work_friendly_summary=data.get("work_friendly_summary") or "",
            data_source=data.get("data_source") or "",
            source_url=data.get("source_url"),
            classification_path=ClassificationPath(path) if path else None,
        )
