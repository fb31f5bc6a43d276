"""
Place-data provider adapters.

Each provider wraps one external API and normalises its JSON into
RawPlaceRecord.  Code downstream of normalize_google_place() /
normalize_yelp_business() never looks at provider JSON.

Providers raise ProviderError subclasses; the search orchestrator
decides whether a failure is retried, degraded to an empty result or
fatal for the whole search.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from geo import miles_to_meters
from search_config import SEARCH_POLICY, stock_image_for
from search_trace import get_trace
from venue_types import OpeningHours, Period, RawPlaceRecord, Review, VenueKind

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Provider returned an unusable response."""

    def __init__(self, message: str, provider: str = "", status: str = ""):
        super().__init__(message)
        self.provider = provider
        self.status = status


class ProviderAuthError(ProviderError):
    """Key missing, rejected or not enabled for this API.  Never retried."""


class ProviderTransientError(ProviderError):
    """Rate limit, 5xx, timeout or network failure.  Safe to retry."""


@dataclass(frozen=True)
class PlaceQuery:
    """One search sub-query: a category (type/alias) or a free-text keyword."""
    category: Optional[str] = None
    keyword: Optional[str] = None

    @property
    def label(self) -> str:
        return self.category or f"kw:{self.keyword}"


# =============================================================================
# Shared HTTP plumbing
# =============================================================================

class _ProviderClient:
    """Per-thread requests.Session plus traced GET.

    requests.Session is not thread-safe; the search fans calls out over a
    thread pool, so each worker thread lazily gets its own session.
    """

    provider = ""
    DEFAULT_TIMEOUT = 10

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.trust_env = False
            self._local.session = session
        return session

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    def _traced_get(self, endpoint_name: str, url: str, params: dict) -> Tuple[int, Any]:
        """GET with trace recording.  Returns (http_status, parsed_json)."""
        t0 = time.time()
        try:
            response = self.session.get(
                url, params=params, headers=self._headers(), timeout=self.timeout,
            )
        except requests.Timeout as exc:
            self._record(endpoint_name, t0, 0, "TIMEOUT")
            raise ProviderTransientError(
                f"{self.provider} {endpoint_name} timed out", self.provider, "TIMEOUT",
            ) from exc
        except requests.RequestException as exc:
            self._record(endpoint_name, t0, 0, "NETWORK_ERROR")
            raise ProviderTransientError(
                f"{self.provider} {endpoint_name} failed: {exc}", self.provider, "NETWORK_ERROR",
            ) from exc

        try:
            data = response.json()
        except ValueError:
            data = None
        provider_status = data.get("status", "") if isinstance(data, dict) else ""
        self._record(endpoint_name, t0, response.status_code, str(provider_status))
        return response.status_code, data

    def _record(self, endpoint_name: str, t0: float, status_code: int, provider_status: str):
        trace = get_trace()
        if trace:
            trace.record_call(
                provider=self.provider,
                endpoint=endpoint_name,
                elapsed_ms=int((time.time() - t0) * 1000),
                status_code=status_code,
                provider_status=provider_status,
            )


def _http_error(provider: str, endpoint: str, status_code: int) -> ProviderError:
    if status_code in (401, 403):
        return ProviderAuthError(f"{provider} {endpoint} rejected the API key (HTTP {status_code})",
                                 provider, str(status_code))
    if status_code == 429 or status_code >= 500:
        return ProviderTransientError(f"{provider} {endpoint} HTTP {status_code}",
                                      provider, str(status_code))
    return ProviderError(f"{provider} {endpoint} HTTP {status_code}", provider, str(status_code))


def _parse_hhmm(value: Any) -> Optional[int]:
    """'0930' -> 570.  Returns None for anything malformed."""
    text = str(value or "").strip()
    if len(text) != 4 or not text.isdigit():
        return None
    hours, minutes = int(text[:2]), int(text[2:])
    if hours > 24 or minutes > 59:
        return None
    return hours * 60 + minutes


def _coerce_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _coerce_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# =============================================================================
# Google Places
# =============================================================================

GOOGLE_OK_STATUSES = ("OK", "ZERO_RESULTS")
GOOGLE_AUTH_STATUSES = ("REQUEST_DENIED",)
GOOGLE_TRANSIENT_STATUSES = ("OVER_QUERY_LIMIT", "UNKNOWN_ERROR")
GOOGLE_MAX_RADIUS_M = 50000

GOOGLE_DETAIL_FIELDS = [
    "place_id",
    "name",
    "geometry",
    "types",
    "rating",
    "user_ratings_total",
    "reviews",
    "opening_hours",
    "photos",
    "formatted_address",
    "wheelchair_accessible_entrance",
    "price_level",
    "url",
]


class GoogleMapsClient(_ProviderClient):
    """Client for the Google Geocoding and Places web services."""

    provider = "google"

    def __init__(self, api_key: str, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.api_key = api_key
        self.base_url = "https://maps.googleapis.com/maps/api"

    def _get(self, endpoint_name: str, path: str, params: dict) -> dict:
        params = dict(params, key=self.api_key)
        status_code, data = self._traced_get(endpoint_name, f"{self.base_url}/{path}", params)
        if status_code != 200:
            raise _http_error(self.provider, endpoint_name, status_code)
        if not isinstance(data, dict):
            raise ProviderTransientError(f"google {endpoint_name} returned a non-JSON body",
                                         self.provider, "BAD_BODY")
        status = data.get("status", "")
        if status in GOOGLE_OK_STATUSES:
            return data
        message = f"google {endpoint_name} failed: {status} {data.get('error_message', '')}".strip()
        if status in GOOGLE_AUTH_STATUSES:
            raise ProviderAuthError(message, self.provider, status)
        if status in GOOGLE_TRANSIENT_STATUSES:
            raise ProviderTransientError(message, self.provider, status)
        raise ProviderError(message, self.provider, status)

    def geocode(self, address: str) -> Tuple[float, float]:
        """Convert an address to (lat, lng)."""
        data = self._get("geocode", "geocode/json", {"address": address})
        results = data.get("results") or []
        if not results:
            raise ProviderError(f"Geocoding found nothing for {address!r}", self.provider, "ZERO_RESULTS")
        first = results[0] if isinstance(results[0], dict) else {}
        location = (first.get("geometry") or {}).get("location") or {}
        lat, lng = _coerce_float(location.get("lat")), _coerce_float(location.get("lng"))
        if lat is None or lng is None:
            raise ProviderError(f"Geocoding result for {address!r} has no coordinates",
                                self.provider, "BAD_RESULT")
        return lat, lng

    def places_nearby(
        self,
        lat: float,
        lng: float,
        radius_meters: int,
        place_type: Optional[str] = None,
        keyword: Optional[str] = None,
    ) -> List[Dict]:
        params = {
            "location": f"{lat},{lng}",
            "radius": min(int(radius_meters), GOOGLE_MAX_RADIUS_M),
        }
        if place_type:
            params["type"] = place_type
        if keyword:
            params["keyword"] = keyword
        data = self._get("nearby_search", "place/nearbysearch/json", params)
        return data.get("results", [])

    def place_details(self, place_id: str, fields: Optional[List[str]] = None) -> Dict:
        params = {
            "place_id": place_id,
            "fields": ",".join(fields or GOOGLE_DETAIL_FIELDS),
        }
        data = self._get("place_details", "place/details/json", params)
        return data.get("result", {})

    def photo_url(self, photo_reference: str, max_width: int = 400) -> str:
        return (
            f"{self.base_url}/place/photo"
            f"?maxwidth={max_width}&photo_reference={photo_reference}&key={self.api_key}"
        )


def _google_day(value: Any) -> Optional[int]:
    """Google numbers days from Sunday = 0; convert to Monday = 0."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        return None
    day = _coerce_int(value, default=-1)
    if not 0 <= day <= 6:
        return None
    return (day - 1) % 7


def _google_hours(opening_hours: Any) -> Optional[OpeningHours]:
    if not isinstance(opening_hours, dict):
        return None
    open_now = opening_hours.get("open_now")
    periods: List[Period] = []
    for raw in opening_hours.get("periods") or []:
        if not isinstance(raw, dict) or not isinstance(raw.get("open"), dict):
            continue
        open_minute = _parse_hhmm(raw["open"].get("time"))
        day = _google_day(raw["open"].get("day"))
        if open_minute is None or day is None:
            continue
        close = raw.get("close")
        if isinstance(close, dict):
            close_minute = _parse_hhmm(close.get("time"))
            close_day = _google_day(close.get("day"))
            if close_minute is None or close_day is None:
                continue
            periods.append(Period(day, open_minute, close_day, close_minute))
        else:
            periods.append(Period(day, open_minute))

    # Always-open places come back as a single open period with no close.
    is_24 = len(periods) == 1 and periods[0].open_ended and periods[0].open_minute == 0
    return OpeningHours(
        periods=periods,
        is_24_hours=is_24,
        open_now=open_now if isinstance(open_now, bool) else None,
    )


def normalize_google_place(item: Dict, details_fetched: bool = False) -> RawPlaceRecord:
    """Map a Nearby Search result or Place Details result to RawPlaceRecord."""
    location = ((item.get("geometry") or {}).get("location")) or {}
    reviews = [
        Review(
            text=str(r.get("text") or ""),
            author=str(r.get("author_name") or ""),
            rating=_coerce_float(r.get("rating")),
        )
        for r in item.get("reviews") or []
        if isinstance(r, dict) and r.get("text")
    ]
    photos = [
        p["photo_reference"]
        for p in item.get("photos") or []
        if isinstance(p, dict) and p.get("photo_reference")
    ]
    price = item.get("price_level")
    wheelchair = item.get("wheelchair_accessible_entrance")
    return RawPlaceRecord(
        provider="google",
        external_id=str(item.get("place_id") or ""),
        name=str(item.get("name") or ""),
        lat=_coerce_float(location.get("lat")) or 0.0,
        lng=_coerce_float(location.get("lng")) or 0.0,
        types=[str(t) for t in item.get("types") or []],
        rating=_coerce_float(item.get("rating")),
        rating_count=_coerce_int(item.get("user_ratings_total")),
        reviews=reviews,
        hours=_google_hours(item.get("opening_hours")),
        photo_refs=photos,
        address=str(item.get("formatted_address") or item.get("vicinity") or ""),
        price_level=price if isinstance(price, int) else None,
        wheelchair_accessible=wheelchair if isinstance(wheelchair, bool) else None,
        url=item.get("url"),
        details_fetched=details_fetched,
    )


# =============================================================================
# Yelp Fusion
# =============================================================================

YELP_MAX_RADIUS_M = 40000
YELP_SEARCH_LIMIT = 50

# Yelp category aliases mapped onto the Google-style type tags the
# classifier understands.  Unmapped aliases pass through unchanged.
YELP_CATEGORY_TYPES = {
    "coffee": "coffee_shop",
    "coffeeroasteries": "coffee_shop",
    "cafes": "cafe",
    "themedcafes": "cafe",
    "bubbletea": "cafe",
    "tea": "cafe",
    "libraries": "library",
    "hotels": "lodging",
    "hostels": "lodging",
    "bedbreakfast": "lodging",
    "foodcourt": "food_court",
    "bakeries": "bakery",
    "restaurants": "restaurant",
    "sandwiches": "meal_takeaway",
    "donuts": "donut_shop",
    "servicestations": "gas_station",
    "convenience": "convenience_store",
    "giftshops": "gift_shop",
    "golf": "golf_course",
    "grocery": "supermarket",
    "bars": "bar",
    "icecream": "ice_cream_shop",
}


class YelpFusionClient(_ProviderClient):
    """Client for the Yelp Fusion business endpoints."""

    provider = "yelp"

    def __init__(self, api_key: str, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.api_key = api_key
        self.base_url = "https://api.yelp.com/v3"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "User-Agent": "RemoteRover/1.0",
        }

    def _get(self, endpoint_name: str, path: str, params: dict) -> dict:
        status_code, data = self._traced_get(endpoint_name, f"{self.base_url}/{path}", params)
        if status_code != 200:
            raise _http_error(self.provider, endpoint_name, status_code)
        if not isinstance(data, dict):
            raise ProviderTransientError(f"yelp {endpoint_name} returned a non-JSON body",
                                         self.provider, "BAD_BODY")
        return data

    def search(
        self,
        lat: float,
        lng: float,
        radius_meters: int,
        categories: Optional[str] = None,
        term: Optional[str] = None,
    ) -> List[Dict]:
        params: Dict[str, Any] = {
            "latitude": lat,
            "longitude": lng,
            "radius": min(int(radius_meters), YELP_MAX_RADIUS_M),
            "limit": YELP_SEARCH_LIMIT,
        }
        if categories:
            params["categories"] = categories
        if term:
            params["term"] = term
        data = self._get("business_search", "businesses/search", params)
        return data.get("businesses", [])

    def business(self, business_id: str) -> Dict:
        return self._get("business_details", f"businesses/{business_id}", {})

    def reviews(self, business_id: str) -> List[Dict]:
        data = self._get("business_reviews", f"businesses/{business_id}/reviews", {"limit": 20})
        return data.get("reviews", [])


def _yelp_hours(hours: Any) -> Optional[OpeningHours]:
    if not isinstance(hours, list) or not hours:
        return None
    regular = next(
        (h for h in hours if isinstance(h, dict) and h.get("hours_type", "REGULAR") == "REGULAR"),
        None,
    )
    if regular is None:
        return None
    periods: List[Period] = []
    for raw in regular.get("open") or []:
        if not isinstance(raw, dict):
            continue
        start = _parse_hhmm(raw.get("start"))
        end = _parse_hhmm(raw.get("end"))
        if start is None or end is None:
            continue
        day = _coerce_int(raw.get("day")) % 7
        overnight = bool(raw.get("is_overnight")) or end <= start
        close_day = (day + 1) % 7 if overnight else day
        periods.append(Period(day, start, close_day, end))

    all_day = {p.day for p in periods if p.open_minute == 0 and p.overnight and p.close_minute == 0}
    open_now = regular.get("is_open_now")
    return OpeningHours(
        periods=periods,
        is_24_hours=len(all_day) == 7,
        open_now=open_now if isinstance(open_now, bool) else None,
    )


def normalize_yelp_business(
    business: Dict,
    reviews: Optional[List[Dict]] = None,
    details_fetched: bool = False,
) -> RawPlaceRecord:
    """Map a Yelp business (search hit or details) to RawPlaceRecord."""
    coords = business.get("coordinates") or {}
    aliases = [
        str(c.get("alias"))
        for c in business.get("categories") or []
        if isinstance(c, dict) and c.get("alias")
    ]
    types = [YELP_CATEGORY_TYPES.get(a, a) for a in aliases]
    location = business.get("location") or {}
    address_parts = location.get("display_address") or []
    photos = [p for p in business.get("photos") or [] if isinstance(p, str) and p]
    if not photos and business.get("image_url"):
        photos = [business["image_url"]]
    price = business.get("price")
    return RawPlaceRecord(
        provider="yelp",
        external_id=str(business.get("id") or ""),
        name=str(business.get("name") or ""),
        lat=_coerce_float(coords.get("latitude")) or 0.0,
        lng=_coerce_float(coords.get("longitude")) or 0.0,
        types=types,
        rating=_coerce_float(business.get("rating")),
        rating_count=_coerce_int(business.get("review_count")),
        reviews=[
            Review(
                text=str(r.get("text") or ""),
                author=str((r.get("user") or {}).get("name") or ""),
                rating=_coerce_float(r.get("rating")),
            )
            for r in reviews or []
            if isinstance(r, dict) and r.get("text")
        ],
        hours=_yelp_hours(business.get("hours")),
        photo_refs=photos,
        address=", ".join(str(p) for p in address_parts),
        price_level=len(price) if isinstance(price, str) and price else None,
        url=business.get("url"),
        details_fetched=details_fetched,
    )


# =============================================================================
# Providers
# =============================================================================

class PlaceProvider:
    """One place-data source as the search orchestrator sees it."""

    name: str = ""

    def queries(self) -> List[PlaceQuery]:
        raise NotImplementedError

    def search_nearby(
        self, origin: Tuple[float, float], radius_miles: float, query: PlaceQuery,
    ) -> List[RawPlaceRecord]:
        raise NotImplementedError

    def fetch_details(self, stub: RawPlaceRecord) -> RawPlaceRecord:
        raise NotImplementedError

    def cover_photo_url(self, record: RawPlaceRecord, kind: VenueKind) -> str:
        """Displayable image for a record; stock photo by kind when absent."""
        return stock_image_for(kind.value)


class GooglePlacesProvider(PlaceProvider):
    name = "google"

    def __init__(self, client: GoogleMapsClient):
        self.client = client

    def queries(self) -> List[PlaceQuery]:
        plan = SEARCH_POLICY.plan
        return (
            [PlaceQuery(category=c) for c in plan.google_categories]
            + [PlaceQuery(keyword=k) for k in plan.google_keywords]
        )

    def search_nearby(self, origin, radius_miles, query):
        results = self.client.places_nearby(
            origin[0], origin[1], miles_to_meters(radius_miles),
            place_type=query.category, keyword=query.keyword,
        )
        return [normalize_google_place(item) for item in results if item.get("place_id")]

    def fetch_details(self, stub):
        details = self.client.place_details(stub.external_id)
        if not details:
            return stub
        record = normalize_google_place(details, details_fetched=True)
        if not record.external_id:
            record.external_id = stub.external_id
        if not record.types:
            record.types = list(stub.types)
        if not (record.lat or record.lng):
            record.lat, record.lng = stub.lat, stub.lng
        return record

    def cover_photo_url(self, record, kind):
        if record.photo_refs and self.client.api_key:
            return self.client.photo_url(record.photo_refs[0])
        return stock_image_for(kind.value)


class YelpFusionProvider(PlaceProvider):
    name = "yelp"

    def __init__(self, client: YelpFusionClient):
        self.client = client

    def queries(self) -> List[PlaceQuery]:
        return [PlaceQuery(category=c) for c in SEARCH_POLICY.plan.yelp_categories]

    def search_nearby(self, origin, radius_miles, query):
        results = self.client.search(
            origin[0], origin[1], miles_to_meters(radius_miles),
            categories=query.category, term=query.keyword,
        )
        return [normalize_yelp_business(b) for b in results if b.get("id")]

    def fetch_details(self, stub):
        business = self.client.business(stub.external_id)
        try:
            reviews = self.client.reviews(stub.external_id)
        except ProviderTransientError:
            logger.debug("Yelp reviews unavailable for %s", stub.external_id, exc_info=True)
            reviews = []
        record = normalize_yelp_business(business, reviews, details_fetched=True)
        if not record.external_id:
            record.external_id = stub.external_id
        return record

    def cover_photo_url(self, record, kind):
        if record.photo_refs:
            return record.photo_refs[0]
        return stock_image_for(kind.value)


def build_providers(
    google_api_key: Optional[str] = None,
    yelp_api_key: Optional[str] = None,
) -> List[PlaceProvider]:
    """Providers for every configured key (env vars when not passed)."""
    google_api_key = google_api_key or os.environ.get("GOOGLE_MAPS_API_KEY")
    yelp_api_key = yelp_api_key or os.environ.get("YELP_API_KEY")
    providers: List[PlaceProvider] = []
    if google_api_key:
        providers.append(GooglePlacesProvider(GoogleMapsClient(google_api_key)))
    if yelp_api_key:
        providers.append(YelpFusionProvider(YelpFusionClient(yelp_api_key)))
    if not providers:
        logger.warning("No place providers configured; set GOOGLE_MAPS_API_KEY and/or YELP_API_KEY")
    return providers
