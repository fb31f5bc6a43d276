#!/usr/bin/env python3
"""
Workspace Finder

Finds work-friendly venues (cafes, libraries, hotel lobbies, food courts)
near a location by querying every configured place provider, then
classifies, evaluates, filters, deduplicates and ranks the results.

Usage:
    python workspace_search.py "San Francisco, CA" --radius 5 --filter wifi --sort rating
    python workspace_search.py "37.7749,-122.4194" --filter quiet --filter late --json

Environment variables:
    GOOGLE_MAPS_API_KEY  - Google Places / Geocoding key
    YELP_API_KEY         - Yelp Fusion key (optional second provider)
    SEARCH_MAX_FANOUT    - concurrent provider calls per search (default 8)
"""

import argparse
import json
import logging
import os
import re
import sys
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

from amenity_filters import match_filters
from geo import distance_miles
from place_classifier import ClassificationResult, classify_place
from provider_backends import (
    GooglePlacesProvider,
    PlaceProvider,
    PlaceQuery,
    ProviderAuthError,
    ProviderError,
    ProviderTransientError,
    build_providers,
)
from search_config import (
    DEFAULT_COORDINATES,
    DEFAULT_RADIUS_MILES,
    SEARCH_POLICY,
    SearchPolicy,
    stock_image_for,
)
from search_trace import TraceContext, get_trace, set_trace
from venue_dedupe import dedupe_by_external_id, dedupe_venues
from venue_types import (
    DEFAULT_FILTERS,
    FILTER_ORDER,
    FilterTag,
    NormalizedVenue,
    RawPlaceRecord,
    SearchState,
    VenueKind,
    format_clock,
    ordered_filters,
    parse_filters,
)
from work_evidence import evaluate_work_friendliness
from work_summary import generate_summary

load_dotenv()

logger = logging.getLogger(__name__)

SORT_KEYS = ("distance", "rating")
RETRY_DELAY_SECONDS = 0.5

_LATLNG_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


# =============================================================================
# Ranking
# =============================================================================

def sort_venues(venues: Iterable[NormalizedVenue], by: str = "distance") -> List[NormalizedVenue]:
    """Return a new list ordered by distance or rating.

    Ties break on distance, then name, then id, so repeated sorts are
    deterministic.  Venues are not modified.
    """
    if by == "distance":
        key = lambda v: (v.distance_miles, v.name.lower(), v.id)
    elif by == "rating":
        key = lambda v: (-(v.rating or 0.0), v.distance_miles, v.name.lower(), v.id)
    else:
        raise ValueError(f"Unknown sort key {by!r}; expected one of {', '.join(SORT_KEYS)}")
    return sorted(venues, key=key)


# =============================================================================
# Search report
# =============================================================================

@dataclass
class SearchReport:
    """Outcome of one search, successful or not."""
    generation: int
    location_query: str
    radius_miles: float
    filters: List[FilterTag]
    sort_by: str
    trace_id: str = ""
    state: SearchState = SearchState.IDLE
    failure_reason: str = ""
    coordinates: Optional[Tuple[float, float]] = None
    geocode_degraded: bool = False
    superseded: bool = False
    provider_failures: List[str] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)
    venues: List[NormalizedVenue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation": self.generation,
            "trace_id": self.trace_id,
            "location": self.location_query,
            "coordinates": (
                {"lat": self.coordinates[0], "lng": self.coordinates[1]}
                if self.coordinates else None
            ),
            "geocode_degraded": self.geocode_degraded,
            "radius_miles": self.radius_miles,
            "filters": [f.value for f in self.filters],
            "sort": self.sort_by,
            "state": self.state.value,
            "failure_reason": self.failure_reason or None,
            "superseded": self.superseded,
            "provider_failures": list(self.provider_failures),
            "counts": dict(self.counts),
            "policy_version": SEARCH_POLICY.version,
            "venues": [v.to_dict() for v in self.venues],
        }


# =============================================================================
# Stage helpers
# =============================================================================

def _timed_stage(stage_name, fn, *args, **kwargs):
    """Run *fn* with timing.  Logs duration and re-raises on failure."""
    trace = get_trace()
    if trace:
        trace.start_stage(stage_name)
    t0 = time.time()
    try:
        result = fn(*args, **kwargs)
        t1 = time.time()
        if trace:
            trace.record_stage(stage_name, t0, t1)
            trace.end_stage()
        else:
            logger.info("  [stage] %s OK (%.1fs)", stage_name, t1 - t0)
        return result
    except Exception as exc:
        t1 = time.time()
        if trace:
            trace.record_stage(
                stage_name, t0, t1,
                error_class=type(exc).__name__,
                error_message=str(exc)[:200],
            )
            trace.end_stage()
        else:
            logger.warning("  [stage] %s FAILED (%.1fs)", stage_name, t1 - t0, exc_info=True)
        raise


def _retry_once(fn: Callable, *args, delay: float = RETRY_DELAY_SECONDS):
    """Call *fn*, retrying once on a transient provider error."""
    try:
        return fn(*args)
    except ProviderTransientError as exc:
        logger.info("Transient provider error, retrying once: %s", exc)
        if delay:
            time.sleep(delay)
        return fn(*args)


def _in_thread(parent_trace, fn, *args, **kwargs):
    """Run *fn* in a pool thread with the parent's trace context."""
    set_trace(parent_trace)
    return fn(*args, **kwargs)


def parse_latlng(text: str) -> Optional[Tuple[float, float]]:
    """'37.77,-122.41' -> (37.77, -122.41); None if not a coordinate pair."""
    match = _LATLNG_RE.match(text or "")
    if not match:
        return None
    lat, lng = float(match.group(1)), float(match.group(2))
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return lat, lng


def _closing_display(record: RawPlaceRecord, kind: VenueKind, now: datetime) -> Tuple[bool, str]:
    """(is_open_now, closing-time label) with safe defaults for missing hours."""
    hours = record.hours
    if hours is None:
        if kind == VenueKind.HOTEL:
            return True, "Open 24 hours"
        return False, "Unknown"
    if hours.is_24_hours:
        return True, "Open 24 hours"
    if not hours.periods:
        return bool(hours.open_now), "Unknown"
    period = hours.current_period(now)
    if period is None:
        return False, "Closed"
    if period.open_ended:
        return True, "Open 24 hours"
    return True, format_clock(period.close_minute)


# =============================================================================
# Orchestrator
# =============================================================================

class WorkspaceFinder:
    """Runs venue searches against a fixed set of providers.

    One finder serves one user session: starting a new search supersedes
    any search still in flight.  A superseded search stops at its next
    stage boundary, returns no venues and never overwrites `results`.
    """

    def __init__(
        self,
        providers: Sequence[PlaceProvider],
        geocoder=None,
        policy: SearchPolicy = SEARCH_POLICY,
        clock: Optional[Callable[[], datetime]] = None,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ):
        self.providers = list(providers)
        if geocoder is None:
            geocoder = next(
                (p.client for p in self.providers if isinstance(p, GooglePlacesProvider)),
                None,
            )
        self.geocoder = geocoder
        self.policy = policy
        self.clock = clock or datetime.now
        self.retry_delay = retry_delay

        self.state = SearchState.IDLE
        self.failure_reason = ""
        self.results: List[NormalizedVenue] = []
        self.last_report: Optional[SearchReport] = None
        self.last_coordinates: Optional[Tuple[float, float]] = None

        self._generation = 0
        self._lock = threading.Lock()

    # -- generation bookkeeping -------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    def _begin(self) -> int:
        with self._lock:
            self._generation += 1
            self.state = SearchState.IDLE
            self.failure_reason = ""
            return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _enter(self, generation: int, report: SearchReport, state: SearchState) -> bool:
        """Advance to *state*.  False when a newer search has started."""
        with self._lock:
            if not self._is_current(generation):
                report.superseded = True
                report.venues = []
                return False
            self.state = state
            report.state = state
            return True

    def _fail(self, generation: int, report: SearchReport, reason: str) -> SearchReport:
        logger.warning("Search gen=%d failed: %s", generation, reason)
        report.failure_reason = reason
        report.venues = []
        if self._enter(generation, report, SearchState.FAILED):
            self.failure_reason = reason
            self.results = []
            self.last_report = report
        return report

    # -- public API --------------------------------------------------------

    def search(
        self,
        location_query: str,
        radius_miles: float = DEFAULT_RADIUS_MILES,
        active_filters: Optional[Iterable] = None,
        sort_by: str = "distance",
    ) -> List[NormalizedVenue]:
        """Sorted, deduplicated, filtered venues near *location_query*."""
        return self.run(location_query, radius_miles, active_filters, sort_by).venues

    def run(
        self,
        location_query: str,
        radius_miles: float = DEFAULT_RADIUS_MILES,
        active_filters: Optional[Iterable] = None,
        sort_by: str = "distance",
    ) -> SearchReport:
        """Run one search and return its full report."""
        if sort_by not in SORT_KEYS:
            raise ValueError(f"Unknown sort key {sort_by!r}; expected one of {', '.join(SORT_KEYS)}")
        radius = float(radius_miles)
        if radius <= 0:
            raise ValueError("radius_miles must be positive")
        radius = min(radius, self.policy.plan.max_radius_miles)
        filters = DEFAULT_FILTERS if active_filters is None else parse_filters(active_filters)

        generation = self._begin()
        trace = TraceContext(
            trace_id=uuid.uuid4().hex[:12],
            generation=generation,
            policy_version=self.policy.version,
        )
        previous_trace = get_trace()
        set_trace(trace)
        report = SearchReport(
            generation=generation,
            location_query=location_query or "",
            radius_miles=radius,
            filters=ordered_filters(filters),
            sort_by=sort_by,
            trace_id=trace.trace_id,
        )
        logger.info(
            "Search gen=%d trace=%s location=%r radius=%.1f filters=%s sort=%s",
            generation, trace.trace_id, location_query, radius,
            [f.value for f in report.filters], sort_by,
        )
        try:
            self._run_stages(generation, report, filters)
        except Exception as exc:
            self._fail(generation, report, f"{type(exc).__name__}: {exc}")
            raise
        finally:
            report.counts = dict(trace.funnel)
            trace.log_summary()
            set_trace(previous_trace)
        return report

    # -- stages ------------------------------------------------------------

    def _run_stages(self, generation: int, report: SearchReport, filters) -> None:
        trace = get_trace()
        now = self.clock()

        if not self._enter(generation, report, SearchState.GEOCODING):
            return
        origin, degraded = _timed_stage("geocoding", self._geocode, report.location_query)
        report.coordinates = origin
        report.geocode_degraded = degraded

        if not self.providers:
            self._fail(generation, report, "no place providers configured")
            return

        if not self._enter(generation, report, SearchState.QUERYING_PROVIDERS):
            return
        stubs, failures, attempted = _timed_stage(
            "querying_providers", self._query_providers, origin, report.radius_miles,
        )
        report.provider_failures = failures
        trace.record_count("stubs", len(stubs))
        if attempted and len(failures) == attempted:
            self._fail(generation, report, f"all {attempted} provider queries failed")
            return

        if not self._enter(generation, report, SearchState.FETCHING_DETAILS):
            return
        candidates = self._prescreen(stubs, origin, report.radius_miles)
        records = _timed_stage("fetching_details", self._fetch_details, candidates)
        trace.record_count("detailed", sum(1 for r in records if r.details_fetched))

        if not self._enter(generation, report, SearchState.CLASSIFYING):
            return
        accepted = _timed_stage("classifying", self._classify, records)
        trace.record_count("work_friendly", len(accepted))

        if not self._enter(generation, report, SearchState.FILTERING):
            return
        venues = _timed_stage("filtering", self._filter_and_build, accepted, origin, filters, now)
        trace.record_count("filtered", len(venues))

        if not self._enter(generation, report, SearchState.DEDUPLICATING):
            return
        venues = _timed_stage(
            "deduplicating", dedupe_venues, venues, self.policy.plan.dedupe_tolerance_miles,
        )
        trace.record_count("deduplicated", len(venues))

        if not self._enter(generation, report, SearchState.SORTING):
            return
        venues = _timed_stage("sorting", sort_venues, venues, report.sort_by)

        with self._lock:
            if not self._is_current(generation):
                report.superseded = True
                report.venues = []
                return
            report.venues = venues
            report.state = SearchState.DONE
            self.state = SearchState.DONE
            self.results = venues
            self.last_report = report
            if not report.geocode_degraded:
                self.last_coordinates = report.coordinates
        logger.info("Search gen=%d done: %d venues", generation, len(venues))

    def _geocode(self, location_query: str) -> Tuple[Tuple[float, float], bool]:
        """Resolve the search centre; falls back rather than failing."""
        coords = parse_latlng(location_query)
        if coords:
            return coords, False
        if location_query and self.geocoder is not None:
            try:
                return _retry_once(self.geocoder.geocode, location_query, delay=self.retry_delay), False
            except ProviderError as exc:
                logger.warning("Geocoding %r failed, using fallback location: %s", location_query, exc)
            except Exception:
                logger.error("Unexpected geocoding error for %r, using fallback location",
                             location_query, exc_info=True)
        fallback = self.last_coordinates or DEFAULT_COORDINATES
        return fallback, True

    def _query_providers(
        self, origin: Tuple[float, float], radius: float,
    ) -> Tuple[List[RawPlaceRecord], List[str], int]:
        """Fan out providers x radii x queries; collect, then merge in submit order."""
        tasks: List[Tuple[PlaceProvider, float, PlaceQuery]] = [
            (provider, round(radius * fraction, 2), query)
            for provider in self.providers
            for fraction in self.policy.plan.radius_fractions
            for query in provider.queries()
        ]
        if not tasks:
            return [], [], 0

        parent_trace = get_trace()
        workers = max(1, min(self.policy.plan.max_fanout, len(tasks)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(_in_thread, parent_trace, self._query_one, provider, origin, r, query)
                for provider, r, query in tasks
            ]
            outcomes = [f.result() for f in futures]

        stubs: List[RawPlaceRecord] = []
        failures: List[str] = []
        for records, error in outcomes:
            if error:
                failures.append(error)
            else:
                stubs.extend(records)
        return stubs, failures, len(tasks)

    def _query_one(
        self, provider: PlaceProvider, origin, radius: float, query: PlaceQuery,
    ) -> Tuple[List[RawPlaceRecord], str]:
        """One sub-query.  Provider errors become an empty result plus a failure note."""
        label = f"{provider.name}/{query.label}@{radius}mi"
        try:
            return _retry_once(
                provider.search_nearby, origin, radius, query, delay=self.retry_delay,
            ), ""
        except ProviderAuthError as exc:
            logger.error("Provider auth failure for %s: %s", label, exc)
            return [], f"{label}: auth: {exc}"
        except ProviderError as exc:
            logger.warning("Provider query %s failed: %s", label, exc)
            return [], f"{label}: {exc}"
        except Exception as exc:
            logger.error("Provider query %s raised unexpectedly", label, exc_info=True)
            return [], f"{label}: {type(exc).__name__}: {exc}"

    def _prescreen(
        self, stubs: List[RawPlaceRecord], origin, radius: float,
    ) -> List[RawPlaceRecord]:
        """Unique, in-radius, classifier-eligible stubs, nearest first, capped."""
        trace = get_trace()
        unique = dedupe_by_external_id(stubs)
        trace.record_count("unique_stubs", len(unique))

        with_distance = [(distance_miles(origin, s.coordinates), s) for s in unique]
        in_radius = [(d, s) for d, s in with_distance if d <= radius]
        trace.record_count("within_radius", len(in_radius))

        eligible = [
            (d, s) for d, s in in_radius
            if classify_place(s.types, s.name, s.price_level, self.policy).eligible
        ]
        eligible.sort(key=lambda pair: (pair[0], pair[1].key))
        capped = [s for _, s in eligible[: self.policy.plan.max_detail_fetches]]
        trace.record_count("prescreened", len(capped))
        return capped

    def _fetch_details(self, stubs: List[RawPlaceRecord]) -> List[RawPlaceRecord]:
        if not stubs:
            return []
        providers = {p.name: p for p in self.providers}
        parent_trace = get_trace()
        workers = max(1, min(self.policy.plan.max_fanout, len(stubs)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(_in_thread, parent_trace, self._detail_one, providers.get(s.provider), s)
                for s in stubs
            ]
            return [f.result() for f in futures]

    def _detail_one(self, provider: Optional[PlaceProvider], stub: RawPlaceRecord) -> RawPlaceRecord:
        """Full record for *stub*; the stub itself when the lookup fails."""
        if provider is None:
            return stub
        try:
            return _retry_once(provider.fetch_details, stub, delay=self.retry_delay)
        except ProviderError as exc:
            logger.warning("Details for %s unavailable, using search result: %s", stub.key, exc)
            return stub
        except Exception:
            logger.error("Details for %s raised unexpectedly, using search result",
                         stub.key, exc_info=True)
            return stub

    def _classify(
        self, records: List[RawPlaceRecord],
    ) -> List[Tuple[RawPlaceRecord, ClassificationResult]]:
        accepted = []
        for record in records:
            classification = classify_place(
                record.types, record.name, record.price_level, self.policy,
            )
            if not classification.eligible:
                logger.debug("Rejected %s (%s): %s", record.name, record.key, classification.reason)
                continue
            evidence = evaluate_work_friendliness(
                record.name, record.reviews, classification, self.policy,
            )
            if not evidence.accepted:
                logger.debug("Not work-friendly %s (%s): %s", record.name, record.key, evidence.reason)
                continue
            accepted.append((record, classification))
        return accepted

    def _filter_and_build(self, accepted, origin, filters, now: datetime) -> List[NormalizedVenue]:
        venues = []
        for record, classification in accepted:
            try:
                match = match_filters(record, classification.venue_kind, filters, now, self.policy)
                if not match.passed:
                    logger.debug(
                        "Filtered out %s: %s", record.name, [f.value for f in match.failed_filters],
                    )
                    continue
                venues.append(self._build_venue(record, classification, origin, filters, now))
            except Exception:
                # one malformed record is dropped, not the whole search
                logger.error("Dropping %s: building its venue failed", record.key, exc_info=True)
        return venues

    def _build_venue(
        self,
        record: RawPlaceRecord,
        classification: ClassificationResult,
        origin: Tuple[float, float],
        filters,
        now: datetime,
    ) -> NormalizedVenue:
        kind = classification.venue_kind
        is_open, closing = _closing_display(record, kind, now)
        venue = NormalizedVenue(
            id=record.key,
            name=record.name,
            coordinates=record.coordinates,
            distance_miles=distance_miles(origin, record.coordinates),
            venue_kind=kind,
            rating=record.rating,
            review_count=record.rating_count,
            is_open_now=is_open,
            closing_time_display=closing,
            is_wheelchair_accessible=bool(record.wheelchair_accessible),
            address_text=record.address,
            cover_photo_url=self._cover_photo(record, kind),
            data_source=record.provider,
            source_url=record.url,
            classification_path=classification.path,
            source_reviews=list(record.reviews),
        )
        venue.work_friendly_summary = generate_summary(venue.source_reviews, filters, self.policy)
        venue.source_reviews = []
        return venue

    def _cover_photo(self, record: RawPlaceRecord, kind: VenueKind) -> str:
        provider = next((p for p in self.providers if p.name == record.provider), None)
        if provider is None:
            return stock_image_for(kind.value)
        try:
            return provider.cover_photo_url(record, kind) or stock_image_for(kind.value)
        except ProviderError as exc:
            logger.debug("Photo unavailable for %s: %s", record.key, exc)
            return stock_image_for(kind.value)
        except Exception:
            logger.warning("Photo lookup for %s raised unexpectedly", record.key, exc_info=True)
            return stock_image_for(kind.value)


# =============================================================================
# CLI
# =============================================================================

def format_results(report: SearchReport) -> str:
    """Format a search report as a readable listing."""
    lines = []
    lines.append("=" * 70)
    lines.append(f"LOCATION: {report.location_query or '(default)'}")
    if report.coordinates:
        lat, lng = report.coordinates
        suffix = "  (fallback location)" if report.geocode_degraded else ""
        lines.append(f"COORDINATES: {lat:.5f}, {lng:.5f}{suffix}")
    lines.append(
        f"RADIUS: {report.radius_miles:g} mi   FILTERS: "
        f"{', '.join(f.value for f in report.filters) or 'none'}   SORT: {report.sort_by}"
    )
    lines.append("=" * 70)

    if report.state == SearchState.FAILED:
        lines.append(f"\n❌ Search failed: {report.failure_reason}")
        return "\n".join(lines)

    if not report.venues:
        lines.append("\nNo work-friendly spots found. Try a wider radius or fewer filters.")
    for i, venue in enumerate(report.venues, 1):
        rating = f"{venue.rating:.1f}★ ({venue.review_count})" if venue.rating else "unrated"
        status = "Open" if venue.is_open_now else "Closed"
        lines.append(f"\n{i}. {venue.name} [{venue.venue_kind.value}] — {venue.distance_display}")
        lines.append(f"   {rating} · {status} · closes {venue.closing_time_display}")
        if venue.address_text:
            lines.append(f"   {venue.address_text}")
        lines.append(f"   {venue.work_friendly_summary}")

    if report.provider_failures:
        lines.append(f"\nNOTES: {len(report.provider_failures)} provider queries failed")
        for failure in report.provider_failures[:5]:
            lines.append(f"  • {failure}")
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Find work-friendly cafes, libraries and hotel lobbies near a location"
    )
    parser.add_argument(
        "location",
        nargs="?",
        help='Address, place name or "lat,lng"',
    )
    parser.add_argument(
        "--radius",
        type=float,
        default=DEFAULT_RADIUS_MILES,
        help=f"Search radius in miles (default {DEFAULT_RADIUS_MILES:g})",
    )
    parser.add_argument(
        "--filter",
        dest="filters",
        action="append",
        choices=[f.value for f in FILTER_ORDER],
        help="Amenity filter; repeat for several (default: wifi, outlets)",
    )
    parser.add_argument(
        "--sort",
        choices=SORT_KEYS,
        default="distance",
        help="Result order",
    )
    parser.add_argument(
        "--api-key",
        default=os.environ.get("GOOGLE_MAPS_API_KEY"),
        help="Google Maps API key (or set GOOGLE_MAPS_API_KEY env var)",
    )
    parser.add_argument(
        "--yelp-key",
        default=os.environ.get("YELP_API_KEY"),
        help="Yelp Fusion API key (or set YELP_API_KEY env var)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON instead of formatted text",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.location:
        parser.print_help()
        sys.exit(1)

    if not args.api_key and not args.yelp_key:
        print("Error: set GOOGLE_MAPS_API_KEY and/or YELP_API_KEY, or pass --api-key / --yelp-key")
        sys.exit(1)

    finder = WorkspaceFinder(build_providers(args.api_key, args.yelp_key))
    try:
        report = finder.run(args.location, args.radius, args.filters, args.sort)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(format_results(report))


if __name__ == "__main__":
    main()
