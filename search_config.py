"""
Search policy configuration for Remote Rover.

Owns every keyword list, place-type set and numeric threshold that
decides whether a venue is surfaced.  Provider endpoints and HTTP
settings remain in provider_backends.py.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class TypePolicy:
    """Place-type sets used by the classifier (Google-style type tags)."""
    accepted: Tuple[str, ...]
    conditional: Tuple[str, ...]
    conditional_secondary: Tuple[str, ...]   # secondary tag that unlocks `conditional`
    rejected: Tuple[str, ...]
    cafe_name_markers: Tuple[str, ...]       # name-asserted path


@dataclass(frozen=True)
class HotelPolicy:
    """Heuristic exclusions for lodging venues.

    Budget chains and motels rarely have a lobby you can work from.
    Price tier uses the Google 0-4 scale; None disables the check.
    """
    min_price_level: Optional[int]
    budget_chain_names: Tuple[str, ...]


@dataclass(frozen=True)
class WorkKeywords:
    """Lexical evidence used by the work-friendliness evaluator."""
    generic: Tuple[str, ...]          # lenient set (name-asserted, cafe-like)
    narrow: Tuple[str, ...]           # non-cafe kinds on the type-validated path
    cafe_roots: Tuple[str, ...]       # conditional path, checked against the name
    strong_phrases: Tuple[str, ...]   # conditional path, checked against reviews
    milk_tea: Tuple[str, ...]
    wifi: Tuple[str, ...]
    work_positive: Tuple[str, ...]    # contexts where the token "work" counts
    work_negative: Tuple[str, ...]    # contexts where "work"/"working" never counts


@dataclass(frozen=True)
class AmenityKeywords:
    """Keyword lists for the amenity filter matcher."""
    pet_friendly: Tuple[str, ...]
    quiet: Tuple[str, ...]
    loud: Tuple[str, ...]
    boba: Tuple[str, ...]
    food: Tuple[str, ...]
    food_types: Tuple[str, ...]
    late_close_minute: int            # closing at or after this counts as late
    max_loud_mentions: int


@dataclass(frozen=True)
class SummaryPhrase:
    """One feature phrase the summary generator may emit."""
    keywords: Tuple[str, ...]
    phrase: str


@dataclass(frozen=True)
class SearchPlan:
    """Fan-out shape for one search."""
    radius_fractions: Tuple[float, ...]   # fractions of the requested radius
    google_categories: Tuple[str, ...]
    google_keywords: Tuple[str, ...]
    yelp_categories: Tuple[str, ...]
    max_radius_miles: float
    max_detail_fetches: int
    max_fanout: int
    dedupe_tolerance_miles: float


@dataclass(frozen=True)
class SearchPolicy:
    """Top-level container for all search policy data.

    A single module-level instance (SEARCH_POLICY) is the source of truth.
    Bump `version` on every change that alters which venues are surfaced.
    """
    version: str
    types: TypePolicy
    hotel: HotelPolicy
    work: WorkKeywords
    amenity: AmenityKeywords
    plan: SearchPlan
    summary_phrases: Dict[str, Tuple[SummaryPhrase, ...]]
    fallback_summary_phrases: Tuple[SummaryPhrase, ...]
    stock_images: Dict[str, str]


# =============================================================================
# SEARCH_POLICY: current production values
# =============================================================================

_TYPES = TypePolicy(
    accepted=("cafe", "coffee_shop", "library", "lodging", "food_court"),
    conditional=("bakery", "meal_takeaway", "restaurant"),
    conditional_secondary=("cafe", "coffee_shop"),
    rejected=(
        "donut_shop",
        "gas_station",
        "gift_shop",
        "convenience_store",
        "golf_course",
        "supermarket",
        "grocery_or_supermarket",
        "liquor_store",
        "bar",
        "night_club",
        "casino",
        "car_wash",
        "car_repair",
        "car_dealer",
        "shopping_mall",
        "department_store",
        "clothing_store",
        "fast_food_restaurant",
        "ice_cream_shop",
        "movie_theater",
        "gym",
    ),
    cafe_name_markers=("cafe", "coffee"),
)

# TODO: tune min_price_level once we have enough lodging results with a
# price tier; most hotels in the Places response omit it today.
_HOTEL = HotelPolicy(
    min_price_level=2,
    budget_chain_names=(
        "motel",
        "motel 6",
        "super 8",
        "days inn",
        "red roof",
        "econo lodge",
        "rodeway inn",
        "travelodge",
        "knights inn",
        "americas best value",
        "extended stay america",
    ),
)

_WORK = WorkKeywords(
    generic=("work", "sit", "laptop", "study", "wifi", "table", "seat", "internet", "working"),
    narrow=("work", "sit", "laptop", "study", "wifi"),
    cafe_roots=("coffee", "cafe", "espresso", "latte", "brew", "roast", "bean", "grind"),
    strong_phrases=(
        "laptop",
        "study",
        "work from here",
        "wifi",
        "quiet place to work",
        "working on laptop",
        "working on my laptop",
        "work space",
        "workspace",
        "good for studying",
    ),
    milk_tea=("milk tea", "boba", "bubble tea"),
    wifi=("wifi",),
    work_positive=(
        "work from",
        "place to work",
        "spot to work",
        "work space",
        "remote work",
        "work remotely",
        "get work done",
        "getting work done",
        "get some work done",
        "good for work",
        "great for work",
        "perfect for work",
        "to do work",
        "work on my laptop",
        "work on your laptop",
        "come here to work",
        "came here to work",
    ),
    work_negative=(
        "doesn't work",
        "does not work",
        "didn't work",
        "did not work",
        "don't work",
        "won't work",
        "not work",
        "hard work",
        "hard working",
        "hardworking",
        "not working",
        "isn't working",
        "wasn't working",
        "stopped working",
        "i work here",
        "who work here",
        "that work here",
        "people work here",
        "staff work here",
        "used to work here",
        "after work",
        "before work",
        "at work",
        "work out",
        "work of art",
        "nice work",
        "good work",
        "great work",
    ),
)

_AMENITY = AmenityKeywords(
    pet_friendly=(
        "pet friendly",
        "dog friendly",
        "dogs welcome",
        "dogs allowed",
        "pets welcome",
        "pets allowed",
        "bring your dog",
        "brought my dog",
        "bring my dog",
        "dog bowl",
        "water bowl",
        "puppuccino",
    ),
    quiet=("quiet", "peaceful", "calm", "tranquil", "serene", "relaxing", "not too loud", "not loud", "not noisy"),
    loud=("loud", "noisy", "crowded", "chaotic", "packed", "blaring"),
    boba=("boba", "milk tea", "bubble tea", "tapioca", "milktea"),
    food=(
        "food",
        "sandwich",
        "pastry",
        "pastries",
        "breakfast",
        "brunch",
        "lunch",
        "bagel",
        "croissant",
        "salad",
        "snack",
        "toast",
        "soup",
        "muffin",
        "restaurant",
    ),
    food_types=("restaurant", "meal_takeaway", "meal_delivery", "food_court"),
    late_close_minute=21 * 60,
    max_loud_mentions=1,
)

_PLAN = SearchPlan(
    radius_fractions=(0.33, 0.66, 1.0),
    google_categories=("cafe", "library", "lodging", "bakery"),
    google_keywords=("coffee shop", "boba", "study spot"),
    yelp_categories=("coffee", "cafes", "libraries", "hotels", "bubbletea", "foodcourt"),
    max_radius_miles=25.0,
    max_detail_fetches=int(os.environ.get("SEARCH_MAX_DETAIL_FETCHES", "60")),
    max_fanout=int(os.environ.get("SEARCH_MAX_FANOUT", "8")),
    dedupe_tolerance_miles=0.1,
)

# Walked in filter order; each filter contributes at most its first match.
_SUMMARY_PHRASES: Dict[str, Tuple[SummaryPhrase, ...]] = {
    "wifi": (SummaryPhrase(("wifi", "internet"), "reliable WiFi"),),
    "outlets": (SummaryPhrase(("outlet", "plug", "charging", "power strip"), "charging outlets"),),
    "pet-friendly": (SummaryPhrase(("dog", "pet", "puppuccino"), "a pet-friendly welcome"),),
    "quiet": (SummaryPhrase(("quiet", "peaceful", "calm"), "a quiet atmosphere"),),
    "transit": (SummaryPhrase(("bart", "bus", "train", "station", "metro", "subway"), "easy transit access"),),
    "boba": (SummaryPhrase(("milk tea", "boba", "bubble tea"), "excellent milk tea selection"),),
    "food": (SummaryPhrase(("food", "sandwich", "pastry", "pastries", "breakfast", "lunch"), "tasty food options"),),
    "late": (SummaryPhrase(("open late", "late night", "24 hours", "24/7"), "late hours"),),
}

_FALLBACK_SUMMARY_PHRASES = (
    SummaryPhrase(("wifi", "internet"), "reliable WiFi"),
    SummaryPhrase(("outlet", "plug", "charging"), "charging outlets"),
    SummaryPhrase(("quiet", "peaceful", "calm"), "a quiet atmosphere"),
)

_STOCK_IMAGES = {
    "cafe": "https://images.unsplash.com/photo-1554118811-1e0d58224f24?w=400&h=200&fit=crop",
    "library": "https://images.unsplash.com/photo-1481627834876-b7833e8f5570?w=400&h=200&fit=crop",
    "hotel": "https://images.unsplash.com/photo-1566665797739-1674de7a421a?w=400&h=200&fit=crop",
}


SEARCH_POLICY = SearchPolicy(
    version="2.3.0",
    types=_TYPES,
    hotel=_HOTEL,
    work=_WORK,
    amenity=_AMENITY,
    plan=_PLAN,
    summary_phrases=_SUMMARY_PHRASES,
    fallback_summary_phrases=_FALLBACK_SUMMARY_PHRASES,
    stock_images=_STOCK_IMAGES,
)

# Default search centre when geocoding fails and no previous location exists.
DEFAULT_COORDINATES = (37.7749, -122.4194)
DEFAULT_LOCATION_LABEL = "San Francisco, CA"
DEFAULT_RADIUS_MILES = 10.0


def stock_image_for(kind: str) -> str:
    """Stock cover photo for a venue kind; unknown kinds get the cafe image."""
    return SEARCH_POLICY.stock_images.get(kind, SEARCH_POLICY.stock_images["cafe"])


# Validate at import time (ValueError, not assert, so validation is never
# stripped by python -O).
if set(_TYPES.accepted) & set(_TYPES.rejected):
    raise ValueError("accepted and rejected place types overlap")
if not _PLAN.radius_fractions or max(_PLAN.radius_fractions) != 1.0:
    raise ValueError("radius_fractions must end at the full requested radius")
