"""Shared fixtures for the Remote Rover test suite.

Sets the environment the Flask app checks at import time and provides
raw Google / Yelp payloads.  Record builders and fake providers live
in fakes.py.
"""

import os

import pytest

# Suppress the SECRET_KEY startup guard
os.environ.setdefault("SECRET_KEY", "test-secret-key")

# /api/search refuses to run without a Google key
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "fake-key-for-tests")

# Keep rate limits out of the way of the API tests
os.environ.setdefault("RATE_LIMIT_SEARCH", "1000/minute")
os.environ.setdefault("RATE_LIMIT_DEFAULT", "1000/minute")
os.environ.pop("SENTRY_DSN", None)

from fakes import WEDNESDAY_7PM  # noqa: E402


@pytest.fixture()
def wednesday_evening():
    return WEDNESDAY_7PM


@pytest.fixture()
def google_place_details():
    """Place Details `result` for a downtown cafe."""
    return {
        "place_id": "ChIJ-blue-bottle",
        "name": "Blue Bottle Coffee",
        "geometry": {"location": {"lat": 37.7825, "lng": -122.4075}},
        "types": ["cafe", "food", "point_of_interest", "establishment"],
        "rating": 4.5,
        "user_ratings_total": 1203,
        "formatted_address": "66 Mint St, San Francisco, CA 94103, USA",
        "price_level": 2,
        "wheelchair_accessible_entrance": True,
        "url": "https://maps.google.com/?cid=123",
        "photos": [{"photo_reference": "photo-ref-1", "height": 800, "width": 1200}],
        "reviews": [
            {"author_name": "Ana", "rating": 5, "text": "Great Wi-Fi and laptop friendly."},
            {"author_name": "Ben", "rating": 4, "text": "Lovely pour-over."},
            {"author_name": "Cy", "rating": 3},
        ],
        "opening_hours": {
            "open_now": True,
            "periods": [
                # Sunday
                {"open": {"day": 0, "time": "0800"}, "close": {"day": 0, "time": "1800"}},
                # Monday
                {"open": {"day": 1, "time": "0700"}, "close": {"day": 1, "time": "2130"}},
                # Friday into Saturday
                {"open": {"day": 5, "time": "0700"}, "close": {"day": 6, "time": "0100"}},
            ],
        },
    }


@pytest.fixture()
def yelp_business():
    """Yelp Fusion business details payload."""
    return {
        "id": "philz-coffee-sf-204",
        "name": "Philz Coffee",
        "url": "https://www.yelp.com/biz/philz-coffee-sf-204",
        "rating": 4.0,
        "review_count": 880,
        "price": "$$",
        "image_url": "https://s3-media.fl.yelpcdn.com/bphoto/main.jpg",
        "photos": [],
        "categories": [
            {"alias": "coffee", "title": "Coffee & Tea"},
            {"alias": "sandwiches", "title": "Sandwiches"},
        ],
        "coordinates": {"latitude": 37.7752, "longitude": -122.4180},
        "location": {"display_address": ["201 Berry St", "San Francisco, CA 94158"]},
        "hours": [
            {
                "hours_type": "REGULAR",
                "is_open_now": False,
                "open": [
                    {"day": 0, "start": "0600", "end": "2000", "is_overnight": False},
                    {"day": 4, "start": "1800", "end": "0200", "is_overnight": True},
                ],
            }
        ],
    }


@pytest.fixture()
def yelp_reviews():
    return [
        {"text": "Good wifi, lots of laptops.", "rating": 5, "user": {"name": "Dee"}},
        {"text": "", "rating": 2, "user": {"name": "Eve"}},
    ]
