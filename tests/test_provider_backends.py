"""Tests for provider_backends: normalisers, error mapping and providers."""

from unittest.mock import MagicMock

import pytest
import requests

from provider_backends import (
    GoogleMapsClient,
    GooglePlacesProvider,
    PlaceQuery,
    ProviderAuthError,
    ProviderError,
    ProviderTransientError,
    YelpFusionClient,
    YelpFusionProvider,
    build_providers,
    normalize_google_place,
    normalize_yelp_business,
)
from fakes import make_record
from search_config import stock_image_for
from search_trace import TraceContext, clear_trace, set_trace
from venue_types import Period, VenueKind


# =========================================================================
# Google normalisation
# =========================================================================

class TestNormalizeGooglePlace:
    def test_details_payload(self, google_place_details):
        record = normalize_google_place(google_place_details, details_fetched=True)

        assert record.key == "google:ChIJ-blue-bottle"
        assert record.coordinates == (37.7825, -122.4075)
        assert record.types[0] == "cafe"
        assert record.rating == 4.5
        assert record.rating_count == 1203
        assert [r.author for r in record.reviews] == ["Ana", "Ben"]
        assert record.reviews[0].rating == 5.0
        assert record.photo_refs == ["photo-ref-1"]
        assert record.price_level == 2
        assert record.wheelchair_accessible is True
        assert record.url == "https://maps.google.com/?cid=123"
        assert record.details_fetched is True

    def test_days_shift_to_monday_first(self, google_place_details):
        hours = normalize_google_place(google_place_details).hours

        assert hours.open_now is True
        assert hours.is_24_hours is False
        assert Period(6, 8 * 60, 6, 18 * 60) in hours.periods        # Sunday
        assert Period(0, 7 * 60, 0, 21 * 60 + 30) in hours.periods   # Monday
        friday = hours.periods_on(4)[0]
        assert friday.overnight
        assert (friday.close_day, friday.close_minute) == (5, 60)

    def test_always_open(self):
        item = {
            "place_id": "x",
            "name": "Hotel Zeppelin",
            "opening_hours": {"periods": [{"open": {"day": 0, "time": "0000"}}]},
        }
        hours = normalize_google_place(item).hours
        assert hours.is_24_hours is True
        assert hours.periods[0].open_ended

    def test_missing_fields_default(self):
        record = normalize_google_place({"place_id": "x", "name": "X", "rating": "n/a"})
        assert record.coordinates == (0.0, 0.0)
        assert record.types == []
        assert record.rating is None
        assert record.hours is None
        assert record.wheelchair_accessible is None
        assert record.details_fetched is False

    def test_malformed_periods_skipped(self):
        item = {
            "place_id": "x",
            "name": "X",
            "opening_hours": {"periods": [{"open": {"day": 1, "time": "7am"}}, {"close": {}}]},
        }
        assert normalize_google_place(item).hours.periods == []

    def test_close_without_time_skipped(self):
        item = {
            "place_id": "x",
            "name": "X",
            "opening_hours": {"periods": [
                {"open": {"day": 3, "time": "0700"}, "close": {"day": 4}},
                {"open": {"day": 4, "time": "0700"}, "close": {"day": 4, "time": "1900"}},
            ]},
        }
        assert normalize_google_place(item).hours.periods == [Period(3, 7 * 60, 3, 19 * 60)]

    @pytest.mark.parametrize("day", [None, "", "Tuesday", 7, -1])
    def test_bad_day_skipped(self, day):
        item = {
            "place_id": "x",
            "name": "X",
            "opening_hours": {"periods": [
                {"open": {"day": day, "time": "0700"}, "close": {"day": 2, "time": "1900"}},
                {"open": {"day": 2, "time": "0700"}, "close": {"day": day, "time": "1900"}},
            ]},
        }
        assert normalize_google_place(item).hours.periods == []


# =========================================================================
# Yelp normalisation
# =========================================================================

class TestNormalizeYelpBusiness:
    def test_business_payload(self, yelp_business, yelp_reviews):
        record = normalize_yelp_business(yelp_business, yelp_reviews, details_fetched=True)

        assert record.key == "yelp:philz-coffee-sf-204"
        assert record.types == ["coffee_shop", "meal_takeaway"]
        assert record.price_level == 2
        assert record.photo_refs == ["https://s3-media.fl.yelpcdn.com/bphoto/main.jpg"]
        assert record.address == "201 Berry St, San Francisco, CA 94158"
        assert [r.author for r in record.reviews] == ["Dee"]
        assert record.url.startswith("https://www.yelp.com/biz/")

    def test_hours(self, yelp_business):
        hours = normalize_yelp_business(yelp_business).hours
        assert hours.open_now is False
        assert Period(0, 6 * 60, 0, 20 * 60) in hours.periods
        assert Period(4, 18 * 60, 5, 2 * 60) in hours.periods

    def test_all_day_every_day(self, yelp_business):
        yelp_business["hours"][0]["open"] = [
            {"day": d, "start": "0000", "end": "0000", "is_overnight": True} for d in range(7)
        ]
        assert normalize_yelp_business(yelp_business).hours.is_24_hours is True

    def test_unmapped_alias_passes_through(self, yelp_business):
        yelp_business["categories"] = [{"alias": "coworkingspaces"}]
        assert normalize_yelp_business(yelp_business).types == ["coworkingspaces"]


# =========================================================================
# Google client error mapping
# =========================================================================

class TestGoogleMapsClient:
    def _make_client(self, status_code=200, body=None):
        client = GoogleMapsClient("fake-key")
        client._traced_get = MagicMock(return_value=(status_code, body))
        return client

    def test_nearby_params(self):
        client = self._make_client(body={"status": "OK", "results": [{"place_id": "a"}]})
        results = client.places_nearby(37.0, -122.0, 80000, place_type="cafe")

        assert results == [{"place_id": "a"}]
        endpoint, url, params = client._traced_get.call_args[0]
        assert endpoint == "nearby_search"
        assert url.endswith("/place/nearbysearch/json")
        assert params["radius"] == 50000
        assert params["type"] == "cafe"
        assert "keyword" not in params
        assert params["key"] == "fake-key"

    def test_zero_results_is_empty(self):
        client = self._make_client(body={"status": "ZERO_RESULTS", "results": []})
        assert client.places_nearby(37.0, -122.0, 1000, keyword="boba") == []

    @pytest.mark.parametrize("status", ["OVER_QUERY_LIMIT", "UNKNOWN_ERROR"])
    def test_transient_statuses(self, status):
        client = self._make_client(body={"status": status})
        with pytest.raises(ProviderTransientError):
            client.places_nearby(37.0, -122.0, 1000, place_type="cafe")

    def test_request_denied_is_auth_error(self):
        client = self._make_client(body={"status": "REQUEST_DENIED", "error_message": "bad key"})
        with pytest.raises(ProviderAuthError, match="bad key"):
            client.place_details("abc")

    def test_invalid_request_is_plain_provider_error(self):
        client = self._make_client(body={"status": "INVALID_REQUEST"})
        with pytest.raises(ProviderError) as exc_info:
            client.place_details("abc")
        assert type(exc_info.value) is ProviderError

    @pytest.mark.parametrize("status_code,exc_type", [
        (403, ProviderAuthError),
        (429, ProviderTransientError),
        (503, ProviderTransientError),
    ])
    def test_http_errors(self, status_code, exc_type):
        client = self._make_client(status_code=status_code, body=None)
        with pytest.raises(exc_type):
            client.places_nearby(37.0, -122.0, 1000, place_type="cafe")

    def test_geocode(self):
        body = {"status": "OK", "results": [{"geometry": {"location": {"lat": 1.5, "lng": 2.5}}}]}
        assert self._make_client(body=body).geocode("somewhere") == (1.5, 2.5)

    def test_geocode_no_results(self):
        client = self._make_client(body={"status": "ZERO_RESULTS", "results": []})
        with pytest.raises(ProviderError):
            client.geocode("nowhere at all")

    @pytest.mark.parametrize("result", [
        {"formatted_address": "x"},
        {"geometry": {}},
        {"geometry": {"location": {"lat": 1.5}}},
        {"geometry": {"location": {"lat": "north", "lng": 2.5}}},
        "not-a-dict",
    ])
    def test_geocode_malformed_result(self, result):
        client = self._make_client(body={"status": "OK", "results": [result]})
        with pytest.raises(ProviderError):
            client.geocode("somewhere")

    def test_photo_url(self):
        url = GoogleMapsClient("k").photo_url("ref-1")
        assert "photo_reference=ref-1" in url
        assert "key=k" in url


class TestTracedGet:
    def setup_method(self):
        self.trace = TraceContext(trace_id="test")
        set_trace(self.trace)

    def teardown_method(self):
        clear_trace()

    def _client_with_session(self):
        client = GoogleMapsClient("fake-key")
        client._local.session = MagicMock()
        return client

    def test_success_records_call(self):
        client = self._client_with_session()
        response = MagicMock(status_code=200)
        response.json.return_value = {"status": "OK", "results": []}
        client.session.get.return_value = response

        assert client.places_nearby(37.0, -122.0, 1000, place_type="cafe") == []
        call = self.trace.calls[0]
        assert (call.provider, call.endpoint, call.status_code, call.provider_status) == (
            "google", "nearby_search", 200, "OK",
        )

    def test_timeout_is_transient(self):
        client = self._client_with_session()
        client.session.get.side_effect = requests.Timeout("slow")

        with pytest.raises(ProviderTransientError):
            client.places_nearby(37.0, -122.0, 1000, place_type="cafe")
        assert self.trace.calls[0].provider_status == "TIMEOUT"

    def test_connection_error_is_transient(self):
        client = self._client_with_session()
        client.session.get.side_effect = requests.ConnectionError("reset")
        with pytest.raises(ProviderTransientError):
            client.geocode("x")

    def test_non_json_body(self):
        client = self._client_with_session()
        response = MagicMock(status_code=200)
        response.json.side_effect = ValueError("not json")
        client.session.get.return_value = response
        with pytest.raises(ProviderTransientError):
            client.place_details("abc")


# =========================================================================
# Yelp client error mapping
# =========================================================================

class TestYelpFusionClient:
    def _make_client(self, status_code=200, body=None):
        client = YelpFusionClient("yelp-key")
        client._traced_get = MagicMock(return_value=(status_code, body))
        return client

    def test_bearer_auth(self):
        assert YelpFusionClient("yelp-key")._headers()["Authorization"] == "Bearer yelp-key"

    def test_search_params(self):
        client = self._make_client(body={"businesses": [{"id": "a"}]})
        assert client.search(37.0, -122.0, 90000, categories="coffee") == [{"id": "a"}]
        endpoint, url, params = client._traced_get.call_args[0]
        assert endpoint == "business_search"
        assert params["radius"] == 40000
        assert params["categories"] == "coffee"
        assert "term" not in params

    def test_unauthorized(self):
        with pytest.raises(ProviderAuthError):
            self._make_client(401, {"error": {"code": "TOKEN_INVALID"}}).business("a")

    def test_rate_limited(self):
        with pytest.raises(ProviderTransientError):
            self._make_client(429, {}).reviews("a")

    def test_bad_request(self):
        with pytest.raises(ProviderError) as exc_info:
            self._make_client(400, {}).search(37.0, -122.0, 1000)
        assert type(exc_info.value) is ProviderError


# =========================================================================
# Providers
# =========================================================================

class TestGooglePlacesProvider:
    def test_queries_cover_categories_and_keywords(self):
        queries = GooglePlacesProvider(MagicMock()).queries()
        assert PlaceQuery(category="cafe") in queries
        assert PlaceQuery(keyword="boba") in queries

    def test_search_nearby_skips_results_without_id(self):
        client = MagicMock()
        client.places_nearby.return_value = [
            {"place_id": "a", "name": "A", "types": ["cafe"],
             "geometry": {"location": {"lat": 37.1, "lng": -122.1}}},
            {"name": "no id"},
        ]
        records = GooglePlacesProvider(client).search_nearby(
            (37.0, -122.0), 1.0, PlaceQuery(category="cafe"),
        )
        assert [r.external_id for r in records] == ["a"]
        client.places_nearby.assert_called_once_with(
            37.0, -122.0, 1609, place_type="cafe", keyword=None,
        )

    def test_fetch_details_keeps_stub_fields(self):
        client = MagicMock()
        client.place_details.return_value = {
            "place_id": "a", "name": "A", "reviews": [{"text": "wifi"}],
        }
        stub = make_record("A", ["cafe"], external_id="a", details_fetched=False)
        record = GooglePlacesProvider(client).fetch_details(stub)

        assert record.details_fetched
        assert record.coordinates == stub.coordinates
        assert record.types == ["cafe"]
        assert record.reviews[0].text == "wifi"

    def test_empty_details_return_stub(self):
        client = MagicMock()
        client.place_details.return_value = {}
        stub = make_record("A", external_id="a", details_fetched=False)
        assert GooglePlacesProvider(client).fetch_details(stub) is stub

    def test_cover_photo(self):
        client = MagicMock(api_key="k")
        client.photo_url.return_value = "https://photo"
        provider = GooglePlacesProvider(client)

        with_photo = make_record(photo_refs=["ref"])
        assert provider.cover_photo_url(with_photo, VenueKind.CAFE) == "https://photo"
        without = make_record("Main Library", ["library"])
        assert provider.cover_photo_url(without, VenueKind.LIBRARY) == stock_image_for("library")


class TestYelpFusionProvider:
    def test_review_failure_degrades(self, yelp_business):
        client = MagicMock()
        client.business.return_value = yelp_business
        client.reviews.side_effect = ProviderTransientError("429", "yelp", "429")
        stub = make_record("Philz Coffee", provider="yelp", external_id="philz-coffee-sf-204")

        record = YelpFusionProvider(client).fetch_details(stub)
        assert record.details_fetched
        assert record.reviews == []

    def test_cover_photo_uses_first_photo(self):
        provider = YelpFusionProvider(MagicMock())
        record = make_record(provider="yelp", photo_refs=["https://img/1.jpg"])
        assert provider.cover_photo_url(record, VenueKind.CAFE) == "https://img/1.jpg"
        assert provider.cover_photo_url(make_record(), VenueKind.HOTEL) == stock_image_for("hotel")


class TestBuildProviders:
    def test_no_keys(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
        monkeypatch.delenv("YELP_API_KEY", raising=False)
        assert build_providers() == []

    def test_both_keys(self):
        providers = build_providers("g-key", "y-key")
        assert [p.name for p in providers] == ["google", "yelp"]
        assert providers[1].client.api_key == "y-key"
