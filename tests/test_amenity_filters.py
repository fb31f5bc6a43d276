"""Tests for amenity_filters.match_filters."""

from itertools import combinations

import pytest

from amenity_filters import match_filters
from fakes import WEDNESDAY_7PM, closing_at, make_record
from venue_types import FILTER_ORDER, FilterTag, OpeningHours, Period, VenueKind

WEDNESDAY = 2


def _passes(record, kind, *filters):
    return match_filters(record, kind, set(filters), WEDNESDAY_7PM).passed


class TestNoRuleFilters:
    def test_no_filters_passes(self):
        assert _passes(make_record(), VenueKind.CAFE)

    def test_wifi_outlets_transit_never_exclude(self):
        record = make_record(reviews=["nothing relevant"])
        assert _passes(record, VenueKind.CAFE, FilterTag.WIFI, FilterTag.OUTLETS, FilterTag.TRANSIT)


class TestPetFriendly:
    def test_phrase_in_reviews(self):
        record = make_record(reviews=["Dog-friendly patio out back"])
        assert _passes(record, VenueKind.CAFE, FilterTag.PET_FRIENDLY)

    def test_missing_phrase_fails(self):
        record = make_record(reviews=["great espresso"])
        match = match_filters(record, VenueKind.CAFE, {FilterTag.PET_FRIENDLY}, WEDNESDAY_7PM)
        assert not match.passed
        assert match.failed_filters == [FilterTag.PET_FRIENDLY]


class TestQuiet:
    def test_library_auto_passes(self):
        assert _passes(make_record("Main Library", ["library"]), VenueKind.LIBRARY, FilterTag.QUIET)

    def test_quiet_mention(self):
        assert _passes(make_record(reviews=["Nice and quiet"]), VenueKind.CAFE, FilterTag.QUIET)

    def test_too_many_loud_mentions(self):
        record = make_record(reviews=["Quiet in the morning but loud and crowded at lunch"])
        assert not _passes(record, VenueKind.CAFE, FilterTag.QUIET)

    def test_single_loud_mention_tolerated(self):
        record = make_record(reviews=["Peaceful upstairs, a bit loud by the register"])
        assert _passes(record, VenueKind.CAFE, FilterTag.QUIET)

    def test_negated_loudness_counts_as_quiet(self):
        record = make_record(reviews=["Not too loud, very calm"])
        assert _passes(record, VenueKind.CAFE, FilterTag.QUIET)

    def test_no_quiet_mention_fails(self):
        assert not _passes(make_record(reviews=["good coffee"]), VenueKind.CAFE, FilterTag.QUIET)


class TestBoba:
    def test_cafe_with_milk_tea(self):
        record = make_record(reviews=["The brown sugar milk tea is amazing"])
        assert _passes(record, VenueKind.CAFE, FilterTag.BOBA)

    def test_name_counts(self):
        assert _passes(make_record("Boba Guys"), VenueKind.CAFE, FilterTag.BOBA)

    def test_non_cafe_fails(self):
        record = make_record("Main Library", ["library"], reviews=["boba shop next door"])
        assert not _passes(record, VenueKind.LIBRARY, FilterTag.BOBA)


class TestFood:
    def test_restaurant_type(self):
        record = make_record("Tartine", ["restaurant", "cafe"])
        assert _passes(record, VenueKind.CAFE, FilterTag.FOOD)

    def test_hotel_with_food_reviews(self):
        record = make_record("Hotel Zeppelin", ["lodging"], reviews=["Great breakfast buffet"])
        assert _passes(record, VenueKind.HOTEL, FilterTag.FOOD)

    def test_cafe_without_food_mentions(self):
        record = make_record(reviews=["strong espresso"])
        assert not _passes(record, VenueKind.CAFE, FilterTag.FOOD)

    def test_library_food_mentions_ignored(self):
        record = make_record("Main Library", ["library"], reviews=["no food allowed"])
        assert not _passes(record, VenueKind.LIBRARY, FilterTag.FOOD)


class TestLate:
    def test_closing_before_nine_excluded(self):
        record = make_record(reviews=["quiet, dogs welcome"], hours=closing_at(WEDNESDAY, 20 * 60 + 30))
        match = match_filters(
            record, VenueKind.CAFE,
            {FilterTag.LATE, FilterTag.QUIET, FilterTag.PET_FRIENDLY}, WEDNESDAY_7PM,
        )
        assert not match.passed
        assert match.failed_filters == [FilterTag.LATE]

    def test_closing_at_nine_passes(self):
        record = make_record(hours=closing_at(WEDNESDAY, 21 * 60))
        assert _passes(record, VenueKind.CAFE, FilterTag.LATE)

    def test_overnight_closing_passes(self):
        hours = OpeningHours(periods=[Period(WEDNESDAY, 18 * 60, WEDNESDAY + 1, 60)])
        assert _passes(make_record(hours=hours), VenueKind.CAFE, FilterTag.LATE)

    def test_split_hours_use_last_period(self):
        hours = OpeningHours(periods=[
            Period(WEDNESDAY, 17 * 60, WEDNESDAY, 23 * 60),
            Period(WEDNESDAY, 7 * 60, WEDNESDAY, 11 * 60),
        ])
        assert _passes(make_record(hours=hours), VenueKind.CAFE, FilterTag.LATE)

    def test_24_hours_passes(self):
        hours = OpeningHours(periods=[Period(0, 0)], is_24_hours=True)
        assert _passes(make_record(hours=hours), VenueKind.CAFE, FilterTag.LATE)

    def test_closed_today_fails(self):
        record = make_record(hours=closing_at(WEDNESDAY + 1, 23 * 60))
        assert not _passes(record, VenueKind.CAFE, FilterTag.LATE)

    def test_hotel_without_hours_passes(self):
        assert _passes(make_record("Hotel Zeppelin", ["lodging"]), VenueKind.HOTEL, FilterTag.LATE)

    def test_cafe_without_hours_fails(self):
        assert not _passes(make_record(), VenueKind.CAFE, FilterTag.LATE)


def test_failed_filters_reported_in_chip_order():
    record = make_record(reviews=["good coffee"])
    match = match_filters(
        record, VenueKind.CAFE, {FilterTag.LATE, FilterTag.QUIET, FilterTag.BOBA}, WEDNESDAY_7PM,
    )
    assert match.failed_filters == [FilterTag.QUIET, FilterTag.BOBA, FilterTag.LATE]


@pytest.mark.parametrize("record,kind", [
    (make_record(reviews=["quiet, dog friendly, milk tea, sandwiches"],
                 hours=closing_at(WEDNESDAY, 22 * 60)), VenueKind.CAFE),
    (make_record("Main Library", ["library"], reviews=["quiet"]), VenueKind.LIBRARY),
    (make_record("Hotel Zeppelin", ["lodging"], reviews=["breakfast"]), VenueKind.HOTEL),
])
def test_fewer_filters_never_reject_more(record, kind):
    for size in range(len(FILTER_ORDER) + 1):
        for larger in combinations(FILTER_ORDER, size):
            if not _passes(record, kind, *larger):
                continue
            for smaller_size in range(size):
                for smaller in combinations(larger, smaller_size):
                    assert _passes(record, kind, *smaller)
