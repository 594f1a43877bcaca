"""Tests for the geocoding chain: Google -> Nominatim -> static city table."""
from types import SimpleNamespace

import pytest
from geopy.exc import GeocoderRateLimited, GeocoderServiceError, GeocoderTimedOut, GeocoderUnavailable

from mediconnect.models import Coordinates, ProviderSource
from mediconnect.utils.geocoding import Geocoder, describe_geocoding_failure, format_coordinates, lookup_city_table

FAIRFAX = (38.8462, -77.3064, "Fairfax, Fairfax County, Virginia, United States")


def test_nominatim_result_is_used(fake_geocoder, geocoding_config):
    nominatim = fake_geocoder({"Fairfax, VA": FAIRFAX})
    geocoder = Geocoder(geocoding_config, nominatim=nominatim)

    outcome = geocoder.geocode_outcome("Fairfax, VA")
    assert outcome.strategy == "nominatim"
    assert outcome.payload.coordinates == Coordinates(38.8462, -77.3064)
    assert outcome.payload.confidence == 0.8
    assert outcome.payload.provenance == ProviderSource.EXTERNAL_API
    assert not outcome.used_fallback


def test_google_is_tried_before_nominatim(fake_geocoder, geocoding_config):
    google = fake_geocoder({"Fairfax, VA": (38.85, -77.30, "Fairfax, VA, USA")})
    nominatim = fake_geocoder({"Fairfax, VA": FAIRFAX})
    result = Geocoder(geocoding_config, nominatim=nominatim, google=google).geocode("Fairfax, VA")
    assert result.confidence == 0.9
    assert result.address == "Fairfax, VA, USA"
    assert nominatim.queries == []


def test_google_failure_falls_through_to_nominatim(fake_geocoder, geocoding_config):
    google = fake_geocoder(error=GeocoderServiceError("REQUEST_DENIED"))
    nominatim = fake_geocoder({"Fairfax, VA": FAIRFAX})
    outcome = Geocoder(geocoding_config, nominatim=nominatim, google=google).geocode_outcome("Fairfax, VA")
    assert outcome.strategy == "nominatim"
    assert [f.strategy for f in outcome.failures] == ["google"]


@pytest.mark.parametrize("error", [GeocoderUnavailable("down"), GeocoderTimedOut("slow"), ConnectionError("reset")])
def test_unavailable_services_fall_back_to_city_table(fake_geocoder, geocoding_config, error):
    geocoder = Geocoder(geocoding_config, nominatim=fake_geocoder(error=error))
    outcome = geocoder.geocode_outcome("Fairfax, VA")
    assert outcome.used_fallback
    assert outcome.payload.address == "Fairfax (approximate)"
    assert outcome.payload.confidence == 0.5
    assert outcome.payload.provenance == ProviderSource.STATIC_FALLBACK


def test_unknown_location_falls_back_to_center_of_us(fake_geocoder, geocoding_config):
    result = Geocoder(geocoding_config, nominatim=fake_geocoder()).geocode("Nowhere Junction")
    assert result.address == "Central US (approximate)"
    assert result.confidence == pytest.approx(0.1)
    assert result.coordinates == Coordinates(39.8283, -98.5795)


def test_empty_query_uses_default_city_without_calling_services(fake_geocoder, geocoding_config):
    nominatim = fake_geocoder({"": FAIRFAX})
    outcome = Geocoder(geocoding_config, nominatim=nominatim).geocode_outcome("   ")
    assert outcome.reason == "Empty query"
    assert outcome.payload.address == "New York (approximate)"
    assert nominatim.queries == []


def test_results_are_memoised(fake_geocoder, geocoding_config):
    nominatim = fake_geocoder({"Fairfax, VA": FAIRFAX})
    geocoder = Geocoder(geocoding_config, nominatim=nominatim)
    first = geocoder.geocode("Fairfax, VA")
    second = geocoder.geocode("  fairfax, va ")
    assert first == second
    assert nominatim.queries == ["Fairfax, VA"]


def test_reverse_geocoding(fake_geocoder, geocoding_config):
    nominatim = fake_geocoder(reverse_address="10 Main St, Fairfax, VA")
    geocoder = Geocoder(geocoding_config, nominatim=nominatim)
    assert geocoder.reverse(Coordinates(38.8462, -77.3064)) == "10 Main St, Fairfax, VA"


def test_reverse_geocoding_falls_back_to_coordinates(fake_geocoder, geocoding_config):
    geocoder = Geocoder(geocoding_config, nominatim=fake_geocoder(error=GeocoderUnavailable("down")))
    assert geocoder.reverse(Coordinates(38.84621, -77.30641)) == "38.8462, -77.3064"


def test_lookup_city_table_with_custom_table():
    table = {
        "default": {"label": "Somewhere", "lat": 1.0, "lng": 2.0, "confidence": 0.1},
        "default_query": "Metropolis",
        "cities": {"metropolis": {"lat": 10.0, "lng": 20.0}},
    }
    assert lookup_city_table("Metropolis, NY", table).coordinates == Coordinates(10.0, 20.0)
    assert lookup_city_table(None, table).address == "Metropolis (approximate)"
    assert lookup_city_table("Gotham", table).address == "Somewhere (approximate)"


def test_format_coordinates():
    assert format_coordinates(Coordinates(1.23456, -2.5)) == "1.2346, -2.5000"


def test_fallback_answers_are_not_memoised(geocoding_config):
    class FlakyNominatim:
        def __init__(self):
            self.calls = 0

        def geocode(self, query, timeout=None, **kwargs):
            self.calls += 1
            if self.calls == 1:
                raise GeocoderTimedOut("slow")
            return SimpleNamespace(latitude=38.8462, longitude=-77.3064, address=FAIRFAX[2])

        def reverse(self, point, exactly_one=True, timeout=None, **kwargs):
            return None

    nominatim = FlakyNominatim()
    geocoder = Geocoder(geocoding_config, nominatim=nominatim)

    assert geocoder.geocode("Fairfax, VA").provenance == ProviderSource.STATIC_FALLBACK
    second = geocoder.geocode("Fairfax, VA")
    assert second.provenance == ProviderSource.EXTERNAL_API
    assert second.confidence == 0.8
    geocoder.geocode("Fairfax, VA")
    assert nominatim.calls == 2


def test_cache_keeps_only_the_most_recent_queries(fake_geocoder, geocoding_config):
    places = {"Fairfax, VA": FAIRFAX, "Boston, MA": (42.36, -71.06, "Boston"), "Miami, FL": (25.76, -80.19, "Miami")}
    nominatim = fake_geocoder(places)
    geocoder = Geocoder(dict(geocoding_config, cache_size=2), nominatim=nominatim)

    for query in ["Fairfax, VA", "Boston, MA", "Fairfax, VA", "Miami, FL", "Fairfax, VA", "Boston, MA"]:
        geocoder.geocode(query)

    assert nominatim.queries == ["Fairfax, VA", "Boston, MA", "Miami, FL", "Boston, MA"]


def test_failed_reverse_lookup_is_retried(fake_geocoder, geocoding_config):
    nominatim = fake_geocoder(error=GeocoderUnavailable("down"))
    geocoder = Geocoder(geocoding_config, nominatim=nominatim)
    point = Coordinates(38.8462, -77.3064)
    geocoder.reverse(point)
    nominatim.error = None
    nominatim.reverse_address = "10 Main St, Fairfax, VA"
    assert geocoder.reverse(point) == "10 Main St, Fairfax, VA"


@pytest.mark.parametrize(
    "error, expected",
    [
        (GeocoderTimedOut("slow"), "timed out"),
        (GeocoderRateLimited("429"), "too many requests"),
        (GeocoderUnavailable("down"), "service is unavailable"),
        (GeocoderServiceError("REQUEST_DENIED"), "service is unavailable"),
        (ConnectionError("reset"), "could not be reached"),
        (None, "no match was found"),
    ],
)
def test_describe_geocoding_failure(fake_geocoder, geocoding_config, error, expected):
    outcome = Geocoder(geocoding_config, nominatim=fake_geocoder(error=error)).geocode_outcome("Nowhere Junction")
    message = describe_geocoding_failure("Nowhere Junction", outcome)
    assert expected in message
    assert "Central US (approximate)" in message


def test_describe_geocoding_failure_is_silent_for_live_results(fake_geocoder, geocoding_config):
    geocoder = Geocoder(geocoding_config, nominatim=fake_geocoder({"Fairfax, VA": FAIRFAX}))
    outcome = geocoder.geocode_outcome("Fairfax, VA")
    assert describe_geocoding_failure("Fairfax, VA", outcome) is None
