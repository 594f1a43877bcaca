"""Forward and reverse geocoding with rate limiting and a static city-table fallback."""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from geopy.exc import GeocoderRateLimited, GeocoderServiceError, GeocoderTimedOut, GeocoderUnavailable
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import GoogleV3, Nominatim

from mediconnect.data.reference import load_city_coordinates
from mediconnect.models import Coordinates, ProviderSource
from mediconnect.utils.config import get_api_config
from mediconnect.utils.resilience import FetchOutcome, ResilientFetcher, Strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeocodeResult:
    coordinates: Coordinates
    address: str
    confidence: float
    provenance: ProviderSource = ProviderSource.EXTERNAL_API


def format_coordinates(coordinates: Coordinates) -> str:
    return f"{coordinates.lat:.4f}, {coordinates.lng:.4f}"


def lookup_city_table(location: Optional[str], table: Optional[Dict[str, Any]] = None) -> GeocodeResult:
    """Approximate coordinates for well-known cities; the centre of the US otherwise."""
    table = table or load_city_coordinates()
    query = (location or "").strip().lower() or table["default_query"].lower()
    for city, coords in table["cities"].items():
        if city in query:
            return GeocodeResult(
                coordinates=Coordinates(coords["lat"], coords["lng"]),
                address=f"{city.title()} (approximate)",
                confidence=0.5,
                provenance=ProviderSource.STATIC_FALLBACK,
            )
    default = table["default"]
    return GeocodeResult(
        coordinates=Coordinates(default["lat"], default["lng"]),
        address=f"{default['label']} (approximate)",
        confidence=default["confidence"],
        provenance=ProviderSource.STATIC_FALLBACK,
    )


class Geocoder:
    """Geocoding chain: Google (when enabled) -> Nominatim -> static city table.

    Live results are memoised per instance, keeping the ``cache_size`` most
    recent queries; the chain never raises to the caller.

    Args:
        config: Geocoding config as returned by ``get_api_config('geocoding')``.
        nominatim: geopy-compatible geocoder to use instead of building a
            ``Nominatim`` client (tests pass fakes here).
        google: geopy-compatible geocoder to use instead of ``GoogleV3``.
        city_table: City coordinate table; defaults to the bundled one.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        nominatim: Any = None,
        google: Any = None,
        city_table: Optional[Dict[str, Any]] = None,
    ):
        self.config = config if config is not None else get_api_config("geocoding")
        self.timeout = self.config.get("request_timeout", 10)
        self._city_table = city_table
        self.cache_size = int(self.config.get("cache_size", 256))
        self._cache: "OrderedDict[str, FetchOutcome[GeocodeResult]]" = OrderedDict()
        self._reverse_cache: "OrderedDict[Coordinates, str]" = OrderedDict()

        if nominatim is None:
            nominatim = Nominatim(
                user_agent=self.config.get("nominatim_user_agent", "mediconnect_provider_matching"),
                timeout=self.timeout,
            )
        if google is None and self.config.get("google_maps_enabled") and self.config.get("google_maps_api_key"):
            google = GoogleV3(api_key=self.config["google_maps_api_key"], timeout=self.timeout)

        self._nominatim_geocode = self._rate_limited(nominatim.geocode)
        self._nominatim_reverse = self._rate_limited(nominatim.reverse)

        strategies = []
        if google is not None:
            google_geocode = google.geocode
            strategies.append(
                Strategy("google", lambda q: self._to_result(google_geocode(q, timeout=self.timeout), 0.9))
            )
        strategies.append(
            Strategy("nominatim", lambda q: self._to_result(self._nominatim_geocode(q, timeout=self.timeout), 0.8))
        )
        self._forward = ResilientFetcher("geocoding", strategies, self._from_city_table)
        self._reverse = ResilientFetcher(
            "reverse_geocoding",
            [Strategy("nominatim_reverse", self._reverse_address)],
            format_coordinates,
        )

    def _rate_limited(self, fn):
        return RateLimiter(
            fn,
            min_delay_seconds=float(self.config.get("rate_limit_delay", 1.0)),
            max_retries=int(self.config.get("max_retries", 2)),
            error_wait_seconds=float(self.config.get("rate_limit_delay", 1.0)),
            swallow_exceptions=False,
        )

    @staticmethod
    def _to_result(location: Any, confidence: float) -> Optional[GeocodeResult]:
        if location is None:
            return None
        return GeocodeResult(
            coordinates=Coordinates(float(location.latitude), float(location.longitude)),
            address=location.address or "",
            confidence=confidence,
        )

    def _from_city_table(self, query: str) -> GeocodeResult:
        return lookup_city_table(query, self._city_table)

    def _reverse_address(self, coordinates: Coordinates) -> Optional[str]:
        location = self._nominatim_reverse((coordinates.lat, coordinates.lng), exactly_one=True, timeout=self.timeout)
        return location.address if location is not None else None

    @staticmethod
    def _remember(cache: "OrderedDict[Any, Any]", key: Any, value: Any, limit: int) -> None:
        cache[key] = value
        cache.move_to_end(key)
        while len(cache) > limit:
            cache.popitem(last=False)

    def geocode_outcome(self, location: Optional[str]) -> FetchOutcome[GeocodeResult]:
        """Run the geocoding chain for ``location``.

        Only live lookups are memoised; city-table answers are recomputed so a
        transient service failure does not pin a query to approximate
        coordinates.
        """
        query = (location or "").strip()
        if not query:
            result = self._from_city_table("")
            return FetchOutcome(result, ResilientFetcher.FALLBACK_STRATEGY, result.provenance, reason="Empty query")

        key = query.lower()
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]
        outcome = self._forward.run(query)
        if not outcome.used_fallback:
            self._remember(self._cache, key, outcome, self.cache_size)
        return outcome

    def geocode(self, location: Optional[str]) -> GeocodeResult:
        """Coordinates for free-text ``location``; always returns a result."""
        return self.geocode_outcome(location).payload

    def reverse(self, coordinates: Coordinates) -> str:
        """Address for ``coordinates``; the formatted coordinates when lookup fails."""
        if coordinates in self._reverse_cache:
            self._reverse_cache.move_to_end(coordinates)
            return self._reverse_cache[coordinates]
        outcome = self._reverse.run(coordinates)
        if not outcome.used_fallback:
            self._remember(self._reverse_cache, coordinates, outcome.payload, self.cache_size)
        return outcome.payload


def describe_geocoding_failure(query: str, outcome: FetchOutcome[GeocodeResult]) -> Optional[str]:
    """User-facing explanation of why ``query`` only got an approximate position; None for live results."""
    if not outcome.used_fallback:
        return None
    causes = [f.cause for f in outcome.failures if f.cause is not None]
    cause = causes[-1] if causes else None
    if isinstance(cause, GeocoderTimedOut):
        problem = "the address lookup timed out"
    elif isinstance(cause, GeocoderRateLimited):
        problem = "the address lookup is receiving too many requests"
    elif isinstance(cause, (GeocoderUnavailable, GeocoderServiceError)):
        problem = "the address lookup service is unavailable"
    elif isinstance(cause, ConnectionError):
        problem = "the address lookup service could not be reached"
    elif outcome.failures:
        problem = "no match was found for this address"
    else:
        problem = outcome.reason or "the address was empty"
    return f"Could not locate '{query}': {problem}. Only an approximate position ({outcome.payload.address}) is known."
