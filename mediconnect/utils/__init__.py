"""Utilities package for MediConnect.

Re-export the stable pure helpers. Modules that need Streamlit, geopy or
network access (config, geocoding) are imported from their own modules.
"""
# flake8: noqa: F401

from .addressing import normalize_state, resolve_state, validate_address, validate_coordinates
from .geo import calculate_distances, estimate_travel_time, haversine_distance
from .resilience import AllStrategiesExhausted, FetchOutcome, ResilientFetcher, Strategy, StrategyFailure

__all__ = [
    "AllStrategiesExhausted",
    "FetchOutcome",
    "ResilientFetcher",
    "Strategy",
    "StrategyFailure",
    "calculate_distances",
    "estimate_travel_time",
    "haversine_distance",
    "normalize_state",
    "resolve_state",
    "validate_address",
    "validate_coordinates",
]
