"""Great-circle distance and travel-time estimates."""
import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from mediconnect.models import Coordinates, Distance, TravelTime

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Average speeds in km/h; a linear estimate, not routing.
TRAVEL_SPEEDS_KMH = {
    "driving": 40.0,
    "transit": 25.0,
    "walking": 5.0,
}
DEFAULT_TRAVEL_MODE = "driving"


def _distance(km: float) -> Distance:
    km = round(km, 2)
    return Distance(km=km, display_text=f"{km:.2f} km")


def haversine_distance(a: Coordinates, b: Coordinates) -> Distance:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return _distance(EARTH_RADIUS_KM * c)


def calculate_distances(origin: Coordinates, points: Sequence[Optional[Coordinates]]) -> List[Optional[Distance]]:
    """Vectorized haversine from ``origin`` to each point; None where a point is missing."""
    if not points:
        return []
    lat_arr = np.radians(np.array([p.lat if p else np.nan for p in points], dtype=float))
    lon_arr = np.radians(np.array([p.lng if p else np.nan for p in points], dtype=float))
    user_lat_rad = np.radians(origin.lat)
    user_lon_rad = np.radians(origin.lng)

    valid = ~np.isnan(lat_arr) & ~np.isnan(lon_arr)
    dlat = lat_arr[valid] - user_lat_rad
    dlon = lon_arr[valid] - user_lon_rad
    a = np.sin(dlat / 2) ** 2 + np.cos(user_lat_rad) * np.cos(lat_arr[valid]) * np.sin(dlon / 2) ** 2
    c = 2 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))
    distances = np.full(len(points), np.nan)
    distances[valid] = EARTH_RADIUS_KM * c

    return [None if np.isnan(d) else _distance(float(d)) for d in distances]


def format_minutes(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60}h {minutes % 60}min"


def estimate_travel_time(distance_km: float, mode: str = DEFAULT_TRAVEL_MODE) -> TravelTime:
    speed = TRAVEL_SPEEDS_KMH.get((mode or "").lower())
    if speed is None:
        logger.debug(f"Unknown travel mode '{mode}', using {DEFAULT_TRAVEL_MODE}")
        speed = TRAVEL_SPEEDS_KMH[DEFAULT_TRAVEL_MODE]
    minutes = int(math.floor(distance_km / speed * 60 + 0.5))
    return TravelTime(minutes=minutes, display_text=format_minutes(minutes))
