"""Emergency alert: store the caller's location as a message in the backend."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from mediconnect.models import Coordinates
from mediconnect.services.backend import BackendClient
from mediconnect.utils.geocoding import Geocoder, describe_geocoding_failure

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"
EMERGENCY_ALERT_TEXT = "EMERGENCY ALERT - Need immediate assistance!"


class LocationUnavailable(Exception):
    """No trustworthy position could be determined for the caller."""


@dataclass(frozen=True)
class AlertReceipt:
    delivered: bool
    location: Optional[Coordinates]
    message: str
    record: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    location_error: Optional[str] = None


def locate_address(geocoder: Geocoder, address: str) -> Coordinates:
    """Position of ``address`` from a live geocoding service.

    City-table and "Central US" answers are approximations, never the caller's
    position, so they raise ``LocationUnavailable`` instead.
    """
    outcome = geocoder.geocode_outcome(address)
    if outcome.used_fallback:
        raise LocationUnavailable(describe_geocoding_failure(address, outcome))
    return outcome.payload.coordinates


def _location_payload(location: Optional[Coordinates]) -> Optional[Dict[str, Any]]:
    if location is None:
        return None
    return {"latitude": location.lat, "longitude": location.lng, "accuracy": location.accuracy}


def send_emergency_alert(
    backend: BackendClient,
    user_id: str,
    locate: Optional[Callable[[], Optional[Coordinates]]] = None,
    now: Optional[datetime] = None,
) -> AlertReceipt:
    """Insert an emergency message for ``user_id``.

    ``locate`` supplies the device position; if it raises or returns nothing
    the alert is still stored, without a location. Backend errors are
    reported on the receipt, never raised.
    """
    location = None
    location_error = None
    if locate is not None:
        try:
            location = locate()
        except Exception as e:
            logger.warning(f"Could not determine location for emergency alert: {e}")
            location = None
            location_error = str(e)

    row = {
        "user_id": user_id,
        "text": EMERGENCY_ALERT_TEXT,
        "location": _location_payload(location),
        "created_at": (now or datetime.now(timezone.utc)).isoformat(),
    }
    response = backend.insert(MESSAGES_TABLE, [row])

    if not response.ok:
        logger.error(f"Error sending emergency alert: {response.error}")
        return AlertReceipt(
            delivered=False,
            location=location,
            message="Emergency alert recorded locally only; the backend could not be reached. Call 911 if in danger.",
            record=row,
            error=response.error,
            location_error=location_error,
        )

    stored = response.data[0] if response.data else row
    if location is None:
        message = "Emergency alert sent without location!"
    else:
        message = f"Emergency alert sent! Location: {location.lat}, {location.lng}"
    logger.info(f"Emergency alert stored for user {user_id} (location={'yes' if location else 'no'})")
    return AlertReceipt(
        delivered=True, location=location, message=message, record=stored, location_error=location_error
    )


def recent_alerts(backend: BackendClient, limit: int = 20) -> List[Dict[str, Any]]:
    """Most recent emergency messages, newest first; empty when the backend errors."""
    response = backend.select(MESSAGES_TABLE, order_by="created_at", descending=True)
    if not response.ok:
        logger.error(f"Could not load emergency alerts: {response.error}")
        return []
    alerts = [row for row in response.data if row.get("text") == EMERGENCY_ALERT_TEXT]
    return alerts[:limit]
