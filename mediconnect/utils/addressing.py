"""Location text helpers: state normalization, tokens, and input validation."""
import re
from typing import List, Optional, Tuple

STATE_MAPPING = {
    "ALABAMA": "AL",
    "ALASKA": "AK",
    "ARIZONA": "AZ",
    "ARKANSAS": "AR",
    "CALIFORNIA": "CA",
    "COLORADO": "CO",
    "CONNECTICUT": "CT",
    "DELAWARE": "DE",
    "FLORIDA": "FL",
    "GEORGIA": "GA",
    "HAWAII": "HI",
    "IDAHO": "ID",
    "ILLINOIS": "IL",
    "INDIANA": "IN",
    "IOWA": "IA",
    "KANSAS": "KS",
    "KENTUCKY": "KY",
    "LOUISIANA": "LA",
    "MAINE": "ME",
    "MARYLAND": "MD",
    "MASSACHUSETTS": "MA",
    "MICHIGAN": "MI",
    "MINNESOTA": "MN",
    "MISSISSIPPI": "MS",
    "MISSOURI": "MO",
    "MONTANA": "MT",
    "NEBRASKA": "NE",
    "NEVADA": "NV",
    "NEW HAMPSHIRE": "NH",
    "NEW JERSEY": "NJ",
    "NEW MEXICO": "NM",
    "NEW YORK": "NY",
    "NORTH CAROLINA": "NC",
    "NORTH DAKOTA": "ND",
    "OHIO": "OH",
    "OKLAHOMA": "OK",
    "OREGON": "OR",
    "PENNSYLVANIA": "PA",
    "RHODE ISLAND": "RI",
    "SOUTH CAROLINA": "SC",
    "SOUTH DAKOTA": "SD",
    "TENNESSEE": "TN",
    "TEXAS": "TX",
    "UTAH": "UT",
    "VERMONT": "VT",
    "VIRGINIA": "VA",
    "WASHINGTON": "WA",
    "WEST VIRGINIA": "WV",
    "WISCONSIN": "WI",
    "WYOMING": "WY",
    "DISTRICT OF COLUMBIA": "DC",
}

VALID_STATES = frozenset(STATE_MAPPING.values())

_ZIP_RE = re.compile(r"^\d{5}(-?\d{4})?$")


def normalize_state(value: Optional[str]) -> str:
    """Return the two-letter code for a state name or code; other text is upper-cased unchanged."""
    text = (value or "").strip().upper()
    return STATE_MAPPING.get(text, text)


def location_tokens(location: Optional[str]) -> List[str]:
    """Split free-text location ("Fairfax, VA 22030") into comma separated parts, ZIP codes dropped."""
    tokens = []
    for part in (location or "").split(","):
        part = part.strip()
        if not part:
            continue
        words = part.split()
        # "VA 22030" -> "VA"
        if len(words) > 1 and _ZIP_RE.match(words[-1]):
            part = " ".join(words[:-1])
        if _ZIP_RE.match(part):
            continue
        tokens.append(part)
    return tokens


def resolve_state(location: Optional[str]) -> Optional[str]:
    """The state named in a location string, if any part of it is a state name or code."""
    for token in reversed(location_tokens(location)):
        state = normalize_state(token)
        if state in VALID_STATES:
            return state
    return None


def validate_address(address: str) -> Tuple[bool, str]:
    if not address or not address.strip():
        return False, "Location cannot be empty"

    addr = address.strip()
    if len(addr) < 2:
        return False, "Location appears too short"

    if resolve_state(addr) is None and not re.search(r"\b\d{5}\b", addr):
        return True, "Consider adding a state or ZIP code for better accuracy"

    return True, ""


def validate_coordinates(lat: float, lon: float) -> Tuple[bool, str]:
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return False, "Coordinates must be numeric"
    if not (-90 <= lat <= 90):
        return False, "Latitude must be between -90 and 90"
    if not (-180 <= lon <= 180):
        return False, "Longitude must be between -180 and 180"
    return True, "Valid coordinates"
