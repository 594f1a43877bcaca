"""Pytest configuration helpers.

Ensure the project root is on sys.path so tests can import the `mediconnect`
package when pytest is invoked from the repository root or an isolated test
runner. Shared fakes for HTTP sessions, geocoders and generative models live
here so no test touches the network.
"""

import os
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
import requests


def pytest_configure():
    # Insert the repository root (parent of the tests directory) at the front
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))


CMS_ROW_WIDTH = 30


def build_cms_row(
    npi="1234567890",
    first="Alice",
    last="Adams",
    middle="",
    gender="F",
    credentials="MD",
    school="Johns Hopkins",
    graduation_year="2000",
    specialty="CARDIOLOGY",
    secondary="",
    telehealth="",
    facility="",
    address="100 Main St",
    city="Fairfax",
    state="VA",
    postal_code="22030",
    phone="7035551234",
    width=CMS_ROW_WIDTH,
):
    """One CMS extract line (as a string) with values at the fixed column positions."""
    fields = [""] * width
    values = {
        0: npi,
        3: last,
        4: first,
        5: middle,
        7: gender,
        8: credentials,
        9: school,
        10: graduation_year,
        11: specialty,
        12: secondary,
        17: telehealth,
        18: facility,
        21: address,
        24: city,
        25: state,
        26: postal_code,
        27: phone,
    }
    for index, value in values.items():
        if index < width:
            fields[index] = value
    return ",".join(f'"{f}"' if "," in f else f for f in fields)


CMS_HEADER = ",".join(["NPI", "Ind_PAC_ID", "Ind_enrl_ID", "lst_nm", "frst_nm"] + [f"col{i}" for i in range(5, 30)])


@pytest.fixture
def cms_row():
    return build_cms_row


@pytest.fixture
def cms_header():
    return CMS_HEADER


@pytest.fixture
def cms_csv():
    """Three-provider extract: cardiology and dermatology in Virginia, cardiology in New York."""
    lines = [
        CMS_HEADER,
        build_cms_row(npi="1000000001", first="Alice", last="Adams", specialty="CARDIOLOGY", state="VA"),
        build_cms_row(
            npi="1000000002", first="Derek", last="Dunn", specialty="DERMATOLOGY", city="Arlington", state="VA"
        ),
        build_cms_row(
            npi="1000000003", first="Nina", last="Nolan", specialty="CARDIOLOGY", city="New York", state="NY"
        ),
    ]
    return "\n".join(lines) + "\n"


class FakeResponse:
    def __init__(self, text="", status_code=200, json_data=None):
        self.text = text
        self.status_code = status_code
        self._json = json_data
        self.content = (text or ("x" if json_data is not None else "")).encode("utf-8")

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Records every call and replays queued responses (or raises queued exceptions)."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def _next(self, method, url, **kwargs):
        self.calls.append(SimpleNamespace(method=method, url=url, **kwargs))
        if not self.responses:
            raise requests.ConnectionError("No response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


class FakeGeocoder:
    """geopy-style geocoder returning fixed locations, or raising ``error``."""

    def __init__(self, locations=None, error=None, reverse_address=None):
        self.locations = dict(locations or {})
        self.error = error
        self.reverse_address = reverse_address
        self.queries = []

    def geocode(self, query, timeout=None, **kwargs):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        found = self.locations.get(query)
        if found is None:
            return None
        lat, lng, address = found
        return SimpleNamespace(latitude=lat, longitude=lng, address=address)

    def reverse(self, point, exactly_one=True, timeout=None, **kwargs):
        self.queries.append(point)
        if self.error is not None:
            raise self.error
        if self.reverse_address is None:
            return None
        return SimpleNamespace(address=self.reverse_address, latitude=point[0], longitude=point[1])


@pytest.fixture
def fake_geocoder():
    return FakeGeocoder


@pytest.fixture
def geocoding_config():
    return {
        "google_maps_api_key": "",
        "google_maps_enabled": False,
        "nominatim_user_agent": "mediconnect_tests",
        "request_timeout": 1,
        "rate_limit_delay": 0.0,
        "max_retries": 0,
    }


class FakeModel:
    """Stands in for ``genai.GenerativeModel``: replays ``text`` or raises ``error``."""

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.prompts = []
        self.request_options = []

    def generate_content(self, prompt, request_options=None):
        self.prompts.append(prompt)
        self.request_options.append(request_options)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


@pytest.fixture
def fake_model():
    return FakeModel


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ai_config():
    return {
        "api_key": "A" * 39,
        "models": ["model-a", "model-b"],
        "request_debounce_seconds": 1.0,
        "request_timeout": 7,
        "temperature": 0.3,
        "max_output_tokens": 256,
    }


@pytest.fixture
def cms_config():
    return {
        "csv_path": "",
        "csv_url": "",
        "max_rows": 1000,
        "min_columns": 29,
        "npi_registry_enabled": False,
        "npi_registry_url": "",
        "npi_registry_limit": 20,
        "request_timeout": 1,
    }


@pytest.fixture(autouse=True)
def clear_mediconnect_env(monkeypatch):
    """Keep developer environment variables from leaking into configuration tests."""
    for name in list(os.environ):
        if name.startswith("MEDICONNECT_"):
            monkeypatch.delenv(name, raising=False)
    for name in ("GEMINI_API_KEY", "GOOGLE_MAPS_API_KEY", "SUPABASE_URL", "SUPABASE_ANON_KEY"):
        monkeypatch.delenv(name, raising=False)
