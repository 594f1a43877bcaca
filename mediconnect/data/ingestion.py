"""
Provider data loading - CMS extract, NPI registry, bundled static dataset.

Provider records come from three sources tried in priority order:

1. The CMS "Doctors and Clinicians" national downloadable file, read from a
   local path or an HTTP(S) URL. Over HTTP the text is requested with three
   approaches in turn (plain GET, cache-busted GET, GET asking for plain text)
   since static hosts differ in what they accept.
2. The NPPES NPI registry API, queried by city/state and specialty.
3. The bundled static provider list (``reference/fallback_providers.json``).

Each level is a ``ResilientFetcher`` chain, so a failure anywhere degrades to
the next source and the caller always receives a list of records.

Usage:
    manager = ProviderDataManager()
    outcome = manager.load_providers(criteria)
    records = outcome.payload  # provenance in outcome.provenance
"""

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from mediconnect.data.normalization import normalize_rows
from mediconnect.data.reference import load_fallback_providers
from mediconnect.data.tabular import TabularParseResult, parse_tabular
from mediconnect.models import ProviderRecord, ProviderSource, SearchCriteria
from mediconnect.utils.addressing import location_tokens, normalize_state, resolve_state
from mediconnect.utils.config import get_api_config
from mediconnect.utils.resilience import FetchOutcome, ResilientFetcher, Strategy

logger = logging.getLogger(__name__)

PLAIN_TEXT_ACCEPT = "text/plain, */*"


class DataSource(Enum):
    """Provider data sources in priority order."""

    CMS_CSV = "cms_csv"  # CMS Doctors and Clinicians extract
    NPI_REGISTRY = "npi_registry"  # NPPES NPI registry API
    STATIC_DATASET = "static_dataset"  # Bundled provider list


class CMSSourceUnavailable(Exception):
    """No CMS extract could be read from any configured location."""


class ProviderDataManager:
    """
    Loads provider records with fallback across sources.

    The parsed CMS extract is kept on the instance after the first successful
    load; later calls reuse it until ``clear_cache`` is called.

    Args:
        config: CMS config as returned by ``get_api_config('cms')``.
        session: ``requests.Session`` (or compatible) used for every HTTP call.
        as_of_year: Reference year for experience derived from graduation year.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None,
        as_of_year: Optional[int] = None,
    ):
        self.config = config if config is not None else get_api_config("cms")
        self.session = session or requests.Session()
        self.timeout = self.config.get("request_timeout", 10)
        self.as_of_year = as_of_year
        self.last_parse: Optional[TabularParseResult] = None
        self._cms_records: Optional[List[ProviderRecord]] = None

        text_strategies = []
        if self.config.get("csv_path"):
            text_strategies.append(Strategy("local_file", self._read_local_file, ProviderSource.CSV_GOVERNMENT))
        if self.config.get("csv_url"):
            text_strategies.extend(
                [
                    Strategy("standard_fetch", self._fetch_standard, ProviderSource.CSV_GOVERNMENT),
                    Strategy("cache_buster_fetch", self._fetch_cache_busted, ProviderSource.CSV_GOVERNMENT),
                    Strategy("plain_text_fetch", self._fetch_plain_text, ProviderSource.CSV_GOVERNMENT),
                ]
            )
        self._text_fetcher: ResilientFetcher[str] = ResilientFetcher("cms_csv_text", text_strategies, lambda: "")

        provider_strategies = [Strategy(DataSource.CMS_CSV.value, self._load_cms, ProviderSource.CSV_GOVERNMENT)]
        if self.config.get("npi_registry_enabled", True) and self.config.get("npi_registry_url"):
            provider_strategies.append(
                Strategy(DataSource.NPI_REGISTRY.value, self._load_npi_registry, ProviderSource.EXTERNAL_API)
            )
        self._provider_fetcher: ResilientFetcher[List[ProviderRecord]] = ResilientFetcher(
            "provider_data", provider_strategies, self._load_static
        )

    # CMS extract text approaches

    def _read_local_file(self) -> str:
        path = Path(self.config["csv_path"])
        if not path.exists():
            raise FileNotFoundError(f"CMS extract {path} does not exist")
        return path.read_text(encoding="utf-8")

    def _get_text(self, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> str:
        response = self.session.get(self.config["csv_url"], params=params, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    def _fetch_standard(self) -> str:
        return self._get_text()

    def _fetch_cache_busted(self) -> str:
        return self._get_text(params={"t": int(time.time() * 1000)})

    def _fetch_plain_text(self) -> str:
        return self._get_text(headers={"Accept": PLAIN_TEXT_ACCEPT})

    def load_cms_text(self) -> FetchOutcome[str]:
        return self._text_fetcher.run()

    def parse_cms_text(self, text) -> List[ProviderRecord]:
        """Parse and normalize CMS extract text (or a text stream).

        Raises:
            EmptyInputError: The payload had no data lines.
        """
        result = parse_tabular(
            text,
            max_rows=int(self.config.get("max_rows", 1000)),
            min_columns=int(self.config.get("min_columns", 29)),
        )
        self.last_parse = result
        records = normalize_rows(result.rows, as_of_year=self.as_of_year)
        logger.info(
            f"Parsed CMS extract: {result.data_lines} data lines, {len(result.skipped)} malformed, "
            f"{len(records)} usable providers"
        )
        return records

    # Provider strategies

    def _load_cms(self, criteria: Optional[SearchCriteria] = None, specialty: Optional[str] = None):
        if self._cms_records is not None:
            logger.debug("CMS providers already loaded; reusing")
            return list(self._cms_records)

        if not self._text_fetcher.strategies:
            raise CMSSourceUnavailable("No CMS extract path or URL configured")
        outcome = self.load_cms_text()
        if outcome.used_fallback:
            raise CMSSourceUnavailable(outcome.reason or "CMS extract could not be loaded")

        records = self.parse_cms_text(outcome.payload)
        if records:
            self._cms_records = records
        return list(records)

    def _load_npi_registry(self, criteria: Optional[SearchCriteria] = None, specialty: Optional[str] = None):
        criteria = criteria or SearchCriteria()
        params = self.npi_query_params(criteria, specialty)
        if params is None:
            logger.debug("NPI registry needs a city, state or specialty; skipping")
            return None

        response = self.session.get(self.config["npi_registry_url"], params=params, timeout=self.timeout)
        response.raise_for_status()
        payload = response.json()
        if payload.get("Errors"):
            raise ValueError(f"NPI registry rejected the query: {payload['Errors']}")
        return [r for r in (npi_result_to_record(item) for item in payload.get("results") or []) if r is not None]

    def npi_query_params(self, criteria: SearchCriteria, specialty: Optional[str] = None) -> Optional[Dict[str, Any]]:
        state = resolve_state(criteria.location)
        city = next(
            (t for t in location_tokens(criteria.location) if normalize_state(t) != state and len(t) > 2),
            None,
        )
        taxonomy = specialty or criteria.specialty_hint
        if not (city or state or taxonomy):
            return None

        params: Dict[str, Any] = {"version": "2.1", "limit": int(self.config.get("npi_registry_limit", 20))}
        if city:
            params["city"] = city
        if state:
            params["state"] = state
        if taxonomy:
            params["taxonomy_description"] = taxonomy
        return params

    def _load_static(self, criteria: Optional[SearchCriteria] = None, specialty: Optional[str] = None):
        return load_fallback_providers()

    # Public API

    def load_providers(
        self, criteria: Optional[SearchCriteria] = None, specialty: Optional[str] = None
    ) -> FetchOutcome[List[ProviderRecord]]:
        """Provider records from the highest-priority source that yields any."""
        return self._provider_fetcher.run(criteria, specialty)

    def load_static_providers(self) -> List[ProviderRecord]:
        return load_fallback_providers()

    def clear_cache(self) -> None:
        self._cms_records = None
        self.last_parse = None

    def get_data_status(self) -> Dict[str, Any]:
        """Summary of configured sources and what has been loaded so far."""
        return {
            "cms_path": self.config.get("csv_path") or None,
            "cms_url": self.config.get("csv_url") or None,
            "cms_loaded": self._cms_records is not None,
            "cms_records": len(self._cms_records or []),
            "npi_registry_enabled": any(
                s.name == DataSource.NPI_REGISTRY.value for s in self._provider_fetcher.strategies
            ),
            "last_parse_truncated": bool(self.last_parse and self.last_parse.truncated),
            "last_parse_malformed": len(self.last_parse.skipped) if self.last_parse else 0,
        }


def _location_address(addresses: List[Dict[str, Any]]) -> Dict[str, Any]:
    for address in addresses:
        if str(address.get("address_purpose", "")).upper() == "LOCATION":
            return address
    return addresses[0] if addresses else {}


def npi_result_to_record(item: Dict[str, Any]) -> Optional[ProviderRecord]:
    """Map one NPI registry result onto a ProviderRecord; None when it has no usable name."""
    basic = item.get("basic") or {}
    parts = (basic.get("first_name"), basic.get("middle_name"), basic.get("last_name"))
    person = " ".join(part.strip().title() for part in parts if part and part.strip())
    name = person or (basic.get("organization_name") or "").strip()
    taxonomies = item.get("taxonomies") or []
    primary = next((t for t in taxonomies if t.get("primary")), taxonomies[0] if taxonomies else {})
    secondary = next((t for t in taxonomies if t is not primary and t.get("desc")), None)
    address = _location_address(item.get("addresses") or [])
    city = (address.get("city") or "").strip().title()
    specialty = (primary.get("desc") or "").strip()

    if not name or not (specialty or city):
        return None

    number = str(item.get("number") or "").strip()
    return ProviderRecord(
        id=f"npi-{number}" if number else f"npi-{name.lower().replace(' ', '-')}",
        name=name,
        credentials=(basic.get("credential") or "").strip(),
        primary_specialty=specialty,
        secondary_specialty=(secondary.get("desc") or None) if secondary else None,
        address=", ".join(p.strip() for p in (address.get("address_1"), address.get("address_2")) if p and p.strip()),
        city=city,
        state=(address.get("state") or "").strip(),
        postal_code=str(address.get("postal_code") or "")[:5],
        phone=address.get("telephone_number") or None,
        source=ProviderSource.EXTERNAL_API,
        is_verified_real=True,
        facility=(basic.get("organization_name") or None) if person else None,
        gender=basic.get("gender") or basic.get("sex") or None,
    )
