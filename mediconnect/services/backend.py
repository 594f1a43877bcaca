"""
Backend storage client.

``BackendClient`` is the small table interface the app needs (insert rows,
select recent rows). ``SupabaseRestClient`` speaks to a Supabase PostgREST
endpoint; ``InMemoryBackend`` keeps rows in process memory for local runs and
tests. Errors come back on ``BackendResponse.error`` rather than as exceptions.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from mediconnect.utils.config import get_api_config

logger = logging.getLogger(__name__)


@dataclass
class BackendResponse:
    data: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BackendClient(ABC):
    """Table-level access to the application backend."""

    name = "backend"

    @abstractmethod
    def insert(self, table: str, rows: List[Dict[str, Any]]) -> BackendResponse:
        """Insert ``rows`` into ``table``; returns the stored rows."""

    @abstractmethod
    def select(
        self, table: str, order_by: Optional[str] = None, descending: bool = True, limit: Optional[int] = None
    ) -> BackendResponse:
        """Rows of ``table``, optionally ordered and limited."""


class SupabaseRestClient(BackendClient):
    """Supabase PostgREST client (``<url>/rest/v1/<table>``) authenticated with the anon key."""

    name = "supabase"

    def __init__(self, url: str, anon_key: str, session: Optional[requests.Session] = None, timeout: float = 10):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.anon_key = anon_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.anon_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> BackendResponse:
        try:
            response = self.session.post(
                f"{self.base_url}/{table}",
                headers=self._headers("return=representation"),
                data=json.dumps(rows),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return BackendResponse(data=response.json() if response.content else list(rows))
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Supabase insert into '{table}' failed: {e}")
            return BackendResponse(error=str(e))

    def select(
        self, table: str, order_by: Optional[str] = None, descending: bool = True, limit: Optional[int] = None
    ) -> BackendResponse:
        params: Dict[str, Any] = {"select": "*"}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit:
            params["limit"] = int(limit)
        try:
            response = self.session.get(
                f"{self.base_url}/{table}", headers=self._headers(), params=params, timeout=self.timeout
            )
            response.raise_for_status()
            return BackendResponse(data=response.json())
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Supabase select from '{table}' failed: {e}")
            return BackendResponse(error=str(e))


class InMemoryBackend(BackendClient):
    """Process-local tables; used when no Supabase project is configured."""

    name = "in_memory"

    def __init__(self):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._next_id = 1

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> BackendResponse:
        stored = []
        for row in rows:
            record = copy.deepcopy(row)
            record.setdefault("id", self._next_id)
            self._next_id += 1
            self._tables.setdefault(table, []).append(record)
            stored.append(copy.deepcopy(record))
        return BackendResponse(data=stored)

    def select(
        self, table: str, order_by: Optional[str] = None, descending: bool = True, limit: Optional[int] = None
    ) -> BackendResponse:
        rows = [copy.deepcopy(r) for r in self._tables.get(table, [])]
        if order_by:
            # Rows without the column go last
            present = sorted((r for r in rows if r.get(order_by) is not None), key=lambda r: r[order_by])
            missing = [r for r in rows if r.get(order_by) is None]
            rows = (present[::-1] if descending else present) + missing
        if limit:
            rows = rows[: int(limit)]
        return BackendResponse(data=rows)


def create_backend_client(
    config: Optional[Dict[str, Any]] = None, session: Optional[requests.Session] = None
) -> BackendClient:
    """Supabase client when both URL and anon key are configured, otherwise the in-memory stub."""
    config = config if config is not None else get_api_config("supabase")
    if config.get("url") and config.get("anon_key"):
        logger.info("Using Supabase backend")
        return SupabaseRestClient(
            config["url"], config["anon_key"], session=session, timeout=config.get("request_timeout", 10)
        )
    logger.warning("Supabase is not configured; using the in-memory backend (data is not persisted)")
    return InMemoryBackend()
