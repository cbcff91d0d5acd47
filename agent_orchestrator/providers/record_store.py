"""
Record store adapters.

``InMemoryRecordStore`` keeps tables in process memory and backs the default
configuration and the test suite. ``SupabaseRecordStore`` talks to a
Supabase/PostgREST endpoint over a shared HTTP session.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import requests

from ..errors import PersistenceError
from ..models import RecordStoreConfig

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    def create_record(self, table: str, fields: dict) -> dict: ...

    def get_record(self, table: str, record_id: str) -> Optional[dict]: ...

    def update_record(self, table: str, record_id: str, fields: dict) -> dict: ...

    def query_records(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(record: dict, filters: dict) -> bool:
    for key, expected in filters.items():
        value = record.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class InMemoryRecordStore:
    """
    Thread-safe dict-of-tables record store.

    Records get an ``id`` and ``created_at`` when not supplied. Returned
    records are deep copies.
    """

    def __init__(self):
        self._tables: dict[str, dict[str, dict]] = {}
        self._lock = threading.RLock()
        self._counter = 0

    def create_record(self, table: str, fields: dict) -> dict:
        with self._lock:
            self._counter += 1
            record = copy.deepcopy(fields)
            record.setdefault("id", str(uuid.uuid4()))
            record.setdefault("created_at", _now())
            # Tie-breaker for records created within the same clock tick
            record.setdefault("_seq", self._counter)
            self._tables.setdefault(table, {})[record["id"]] = record
            return self._public(record)

    def get_record(self, table: str, record_id: str) -> Optional[dict]:
        with self._lock:
            record = self._tables.get(table, {}).get(record_id)
            return self._public(record) if record else None

    def update_record(self, table: str, record_id: str, fields: dict) -> dict:
        with self._lock:
            record = self._tables.get(table, {}).get(record_id)
            if record is None:
                raise PersistenceError(f"{table}/{record_id} not found")
            record.update(copy.deepcopy(fields))
            record["updated_at"] = _now()
            return self._public(record)

    def query_records(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Return matching records.

        Args:
            filters: Field equality filters; a list value means "one of"
            order_by: Field name, prefixed with ``-`` for descending
            limit: Maximum number of records
        """
        with self._lock:
            rows = [
                r for r in self._tables.get(table, {}).values() if _matches(r, filters or {})
            ]
            if order_by:
                field_name = order_by.lstrip("-")
                rows.sort(
                    key=lambda r: (r.get(field_name) is not None, r.get(field_name), r["_seq"]),
                    reverse=order_by.startswith("-"),
                )
            else:
                rows.sort(key=lambda r: r["_seq"])
            if limit is not None:
                rows = rows[:limit]
            return [self._public(r) for r in rows]

    def seed(self, table: str, records: list[dict]) -> None:
        """Bulk insert fixture data."""
        for record in records:
            self.create_record(table, record)

    @staticmethod
    def _public(record: dict) -> dict:
        return {k: copy.deepcopy(v) for k, v in record.items() if k != "_seq"}


class SupabaseRecordStore:
    """
    PostgREST record store.

    Args:
        url: Supabase project URL
        api_key: Service role key
        timeout: Request timeout in seconds
        session: Shared requests session
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self._session = session or requests.Session()
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    @classmethod
    def from_config(
        cls, config: RecordStoreConfig, session: Optional[requests.Session] = None
    ) -> "SupabaseRecordStore":
        return cls(url=config.url, api_key=config.api_key, timeout=config.timeout, session=session)

    def _request(self, method: str, table: str, **kwargs: Any) -> Any:
        try:
            response = self._session.request(
                method,
                f"{self.base_url}/{table}",
                headers=self._headers,
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Record store {method} {table} failed: {e}")
            raise PersistenceError(f"{method} {table} failed: {e}") from e
        return response.json() if response.content else []

    def create_record(self, table: str, fields: dict) -> dict:
        rows = self._request("POST", table, json=fields)
        if not rows:
            raise PersistenceError(f"insert into {table} returned no row")
        return rows[0]

    def get_record(self, table: str, record_id: str) -> Optional[dict]:
        rows = self._request("GET", table, params={"id": f"eq.{record_id}", "limit": 1})
        return rows[0] if rows else None

    def update_record(self, table: str, record_id: str, fields: dict) -> dict:
        rows = self._request("PATCH", table, params={"id": f"eq.{record_id}"}, json=fields)
        if not rows:
            raise PersistenceError(f"{table}/{record_id} not found")
        return rows[0]

    def query_records(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        params: dict[str, Any] = {"select": "*"}
        for key, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                params[key] = f"in.({','.join(str(v) for v in value)})"
            else:
                params[key] = f"eq.{value}"
        if order_by:
            direction = "desc" if order_by.startswith("-") else "asc"
            params["order"] = f"{order_by.lstrip('-')}.{direction}"
        if limit is not None:
            params["limit"] = limit
        return self._request("GET", table, params=params)
