"""Remote gateways: CRUD access to the tables mirrored by the domain store.

Every gateway speaks storage-native records (plain dictionaries with
snake_case keys) and reports failures as
:class:`~stockdesk.errors.RemoteError`. Listing returns records ordered by
``created_at`` descending, newest first.
"""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import httpx

from . import log
from .constants import DEFAULT_REQUEST_TIMEOUT, Table
from .errors import RemoteError
from .record_mapper import parse_timestamp


TableName = Union[Table, str]
Record = Dict[str, Any]


class RemoteGateway(ABC):
    """Contract of the backend collaborator used by the domain store."""

    @abstractmethod
    def list(self, table: TableName) -> List[Record]:
        """Return every record of ``table``, newest first."""

    @abstractmethod
    def create(self, table: TableName, fields: Mapping[str, Any]) -> Record:
        """Insert a record and return it as stored (with its ``id``)."""

    @abstractmethod
    def update(self, table: TableName, record_id: int, fields: Mapping[str, Any]) -> Record:
        """Update the given fields of one record and return the stored record."""

    @abstractmethod
    def delete(self, table: TableName, record_id: int) -> None:
        """Delete one record."""

    @abstractmethod
    def delete_many(self, table: TableName, record_ids: Sequence[int]) -> None:
        """Delete several records in a single all-or-nothing request."""


def newest_first(records: Iterable[Record]) -> List[Record]:
    return sorted(
        records,
        key=lambda record: (parse_timestamp(record.get("created_at")), record.get("id") or 0),
        reverse=True,
    )


class InMemoryGateway(RemoteGateway):
    """Dictionary-backed gateway used for demo mode and tests.

    Identifiers are allocated per table starting at 1 and ``created_at`` is
    stamped with the current UTC time when the caller omits it. Records are
    copied on the way in and out so callers never share state with the
    gateway.
    """

    def __init__(self, initial: Optional[Mapping[TableName, Iterable[Mapping[str, Any]]]] = None) -> None:
        self._tables: Dict[Table, Dict[int, Record]] = {table: {} for table in Table}
        self._next_ids: Dict[Table, int] = {table: 1 for table in Table}
        for table, records in (initial or {}).items():
            for record in records:
                self.create(table, record)

    def _table(self, table: TableName) -> Dict[int, Record]:
        return self._tables[Table(table)]

    def _require(self, table: TableName, record_id: int) -> Record:
        rows = self._table(table)
        if record_id not in rows:
            raise RemoteError(f"{Table(table).value} record {record_id} does not exist")
        return rows[record_id]

    def list(self, table: TableName) -> List[Record]:
        return [copy.deepcopy(record) for record in newest_first(self._table(table).values())]

    def create(self, table: TableName, fields: Mapping[str, Any]) -> Record:
        key = Table(table)
        record = copy.deepcopy(dict(fields))
        record_id = record.get("id")
        if record_id is None or record_id in self._tables[key]:
            record_id = self._next_ids[key]
        record["id"] = record_id
        self._next_ids[key] = max(self._next_ids[key], record_id + 1)
        if not record.get("created_at"):
            record["created_at"] = datetime.now(UTC).isoformat()
        self._tables[key][record_id] = record
        return copy.deepcopy(record)

    def update(self, table: TableName, record_id: int, fields: Mapping[str, Any]) -> Record:
        record = self._require(table, record_id)
        for name, value in fields.items():
            if name == "id":
                continue
            record[name] = copy.deepcopy(value)
        return copy.deepcopy(record)

    def delete(self, table: TableName, record_id: int) -> None:
        self._require(table, record_id)
        del self._table(table)[record_id]

    def delete_many(self, table: TableName, record_ids: Sequence[int]) -> None:
        for record_id in record_ids:
            self._require(table, record_id)
        for record_id in record_ids:
            del self._table(table)[record_id]


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("message", "error_description", "error", "msg"):
            if payload.get(key):
                return str(payload[key])
    return f"{response.status_code} {response.reason_phrase}".strip()


class SupabaseGateway(RemoteGateway):
    """Gateway talking to a Supabase project through its PostgREST API.

    Args:
        url (str): Project URL, e.g. ``https://abc.supabase.co``.
        key (str): Anonymous (public) API key of the project.
        timeout (float): Per-request timeout in seconds. A timeout surfaces as
            :class:`RemoteError`.
        access_token (str | None): Bearer token of a signed-in user; defaults
            to ``key`` for anonymous access.
        client (httpx.Client | None): Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        access_token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {access_token or key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        table: TableName,
        *,
        params: Optional[Mapping[str, str]] = None,
        payload: Optional[Mapping[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> Any:
        name = Table(table).value
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        content = json.dumps(payload, default=_json_default) if payload is not None else None
        try:
            response = self._client.request(
                method,
                f"{self.base_url}/{name}",
                params=params,
                headers=headers,
                content=content,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            log.error("%s %s timed out after %ss", method, name, self.timeout)
            raise RemoteError(f"Request to '{name}' timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            log.error("%s %s failed: %s", method, name, exc)
            raise RemoteError(f"Request to '{name}' failed: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            log.error("%s %s rejected: %s", method, name, message)
            raise RemoteError(message)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _single(self, rows: Any, table: TableName, action: str) -> Record:
        if not rows:
            raise RemoteError(f"{action} on '{Table(table).value}' returned no record")
        return dict(rows[0])

    def list(self, table: TableName) -> List[Record]:
        rows = self._request("GET", table, params={"select": "*", "order": "created_at.desc"})
        return [dict(row) for row in rows or []]

    def create(self, table: TableName, fields: Mapping[str, Any]) -> Record:
        rows = self._request("POST", table, payload=fields, prefer="return=representation")
        return self._single(rows, table, "Insert")

    def update(self, table: TableName, record_id: int, fields: Mapping[str, Any]) -> Record:
        payload = {name: value for name, value in fields.items() if name != "id"}
        rows = self._request(
            "PATCH",
            table,
            params={"id": f"eq.{record_id}"},
            payload=payload,
            prefer="return=representation",
        )
        return self._single(rows, table, "Update")

    def delete(self, table: TableName, record_id: int) -> None:
        self._request("DELETE", table, params={"id": f"eq.{record_id}"})

    def delete_many(self, table: TableName, record_ids: Sequence[int]) -> None:
        if not record_ids:
            return
        joined = ",".join(str(record_id) for record_id in record_ids)
        self._request("DELETE", table, params={"id": f"in.({joined})"})
