"""Thin PostgREST / GoTrue admin client for the Supabase project.

Requests either run as the calling user (their JWT, so row level security
applies) or with the service role key, which bypasses RLS and is reserved for
junction-table writes, public share lookups and admin work.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Iterable

import httpx

logger = logging.getLogger(__name__)

DUPLICATE_PATTERN = re.compile(r"duplicate|unique|violat|23505|already exists", re.I)
_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)")
_RESERVED_FILTER_CHARS = set(',.:()" \\')


class SupabaseNotConfigured(RuntimeError):
    pass


class SupabaseError(Exception):
    def __init__(self, status: int, details: str, message: str = "Upstream REST error"):
        super().__init__(f"{message} ({status})")
        self.status = status
        self.details = details
        self.message = message

    @property
    def is_duplicate(self) -> bool:
        return self.status == 409 or bool(DUPLICATE_PATTERN.search(self.details or ""))


def eq(value) -> str:
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def _quote(value) -> str:
    text = str(value)
    if re.fullmatch(r"-?\d+", text):
        return text
    if any(ch in _RESERVED_FILTER_CHARS for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def in_list(values: Iterable) -> str:
    return "in.(" + ",".join(_quote(value) for value in values) + ")"


def ilike_any(columns: Iterable[str], query: str) -> str:
    cleaned = query.replace("*", "").replace(",", " ").replace("(", " ").replace(")", " ")
    cleaned = cleaned.strip()
    return "(" + ",".join(f"{column}.ilike.*{cleaned}*" for column in columns) + ")"


def chunked(values: list, size: int) -> Iterable[list]:
    for i in range(0, len(values), size):
        yield values[i : i + size]


class RestScope:
    """A set of credentials bound to one PostgREST caller."""

    def __init__(self, client: "SupabaseRest", api_key: str, bearer: str):
        self._client = client
        self._api_key = api_key
        self._bearer = bearer

    def _headers(self, prefer: str | None = None, body: bool = False) -> dict:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._bearer}",
            "Accept": "application/json",
        }
        if body:
            headers["Content-Type"] = "application/json"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def request(
        self,
        method: str,
        table: str,
        params: dict | None = None,
        json: Any = None,
        prefer: str | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        merged = self._headers(prefer=prefer, body=json is not None)
        merged.update(headers or {})
        return self._client.send(
            method, f"/rest/v1/{table}", params=params, json=json, headers=merged
        )

    def select(
        self,
        table: str,
        filters: dict | None = None,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict]:
        params = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        if offset:
            params["offset"] = str(offset)
        response = self.request("GET", table, params=params)
        return response.json() or []

    def select_all(
        self,
        table: str,
        filters: dict | None = None,
        columns: str = "*",
        order: str | None = None,
        page_size: int = 1000,
        max_rows: int | None = None,
    ) -> list[dict]:
        rows: list[dict] = []
        offset = 0
        while True:
            limit = page_size
            if max_rows is not None:
                limit = min(page_size, max_rows - len(rows))
                if limit <= 0:
                    break
            batch = self.select(
                table, filters, columns=columns, order=order, limit=limit, offset=offset
            )
            rows.extend(batch)
            if len(batch) < limit:
                break
            offset += len(batch)
        return rows

    def first(self, table: str, filters: dict, columns: str = "*") -> dict | None:
        rows = self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def select_in(
        self,
        table: str,
        column: str,
        values: list,
        filters: dict | None = None,
        columns: str = "*",
        batch: int = 100,
    ) -> list[dict]:
        rows: list[dict] = []
        unique = [value for value in dict.fromkeys(values) if value is not None]
        for part in chunked(unique, batch):
            params = dict(filters or {})
            params[column] = in_list(part)
            rows.extend(self.select(table, params, columns=columns))
        return rows

    def insert(
        self,
        table: str,
        rows: dict | list[dict],
        prefer: str = "return=representation",
    ) -> list[dict]:
        response = self.request("POST", table, json=rows, prefer=prefer)
        return _rows(response)

    def update(self, table: str, filters: dict, values: dict) -> list[dict]:
        response = self.request(
            "PATCH", table, params=filters, json=values, prefer="return=representation"
        )
        return _rows(response)

    def delete(self, table: str, filters: dict) -> list[dict]:
        response = self.request(
            "DELETE", table, params=filters, prefer="return=representation"
        )
        return _rows(response)

    def count(self, table: str, filters: dict | None = None) -> int:
        params = {"select": "id"}
        params.update(filters or {})
        response = self.request(
            "GET",
            table,
            params=params,
            prefer="count=exact",
            headers={"Range": "0-0"},
        )
        match = _CONTENT_RANGE_TOTAL.search(response.headers.get("content-range", ""))
        if match:
            return int(match.group(1))
        return len(response.json() or [])


def _rows(response: httpx.Response) -> list[dict]:
    if not response.content:
        return []
    payload = response.json()
    if isinstance(payload, list):
        return payload
    return [payload] if payload else []


def batch_delete(
    scope: RestScope, table: str, column: str, ids: list, batch: int = 100
) -> list[dict]:
    deleted: list[dict] = []
    unique = [value for value in dict.fromkeys(ids) if value is not None]
    for part in chunked(unique, batch):
        deleted.extend(scope.delete(table, {column: in_list(part)}))
    return deleted


def batch_insert(
    scope: RestScope,
    table: str,
    rows: list[dict],
    batch: int = 100,
    prefer: str = "return=representation",
) -> list[dict]:
    inserted: list[dict] = []
    for part in chunked(rows, batch):
        inserted.extend(scope.insert(table, part, prefer=prefer))
    return inserted


class SupabaseRest:
    def __init__(
        self,
        url: str,
        anon_key: str,
        service_key: str | None = None,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not url or not anon_key:
            raise SupabaseNotConfigured("Supabase config missing")
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.service_key = service_key or anon_key
        self._http = httpx.Client(
            base_url=self.url, timeout=timeout, transport=transport
        )

    @classmethod
    def from_config(cls, config) -> "SupabaseRest":
        return cls(
            url=config.get("SUPABASE_URL", ""),
            anon_key=config.get("SUPABASE_ANON_KEY", ""),
            service_key=config.get("SUPABASE_SERVICE_KEY"),
            timeout=float(config.get("SUPABASE_TIMEOUT", 15)),
            transport=config.get("SUPABASE_TRANSPORT"),
        )

    @property
    def has_service_key(self) -> bool:
        return self.service_key != self.anon_key

    def as_user(self, token: str) -> RestScope:
        return RestScope(self, self.anon_key, token)

    def as_service(self) -> RestScope:
        return RestScope(self, self.service_key, self.service_key)

    def send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Supabase %s %s failed: %s", method, path, exc)
            raise SupabaseError(502, str(exc)) from exc
        if response.is_error:
            details = response.text
            logger.warning(
                "Supabase %s %s returned %s: %s",
                method,
                path,
                response.status_code,
                details[:300],
            )
            raise SupabaseError(response.status_code, details)
        return response

    def _admin_headers(self) -> dict:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Accept": "application/json",
        }

    def get_user(self, user_id: str) -> dict | None:
        try:
            response = self.send(
                "GET", f"/auth/v1/admin/users/{user_id}", headers=self._admin_headers()
            )
        except SupabaseError as exc:
            if exc.status == 404:
                return None
            raise
        payload = response.json() or {}
        return payload.get("user", payload) or None

    def list_users(self, page: int = 1, per_page: int = 1000) -> list[dict]:
        response = self.send(
            "GET",
            "/auth/v1/admin/users",
            params={"page": str(page), "per_page": str(per_page)},
            headers=self._admin_headers(),
        )
        payload = response.json() or {}
        if isinstance(payload, list):
            return payload
        return payload.get("users") or []

    def update_user(self, user_id: str, attributes: dict) -> dict:
        response = self.send(
            "PUT",
            f"/auth/v1/admin/users/{user_id}",
            json=attributes,
            headers=self._admin_headers(),
        )
        payload = response.json() or {}
        return payload.get("user", payload)

    def delete_user(self, user_id: str) -> None:
        self.send(
            "DELETE", f"/auth/v1/admin/users/{user_id}", headers=self._admin_headers()
        )

    def close(self) -> None:
        self._http.close()


class Supabase:
    """Flask extension holding one lazily built client per application."""

    def __init__(self, app=None):
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        app.extensions["supabase"] = self
        app.extensions["supabase_rest"] = None

    def get_rest(self, app) -> SupabaseRest:
        with self._lock:
            rest = app.extensions.get("supabase_rest")
            if rest is None:
                rest = SupabaseRest.from_config(app.config)
                app.extensions["supabase_rest"] = rest
            return rest
