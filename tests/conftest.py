import itertools
import json
import re
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest

from siteshelf import create_app
from siteshelf.config import TestConfig
from siteshelf.extensions import db

UNIQUE_KEYS = {
    "sites": ("user_id", "url"),
    "categories": ("user_id", "name"),
    "tags": ("user_id", "name"),
    "share_tokens": ("token",),
    "profiles": ("id",),
    "site_categories": ("site_id", "category_id"),
    "site_tags": ("site_id", "tag_id"),
}
JUNCTION_TABLES = {"site_categories", "site_tags"}
RESERVED_PARAMS = {"select", "order", "limit", "offset", "or"}


def _cell(value) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if value is None:
        return "null"
    return str(value)


def _unquote(text: str) -> str:
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        return text[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return text


def _split_top(text: str) -> list[str]:
    parts, current, depth, quoted = [], "", 0, False
    for char in text:
        if char == '"':
            quoted = not quoted
        elif not quoted and char == "(":
            depth += 1
        elif not quoted and char == ")":
            depth -= 1
        elif not quoted and depth == 0 and char == ",":
            parts.append(current)
            current = ""
            continue
        current += char
    if current:
        parts.append(current)
    return parts


def _matches(row: dict, column: str, expression: str) -> bool:
    op, _, value = expression.partition(".")
    actual = row.get(column)
    if op == "eq":
        return _cell(actual) == _unquote(value)
    if op == "neq":
        return _cell(actual) != _unquote(value)
    if op == "in":
        return _cell(actual) in [_unquote(item) for item in _split_top(value[1:-1])]
    if op in {"ilike", "like"}:
        if actual is None:
            return False
        pattern = re.escape(_unquote(value)).replace(r"\*", ".*").replace("%", ".*")
        flags = re.I if op == "ilike" else 0
        return re.fullmatch(pattern, str(actual), flags) is not None
    if op == "is":
        return actual is None if value == "null" else _cell(actual) == value
    if op in {"lt", "lte", "gt", "gte"}:
        if actual is None:
            return False
        left, right = str(actual), _unquote(value)
        return {
            "lt": left < right,
            "lte": left <= right,
            "gt": left > right,
            "gte": left >= right,
        }[op]
    raise ValueError(f"unsupported filter {expression}")


def _or_matches(row: dict, expression: str) -> bool:
    for part in _split_top(expression[1:-1]):
        column, _, rest = part.partition(".")
        if _matches(row, column, rest):
            return True
    return False


def _ordered(rows: list[dict], order: str) -> list[dict]:
    for part in reversed(order.split(",")):
        bits = part.split(".")
        column = bits[0]
        desc = "desc" in bits[1:]
        present = [row for row in rows if row.get(column) is not None]
        missing = [row for row in rows if row.get(column) is None]
        present.sort(key=lambda row: row[column], reverse=desc)
        nulls_last = "nullslast" in bits or (not desc and "nullsfirst" not in bits)
        rows = present + missing if nulls_last else missing + present
    return rows


class FakeSupabase:
    """In-memory PostgREST and GoTrue admin endpoints behind an httpx transport."""

    def __init__(self):
        self.tables = defaultdict(list)
        self.users = {}
        self.requests = []
        self.failures = {}
        self._ids = itertools.count(1)
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def _next_timestamp(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def add(self, table: str, **row) -> dict:
        with self._lock:
            self._stamp(table, row)
            self.tables[table].append(row)
        return row

    def add_user(self, user_id: str, email: str, **metadata) -> dict:
        user = {
            "id": user_id,
            "email": email,
            "user_metadata": metadata,
            "created_at": self._next_timestamp(),
            "last_sign_in_at": None,
            "banned_until": None,
        }
        self.users[user_id] = user
        return user

    def rows(self, table: str, **match) -> list[dict]:
        return [
            row
            for row in self.tables[table]
            if all(row.get(key) == value for key, value in match.items())
        ]

    def fail(self, method: str, table: str, status: int = 500, details: str = "boom"):
        self.failures[(method, table)] = (status, details)

    def calls(self, method: str, table: str) -> list[httpx.Request]:
        path = f"/rest/v1/{table}"
        return [
            request
            for request in self.requests
            if request.method == method and request.url.path == path
        ]

    def _stamp(self, table: str, row: dict) -> None:
        if table not in JUNCTION_TABLES:
            row.setdefault("id", f"{table}-{next(self._ids)}")
            row.setdefault("created_at", self._next_timestamp())

    def _duplicate(self, table: str, row: dict, pending: list[dict]) -> bool:
        keys = UNIQUE_KEYS.get(table)
        if not keys:
            return False
        candidate = tuple(row.get(key) for key in keys)
        if None in candidate:
            return False
        for existing in self.tables[table] + pending:
            if tuple(existing.get(key) for key in keys) == candidate:
                return True
        return False

    def _filtered(self, table: str, params: list[tuple[str, str]]) -> list[dict]:
        rows = []
        for row in self.tables[table]:
            keep = True
            for key, value in params:
                if key == "or":
                    keep = _or_matches(row, value)
                elif key not in RESERVED_PARAMS:
                    keep = _matches(row, key, value)
                if not keep:
                    break
            if keep:
                rows.append(row)
        return rows

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            path = request.url.path
            if path.startswith("/auth/v1/admin/users"):
                return self._admin(request, path)

            table = path.removeprefix("/rest/v1/")
            failure = self.failures.get((request.method, table))
            if failure:
                return httpx.Response(failure[0], text=failure[1])

            params = list(request.url.params.multi_items())
            if request.method == "GET":
                return self._select(request, table, params)
            if request.method == "POST":
                return self._insert(request, table)
            if request.method == "PATCH":
                return self._update(request, table, params)
            if request.method == "DELETE":
                return self._delete(table, params)
            return httpx.Response(405)

    def _select(self, request, table, params) -> httpx.Response:
        query = dict(params)
        rows = self._filtered(table, params)
        if query.get("order"):
            rows = _ordered(rows, query["order"])
        total = len(rows)
        offset = int(query.get("offset") or 0)
        rows = rows[offset:]
        if query.get("limit"):
            rows = rows[: int(query["limit"])]

        columns = query.get("select") or "*"
        if columns == "*":
            payload = [dict(row) for row in rows]
        else:
            names = columns.split(",")
            payload = [{name: row.get(name) for name in names} for row in rows]

        headers = {}
        if "count=exact" in request.headers.get("prefer", ""):
            headers["content-range"] = f"0-{max(len(payload) - 1, 0)}/{total}"
        return httpx.Response(200, json=payload, headers=headers)

    def _insert(self, request, table) -> httpx.Response:
        body = json.loads(request.content)
        items = body if isinstance(body, list) else [body]
        prefer = request.headers.get("prefer", "")
        ignore = "ignore-duplicates" in prefer

        accepted = []
        for item in items:
            row = dict(item)
            if self._duplicate(table, row, accepted):
                if ignore:
                    continue
                return httpx.Response(
                    409,
                    json={
                        "code": "23505",
                        "message": "duplicate key value violates unique constraint",
                    },
                )
            accepted.append(row)

        for row in accepted:
            self._stamp(table, row)
            self.tables[table].append(row)
        if "return=representation" in prefer:
            return httpx.Response(201, json=[dict(row) for row in accepted])
        return httpx.Response(201)

    def _update(self, request, table, params) -> httpx.Response:
        values = json.loads(request.content)
        rows = self._filtered(table, params)
        for row in rows:
            row.update(values)
        return httpx.Response(200, json=[dict(row) for row in rows])

    def _delete(self, table, params) -> httpx.Response:
        rows = self._filtered(table, params)
        removed = {id(row) for row in rows}
        self.tables[table] = [row for row in self.tables[table] if id(row) not in removed]
        return httpx.Response(200, json=[dict(row) for row in rows])

    def _admin(self, request, path) -> httpx.Response:
        user_id = path.removeprefix("/auth/v1/admin/users").strip("/")
        if not user_id:
            page = int(request.url.params.get("page", "1"))
            per_page = int(request.url.params.get("per_page", "50"))
            users = list(self.users.values())
            start = (page - 1) * per_page
            return httpx.Response(200, json={"users": users[start : start + per_page]})

        user = self.users.get(user_id)
        if not user:
            return httpx.Response(404, json={"msg": "User not found"})
        if request.method == "GET":
            return httpx.Response(200, json=user)
        if request.method == "PUT":
            attributes = json.loads(request.content)
            if "user_metadata" in attributes:
                user["user_metadata"] = attributes["user_metadata"]
            if attributes.get("ban_duration") == "none":
                user["banned_until"] = None
            elif attributes.get("ban_duration"):
                user["banned_until"] = "2126-01-01T00:00:00+00:00"
            return httpx.Response(200, json=user)
        if request.method == "DELETE":
            del self.users[user_id]
            return httpx.Response(200, json={})
        return httpx.Response(405)


def make_token(user_id="user-1", email="user@example.com", secret=None, **metadata):
    payload = {
        "sub": user_id,
        "email": email,
        "user_metadata": metadata,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    return jwt.encode(payload, secret or TestConfig.SUPABASE_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def fake():
    return FakeSupabase()


@pytest.fixture
def app(fake):
    app = create_app(TestConfig)
    app.config["SUPABASE_TRANSPORT"] = httpx.MockTransport(fake.handler)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    def build(user_id="user-1", email="user@example.com", **metadata):
        return {"Authorization": f"Bearer {make_token(user_id, email, **metadata)}"}

    return build
