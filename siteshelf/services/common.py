from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable, Iterable
from urllib.parse import urlparse

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_DOMAIN_FALLBACK = re.compile(r"(?:https?://)?(?:www\.)?([^/]+)", re.I)
_HAS_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.I)


def _with_scheme(url: str) -> str:
    return url if _HAS_SCHEME.match(url) else f"https://{url}"


def normalize_url(url: str | None) -> str:
    """Comparison key for a URL: host without ``www.`` plus path, lower-cased."""
    raw = (url or "").strip()
    if not raw:
        return ""
    try:
        parsed = urlparse(_with_scheme(raw))
        host = (parsed.hostname or "").lower()
        if not host:
            raise ValueError(raw)
        if host.startswith("www."):
            host = host[4:]
        path = parsed.path.rstrip("/")
        return f"{host}{path}".lower()
    except ValueError:
        return raw.lower().rstrip("/")


def extract_domain(url: str | None) -> str:
    raw = (url or "").strip()
    if not raw:
        return ""
    try:
        host = urlparse(raw if raw.startswith("http") else f"https://{raw}").hostname
        if not host:
            raise ValueError(raw)
        return host.lower().removeprefix("www.")
    except ValueError:
        match = _DOMAIN_FALLBACK.match(raw)
        return match.group(1) if match else raw


def normalize_name(name: str | None) -> str:
    return _NON_ALNUM.sub("", (name or "").casefold())


def build_groups(items: Iterable, key_fn: Callable) -> list[dict]:
    grouped: dict[str, list] = {}
    for item in items:
        key = key_fn(item)
        if not key:
            continue
        grouped.setdefault(key, []).append(item)

    groups = [
        {"key": key, "items": members}
        for key, members in grouped.items()
        if len(members) > 1
    ]
    groups.sort(key=lambda group: len(group["items"]), reverse=True)
    return groups


def split_multi_value(value, pattern: str = r"[,;|\n]+") -> list[str]:
    if value is None or value == "":
        return []
    return [part.strip() for part in re.split(pattern, str(value)) if part.strip()]


def to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def is_http_url(url: str | None) -> bool:
    return bool(url) and url.lower().startswith(("http://", "https://"))


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()
