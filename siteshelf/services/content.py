"""Link health probing for saved sites.

Each probe sends ``HEAD`` first and falls back to ``GET`` for servers that
reject or mishandle it. Transient failures get one more attempt with a longer
timeout before the site is reported.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import httpx

from siteshelf.services.common import is_http_url

LINK_STATUS_ALIVE = "alive"
LINK_STATUS_TIMEOUT = "timeout"
LINK_STATUS_NOT_FOUND = "not_found"
LINK_STATUS_SERVER_ERROR = "server_error"
LINK_STATUS_DNS_ERROR = "dns_error"
LINK_STATUS_UNREACHABLE = "unreachable"
LINK_STATUS_INVALID = "invalid"

TRANSIENT_LINK_RESULTS = frozenset(
    {LINK_STATUS_TIMEOUT, LINK_STATUS_UNREACHABLE, LINK_STATUS_SERVER_ERROR}
)

PROBE_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; SiteShelf-LinkChecker/1.0)",
    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}
NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}

# Matched in order against the lower-cased transport error.
# A site behind an untrusted certificate still answers, so it counts as alive.
ERROR_RULES = (
    ("certificate verify failed", LINK_STATUS_ALIVE),
    ("certificateverifyfailed", LINK_STATUS_ALIVE),
    ("self signed certificate", LINK_STATUS_ALIVE),
    ("unable to get local issuer certificate", LINK_STATUS_ALIVE),
    ("timed out", LINK_STATUS_TIMEOUT),
    ("timeout", LINK_STATUS_TIMEOUT),
    ("name or service not known", LINK_STATUS_DNS_ERROR),
    ("nodename", LINK_STATUS_DNS_ERROR),
    ("temporary failure in name resolution", LINK_STATUS_DNS_ERROR),
)


@dataclass
class LinkCheckResult:
    result_type: str
    status_code: int | None = None
    final_url: str | None = None
    latency_ms: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result_type == LINK_STATUS_ALIVE


def classify_status(status_code: int | None, error: str | None) -> str:
    if error:
        lowered = error.lower()
        for marker, result in ERROR_RULES:
            if marker in lowered:
                return result
        return LINK_STATUS_UNREACHABLE

    if status_code is None:
        return LINK_STATUS_UNREACHABLE
    if status_code in (404, 410):
        return LINK_STATUS_NOT_FOUND
    if status_code == 408:
        return LINK_STATUS_TIMEOUT
    if status_code >= 500:
        return LINK_STATUS_SERVER_ERROR
    if status_code >= 200:
        return LINK_STATUS_ALIVE
    return LINK_STATUS_UNREACHABLE


def _describe(exc: Exception) -> str:
    return str(exc).strip() or type(exc).__name__


class _Probe:
    """A single attempt against one URL."""

    def __init__(self, client: httpx.Client):
        self.client = client
        self.status_code: int | None = None
        self.final_url: str | None = None
        self.error: str | None = None

    def _record(self, response: httpx.Response) -> None:
        self.status_code = response.status_code
        self.final_url = str(response.url)

    def run(self, url: str) -> "_Probe":
        try:
            self._record(self.client.head(url))
            if self.status_code >= 400:
                self._record(self.client.get(url))
            if self.status_code == 403:
                self._record(self.client.get(url, headers=NO_CACHE_HEADERS))
        except httpx.HTTPError:
            self._plain_get(url)
        return self

    def _plain_get(self, url: str) -> None:
        try:
            self._record(self.client.get(url))
            self.error = None
        except httpx.HTTPError as exc:
            self.error = _describe(exc)


def check_link(
    url: str,
    timeout: float,
    transport: httpx.BaseTransport | None = None,
    attempts: int = 2,
) -> LinkCheckResult:
    if not is_http_url(url):
        return LinkCheckResult(LINK_STATUS_INVALID, latency_ms=0, error="Invalid URL")

    started = time.monotonic()
    for attempt in range(attempts):
        with httpx.Client(
            follow_redirects=True,
            timeout=timeout * (1 + attempt * 0.5),
            headers=PROBE_HEADERS,
            transport=transport,
        ) as client:
            probe = _Probe(client).run(url)
        result_type = classify_status(probe.status_code, probe.error)
        if result_type not in TRANSIENT_LINK_RESULTS:
            break

    error = probe.error
    if error is None and result_type != LINK_STATUS_ALIVE and probe.status_code:
        error = f"HTTP {probe.status_code}"
    return LinkCheckResult(
        result_type,
        status_code=probe.status_code,
        final_url=probe.final_url,
        latency_ms=int((time.monotonic() - started) * 1000),
        error=error,
    )


def _site_result(site: dict, result: LinkCheckResult) -> dict:
    return {
        "id": site.get("id"),
        "name": site.get("name"),
        "url": site.get("url"),
        "ok": result.ok,
        "status": result.status_code or 0,
        "result": result.result_type,
        "error": result.error,
        "latencyMs": result.latency_ms,
    }


def check_links(
    sites: list[dict],
    timeout: float = 8.0,
    workers: int = 8,
    transport: httpx.BaseTransport | None = None,
) -> dict:
    """Probe every site concurrently and split out the broken ones."""

    def probe(site: dict) -> dict:
        return _site_result(site, check_link(site.get("url") or "", timeout, transport))

    with ThreadPoolExecutor(max_workers=max(1, min(int(workers), 32))) as pool:
        results = list(pool.map(probe, sites))

    broken = [item for item in results if not item["ok"]]
    return {
        "total": len(results),
        "brokenCount": len(broken),
        "broken": broken,
        "results": results,
    }
