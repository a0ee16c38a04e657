from __future__ import annotations

from rapidfuzz import fuzz

from siteshelf.services.common import (
    build_groups,
    extract_domain,
    normalize_name,
    normalize_url,
)

SIMILAR_NAME_RATIO = 90


def _minimal(site: dict) -> dict:
    return {"id": site.get("id"), "name": site.get("name"), "url": site.get("url")}


def _as_sites(groups: list[dict]) -> list[dict]:
    return [{"key": group["key"], "sites": group["items"]} for group in groups]


def find_site_duplicates(sites: list[dict], include_domains: bool = True) -> dict:
    """Group sites sharing a normalized URL and, optionally, a domain.

    A domain group whose members are exactly one URL group is dropped since it
    carries no extra information.
    """
    rows = [_minimal(site) for site in sites]
    url_groups = build_groups(rows, lambda site: normalize_url(site["url"]))
    result = {"url_groups": _as_sites(url_groups), "domain_groups": []}
    if not include_domains:
        return result

    covered = {
        frozenset(site["id"] for site in group["items"]) for group in url_groups
    }
    domain_groups = [
        group
        for group in build_groups(rows, lambda site: extract_domain(site["url"]))
        if frozenset(site["id"] for site in group["items"]) not in covered
    ]
    result["domain_groups"] = _as_sites(domain_groups)
    return result


def find_name_duplicates(rows: list[dict]) -> list[dict]:
    """Categories or tags whose names only differ by case or punctuation."""
    groups = build_groups(rows, lambda row: normalize_name(row.get("name")))
    return [{"key": group["key"], "items": group["items"]} for group in groups]


def similar_names(rows: list[dict], threshold: int = SIMILAR_NAME_RATIO) -> list[dict]:
    grouped_ids = {
        row.get("id")
        for group in find_name_duplicates(rows)
        for row in group["items"]
    }
    candidates = [
        row
        for row in rows
        if row.get("id") not in grouped_ids and normalize_name(row.get("name"))
    ]

    pairs = []
    for i, left in enumerate(candidates):
        left_key = normalize_name(left.get("name"))
        for right in candidates[i + 1 :]:
            right_key = normalize_name(right.get("name"))
            score = fuzz.ratio(left_key, right_key)
            if score >= threshold:
                pairs.append({"items": [left, right], "score": round(score, 2)})

    pairs.sort(key=lambda pair: pair["score"], reverse=True)
    return pairs
