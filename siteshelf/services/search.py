from __future__ import annotations

from rapidfuzz import fuzz


def _safe(value: str | None) -> str:
    return (value or "").strip()


def _names(items) -> str:
    if not isinstance(items, list):
        return ""
    return " ".join(_safe((item or {}).get("name")) for item in items)


def score_site(site: dict, query: str) -> tuple[float, list[str]]:
    q = query.strip().lower()
    name_l = _safe(site.get("name")).lower()
    url_l = _safe(site.get("url")).lower()
    description_l = _safe(site.get("description")).lower()
    meta_l = f"{_names(site.get('categories_array'))} {_names(site.get('tags_array'))}"
    meta_l = meta_l.strip().lower()

    score = 0.0
    reasons: list[str] = []

    if q == name_l:
        score += 150
        reasons.append("exact_name")
    elif name_l.startswith(q):
        score += 120
        reasons.append("name_prefix")
    elif q in name_l:
        score += 100
        reasons.append("name_contains")

    if meta_l and q in meta_l:
        score += 90
        reasons.append("meta_match")

    if q in url_l:
        score += 60
        reasons.append("url_contains")

    if description_l and q in description_l:
        score += 35
        reasons.append("description_contains")

    fuzzy_name = fuzz.partial_ratio(q, name_l) if name_l else 0
    if fuzzy_name >= 72:
        score += fuzzy_name * 0.30
        reasons.append("name_fuzzy")

    fuzzy_meta = fuzz.partial_ratio(q, meta_l) if meta_l else 0
    if fuzzy_meta >= 80:
        score += fuzzy_meta * 0.20
        reasons.append("meta_fuzzy")

    if description_l and len(q) >= 4:
        fuzzy_description = fuzz.partial_ratio(q, description_l[:6000])
        if fuzzy_description >= 88:
            score += fuzzy_description * 0.16
            reasons.append("description_fuzzy")

    return score, reasons


def search_sites(sites: list[dict], query: str, limit: int = 50) -> list[dict]:
    if not query or not query.strip():
        return []

    ranked = []
    for site in sites:
        score, reasons = score_site(site, query)
        if reasons and score > 0:
            ranked.append({"site": site, "score": round(score, 2), "reasons": reasons})

    ranked.sort(key=lambda item: item["score"], reverse=True)
    return ranked[:limit]
