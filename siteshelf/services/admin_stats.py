"""Platform-wide numbers for the admin dashboard.

Everything here works on rows already fetched with the service key, so the
aggregation can be exercised without a Supabase project.
"""

from __future__ import annotations

import statistics
from collections import Counter
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from siteshelf.services.common import extract_domain
from siteshelf.services.tiers import TIER_FREE, TIER_PRO

PRICING_KEYS = ("fully_free", "freemium", "free_trial", "paid")
ACTIVE_WINDOW_DAYS = 7
NEW_USER_WINDOW_DAYS = 30


def parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _display_name(user: dict, profile: dict | None) -> str:
    meta = user.get("user_metadata") or {}
    return (
        meta.get("display_name")
        or meta.get("full_name")
        or meta.get("username")
        or (profile or {}).get("name")
        or "—"
    )


def _user_tier(meta: dict) -> str:
    return meta.get("tier") or (TIER_PRO if meta.get("is_pro") else TIER_FREE)


def is_banned(user: dict, now: datetime) -> bool:
    banned_until = parse_timestamp(user.get("banned_until"))
    return bool(banned_until and banned_until > now)


def top_by_usage(rows: list[dict], usage: Counter, limit: int = 10) -> list[dict]:
    merged: dict[str, dict] = {}
    for row in rows:
        key = (row.get("name") or "").strip().lower()
        if not key:
            continue
        if key not in merged:
            merged[key] = {"name": row["name"], "color": row.get("color"), "usage": 0}
        merged[key]["usage"] += usage.get(row.get("id"), 0)
    ranked = sorted(merged.values(), key=lambda item: item["usage"], reverse=True)
    return ranked[:limit]


def _growth_point(label: str, sites: list[tuple], start, end) -> dict:
    in_range = [site for site in sites if start <= site[0] <= end]
    up_to = [site for site in sites if site[0] <= end]
    return {
        "label": label,
        "users": len({site[1] for site in in_range}),
        "sites": len(in_range),
        "totalUsers": len({site[1] for site in up_to}),
        "totalSites": len(up_to),
    }


def growth_daily(sites: list[tuple], now: datetime, days: int = 30) -> list[dict]:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    points = []
    for offset in range(days - 1, -1, -1):
        start = today - timedelta(days=offset)
        end = start + timedelta(days=1) - timedelta(microseconds=1)
        points.append(_growth_point(f"{start.day} {start:%b}", sites, start, end))
    return points


def growth_monthly(sites: list[tuple], now: datetime, months: int = 12) -> list[dict]:
    first = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    points = []
    for offset in range(months - 1, -1, -1):
        start = first - relativedelta(months=offset)
        end = start + relativedelta(months=1) - timedelta(microseconds=1)
        points.append(_growth_point(f"{start:%b %y}", sites, start, end))
    return points


def sites_per_user_stats(counts: list[int]) -> dict:
    if not counts:
        return {"avg": 0, "min": 0, "max": 0, "median": 0}
    return {
        "avg": round(sum(counts) / len(counts), 1),
        "min": min(counts),
        "max": max(counts),
        "median": round(statistics.median(counts), 1),
    }


def _url_key(url: str) -> str | None:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc.lower()}{parsed.path.rstrip('/')}"


def build_admin_stats(
    users: list[dict],
    sites: list[dict],
    categories: list[dict],
    tags: list[dict],
    site_categories: list[dict],
    site_tags: list[dict],
    profiles: list[dict] | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    profiles_by_id = {profile.get("id"): profile for profile in profiles or []}

    per_user: dict[str, Counter] = {}
    for kind, rows in (("sites", sites), ("categories", categories), ("tags", tags)):
        for row in rows:
            per_user.setdefault(row.get("user_id"), Counter())[kind] += 1

    user_list = []
    for user in users:
        meta = user.get("user_metadata") or {}
        profile = profiles_by_id.get(user.get("id"))
        counts = per_user.get(user.get("id"), Counter())
        user_list.append(
            {
                "id": user.get("id"),
                "email": user.get("email"),
                "username": _display_name(user, profile),
                "avatar": (profile or {}).get("avatar_url") or meta.get("avatar_url"),
                "created_at": user.get("created_at"),
                "last_sign_in": user.get("last_sign_in_at"),
                "sites": counts["sites"],
                "categories": counts["categories"],
                "tags": counts["tags"],
                "onboarded": bool(meta.get("onboarding_completed")),
                "is_pro": bool(meta.get("is_pro")),
                "tier": _user_tier(meta),
                "banned": is_banned(user, now),
            }
        )
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    user_list.sort(
        key=lambda item: parse_timestamp(item["created_at"]) or epoch, reverse=True
    )
    users_by_id = {item["id"]: item for item in user_list}

    pricing = {key: 0 for key in PRICING_KEYS}
    for site in sites:
        if site.get("pricing") in pricing:
            pricing[site["pricing"]] += 1

    active_since = now - timedelta(days=ACTIVE_WINDOW_DAYS)
    new_since = now - timedelta(days=NEW_USER_WINDOW_DAYS)
    active_users = 0
    new_users = 0
    for user in users:
        last_sign_in = parse_timestamp(user.get("last_sign_in_at"))
        if last_sign_in and last_sign_in >= active_since:
            active_users += 1
        created = parse_timestamp(user.get("created_at"))
        if created and created >= new_since:
            new_users += 1

    category_usage = Counter(row.get("category_id") for row in site_categories)
    tag_usage = Counter(row.get("tag_id") for row in site_tags)

    dated_sites = []
    for site in sites:
        created = parse_timestamp(site.get("created_at"))
        if created:
            dated_sites.append((created, site.get("user_id"), site))

    recent_by_user = Counter(
        user_id for created, user_id, _ in dated_sites if created >= active_since
    )
    most_active = [
        {**users_by_id[user_id], "recentSites": count}
        for user_id, count in recent_by_user.most_common()
        if user_id in users_by_id
    ][:5]

    domains = Counter(
        domain for domain in (extract_domain(site.get("url")) for site in sites) if domain
    )

    owners_by_url: dict[str, set] = {}
    for site in sites:
        key = _url_key(site.get("url") or "")
        if key:
            owners_by_url.setdefault(key, set()).add(site.get("user_id"))
    duplicate_sites = sorted(
        (
            {"url": url, "userCount": len(owners)}
            for url, owners in owners_by_url.items()
            if len(owners) > 1
        ),
        key=lambda item: item["userCount"],
        reverse=True,
    )[:15]

    recent_activity = []
    for created, user_id, site in sorted(dated_sites, key=lambda item: item[0], reverse=True)[:20]:
        owner = users_by_id.get(user_id)
        recent_activity.append(
            {
                "url": site.get("url"),
                "domain": extract_domain(site.get("url")),
                "created_at": site.get("created_at"),
                "user": {
                    "username": owner["username"],
                    "email": owner["email"],
                    "avatar": owner["avatar"],
                }
                if owner
                else None,
            }
        )

    return {
        "overview": {
            "totalUsers": len(users),
            "totalSites": len(sites),
            "totalCategories": len(categories),
            "totalTags": len(tags),
            "activeUsers": active_users,
            "newUsersLast30Days": new_users,
        },
        "pricingBreakdown": pricing,
        "topCategories": top_by_usage(categories, category_usage),
        "topTags": top_by_usage(tags, tag_usage),
        "users": user_list,
        "growthData": {
            "daily": growth_daily(dated_sites, now),
            "monthly": growth_monthly(dated_sites, now),
        },
        "sitesPerUserStats": sites_per_user_stats([item["sites"] for item in user_list]),
        "mostActiveUsers": most_active,
        "popularDomains": [
            {"domain": domain, "count": count} for domain, count in domains.most_common(15)
        ],
        "duplicateSites": duplicate_sites,
        "emptyAccountsCount": sum(1 for item in user_list if item["sites"] == 0),
        "recentActivity": recent_activity,
    }
