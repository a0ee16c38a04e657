"""Subscription tiers and the limits attached to them.

Unlimited quotas are represented by ``None`` so that every value here stays
JSON serialisable.
"""

from __future__ import annotations

TIER_FREE = "free"
TIER_PRO = "pro"
TIER_PROMAX = "promax"

TIER_ORDER = (TIER_FREE, TIER_PRO, TIER_PROMAX)

TIER_LABELS = {
    TIER_FREE: "Free",
    TIER_PRO: "Pro",
    TIER_PROMAX: "Pro Max",
}

TIER_LIMITS: dict[str, dict[str, int | None]] = {
    TIER_FREE: {"sites": 500, "categories": 50, "tags": 200, "ai_suggests_per_month": 1},
    TIER_PRO: {"sites": 2000, "categories": 200, "tags": 500, "ai_suggests_per_month": 200},
    TIER_PROMAX: {
        "sites": None,
        "categories": None,
        "tags": None,
        "ai_suggests_per_month": 2000,
    },
}

FEATURE_GATES = {
    "ai_suggest": TIER_PRO,
    "link_health_check": TIER_PRO,
}


def resolve_tier(metadata: dict | None, is_admin: bool = False) -> str:
    if is_admin:
        return TIER_PROMAX
    metadata = metadata or {}
    tier = metadata.get("tier")
    if tier in TIER_LIMITS:
        return tier
    if metadata.get("is_pro") is True:
        return TIER_PRO
    return TIER_FREE


def get_limit(tier: str, kind: str) -> int | None:
    limits = TIER_LIMITS.get(tier, TIER_LIMITS[TIER_FREE])
    return limits.get(kind)


def can_add(tier: str, kind: str, current_count: int) -> dict:
    limit = get_limit(tier, kind)
    if limit is None:
        return {"allowed": True, "remaining": None, "limit": None}
    return {
        "allowed": current_count < limit,
        "remaining": max(0, limit - current_count),
        "limit": limit,
    }


def has_feature(tier: str, feature: str) -> bool:
    required = FEATURE_GATES.get(feature)
    if required is None:
        return True
    if tier not in TIER_ORDER:
        tier = TIER_FREE
    return TIER_ORDER.index(tier) >= TIER_ORDER.index(required)


def limit_text(limit: int | None) -> str:
    return "Unlimited" if limit is None else str(limit)


def tier_label(tier: str) -> str:
    return TIER_LABELS.get(tier, TIER_LABELS[TIER_FREE])


def upgrade_target(tier: str) -> str:
    return "Pro or Pro Max" if tier == TIER_FREE else "Pro Max"


def limit_message(tier: str, kind: str, current_count: int) -> str:
    noun = {"sites": "Site", "categories": "Category", "tags": "Tag"}.get(kind, kind)
    return (
        f"{noun} limit reached ({current_count}/{limit_text(get_limit(tier, kind))}). "
        f"You are on the {tier_label(tier)} plan. "
        f"Upgrade to {upgrade_target(tier)} for more."
    )
