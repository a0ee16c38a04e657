from siteshelf.services.tiers import (
    can_add,
    get_limit,
    has_feature,
    limit_message,
    limit_text,
    resolve_tier,
    upgrade_target,
)


def test_resolve_tier_prefers_stored_tier_then_legacy_flag():
    assert resolve_tier({"tier": "promax"}, False) == "promax"
    assert resolve_tier({"is_pro": True}, False) == "pro"
    assert resolve_tier({}, False) == "free"
    assert resolve_tier({"tier": "gold"}, False) == "free"
    assert resolve_tier(None) == "free"


def test_resolve_tier_admin_override():
    assert resolve_tier({}, True) == "promax"
    assert resolve_tier({"tier": "free"}, True) == "promax"


def test_can_add_at_free_site_limit():
    result = can_add("free", "sites", 500)
    assert result == {"allowed": False, "remaining": 0, "limit": 500}

    result = can_add("free", "sites", 499)
    assert result["allowed"] is True
    assert result["remaining"] == 1


def test_can_add_is_unlimited_on_promax():
    result = can_add("promax", "sites", 1_000_000)
    assert result == {"allowed": True, "remaining": None, "limit": None}
    assert get_limit("promax", "tags") is None
    assert limit_text(None) == "Unlimited"


def test_feature_gates_follow_tier_order():
    assert has_feature("free", "link_health_check") is False
    assert has_feature("pro", "link_health_check") is True
    assert has_feature("promax", "ai_suggest") is True
    assert has_feature("free", "unknown_feature") is True


def test_limit_message_names_plan_and_upgrade_path():
    assert upgrade_target("free") == "Pro or Pro Max"
    assert upgrade_target("pro") == "Pro Max"
    assert limit_message("free", "categories", 50) == (
        "Category limit reached (50/50). You are on the Free plan. "
        "Upgrade to Pro or Pro Max for more."
    )
