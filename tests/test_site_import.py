import httpx
import pytest

from siteshelf.services.security import Identity
from siteshelf.services.site_import import (
    chunk_size_for,
    normalize_import_row,
    run_import,
)
from siteshelf.services.supabase import SupabaseRest


@pytest.fixture
def rest(fake):
    client = SupabaseRest(
        "https://project.supabase.test",
        "anon-key",
        "service-key",
        transport=httpx.MockTransport(fake.handler),
    )
    yield client
    client.close()


def _identity(tier="free", user_id="user-1"):
    return Identity(user_id=user_id, email="user@example.com", tier=tier, is_admin=False, token="user-token")


def _run(rest, rows, identity=None, **kwargs):
    identity = identity or _identity()
    return run_import(rest.as_user(identity.token), rest.as_service(), identity, rows, **kwargs)


def _seed_sites(fake, count, user_id="user-1"):
    for idx in range(count):
        fake.add("sites", user_id=user_id, name=f"Seed {idx}", url=f"https://seed{idx}.example")


def test_normalize_import_row_accepts_every_taxonomy_shape():
    row = normalize_import_row(
        {
            "title": " Figma ",
            "URL": "https://figma.com",
            "categories_array": [{"name": "Design", "color": "#fff"}, "Tools"],
            "tags": "ui, prototyping",
            "is_favorite": "true",
            "is_pinned": 1,
            "pricing": "Free Trial",
        },
        3,
    )

    assert row.index == 3
    assert row.name == "Figma"
    assert row.url == "https://figma.com"
    assert [item["name"] for item in row.categories] == ["Design", "Tools"]
    assert row.categories[0]["color"] == "#fff"
    assert [item["name"] for item in row.tags] == ["ui", "prototyping"]
    assert row.is_favorite is True
    assert row.is_pinned is True
    assert row.pricing == "free_trial"

    fallback = normalize_import_row({"url": "https://x.dev", "category": "A;B|C"}, 0)
    assert [item["name"] for item in fallback.categories] == ["A", "B", "C"]
    assert fallback.pricing == "freemium"
    assert fallback.is_favorite is False


def test_chunk_size_for_respects_minimum():
    assert chunk_size_for(None) == 200
    assert chunk_size_for("10") == 50
    assert chunk_size_for(500) == 500
    assert chunk_size_for("abc", default=120) == 120


def test_import_creates_sites_and_missing_taxonomy(fake, rest):
    design = fake.add("categories", user_id="user-1", name="Design", color="#000")
    rows = [
        {"name": "Figma", "url": "https://figma.com", "category": "Design;Tools", "tag": "ui"},
        {"name": "Linear", "url": "https://linear.app", "categories_array": [{"name": "design"}]},
    ]

    report = _run(rest, rows)

    assert [item["site"]["name"] for item in report["created"]] == ["Figma", "Linear"]
    assert report["categoriesCreated"] == 1
    assert report["tagsCreated"] == 1
    assert report["errors"] == []
    assert report["tierLimited"] is False

    tools = fake.rows("categories", name="Tools")[0]
    assert tools["color"] == "#6CBBFB"
    assert fake.rows("tags", name="ui")[0]["color"] == "#D98BAC"

    figma = fake.rows("sites", url="https://figma.com")[0]
    linear = fake.rows("sites", url="https://linear.app")[0]
    links = {(row["site_id"], row["category_id"]) for row in fake.tables["site_categories"]}
    assert links == {
        (figma["id"], design["id"]),
        (figma["id"], tools["id"]),
        (linear["id"], design["id"]),
    }
    junction_calls = fake.calls("POST", "site_categories")
    assert junction_calls
    assert all(call.headers["apikey"] == "service-key" for call in junction_calls)


def test_import_updates_existing_sites_and_replaces_relations(fake, rest):
    site = fake.add("sites", user_id="user-1", name="Old", url="https://figma.com", pricing="paid")
    old = fake.add("categories", user_id="user-1", name="Old category")
    fake.add("site_categories", site_id=site["id"], category_id=old["id"])

    report = _run(
        rest,
        [{"name": "Figma", "url": "https://figma.com", "category": "Design", "is_favorite": True}],
    )

    assert report["created"] == []
    assert len(report["updated"]) == 1
    assert site["name"] == "Figma"
    assert site["is_favorite"] is True
    design = fake.rows("categories", name="Design")[0]
    assert fake.tables["site_categories"] == [{"site_id": site["id"], "category_id": design["id"]}]


def test_import_trims_new_sites_to_remaining_tier_slots(fake, rest):
    _seed_sites(fake, 499)
    rows = [{"name": f"New {idx}", "url": f"https://new{idx}.example"} for idx in range(3)]

    report = _run(rest, rows)

    assert len(report["created"]) == 1
    assert [item["reason"] for item in report["skipped"]] == ["tier_limit", "tier_limit"]
    assert report["tierLimited"] is True
    assert report["siteLimitReached"] is True
    assert report["skippedDueToLimit"] == 2
    assert report["sitesImported"] == 1
    assert report["sitesTotal"] == 3
    assert report["tierMessage"] == (
        "Free plan limits reached: 2 new site(s) skipped (500/500). "
        "Upgrade to Pro or Pro Max for more."
    )


def test_import_short_circuits_when_site_limit_is_reached(fake, rest):
    _seed_sites(fake, 500)

    report = _run(rest, [{"name": "One more", "url": "https://one.more"}])

    assert report["tierLimited"] is True
    assert report["siteLimitReached"] is True
    assert report["tierMessage"] == (
        "Site limit reached (500/500). You are on the Free plan. "
        "Upgrade to Pro or Pro Max for more."
    )
    assert fake.calls("POST", "sites") == []


def test_import_on_unlimited_tier_ignores_site_count(fake, rest):
    _seed_sites(fake, 500)

    report = _run(rest, [{"name": "One more", "url": "https://one.more"}], identity=_identity("promax"))

    assert len(report["created"]) == 1
    assert report["tierLimited"] is False


def test_import_records_row_errors_without_aborting(fake, rest):
    rows = [
        {"name": "No url"},
        {"name": "Dup A", "url": "https://dup.dev"},
        {"name": "Dup B", "url": "https://dup.dev"},
        {"name": "Fine", "url": "https://fine.dev"},
    ]

    report = _run(rest, rows)

    assert {"row": 0, "error": "Missing URL"} in report["errors"]
    assert [item["row"] for item in report["errors"]] == [0, 2]
    assert [item["site"]["name"] for item in report["created"]] == ["Dup A", "Fine"]


def test_import_without_create_missing_only_links_existing_taxonomy(fake, rest):
    fake.add("tags", user_id="user-1", name="ui")

    report = _run(
        rest,
        [{"name": "Figma", "url": "https://figma.com", "tag": "ui;new-tag", "category": "Design"}],
        create_missing=False,
    )

    assert report["categoriesCreated"] == 0
    assert report["tagsCreated"] == 0
    assert fake.rows("categories") == []
    assert len(fake.tables["site_tags"]) == 1


def test_import_cancellation_stops_between_chunks(fake, rest):
    rows = [{"name": f"Site {idx}", "url": f"https://site{idx}.example"} for idx in range(3)]
    progress_calls = []

    report = _run(
        rest,
        rows,
        chunk_size=1,
        progress=lambda processed, total, current: progress_calls.append((processed, total)),
        should_cancel=lambda: len(progress_calls) >= 1,
    )

    assert report["cancelled"] is True
    assert len(report["created"]) == 1
    assert progress_calls == [(1, 3)]
    assert len(fake.rows("sites")) == 1
