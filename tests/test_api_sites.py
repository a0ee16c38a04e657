def _create(client, headers, **overrides):
    payload = {"name": "Figma", "url": "https://figma.com", "pricing": "freemium"}
    payload.update(overrides)
    return client.post("/api/sites", json=payload, headers=headers)


def test_create_site_links_categories_and_tags(client, fake, auth_headers):
    design = fake.add("categories", user_id="user-1", name="Design")
    ui = fake.add("tags", user_id="user-1", name="ui")

    response = _create(
        client, auth_headers(), category_ids=[design["id"]], tag_ids=[ui["id"]]
    )

    assert response.status_code == 201
    site = response.get_json()["data"]
    assert site["user_id"] == "user-1"
    assert [item["name"] for item in site["categories_array"]] == ["Design"]
    assert [item["name"] for item in site["tags_array"]] == ["ui"]
    assert fake.tables["site_categories"] == [{"site_id": site["id"], "category_id": design["id"]}]
    assert all(
        call.headers["apikey"] == "service-key"
        for call in fake.calls("POST", "site_tags")
    )


def test_create_site_resolves_category_names(client, fake, auth_headers):
    design = fake.add("categories", user_id="user-1", name="Design")
    fake.add("categories", user_id="user-2", name="Tools")

    response = _create(client, auth_headers(), categories="Design;Tools")

    assert response.status_code == 201
    assert fake.tables["site_categories"][0]["category_id"] == design["id"]
    assert len(fake.tables["site_categories"]) == 1


def test_create_site_validates_required_fields(client, auth_headers):
    response = client.post("/api/sites", json={"name": "No url"}, headers=auth_headers())
    assert response.status_code == 400
    assert response.get_json()["error"] == "Missing required fields: name, url, pricing"


def test_create_site_ignores_user_id_from_body(client, fake, auth_headers):
    response = _create(client, auth_headers(), user_id="someone-else")

    assert response.status_code == 201
    assert fake.rows("sites")[0]["user_id"] == "user-1"


def test_create_duplicate_site_returns_conflict(client, fake, auth_headers):
    existing = fake.add("sites", user_id="user-1", name="Figma", url="https://figma.com")

    response = _create(client, auth_headers())

    assert response.status_code == 409
    payload = response.get_json()
    assert payload["error"] == "Site already exists"
    assert payload["data"]["id"] == existing["id"]


def test_create_site_blocked_by_tier_limit(client, fake, auth_headers):
    for idx in range(500):
        fake.add("sites", user_id="user-1", name=f"S{idx}", url=f"https://s{idx}.dev")

    response = _create(client, auth_headers())

    assert response.status_code == 403
    payload = response.get_json()
    assert payload["tierLimited"] is True
    assert payload["limit"] == 500
    assert payload["error"].startswith("Site limit reached (500/500)")
    assert fake.calls("POST", "sites") == []


def test_create_site_rolls_back_when_linking_fails(client, fake, auth_headers):
    design = fake.add("categories", user_id="user-1", name="Design")
    ui = fake.add("tags", user_id="user-1", name="ui")
    fake.fail("POST", "site_tags", status=403, details="permission denied")

    response = _create(
        client, auth_headers(), category_ids=[design["id"]], tag_ids=[ui["id"]]
    )

    assert response.status_code == 502
    payload = response.get_json()
    assert payload["error"] == "Failed to link categories or tags"
    assert payload["details"] == "permission denied"
    assert fake.rows("sites") == []
    assert fake.tables["site_categories"] == []


def test_list_sites_filters_by_owner_and_query(client, fake, auth_headers):
    fake.add("sites", user_id="user-1", name="Figma", url="https://figma.com")
    fake.add("sites", user_id="user-1", name="Linear", url="https://linear.app")
    fake.add("sites", user_id="user-2", name="Figma clone", url="https://figma.clone")

    everything = client.get("/api/sites", headers=auth_headers()).get_json()
    assert [site["name"] for site in everything["data"]] == ["Linear", "Figma"]
    assert everything["page"] == 1

    filtered = client.get("/api/sites?q=FIG", headers=auth_headers()).get_json()
    assert [site["name"] for site in filtered["data"]] == ["Figma"]
    assert filtered["data"][0]["categories_array"] == []


def test_get_site_returns_null_for_foreign_site(client, fake, auth_headers):
    site = fake.add("sites", user_id="user-2", name="Theirs", url="https://theirs.dev")

    response = client.get(f"/api/sites/{site['id']}", headers=auth_headers())

    assert response.status_code == 200
    assert response.get_json() == {"success": True, "data": None}


def test_update_site_replaces_relations(client, fake, auth_headers):
    site = fake.add("sites", user_id="user-1", name="Old", url="https://old.dev")
    old = fake.add("categories", user_id="user-1", name="Old")
    new = fake.add("categories", user_id="user-1", name="New")
    fake.add("site_categories", site_id=site["id"], category_id=old["id"])

    response = client.patch(
        f"/api/sites/{site['id']}",
        json={"name": "Renamed", "user_id": "user-2", "category_ids": [new["id"]]},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["warnings"] == []
    assert payload["data"]["name"] == "Renamed"
    assert payload["data"]["user_id"] == "user-1"
    assert site["updated_at"]
    assert fake.tables["site_categories"] == [{"site_id": site["id"], "category_id": new["id"]}]


def test_update_site_reports_relation_warnings(client, fake, auth_headers):
    site = fake.add("sites", user_id="user-1", name="Old", url="https://old.dev")
    tag = fake.add("tags", user_id="user-1", name="ui")
    fake.fail("POST", "site_tags", status=500, details="insert failed")

    response = client.patch(
        f"/api/sites/{site['id']}", json={"tag_ids": [tag["id"]]}, headers=auth_headers()
    )

    assert response.status_code == 200
    warnings = response.get_json()["warnings"]
    assert warnings == [{"stage": "insert_tags", "status": 500, "details": "insert failed"}]


def test_update_missing_site_returns_not_found(client, auth_headers):
    response = client.patch("/api/sites/nope", json={"name": "X"}, headers=auth_headers())
    assert response.status_code == 404
    assert response.get_json()["error"] == "Site not found"


def test_delete_site_removes_junction_rows(client, fake, auth_headers):
    site = fake.add("sites", user_id="user-1", name="Gone", url="https://gone.dev")
    tag = fake.add("tags", user_id="user-1", name="ui")
    fake.add("site_tags", site_id=site["id"], tag_id=tag["id"])

    response = client.delete(f"/api/sites/{site['id']}", headers=auth_headers())

    assert response.status_code == 200
    assert fake.rows("sites") == []
    assert fake.tables["site_tags"] == []
    assert fake.rows("tags") == [tag]

    again = client.delete(f"/api/sites/{site['id']}", headers=auth_headers())
    assert again.status_code == 404


def test_retry_relations_checks_ownership(client, fake, auth_headers):
    mine = fake.add("sites", user_id="user-1", name="Mine", url="https://mine.dev")
    theirs = fake.add("sites", user_id="user-2", name="Theirs", url="https://theirs.dev")
    category = fake.add("categories", user_id="user-1", name="Design")

    denied = client.post(
        f"/api/sites/{theirs['id']}/relations/retry",
        json={"category_ids": [category["id"]]},
        headers=auth_headers(),
    )
    assert denied.status_code == 403
    assert denied.get_json()["error"] == "Not site owner"

    response = client.post(
        f"/api/sites/{mine['id']}/relations/retry",
        json={"categoryIds": [category["id"]]},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    assert [item["name"] for item in response.get_json()["data"]["categories_array"]] == ["Design"]


def test_retry_relations_surfaces_failures(client, fake, auth_headers):
    site = fake.add("sites", user_id="user-1", name="Mine", url="https://mine.dev")
    fake.fail("DELETE", "site_categories", status=500, details="nope")

    response = client.post(
        f"/api/sites/{site['id']}/relations/retry", json={}, headers=auth_headers()
    )

    assert response.status_code == 502
    payload = response.get_json()
    assert payload["error"] == "Relation update failed"
    assert payload["warnings"][0]["stage"] == "delete_categories"


def test_search_ranks_owned_sites(client, fake, auth_headers):
    fake.add("sites", user_id="user-1", name="Figma", url="https://figma.com")
    fake.add("sites", user_id="user-1", name="Design tools", url="https://tools.dev", description="like figma")
    fake.add("sites", user_id="user-2", name="Figma", url="https://figma.com")

    payload = client.get("/api/search?q=figma", headers=auth_headers()).get_json()

    items = payload["items"]
    assert [item["name"] for item in items] == ["Figma", "Design tools"]
    assert "exact_name" in items[0]["match_reasons"]
    assert items[0]["score"] > items[1]["score"]

    empty = client.get("/api/search", headers=auth_headers()).get_json()
    assert empty == {"success": True, "items": []}


def test_search_falls_back_to_default_limit(client, fake, auth_headers):
    fake.add("sites", user_id="user-1", name="Figma", url="https://figma.com")
    fake.add("sites", user_id="user-1", name="Figjam", url="https://figjam.com")

    for limit in ("-1", "0", "abc"):
        payload = client.get(f"/api/search?q=fig&limit={limit}", headers=auth_headers()).get_json()
        assert len(payload["items"]) == 2

    capped = client.get("/api/search?q=fig&limit=1", headers=auth_headers()).get_json()
    assert len(capped["items"]) == 1
