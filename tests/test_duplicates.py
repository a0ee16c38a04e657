from siteshelf.services.duplicates import (
    find_name_duplicates,
    find_site_duplicates,
    similar_names,
)


def _site(site_id, url, name=None):
    return {"id": site_id, "name": name or site_id, "url": url}


def test_site_duplicates_group_by_normalized_url():
    sites = [
        _site("1", "https://www.example.com/tools/"),
        _site("2", "http://example.com/tools"),
        _site("3", "https://other.dev"),
    ]

    result = find_site_duplicates(sites)
    assert len(result["url_groups"]) == 1
    assert result["url_groups"][0]["key"] == "example.com/tools"
    assert [site["id"] for site in result["url_groups"][0]["sites"]] == ["1", "2"]
    assert result["domain_groups"] == []


def test_domain_groups_only_add_new_information():
    sites = [
        _site("1", "https://example.com/a"),
        _site("2", "https://www.example.com/b"),
        _site("3", "https://example.com/a/"),
    ]

    result = find_site_duplicates(sites)
    assert [len(group["sites"]) for group in result["url_groups"]] == [2]
    assert len(result["domain_groups"]) == 1
    assert result["domain_groups"][0]["key"] == "example.com"
    assert len(result["domain_groups"][0]["sites"]) == 3

    without_domains = find_site_duplicates(sites, include_domains=False)
    assert without_domains["domain_groups"] == []


def test_name_duplicates_ignore_case_and_punctuation():
    rows = [
        {"id": "c1", "name": "Web Dev"},
        {"id": "c2", "name": "web-dev"},
        {"id": "c3", "name": "Design"},
    ]

    groups = find_name_duplicates(rows)
    assert len(groups) == 1
    assert groups[0]["key"] == "webdev"
    assert {row["id"] for row in groups[0]["items"]} == {"c1", "c2"}


def test_similar_names_finds_near_matches_outside_exact_groups():
    rows = [
        {"id": "c1", "name": "Productivity"},
        {"id": "c2", "name": "Productivty"},
        {"id": "c3", "name": "Web Dev"},
        {"id": "c4", "name": "webdev"},
        {"id": "c5", "name": "Music"},
    ]

    pairs = similar_names(rows)
    assert len(pairs) == 1
    assert {row["id"] for row in pairs[0]["items"]} == {"c1", "c2"}
    assert pairs[0]["score"] >= 90
