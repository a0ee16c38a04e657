from siteshelf.services.search import search_sites


def _site(name: str, url: str = "https://example.org", tags=None, description: str = ""):
    return {
        "name": name,
        "url": url,
        "description": description,
        "categories_array": [],
        "tags_array": [{"name": tag} for tag in (tags or [])],
    }


def test_search_filters_irrelevant_items():
    sites = [
        _site("Python docs"),
        _site("Gardening tips"),
        _site("Travel planning"),
    ]

    results = search_sites(sites, "python")

    assert [row["site"]["name"] for row in results] == ["Python docs"]
    assert "name_prefix" in results[0]["reasons"]


def test_search_keeps_high_confidence_fuzzy_matches():
    sites = [
        _site("Python documentation"),
        _site("Rust cookbook"),
    ]

    results = search_sites(sites, "pythn")

    assert results
    assert results[0]["site"]["name"] == "Python documentation"


def test_search_matches_description_and_tags():
    sites = [
        _site("Weekly roundup", description="This includes release notes for flask 3.1"),
        _site("Other"),
        _site("Backend starter", tags=["flask 3.1"]),
    ]

    results = search_sites(sites, "flask 3.1")

    assert [row["site"]["name"] for row in results] == [
        "Backend starter",
        "Weekly roundup",
    ]


def test_search_with_blank_query_returns_nothing():
    assert search_sites([_site("Anything")], "   ") == []
