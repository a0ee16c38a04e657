import csv
import io
import json
from datetime import datetime, timezone

from siteshelf.services.export import build_export

NOW = datetime(2026, 3, 4, 12, 30, tzinfo=timezone.utc)

SITES = [
    {
        "id": "s1",
        "name": 'Figma "Design"',
        "url": "https://figma.com",
        "description": "Interface <design> tool",
        "is_favorite": True,
        "is_pinned": False,
        "categories_array": [{"id": "c1", "name": "Design"}, {"id": "c2", "name": "Tools"}],
        "tags_array": [{"id": "t1", "name": "ui"}],
    },
    {
        "id": "s2",
        "name": "Linear",
        "url": "https://linear.app",
        "is_favorite": False,
        "is_pinned": True,
        "categories_array": [],
        "tags_array": [],
    },
]


def test_csv_export_has_fixed_header_and_quoted_fields():
    body, mimetype, filename = build_export("csv", SITES, [], [], NOW)

    assert mimetype.startswith("text/csv")
    assert filename == "sites-export-2026-03-04.csv"
    lines = body.splitlines()
    assert lines[0] == "Name,URL,Category,Tags,Description,Favorite,Pinned"
    assert lines[1] == (
        '"Figma ""Design""","https://figma.com","Design; Tools","ui",'
        '"Interface <design> tool","Yes","No"'
    )

    rows = list(csv.reader(io.StringIO(body)))
    assert rows[2] == ["Linear", "https://linear.app", "", "", "", "No", "Yes"]


def test_json_export_contains_full_dump():
    categories = [{"id": "c1", "name": "Design"}]
    tags = [{"id": "t1", "name": "ui"}]
    body, mimetype, filename = build_export("json", SITES, categories, tags, NOW)

    payload = json.loads(body)
    assert mimetype == "application/json"
    assert filename.endswith(".json")
    assert payload["version"] == "1.0"
    assert payload["exportedAt"] == NOW.isoformat()
    assert [site["id"] for site in payload["sites"]] == ["s1", "s2"]
    assert payload["categories"] == categories
    assert payload["tags"] == tags


def test_html_export_escapes_text_and_marks_favorites():
    body, mimetype, _ = build_export("html", SITES, [], [], NOW)

    assert mimetype.startswith("text/html")
    assert "<th>Name</th>" in body
    assert "Interface &lt;design&gt; tool" in body
    assert "Figma &#34;Design&#34;" in body
    assert "⭐" in body
    assert "Exported on: 2026-03-04 12:30:00" in body


def test_html_export_of_empty_library_has_placeholder_row():
    body, _, _ = build_export("html", [], [], [], NOW)
    assert '<td colspan="7">No sites</td>' in body


def test_unknown_export_format_falls_back_to_json():
    _, mimetype, filename = build_export("xml", SITES, [], [], NOW)
    assert mimetype == "application/json"
    assert filename == "sites-export-2026-03-04.json"
