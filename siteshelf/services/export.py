from __future__ import annotations

import csv
import io
import json
from datetime import datetime

from markupsafe import escape

EXPORT_VERSION = "1.0"
EXPORT_FORMATS = ("json", "csv", "html")
EXPORT_COLUMNS = ["Name", "URL", "Category", "Tags", "Description", "Favorite", "Pinned"]

MIMETYPES = {
    "json": "application/json",
    "csv": "text/csv; charset=utf-8",
    "html": "text/html; charset=utf-8",
}

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Sites Export</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 20px; }}
        table {{ border-collapse: collapse; width: 100%; }}
        th, td {{ border: 1px solid #ddd; padding: 8px; text-align: left; }}
        th {{ background-color: #4CAF50; color: white; }}
        tr:nth-child(even) {{ background-color: #f2f2f2; }}
        a {{ color: #0066cc; }}
    </style>
</head>
<body>
    <h1>Sites Export</h1>
    <p>Exported on: {timestamp}</p>
    <table>
        <thead>
            <tr>{headers}</tr>
        </thead>
        <tbody>
            {rows}
        </tbody>
    </table>
</body>
</html>
"""


def join_names(items) -> str:
    if not isinstance(items, list):
        return ""
    return "; ".join(str((item or {}).get("name") or "") for item in items)


def _yes_no(value) -> str:
    return "Yes" if value else "No"


def sites_to_csv(sites: list[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    buffer.write(",".join(EXPORT_COLUMNS) + "\n")
    for site in sites:
        writer.writerow(
            [
                site.get("name") or "",
                site.get("url") or "",
                join_names(site.get("categories_array")),
                join_names(site.get("tags_array")),
                site.get("description") or "",
                _yes_no(site.get("is_favorite")),
                _yes_no(site.get("is_pinned")),
            ]
        )
    return buffer.getvalue()


def _html_row(site: dict) -> str:
    url = escape(site.get("url") or "")
    cells = [
        escape(site.get("name") or ""),
        f'<a href="{url}">{url}</a>',
        escape(join_names(site.get("categories_array"))),
        escape(join_names(site.get("tags_array"))),
        escape(site.get("description") or ""),
        "⭐" if site.get("is_favorite") else "",
        "\U0001f4cc" if site.get("is_pinned") else "",
    ]
    return "<tr>" + "".join(f"<td>{cell}</td>" for cell in cells) + "</tr>"


def sites_to_html(sites: list[dict], now: datetime) -> str:
    if sites:
        rows = "\n            ".join(_html_row(site) for site in sites)
    else:
        rows = f'<tr><td colspan="{len(EXPORT_COLUMNS)}">No sites</td></tr>'
    return HTML_TEMPLATE.format(
        timestamp=now.strftime("%Y-%m-%d %H:%M:%S"),
        headers="".join(f"<th>{column}</th>" for column in EXPORT_COLUMNS),
        rows=rows,
    )


def sites_to_json(sites: list[dict], categories: list, tags: list, now: datetime) -> str:
    payload = {
        "version": EXPORT_VERSION,
        "exportedAt": now.isoformat(),
        "sites": sites,
        "categories": categories,
        "tags": tags,
    }
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def export_filename(fmt: str, now: datetime) -> str:
    return f"sites-export-{now.strftime('%Y-%m-%d')}.{fmt}"


def build_export(
    fmt: str,
    sites: list[dict],
    categories: list[dict],
    tags: list[dict],
    now: datetime,
) -> tuple[str, str, str]:
    """Render the library in one of the export formats.

    Returns ``(body, mimetype, filename)``. Unknown formats fall back to JSON.
    """
    fmt = (fmt or "json").lower()
    if fmt not in EXPORT_FORMATS:
        fmt = "json"
    if fmt == "csv":
        body = sites_to_csv(sites)
    elif fmt == "html":
        body = sites_to_html(sites, now)
    else:
        body = sites_to_json(sites, categories, tags, now)
    return body, MIMETYPES[fmt], export_filename(fmt, now)
