"""Parsers turning uploaded files into plain site dictionaries.

Every parser returns a list of dicts with at least ``name`` and ``url``;
optional keys are ``categories``/``tags`` (lists of ``{"name": ...}``),
``description``, ``pricing``, ``is_favorite``, ``is_pinned``, ``created_at``
and the ``categories_array``/``tags_array`` objects of our own JSON export.
"""

from __future__ import annotations

import csv
import io
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePath
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag
from dateutil import parser as dt_parser

from siteshelf.services.common import (
    build_groups,
    is_http_url,
    normalize_url,
    split_multi_value,
)

DEFAULT_IMPORT_PRICING = "freemium"
MULTI_VALUE_DELIMITER = ";"
VALID_PRICING = {"fully_free", "freemium", "free_trial", "paid"}

PRICING_ALIASES = {
    "fully_free": "fully_free",
    "fullyfree": "fully_free",
    "free": "fully_free",
    "besplatno": "fully_free",
    "freemium": "freemium",
    "free_trial": "free_trial",
    "freetrial": "free_trial",
    "trial": "free_trial",
    "paid": "paid",
    "nesto_se_placa": "paid",
    "nestoseplaca": "paid",
    "placeno": "paid",
    "premium": "paid",
}

SKIPPED_BOOKMARK_FOLDERS = {
    "bookmarks bar",
    "bookmarks toolbar",
    "other bookmarks",
    "mobile bookmarks",
    "bookmarks menu",
    "toolbar",
    "menu",
    "unfiled bookmarks",
}

_CSV_NAME = {"name", "title", "resource", "naziv"}
_CSV_URL = {"url", "link", "website", "href", "sajt"}
_CSV_CATEGORY = {"category", "categories", "kategorija", "kategorije"}
_CSV_TAGS = {"tags", "tag", "oznake"}
_CSV_DESCRIPTION = {"description", "desc", "opis"}
_CSV_PRICING = {"pricing", "price", "select", "cena"}
_CSV_FAVORITE = {"favorite", "isfavorite", "isfavorited", "omiljeno"}
_CSV_CREATED = {"createdtime", "createdat", "created"}
_TRUTHY_FAVORITE = {"true", "1", "yes", "Yes", "⭐", "da"}
_TRUTHY_CELL = {"true", "1", "yes", "✓", "da"}

_LOOKS_LIKE_URL = re.compile(r"^(https?://|www\.)", re.I)


class ImportFormatError(ValueError):
    pass


@dataclass
class ParsedImport:
    sites: list[dict]
    duplicate_groups: list[dict] = field(default_factory=list)

    @property
    def duplicates(self) -> int:
        return sum(len(group["items"]) - 1 for group in self.duplicate_groups)

    @property
    def unique_count(self) -> int:
        return len(self.sites) - self.duplicates

    def as_dict(self) -> dict:
        return {
            "sites": self.sites,
            "duplicates": self.duplicates,
            "duplicateGroups": [
                {"key": group["key"], "sites": group["items"]}
                for group in self.duplicate_groups
            ],
            "uniqueCount": self.unique_count,
        }


def normalize_pricing(raw) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip().lower()
    if not value:
        return None
    if value in VALID_PRICING:
        return value
    underscored = re.sub(r"[\s-]+", "_", value)
    if underscored in PRICING_ALIASES:
        return PRICING_ALIASES[underscored]
    flat = re.sub(r"[\s_-]+", "", value)
    if flat in PRICING_ALIASES:
        return PRICING_ALIASES[flat]
    if "trial" in value:
        return "free_trial"
    if "freemium" in value:
        return "freemium"
    if re.search(r"paid|premium|plac|money|cost", value):
        return "paid"
    if re.search(r"free|besplatn|gratis", value):
        return "fully_free"
    return None


def _to_iso(value: str) -> str | None:
    try:
        parsed = dt_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def _names(values: list[str]) -> list[dict]:
    return [{"name": value} for value in values]


def _normalize_header(header: str) -> str:
    return re.sub(r"[^a-z0-9]", "", header.strip().lower())


def parse_csv(text: str) -> list[dict]:
    rows = [row for row in csv.reader(io.StringIO(text.lstrip("﻿"))) if any(row)]
    if len(rows) < 2:
        raise ImportFormatError("Invalid CSV format - no data rows")

    headers = [_normalize_header(header) for header in rows[0]]
    sites: list[dict] = []
    for values in rows[1:]:
        site: dict = {}
        for header, raw in zip(headers, values):
            value = raw.strip()
            if not value:
                continue
            if header in _CSV_NAME:
                site["name"] = value
            elif header in _CSV_URL:
                site["url"] = value
            elif header in _CSV_CATEGORY:
                site["categories"] = _names(split_multi_value(value, r"[;,]"))
            elif header in _CSV_TAGS:
                site["tags"] = _names(split_multi_value(value, r"[;,]"))
            elif header in _CSV_DESCRIPTION:
                site["description"] = value
            elif header in _CSV_PRICING:
                site["pricing"] = normalize_pricing(value)
            elif header in _CSV_FAVORITE:
                site["is_favorite"] = value in _TRUTHY_FAVORITE
            elif header in _CSV_CREATED:
                created_at = _to_iso(value)
                if created_at:
                    site["created_at"] = created_at
        if site.get("name") or site.get("url"):
            sites.append(site)
    return sites


def parse_json(text: str) -> list[dict]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ImportFormatError(f"Invalid JSON file: {exc.msg}") from exc

    if isinstance(payload, dict):
        payload = payload.get("sites") or payload.get("data") or []
    if not isinstance(payload, list):
        raise ImportFormatError("Invalid JSON format - expected a list of sites")
    return [item for item in payload if isinstance(item, dict)]


def _own_entries(dl: Tag) -> list[Tag]:
    return [
        dt
        for dt in dl.find_all("dt")
        if isinstance(dt, Tag) and dt.find_parent("dl") is dl
    ]


def _nested_dl(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested

    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            name = (sibling.name or "").lower()
            if name == "dl":
                return sibling
            if name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _own_child(dt: Tag, names: list[str]) -> Tag | None:
    for child in dt.find_all(names):
        if isinstance(child, Tag) and child.find_parent("dt") is dt:
            return child
    return None


def _bookmark_site(anchor: Tag, folder_path: list[str]) -> dict | None:
    href_value = anchor.get("href")
    href = href_value.strip() if isinstance(href_value, str) else ""
    if not is_http_url(href):
        return None

    site = {"name": anchor.get_text(strip=True) or href, "url": href}
    if folder_path:
        site["categories"] = _names(folder_path)
    add_date = anchor.get("add_date")
    if isinstance(add_date, str) and add_date.strip().isdigit():
        seconds = int(add_date.strip())
        if seconds > 0:
            site["created_at"] = datetime.fromtimestamp(
                seconds, tz=timezone.utc
            ).isoformat()
    return site


def _walk_bookmarks(dl: Tag, folder_path: list[str], out: list[dict]) -> None:
    for dt in _own_entries(dl):
        anchor = _own_child(dt, ["a"])
        if anchor is not None:
            site = _bookmark_site(anchor, folder_path)
            if site:
                out.append(site)

        nested = _nested_dl(dt)
        if nested is None:
            continue
        # lxml leaves <DT> open, so a folder heading can end up inside the
        # previous link's <DT> with its <DL> as that link's next sibling.
        heading = _own_child(dt, ["h3", "h2", "h1"]) or dt.find(["h3", "h2", "h1"])
        if heading is None:
            continue
        folder = heading.get_text(strip=True)
        if folder and folder.lower() not in SKIPPED_BOOKMARK_FOLDERS:
            _walk_bookmarks(nested, folder_path + [folder], out)
        else:
            _walk_bookmarks(nested, folder_path, out)


def _all_http_links(soup: BeautifulSoup, exclude_notion: bool = False) -> list[dict]:
    sites: list[dict] = []
    seen: set[str] = set()
    for link in soup.find_all("a", href=True):
        href = str(link.get("href") or "").strip()
        if not is_http_url(href) or href in seen:
            continue
        if exclude_notion and "notion.so" in href:
            continue
        seen.add(href)
        sites.append({"name": link.get_text(strip=True) or href, "url": href})
    return sites


def parse_bookmark_html(html: str) -> list[dict]:
    soup = BeautifulSoup(html, "lxml")
    sites: list[dict] = []
    root = soup.find("dl")
    if isinstance(root, Tag):
        _walk_bookmarks(root, [], sites)
    if not sites:
        sites = _all_http_links(soup)
    return sites


def _table_headers(table: Tag) -> list[str]:
    thead = table.find("thead")
    if isinstance(thead, Tag):
        cells = thead.find_all(["th", "td"])
        if cells:
            return [cell.get_text(strip=True).lower() for cell in cells]
    first_row = table.find("tr")
    if isinstance(first_row, Tag):
        cells = first_row.find_all("th")
        if cells:
            return [cell.get_text(strip=True).lower() for cell in cells]
    return []


def _split_cell(cell: Tag, text: str) -> list[dict]:
    selected = [
        value.get_text(strip=True)
        for value in cell.select(".selected-value")
        if value.get_text(strip=True)
    ]
    return _names(selected or split_multi_value(text, r"[;,]"))


def _site_from_cells(cells: list[Tag], headers: list[str]) -> dict:
    site: dict = {}
    has_headers = any(headers)

    for idx, cell in enumerate(cells):
        header = headers[idx] if idx < len(headers) else ""
        text = cell.get_text(strip=True)
        link = cell.find("a")
        href = str(link.get("href") or "") if isinstance(link, Tag) else ""
        link_text = link.get_text(strip=True) if isinstance(link, Tag) else ""

        if has_headers:
            if any(key in header for key in ("name", "title", "ime", "naziv")):
                site["name"] = text or link_text
                if href and not site.get("url"):
                    site["url"] = href
            elif any(
                key in header
                for key in ("url", "link", "adres", "website", "sajt", "href")
            ):
                site["url"] = href or text
            elif "categor" in header or "kategorij" in header:
                site["categories"] = _split_cell(cell, text)
            elif "tag" in header or "oznaka" in header:
                site["tags"] = _split_cell(cell, text)
            elif any(key in header for key in ("pricing", "price", "cena", "cijena")):
                site["pricing"] = normalize_pricing(text)
            elif "favorite" in header or "omilj" in header:
                site["is_favorite"] = text in _TRUTHY_CELL
            elif "desc" in header or "opis" in header:
                site["description"] = text
            elif not site.get("url") and _LOOKS_LIKE_URL.match(text):
                site["url"] = text
            elif not site.get("url") and href:
                site["url"] = href
        else:
            if idx == 0:
                site["name"] = text or link_text
                if href and not site.get("url"):
                    site["url"] = href
            elif _LOOKS_LIKE_URL.match(text):
                site["url"] = text
            elif href and not site.get("url"):
                site["url"] = href
                if not site.get("name") and link_text:
                    site["name"] = link_text
            elif idx == 1 and not site.get("url"):
                site["url"] = text

    if not site.get("url") and _LOOKS_LIKE_URL.match(site.get("name") or ""):
        site["url"] = site["name"]
    if site.get("url") and not site.get("name"):
        host = urlparse(site["url"]).hostname or ""
        site["name"] = host.removeprefix("www.") or site["url"]
    return site


def _sites_from_rows(rows: list[Tag], headers: list[str]) -> list[dict]:
    sites = []
    for row in rows:
        cells = row.find_all("td")
        if not cells:
            continue
        site = _site_from_cells(cells, headers)
        if site.get("url"):
            sites.append(site)
    return sites


def parse_notion_html(html: str) -> list[dict]:
    soup = BeautifulSoup(html, "lxml")

    table = soup.find("table")
    if isinstance(table, Tag):
        headers = _table_headers(table)
        rows = table.find_all("tr")
        if headers:
            rows = [row for row in rows if not row.find("th")]
        sites = _sites_from_rows(rows, headers)
        if sites:
            return sites

    notion_rows = soup.select(".collection-content table tr")
    if notion_rows:
        headers = [
            cell.get_text(strip=True).lower()
            for cell in notion_rows[0].find_all(["th", "td"])
        ]
        sites = _sites_from_rows(notion_rows[1:], headers)
        if sites:
            return sites

    page_links = soup.select(".link-to-page a, a.link-to-page")
    sites = []
    for link in page_links:
        name = link.get_text(strip=True)
        href = str(link.get("href") or "").strip()
        if name and href:
            sites.append({"name": name, "url": href})
    if sites:
        return sites

    for block in soup.select(".bookmark"):
        title_el = block.select_one(".bookmark-title")
        desc_el = block.select_one(".bookmark-description")
        href = block.get("href")
        if not href:
            anchor = block.find("a")
            href = anchor.get("href") if isinstance(anchor, Tag) else ""
        href = str(href or "").strip()
        title = title_el.get_text(strip=True) if title_el else ""
        if title or href:
            site = {"name": title or href, "url": href}
            if desc_el and desc_el.get_text(strip=True):
                site["description"] = desc_el.get_text(strip=True)
            sites.append(site)
    if sites:
        return sites

    return _all_http_links(soup, exclude_notion=True)


def _looks_like_browser_export(text: str) -> bool:
    return "NETSCAPE-Bookmark-file" in text or "<DL>" in text or "<dl>" in text


def parse_import_file(filename: str, content: bytes | str, source: str = "auto") -> ParsedImport:
    text = content.decode("utf-8", errors="ignore") if isinstance(content, bytes) else content
    extension = PurePath(filename or "").suffix.lower()
    source = (source or "auto").strip().lower()

    if extension == ".json":
        sites = parse_json(text)
    elif extension == ".csv":
        sites = parse_csv(text)
    elif extension in {".html", ".htm"}:
        if source == "bookmarks":
            sites = parse_bookmark_html(text)
        elif source == "notion":
            sites = parse_notion_html(text)
        elif _looks_like_browser_export(text):
            sites = parse_bookmark_html(text)
        else:
            sites = parse_notion_html(text)
    else:
        raise ImportFormatError("Unsupported file format. Please use JSON, CSV, or HTML.")

    groups = build_groups(sites, lambda site: normalize_url(site.get("url")))
    return ParsedImport(sites=sites, duplicate_groups=groups)


def _joined_names(values) -> str:
    if isinstance(values, str):
        return values
    if not isinstance(values, list):
        return ""
    names = [
        value if isinstance(value, str) else (value or {}).get("name", "")
        for value in values
    ]
    return MULTI_VALUE_DELIMITER.join(name for name in names if name)


def site_to_row(site: dict) -> dict:
    url = str(site.get("url") or "").strip()
    if url.lower().startswith("www."):
        url = f"https://{url}"

    row = {
        "name": site.get("name") or "",
        "url": url,
        "pricing": normalize_pricing(site.get("pricing")) or DEFAULT_IMPORT_PRICING,
        "is_favorite": bool(site.get("is_favorite")),
        "is_pinned": bool(site.get("is_pinned")),
        "category": _joined_names(site.get("categories")),
        "tag": _joined_names(site.get("tags")),
        "categories_array": site.get("categories_array") or None,
        "tags_array": site.get("tags_array") or None,
    }
    if site.get("description"):
        row["description"] = site["description"]
    if site.get("created_at"):
        row["created_at"] = site["created_at"]
    return row


def _merge_names(existing: str, incoming: str) -> str:
    merged = dict.fromkeys(split_multi_value(existing, MULTI_VALUE_DELIMITER))
    merged.update(dict.fromkeys(split_multi_value(incoming, MULTI_VALUE_DELIMITER)))
    return MULTI_VALUE_DELIMITER.join(merged)


def deduplicate_rows(rows: list[dict]) -> list[dict]:
    by_url: dict[str, dict] = {}
    for row in rows:
        key = row["url"].lower().rstrip("/")
        existing = by_url.get(key)
        if existing is None:
            by_url[key] = dict(row)
            continue
        if row.get("category"):
            existing["category"] = _merge_names(existing.get("category", ""), row["category"])
        if row.get("tag"):
            existing["tag"] = _merge_names(existing.get("tag", ""), row["tag"])
        if not existing.get("name") and row.get("name"):
            existing["name"] = row["name"]
        if row.get("is_favorite"):
            existing["is_favorite"] = True
        if row.get("is_pinned"):
            existing["is_pinned"] = True
    return list(by_url.values())


def prepare_import_rows(sites: list[dict]) -> list[dict]:
    rows = [site_to_row(site) for site in sites]
    rows = [row for row in rows if row["url"].startswith("http")]
    unique = deduplicate_rows(rows)
    if not unique:
        raise ImportFormatError(
            "No valid sites found with URLs. Make sure your file contains URLs."
        )
    return unique
