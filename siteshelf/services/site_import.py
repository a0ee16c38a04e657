"""Apply normalized import rows to the user's library.

Rows are processed in chunks. Existing sites (matched by URL) are updated,
new ones are created until the tier's site allowance runs out, and the
category/tag junction rows are written with the relation scope (service key).
Cancellation is cooperative: ``should_cancel`` is polled between chunks, so a
chunk that has started always finishes.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

from siteshelf.services.bookmark_import import DEFAULT_IMPORT_PRICING, normalize_pricing
from siteshelf.services.common import split_multi_value
from siteshelf.services.security import Identity
from siteshelf.services.supabase import RestScope, SupabaseError, chunked, eq, in_list
from siteshelf.services.tiers import get_limit, limit_text, tier_label, upgrade_target

logger = logging.getLogger(__name__)

CHUNK_SIZE = 200
MIN_CHUNK_SIZE = 50
URL_LOOKUP_BATCH = 50
PARALLEL_LIMIT = 15
CATEGORY_COLOR = "#6CBBFB"
TAG_COLOR = "#D98BAC"

ProgressFn = Callable[[int, int, dict], None]
CancelFn = Callable[[], bool]


@dataclass
class ImportRow:
    index: int
    name: str
    url: str
    pricing: str
    categories: list[dict] = field(default_factory=list)
    tags: list[dict] = field(default_factory=list)
    is_favorite: bool = False
    is_pinned: bool = False
    created_at: str | None = None


def _text(value) -> str:
    return str(value or "").strip()


def _flag(value) -> bool:
    return value is True or value == "true" or value == 1


def _named(values) -> list[dict]:
    named = []
    for value in values:
        if isinstance(value, str):
            named.append({"name": value.strip(), "color": None})
        elif isinstance(value, dict):
            named.append({"name": _text(value.get("name")), "color": value.get("color")})
    return [item for item in named if item["name"]]


def _taxonomy(row: dict, array_key: str, plural: str, singular: str) -> list[dict]:
    if isinstance(row.get(array_key), list):
        return _named(row[array_key])
    value = row.get(plural)
    if isinstance(value, str):
        return _named(split_multi_value(value))
    if isinstance(value, list):
        return _named(value)
    fallback = row.get(singular) or row.get(singular.capitalize())
    if fallback:
        return _named(split_multi_value(fallback))
    return []


def normalize_import_row(row: dict, index: int) -> ImportRow:
    pricing = row.get("pricing") or row.get("pricing_model") or row.get("pricingModel")
    return ImportRow(
        index=index,
        name=_text(row.get("name") or row.get("title") or row.get("Name")),
        url=_text(row.get("url") or row.get("URL") or row.get("link")),
        pricing=normalize_pricing(pricing) or DEFAULT_IMPORT_PRICING,
        categories=_taxonomy(row, "categories_array", "categories", "category"),
        tags=_taxonomy(row, "tags_array", "tags", "tag"),
        is_favorite=_flag(row.get("is_favorite")),
        is_pinned=_flag(row.get("is_pinned")),
        created_at=row.get("created_at") or row.get("createdAt") or None,
    )


def chunk_size_for(requested, default: int = CHUNK_SIZE, minimum: int = MIN_CHUNK_SIZE) -> int:
    try:
        value = int(requested)
    except (TypeError, ValueError):
        return default
    return max(minimum, value)


def new_report() -> dict:
    return {
        "created": [],
        "updated": [],
        "skipped": [],
        "errors": [],
        "categoriesCreated": 0,
        "tagsCreated": 0,
        "tierLimited": False,
        "cancelled": False,
    }


def _remaining(limit: int | None, used: int) -> int | None:
    return None if limit is None else max(0, limit - used)


class SiteImporter:
    def __init__(
        self,
        scope: RestScope,
        rel_scope: RestScope,
        identity: Identity,
        create_missing: bool = True,
        chunk_size: int = CHUNK_SIZE,
        import_source: str = "manual",
    ):
        self.scope = scope
        self.rel_scope = rel_scope
        self.identity = identity
        self.user_id = identity.user_id
        self.create_missing = create_missing
        self.chunk_size = chunk_size
        self.import_source = import_source
        self.categories: dict[str, dict] = {}
        self.tags: dict[str, dict] = {}

    def _preload(self) -> None:
        owner = {"user_id": eq(self.user_id)}
        for row in self.scope.select_all("categories", owner, columns="id,name"):
            self.categories[_text(row.get("name")).lower()] = row
        for row in self.scope.select_all("tags", owner, columns="id,name"):
            self.tags[_text(row.get("name")).lower()] = row

    def _ensure(self, table: str, item: dict, default_color: str) -> dict | None:
        try:
            created = self.scope.insert(
                table,
                {
                    "name": item["name"],
                    "color": item.get("color") or default_color,
                    "user_id": self.user_id,
                },
            )
            if created:
                return created[0]
        except SupabaseError as exc:
            logger.info("Creating %s %r failed, looking it up: %s", table, item["name"], exc)
        try:
            return self.scope.first(
                table,
                {"name": eq(item["name"]), "user_id": eq(self.user_id)},
                columns="id,name",
            )
        except SupabaseError:
            return None

    def _create_missing(
        self,
        table: str,
        wanted: dict[str, dict],
        cache: dict[str, dict],
        allowance: int | None,
        default_color: str,
    ) -> tuple[int, int]:
        missing = [item for key, item in wanted.items() if key not in cache]
        to_create = missing if allowance is None else missing[:allowance]
        trimmed = len(missing) - len(to_create)
        if not self.create_missing:
            return 0, 0

        with ThreadPoolExecutor(max_workers=PARALLEL_LIMIT) as executor:
            for batch in chunked(to_create, PARALLEL_LIMIT):
                results = executor.map(
                    lambda item: self._ensure(table, item, default_color), batch
                )
                for item, row in zip(batch, results):
                    if row:
                        cache[item["name"].lower()] = row
        return len(to_create), trimmed

    def _existing_by_url(self, urls: list[str]) -> dict[str, dict]:
        found: dict[str, dict] = {}
        unique = [url for url in dict.fromkeys(urls) if url]
        for batch in chunked(unique, URL_LOOKUP_BATCH):
            try:
                rows = self.scope.select(
                    "sites", {"url": in_list(batch), "user_id": eq(self.user_id)}
                )
            except SupabaseError:
                continue
            for row in rows:
                if row.get("url"):
                    found[row["url"].strip()] = row
        return found

    def _insert_sites(self, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        return self.scope.insert("sites", rows)

    def _site_payload(self, item: ImportRow) -> dict:
        payload = {
            "name": item.name or item.url,
            "url": item.url,
            "pricing": item.pricing or DEFAULT_IMPORT_PRICING,
            "is_favorite": item.is_favorite,
            "is_pinned": item.is_pinned,
            "user_id": self.user_id,
            "import_source": self.import_source,
        }
        if item.created_at:
            payload["created_at"] = item.created_at
        return payload

    def _relation_rows(self, site_id, item: ImportRow) -> tuple[list[dict], list[dict]]:
        category_rows = []
        for category in item.categories:
            found = self.categories.get(category["name"].lower())
            if found:
                category_rows.append({"site_id": site_id, "category_id": found["id"]})
        tag_rows = []
        for tag in item.tags:
            found = self.tags.get(tag["name"].lower())
            if found:
                tag_rows.append({"site_id": site_id, "tag_id": found["id"]})
        return category_rows, tag_rows

    def _write_relations(self, table: str, rows: list[dict]) -> None:
        if not rows:
            return
        try:
            self.rel_scope.insert(table, rows, prefer="return=minimal")
        except SupabaseError as exc:
            logger.warning("Attaching %d %s rows failed: %s", len(rows), table, exc.details[:200])

    def run(
        self,
        rows: list[dict],
        progress: ProgressFn | None = None,
        should_cancel: CancelFn | None = None,
    ) -> dict:
        report = new_report()
        tier = self.identity.tier
        label = tier_label(tier)
        total = len(rows)

        self._preload()
        site_limit = get_limit(tier, "sites")
        category_limit = get_limit(tier, "categories")
        tag_limit = get_limit(tier, "tags")

        sites_count = self.scope.count("sites", {"user_id": eq(self.user_id)})
        categories_count = len(self.categories)
        tags_count = len(self.tags)
        sites_remaining = _remaining(site_limit, sites_count)

        if sites_remaining == 0:
            report.update(
                {
                    "tierLimited": True,
                    "siteLimitReached": True,
                    "tierLabel": label,
                    "tierMessage": (
                        f"Site limit reached ({sites_count}/{site_limit}). "
                        f"You are on the {label} plan. "
                        f"Upgrade to {upgrade_target(tier)} for more."
                    ),
                }
            )
            return report

        normalized = [normalize_import_row(row, idx) for idx, row in enumerate(rows)]
        wanted_categories: dict[str, dict] = {}
        wanted_tags: dict[str, dict] = {}
        for item in normalized:
            for category in item.categories:
                wanted_categories.setdefault(category["name"].lower(), category)
            for tag in item.tags:
                wanted_tags.setdefault(tag["name"].lower(), tag)

        categories_created, trimmed_categories = self._create_missing(
            "categories",
            wanted_categories,
            self.categories,
            _remaining(category_limit, categories_count),
            CATEGORY_COLOR,
        )
        tags_created, trimmed_tags = self._create_missing(
            "tags",
            wanted_tags,
            self.tags,
            _remaining(tag_limit, tags_count),
            TAG_COLOR,
        )
        report["categoriesCreated"] = categories_created
        report["tagsCreated"] = tags_created

        new_sites = 0
        skipped_due_to_limit = 0
        processed = 0
        for chunk in chunked(normalized, self.chunk_size):
            if should_cancel and should_cancel():
                report["cancelled"] = True
                break

            existing = self._existing_by_url([item.url for item in chunk])
            to_create: list[ImportRow] = []
            to_update: list[tuple[ImportRow, dict]] = []
            for item in chunk:
                if not item.url:
                    report["errors"].append({"row": item.index, "error": "Missing URL"})
                elif item.url in existing:
                    to_update.append((item, existing[item.url]))
                else:
                    to_create.append(item)

            if sites_remaining is not None:
                slots = max(0, sites_remaining - new_sites)
                if len(to_create) > slots:
                    for item in to_create[slots:]:
                        report["skipped"].append(
                            {"row": item.index, "url": item.url, "reason": "tier_limit"}
                        )
                    skipped_due_to_limit += len(to_create) - slots
                    to_create = to_create[:slots]

            payloads = [self._site_payload(item) for item in to_create]
            created_pairs: list[tuple[ImportRow, dict]] = []
            try:
                created_sites = self._insert_sites(payloads)
                created_pairs = list(zip(to_create, created_sites))
            except SupabaseError:
                for item, payload in zip(to_create, payloads):
                    try:
                        created = self._insert_sites([payload])
                    except SupabaseError as exc:
                        report["errors"].append({"row": item.index, "error": exc.details})
                        continue
                    if created:
                        created_pairs.append((item, created[0]))
            new_sites += len(created_pairs)

            updated_pairs: list[tuple[ImportRow, dict]] = []
            for item, current in to_update:
                try:
                    updated = self.scope.update(
                        "sites",
                        {"id": eq(current["id"]), "user_id": eq(self.user_id)},
                        {
                            "name": item.name or current.get("name"),
                            "pricing": item.pricing or current.get("pricing"),
                            "is_favorite": item.is_favorite,
                            "is_pinned": item.is_pinned,
                        },
                    )
                except SupabaseError as exc:
                    report["errors"].append(
                        {"row": item.index, "error": f"Update failed: {exc.details}"}
                    )
                    continue
                if updated:
                    updated_pairs.append((item, updated[0]))
                    report["updated"].append({"row": item.index, "site": updated[0]})

            category_rows: list[dict] = []
            tag_rows: list[dict] = []
            for item, site in created_pairs:
                if not site.get("id"):
                    continue
                cats, tags = self._relation_rows(site["id"], item)
                category_rows.extend(cats)
                tag_rows.extend(tags)
                report["created"].append({"row": item.index, "site": site})

            for item, site in updated_pairs:
                try:
                    self.rel_scope.delete("site_categories", {"site_id": eq(site["id"])})
                    self.rel_scope.delete("site_tags", {"site_id": eq(site["id"])})
                except SupabaseError as exc:
                    logger.warning("Clearing relations of site %s failed: %s", site["id"], exc)
                cats, tags = self._relation_rows(site["id"], item)
                category_rows.extend(cats)
                tag_rows.extend(tags)

            self._write_relations("site_categories", category_rows)
            self._write_relations("site_tags", tag_rows)

            processed += len(chunk)
            if progress:
                progress(processed, total, report)

        if skipped_due_to_limit or trimmed_categories or trimmed_tags:
            parts = []
            report["tierLimited"] = True
            report["tierLabel"] = label
            if skipped_due_to_limit:
                report["siteLimitReached"] = True
                report["skippedDueToLimit"] = skipped_due_to_limit
                report["sitesImported"] = new_sites
                report["sitesTotal"] = total
                parts.append(
                    f"{skipped_due_to_limit} new site(s) skipped "
                    f"({sites_count + new_sites}/{limit_text(site_limit)})"
                )
            if trimmed_categories:
                report["trimmedCategories"] = trimmed_categories
                noun = "category" if trimmed_categories == 1 else "categories"
                parts.append(
                    f"{trimmed_categories} {noun} skipped "
                    f"({categories_count}/{limit_text(category_limit)})"
                )
            if trimmed_tags:
                report["trimmedTags"] = trimmed_tags
                parts.append(
                    f"{trimmed_tags} tag(s) skipped ({tags_count}/{limit_text(tag_limit)})"
                )
            report["tierMessage"] = (
                f"{label} plan limits reached: {', '.join(parts)}. "
                f"Upgrade to {upgrade_target(tier)} for more."
            )

        return report


def run_import(
    scope: RestScope,
    rel_scope: RestScope,
    identity: Identity,
    rows: list[dict],
    create_missing: bool = True,
    chunk_size: int = CHUNK_SIZE,
    import_source: str = "manual",
    progress: ProgressFn | None = None,
    should_cancel: CancelFn | None = None,
) -> dict:
    importer = SiteImporter(
        scope,
        rel_scope,
        identity,
        create_missing=create_missing,
        chunk_size=chunk_size,
        import_source=import_source,
    )
    return importer.run(rows, progress=progress, should_cancel=should_cancel)
