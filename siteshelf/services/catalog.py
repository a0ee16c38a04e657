"""Helpers for the sites / categories / tags tables and their junctions."""

from __future__ import annotations

import logging

from siteshelf.services.supabase import (
    RestScope,
    SupabaseError,
    batch_delete,
    batch_insert,
    eq,
    in_list,
)

logger = logging.getLogger(__name__)

SITE_FIELDS = ("name", "url", "pricing", "user_id", "is_favorite")
SITE_PATCH_FIELDS = ("name", "url", "pricing", "description", "is_favorite", "is_pinned")
CATEGORY_FIELDS = ("name", "color", "display_order", "user_id")
TAG_FIELDS = ("name", "color", "user_id")
TAXONOMY_PATCH_FIELDS = ("name", "color")

EXPORT_PAGE_LIMIT = 5000


def pick(payload: dict, allowed) -> dict:
    return {key: payload[key] for key in allowed if key in payload}


def attach_relations(scope: RestScope, sites: list[dict]) -> list[dict]:
    """Add ``categories_array`` and ``tags_array`` objects to every site."""
    if not sites:
        return sites

    site_ids = [site["id"] for site in sites if site.get("id") is not None]
    site_categories = scope.select_in(
        "site_categories", "site_id", site_ids, columns="site_id,category_id"
    )
    site_tags = scope.select_in("site_tags", "site_id", site_ids, columns="site_id,tag_id")

    categories = {
        row["id"]: row
        for row in scope.select_in(
            "categories", "id", [row["category_id"] for row in site_categories]
        )
    }
    tags = {
        row["id"]: row
        for row in scope.select_in("tags", "id", [row["tag_id"] for row in site_tags])
    }

    categories_by_site: dict = {}
    for row in site_categories:
        category = categories.get(row["category_id"])
        if category:
            categories_by_site.setdefault(row["site_id"], []).append(category)
    tags_by_site: dict = {}
    for row in site_tags:
        tag = tags.get(row["tag_id"])
        if tag:
            tags_by_site.setdefault(row["site_id"], []).append(tag)

    return [
        {
            **site,
            "categories_array": categories_by_site.get(site.get("id"), []),
            "tags_array": tags_by_site.get(site.get("id"), []),
        }
        for site in sites
    ]


def site_with_relations(scope: RestScope, site_id) -> dict | None:
    site = scope.first("sites", {"id": eq(site_id)})
    if not site:
        return None
    return attach_relations(scope, [site])[0]


def delete_site_relations(rel_scope: RestScope, site_ids: list) -> None:
    batch_delete(rel_scope, "site_categories", "site_id", site_ids)
    batch_delete(rel_scope, "site_tags", "site_id", site_ids)


def insert_relations(
    rel_scope: RestScope, site_id, category_ids: list, tag_ids: list
) -> None:
    if category_ids:
        batch_insert(
            rel_scope,
            "site_categories",
            [{"site_id": site_id, "category_id": cid} for cid in dict.fromkeys(category_ids)],
        )
    if tag_ids:
        batch_insert(
            rel_scope,
            "site_tags",
            [{"site_id": site_id, "tag_id": tid} for tid in dict.fromkeys(tag_ids)],
        )


def replace_relations(
    rel_scope: RestScope,
    site_id,
    category_ids: list | None,
    tag_ids: list | None,
) -> list[dict]:
    """Delete-then-insert the junction rows; failures come back as warnings."""
    warnings: list[dict] = []
    stages = (
        ("categories", "site_categories", "category_id", category_ids),
        ("tags", "site_tags", "tag_id", tag_ids),
    )
    for stage, table, column, ids in stages:
        if ids is None:
            continue
        try:
            rel_scope.delete(table, {"site_id": eq(site_id)})
        except SupabaseError as exc:
            warnings.append(
                {"stage": f"delete_{stage}", "status": exc.status, "details": exc.details}
            )
            continue
        if not ids:
            continue
        try:
            rel_scope.insert(
                table, [{"site_id": site_id, column: value} for value in dict.fromkeys(ids)]
            )
        except SupabaseError as exc:
            warnings.append(
                {"stage": f"insert_{stage}", "status": exc.status, "details": exc.details}
            )
    return warnings


def category_ids_for_names(scope: RestScope, user_id: str, names: list[str]) -> list:
    wanted = [name for name in dict.fromkeys(names) if name]
    if not wanted:
        return []
    rows = scope.select(
        "categories",
        {"user_id": eq(user_id), "name": in_list(wanted)},
        columns="id,name",
    )
    by_name = {row["name"]: row["id"] for row in rows}
    return [by_name[name] for name in wanted if name in by_name]


def load_library(scope: RestScope, user_id: str) -> tuple[list, list, list]:
    owner = {"user_id": eq(user_id)}
    sites = scope.select_all(
        "sites", owner, order="created_at.desc", max_rows=EXPORT_PAGE_LIMIT
    )
    categories = scope.select_all("categories", owner, order="name.asc")
    tags = scope.select_all("tags", owner, order="name.asc")
    return attach_relations(scope, sites), categories, tags


def count_owned(scope: RestScope, table: str, user_id: str) -> int:
    return scope.count(table, {"user_id": eq(user_id)})
