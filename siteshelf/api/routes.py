from __future__ import annotations

import random
import secrets
import time
from datetime import timedelta

from flask import Response, current_app, g, jsonify, request

from siteshelf.api import api_bp
from siteshelf.extensions import get_rest
from siteshelf.models import utcnow
from siteshelf.services.admin_stats import parse_timestamp
from siteshelf.services.catalog import (
    CATEGORY_FIELDS,
    EXPORT_PAGE_LIMIT,
    SITE_FIELDS,
    SITE_PATCH_FIELDS,
    TAG_FIELDS,
    TAXONOMY_PATCH_FIELDS,
    attach_relations,
    category_ids_for_names,
    count_owned,
    delete_site_relations,
    insert_relations,
    load_library,
    pick,
    replace_relations,
    site_with_relations,
)
from siteshelf.services.common import iso_now, split_multi_value, to_bool
from siteshelf.services.content import check_links
from siteshelf.services.duplicates import (
    find_name_duplicates,
    find_site_duplicates,
    similar_names,
)
from siteshelf.services.export import build_export
from siteshelf.services.link_health import latest_checks, record_link_results
from siteshelf.services.search import search_sites
from siteshelf.services.security import api_auth_required
from siteshelf.services.supabase import (
    SupabaseError,
    batch_delete,
    batch_insert,
    eq,
    ilike_any,
    in_list,
)
from siteshelf.services.tiers import (
    TIER_LIMITS,
    can_add,
    get_limit,
    has_feature,
    limit_message,
    limit_text,
    tier_label,
    upgrade_target,
)

STARTED_AT = time.monotonic()

BULK_TYPES = ("sites", "categories", "tags")
RESET_TYPES = ("sites", "categories", "tags", "all")
JUNCTIONS = {
    "categories": ("site_categories", "category_id"),
    "tags": ("site_tags", "tag_id"),
}
PROFILE_FIELDS = ("name", "avatar_url")
RESTORE_PREFER = "return=representation,resolution=ignore-duplicates"


def _fail(message: str, status: int, **extra):
    return jsonify({"success": False, "error": message, **extra}), status


def _owner():
    return {"user_id": eq(g.identity.user_id)}


def _owned(scope, table: str, row_id) -> dict | None:
    return scope.first(table, {"id": eq(row_id), **_owner()})


def _id_list(payload: dict, *keys) -> list | None:
    for key in keys:
        if key in payload:
            value = payload[key]
            if value is None:
                return []
            return list(value) if isinstance(value, (list, tuple)) else [value]
    return None


def _limit_blocked(scope, kind: str, current: int | None = None):
    identity = g.identity
    if current is None:
        current = count_owned(scope, kind, identity.user_id)
    check = can_add(identity.tier, kind, current)
    if check["allowed"]:
        return None
    return _fail(
        limit_message(identity.tier, kind, current),
        403,
        tierLimited=True,
        limit=check["limit"],
    )


@api_bp.route("/health")
def health():
    return jsonify(
        {
            "status": "ok",
            "timestamp": iso_now(),
            "uptime": round(time.monotonic() - STARTED_AT, 3),
        }
    )


@api_bp.route("/sites", methods=["GET"])
@api_auth_required()
def list_sites():
    scope = g.identity.scope()
    limit = min(max(request.args.get("limit", type=int) or 100, 1), 500)
    page = max(request.args.get("page", type=int) or 1, 1)
    filters = _owner()
    query = (request.args.get("q") or "").strip()
    if query:
        filters["or"] = ilike_any(("name", "url"), query)

    sites = scope.select(
        "sites",
        filters,
        order="created_at.desc",
        limit=limit,
        offset=(page - 1) * limit,
    )
    return jsonify(
        {
            "success": True,
            "data": attach_relations(scope, sites),
            "page": page,
            "limit": limit,
        }
    )


@api_bp.route("/sites", methods=["POST"])
@api_auth_required()
def create_site():
    identity = g.identity
    scope = identity.scope()
    payload = request.get_json(silent=True) or {}
    if not payload.get("name") or not payload.get("url") or not payload.get("pricing"):
        return _fail("Missing required fields: name, url, pricing", 400)

    blocked = _limit_blocked(scope, "sites")
    if blocked:
        return blocked

    values = pick(payload, SITE_FIELDS + ("description", "is_pinned"))
    values["user_id"] = identity.user_id
    try:
        site = scope.insert("sites", values)[0]
    except SupabaseError as exc:
        if not exc.is_duplicate:
            raise
        existing = scope.first("sites", {**_owner(), "url": eq(values["url"])})
        return _fail("Site already exists", 409, data=existing)

    category_ids = _id_list(payload, "category_ids", "categoryIds") or []
    if not category_ids and payload.get("categories"):
        names = payload["categories"]
        if isinstance(names, str):
            names = split_multi_value(names)
        category_ids = category_ids_for_names(scope, identity.user_id, names)
    tag_ids = _id_list(payload, "tag_ids", "tagIds") or []

    rel_scope = identity.relation_scope()
    try:
        insert_relations(rel_scope, site["id"], category_ids, tag_ids)
    except SupabaseError as exc:
        current_app.logger.warning(
            "Linking site %s failed, rolling back: %s", site["id"], exc.details
        )
        delete_site_relations(rel_scope, [site["id"]])
        scope.delete("sites", {"id": eq(site["id"])})
        return _fail(
            "Failed to link categories or tags", 502, details=exc.details
        )

    return jsonify({"success": True, "data": site_with_relations(scope, site["id"])}), 201


@api_bp.route("/sites/<site_id>", methods=["GET"])
@api_auth_required()
def get_site(site_id: str):
    scope = g.identity.scope()
    site = _owned(scope, "sites", site_id)
    data = attach_relations(scope, [site])[0] if site else None
    return jsonify({"success": True, "data": data})


@api_bp.route("/sites/<site_id>", methods=["PATCH"])
@api_auth_required()
def update_site(site_id: str):
    identity = g.identity
    scope = identity.scope()
    payload = request.get_json(silent=True) or {}

    updates = pick(payload, SITE_PATCH_FIELDS)
    updates["updated_at"] = iso_now()
    rows = scope.update("sites", {"id": eq(site_id), **_owner()}, updates)
    if not rows:
        return _fail("Site not found", 404)

    warnings = replace_relations(
        identity.relation_scope(),
        site_id,
        _id_list(payload, "category_ids", "categoryIds"),
        _id_list(payload, "tag_ids", "tagIds"),
    )
    return jsonify(
        {
            "success": True,
            "data": site_with_relations(scope, site_id),
            "warnings": warnings,
        }
    )


@api_bp.route("/sites/<site_id>", methods=["DELETE"])
@api_auth_required()
def delete_site(site_id: str):
    identity = g.identity
    scope = identity.scope()
    if not _owned(scope, "sites", site_id):
        return _fail("Site not found", 404)

    delete_site_relations(identity.relation_scope(), [site_id])
    scope.delete("sites", {"id": eq(site_id), **_owner()})
    return jsonify({"success": True})


@api_bp.route("/sites/<site_id>/relations/retry", methods=["POST"])
@api_auth_required()
def retry_site_relations(site_id: str):
    identity = g.identity
    scope = identity.scope()
    payload = request.get_json(silent=True) or {}

    site = scope.first("sites", {"id": eq(site_id)}, columns="id,user_id")
    if not site:
        return _fail("Site not found", 404)
    if str(site.get("user_id")) != identity.user_id:
        return _fail("Not site owner", 403)

    warnings = replace_relations(
        identity.relation_scope(),
        site_id,
        _id_list(payload, "category_ids", "categoryIds") or [],
        _id_list(payload, "tag_ids", "tagIds") or [],
    )
    if warnings:
        return _fail("Relation update failed", 502, warnings=warnings)
    return jsonify({"success": True, "data": site_with_relations(scope, site_id)})


@api_bp.route("/search", methods=["GET"])
@api_auth_required()
def search_api():
    query = (request.args.get("q") or "").strip()
    if not query:
        return jsonify({"success": True, "items": []})

    limit = request.args.get("limit", type=int) or 0
    if limit < 1:
        limit = 50

    scope = g.identity.scope()
    sites = scope.select_all(
        "sites", _owner(), order="updated_at.desc", max_rows=EXPORT_PAGE_LIMIT
    )
    ranked = search_sites(attach_relations(scope, sites), query, limit=min(limit, 500))
    return jsonify(
        {
            "success": True,
            "items": [
                {**item["site"], "score": item["score"], "match_reasons": item["reasons"]}
                for item in ranked
            ],
        }
    )


def _list_taxonomy(table: str):
    scope = g.identity.scope()
    order = "display_order.asc,name.asc" if table == "categories" else "name.asc"
    rows = scope.select(table, _owner(), order=order)
    return jsonify({"success": True, "data": rows})


def _create_taxonomy(table: str, fields: tuple):
    identity = g.identity
    scope = identity.scope()
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    if not name:
        return _fail("Name is required", 400)

    existing = scope.select(table, _owner(), columns="*")
    for row in existing:
        if (row.get("name") or "").strip().lower() == name.lower():
            return jsonify({"success": True, "data": row, "existing": True})

    blocked = _limit_blocked(scope, table, current=len(existing))
    if blocked:
        return blocked

    values = pick(payload, fields)
    values["name"] = name
    values["user_id"] = identity.user_id
    try:
        row = scope.insert(table, values)[0]
    except SupabaseError as exc:
        if not exc.is_duplicate:
            raise
        row = scope.first(table, {**_owner(), "name": eq(name)})
        return jsonify({"success": True, "data": row, "existing": True})
    return jsonify({"success": True, "data": row}), 201


def _get_taxonomy(table: str, row_id: str, label: str):
    row = _owned(g.identity.scope(), table, row_id)
    if not row:
        return _fail(f"{label} not found", 404)
    return jsonify({"success": True, "data": row})


def _update_taxonomy(table: str, row_id: str, label: str):
    payload = request.get_json(silent=True) or {}
    fields = TAXONOMY_PATCH_FIELDS
    if table == "categories":
        fields = fields + ("display_order",)
    updates = pick(payload, fields)
    if not updates:
        return _fail("No valid fields to update", 400)

    rows = g.identity.scope().update(table, {"id": eq(row_id), **_owner()}, updates)
    if not rows:
        return _fail(f"{label} not found", 404)
    return jsonify({"success": True, "data": rows[0]})


def _delete_taxonomy(table: str, row_id: str, label: str):
    identity = g.identity
    scope = identity.scope()
    if not _owned(scope, table, row_id):
        return _fail(f"{label} not found", 404)

    junction, column = JUNCTIONS[table]
    identity.relation_scope().delete(junction, {column: eq(row_id)})
    scope.delete(table, {"id": eq(row_id), **_owner()})
    return jsonify({"success": True})


@api_bp.route("/categories", methods=["GET"])
@api_auth_required()
def list_categories():
    return _list_taxonomy("categories")


@api_bp.route("/categories", methods=["POST"])
@api_auth_required()
def create_category():
    return _create_taxonomy("categories", CATEGORY_FIELDS)


@api_bp.route("/categories/<category_id>", methods=["GET"])
@api_auth_required()
def get_category(category_id: str):
    return _get_taxonomy("categories", category_id, "Category")


@api_bp.route("/categories/<category_id>", methods=["PATCH"])
@api_auth_required()
def update_category(category_id: str):
    return _update_taxonomy("categories", category_id, "Category")


@api_bp.route("/categories/<category_id>", methods=["DELETE"])
@api_auth_required()
def delete_category(category_id: str):
    return _delete_taxonomy("categories", category_id, "Category")


@api_bp.route("/category/<path:name>/sites", methods=["GET"])
@api_auth_required()
def category_sites(name: str):
    scope = g.identity.scope()
    category = scope.first("categories", {**_owner(), "name": eq(name)})
    if not category:
        category = scope.first("categories", {**_owner(), "name": f"ilike.{name}"})
    if not category:
        return jsonify({"success": True, "data": [], "category": None})

    links = scope.select(
        "site_categories", {"category_id": eq(category["id"])}, columns="site_id"
    )
    sites = scope.select_in("sites", "id", [link["site_id"] for link in links])
    sites.sort(key=lambda site: site.get("created_at") or "", reverse=True)
    return jsonify(
        {"success": True, "data": attach_relations(scope, sites), "category": category}
    )


@api_bp.route("/tags", methods=["GET"])
@api_auth_required()
def list_tags():
    return _list_taxonomy("tags")


@api_bp.route("/tags", methods=["POST"])
@api_auth_required()
def create_tag():
    return _create_taxonomy("tags", TAG_FIELDS)


@api_bp.route("/tags/<tag_id>", methods=["GET"])
@api_auth_required()
def get_tag(tag_id: str):
    return _get_taxonomy("tags", tag_id, "Tag")


@api_bp.route("/tags/<tag_id>", methods=["PATCH"])
@api_auth_required()
def update_tag(tag_id: str):
    return _update_taxonomy("tags", tag_id, "Tag")


@api_bp.route("/tags/<tag_id>", methods=["DELETE"])
@api_auth_required()
def delete_tag(tag_id: str):
    return _delete_taxonomy("tags", tag_id, "Tag")


@api_bp.route("/favorites", methods=["GET"])
@api_auth_required()
def list_favorites():
    rows = g.identity.scope().select(
        "sites", {**_owner(), "is_favorite": eq(True)}, columns="id"
    )
    return jsonify({"success": True, "data": [row["id"] for row in rows]})


@api_bp.route("/favorites", methods=["POST"])
@api_auth_required()
def toggle_favorite():
    scope = g.identity.scope()
    payload = request.get_json(silent=True) or {}
    site_id = payload.get("site_id")
    if not site_id:
        return _fail("site_id is required", 400)

    site = _owned(scope, "sites", site_id)
    if not site:
        return _fail("Site not found", 404)

    favorite = not site.get("is_favorite")
    scope.update(
        "sites",
        {"id": eq(site_id), **_owner()},
        {"is_favorite": favorite, "updated_at": iso_now()},
    )
    return jsonify({"success": True, "favorite": favorite})


@api_bp.route("/pinned", methods=["GET"])
@api_auth_required()
def list_pinned():
    rows = g.identity.scope().select(
        "sites",
        {**_owner(), "is_pinned": eq(True)},
        columns="id",
        order="pin_position.asc.nullslast",
    )
    return jsonify({"success": True, "data": [row["id"] for row in rows]})


@api_bp.route("/pinned", methods=["POST"])
@api_auth_required()
def toggle_pinned():
    scope = g.identity.scope()
    payload = request.get_json(silent=True) or {}
    site_id = payload.get("site_id")
    if not site_id:
        return _fail("site_id is required", 400)

    site = _owned(scope, "sites", site_id)
    if not site:
        return _fail("Site not found", 404)

    pinned = not site.get("is_pinned")
    updates = {"is_pinned": pinned, "pin_position": None, "updated_at": iso_now()}
    if pinned:
        last = scope.select(
            "sites",
            {**_owner(), "is_pinned": eq(True)},
            columns="pin_position",
            order="pin_position.desc.nullslast",
            limit=1,
        )
        top = (last[0].get("pin_position") if last else None) or 0
        updates["pin_position"] = top + 1
    scope.update("sites", {"id": eq(site_id), **_owner()}, updates)
    return jsonify({"success": True, "pinned": pinned})


@api_bp.route("/stats", methods=["GET"])
@api_auth_required()
def stats():
    identity = g.identity
    scope = identity.scope()
    try:
        counts = {
            kind: count_owned(scope, kind, identity.user_id) for kind in BULK_TYPES
        }
    except SupabaseError as exc:
        current_app.logger.warning("Stats lookup failed: %s", exc.details)
        return (
            jsonify(
                {
                    "success": False,
                    "error": "Failed to load stats",
                    "stats": {kind: 0 for kind in BULK_TYPES},
                }
            ),
            500,
        )
    return jsonify({"success": True, "stats": counts})


@api_bp.route("/tier", methods=["GET"])
@api_auth_required()
def tier_info():
    identity = g.identity
    scope = identity.scope()
    usage = {kind: count_owned(scope, kind, identity.user_id) for kind in BULK_TYPES}
    return jsonify(
        {
            "success": True,
            "tier": identity.tier,
            "label": tier_label(identity.tier),
            "limits": TIER_LIMITS[identity.tier],
            "usage": usage,
            "canAdd": {
                kind: can_add(identity.tier, kind, count) for kind, count in usage.items()
            },
            "features": {
                feature: has_feature(identity.tier, feature)
                for feature in ("ai_suggest", "link_health_check")
            },
        }
    )


def _owned_ids(scope, table: str, ids: list) -> list:
    rows = scope.select_in(table, "id", ids, filters=_owner(), columns="id")
    return [row["id"] for row in rows]


def _delete_taxonomy_rows(scope, rel_scope, table: str, ids: list) -> int:
    junction, column = JUNCTIONS[table]
    batch_delete(rel_scope, junction, column, ids)
    return len(batch_delete(scope, table, "id", ids))


def _delete_site_rows(scope, rel_scope, ids: list) -> int:
    delete_site_relations(rel_scope, ids)
    return len(batch_delete(scope, "sites", "id", ids))


@api_bp.route("/bulk-delete", methods=["POST"])
@api_auth_required()
def bulk_delete():
    identity = g.identity
    scope = identity.scope()
    rel_scope = identity.relation_scope()
    payload = request.get_json(silent=True) or {}

    kind = payload.get("type")
    ids = payload.get("ids")
    if kind not in BULK_TYPES:
        return _fail("type must be sites, categories, or tags", 400)
    if not isinstance(ids, list) or not ids:
        return _fail("ids must be a non-empty array", 400)

    owned = _owned_ids(scope, kind, ids)
    if not owned:
        return jsonify({"success": True, "deleted": 0})

    if kind == "sites":
        return jsonify({"success": True, "deleted": _delete_site_rows(scope, rel_scope, owned)})

    junction, column = JUNCTIONS[kind]
    in_use = rel_scope.select(junction, {column: in_list(owned)}, columns=column, limit=1)
    if in_use:
        return _fail(f"Cannot delete: one or more {kind} are used on sites", 403)
    return jsonify(
        {"success": True, "deleted": _delete_taxonomy_rows(scope, rel_scope, kind, owned)}
    )


@api_bp.route("/reset", methods=["POST"])
@api_auth_required()
def reset_library():
    identity = g.identity
    scope = identity.scope()
    rel_scope = identity.relation_scope()
    payload = request.get_json(silent=True) or {}

    kind = payload.get("type")
    if kind not in RESET_TYPES:
        return _fail("Invalid type. Must be: sites, categories, tags, all", 400)

    kinds = BULK_TYPES if kind == "all" else (kind,)
    deleted = {}
    for table in kinds:
        ids = [row["id"] for row in scope.select_all(table, _owner(), columns="id")]
        if table == "sites":
            deleted[table] = _delete_site_rows(scope, rel_scope, ids)
        else:
            deleted[table] = _delete_taxonomy_rows(scope, rel_scope, table, ids)

    counts = {table: count_owned(scope, table, identity.user_id) for table in BULK_TYPES}
    current_app.logger.info("Library reset (%s) for %s: %s", kind, identity.user_id, deleted)
    return jsonify({"success": True, "deleted": deleted, "counts": counts})


def _restore_rows(scope, table: str, rows: list[dict], errors: list[dict]) -> list[dict]:
    if not rows:
        return []
    try:
        return batch_insert(scope, table, rows, prefer=RESTORE_PREFER)
    except SupabaseError as exc:
        errors.append({"table": table, "status": exc.status, "details": exc.details})
        return []


def _restore_blocked(scope, table: str, rows: list[dict]):
    identity = g.identity
    limit = get_limit(identity.tier, table)
    if limit is None or not rows:
        return None

    ids = [row["id"] for row in rows if isinstance(row.get("id"), (str, int))]
    existing = set(_owned_ids(scope, table, ids)) if ids else set()
    incoming = sum(1 for row in rows if row.get("id") not in existing)
    current = count_owned(scope, table, identity.user_id)
    if current + incoming <= limit:
        return None
    return _fail(
        f"Restoring {incoming} {table} would exceed your plan limit "
        f"({current}/{limit_text(limit)}). "
        f"Upgrade to {upgrade_target(identity.tier)} for more.",
        403,
        tierLimited=True,
        limit=limit,
    )


def _junction_rows(payload: dict, key: str, column: str, site_ids: set, target_ids: set) -> list[dict]:
    return [
        {"site_id": row.get("site_id"), column: row.get(column)}
        for row in payload.get(key) or []
        if isinstance(row, dict)
        and row.get("site_id") in site_ids
        and row.get(column) in target_ids
    ]


@api_bp.route("/restore", methods=["POST"])
@api_auth_required()
def restore_library():
    identity = g.identity
    scope = identity.scope()
    rel_scope = identity.relation_scope()
    payload = request.get_json(silent=True) or {}

    def own_rows(key: str) -> list[dict]:
        rows = payload.get(key) or []
        kept = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            if row.get("user_id") not in (None, identity.user_id):
                continue
            if not isinstance(row.get("id"), (str, int, type(None))):
                continue
            kept.append({**row, "user_id": identity.user_id})
        return kept

    sites = own_rows("sites")
    categories = own_rows("categories")
    tags = own_rows("tags")
    for table, rows in (("sites", sites), ("categories", categories), ("tags", tags)):
        blocked = _restore_blocked(scope, table, rows)
        if blocked:
            return blocked

    site_ids = {row.get("id") for row in sites}
    site_categories = _junction_rows(
        payload,
        "site_categories",
        "category_id",
        site_ids,
        {row.get("id") for row in categories},
    )
    site_tags = _junction_rows(
        payload, "site_tags", "tag_id", site_ids, {row.get("id") for row in tags}
    )

    errors: list[dict] = []
    restored = {
        "categories": len(_restore_rows(scope, "categories", categories, errors)),
        "tags": len(_restore_rows(scope, "tags", tags, errors)),
        "sites": len(_restore_rows(scope, "sites", sites, errors)),
    }
    restored["site_categories"] = len(
        _restore_rows(rel_scope, "site_categories", site_categories, errors)
    )
    restored["site_tags"] = len(_restore_rows(rel_scope, "site_tags", site_tags, errors))

    body = {"success": not errors, "restored": restored}
    if errors:
        body["errors"] = errors
    return jsonify(body)


def _shared_site(site: dict) -> dict:
    return {
        "id": site.get("id"),
        "name": site.get("name"),
        "url": site.get("url"),
        "pricing": site.get("pricing"),
        "description": site.get("description"),
        "categories": [item["name"] for item in site.get("categories_array") or []],
        "tags": [item["name"] for item in site.get("tags_array") or []],
    }


def _public_share(token: str):
    service = get_rest().as_service()
    preset = service.first("share_tokens", {"token": eq(token)})
    if not preset:
        return _fail("Shared sites have been deleted", 404)

    category_ids = set(preset.get("category_ids") or [])
    tag_ids = set(preset.get("tag_ids") or [])
    sites = service.select_all(
        "sites",
        {"user_id": eq(preset["user_id"])},
        order="created_at.desc",
        max_rows=EXPORT_PAGE_LIMIT,
    )
    sites = attach_relations(service, sites)
    if category_ids or tag_ids:
        sites = [
            site
            for site in sites
            if category_ids & {item["id"] for item in site["categories_array"]}
            or tag_ids & {item["id"] for item in site["tags_array"]}
        ]
    return jsonify(
        {
            "success": True,
            "share": {"id": preset.get("id"), "name": preset.get("name")},
            "sites": [_shared_site(site) for site in sites],
        }
    )


@api_auth_required()
def _list_share_presets():
    rows = g.identity.scope().select(
        "share_tokens", _owner(), order="created_at.desc"
    )
    return jsonify({"success": True, "data": rows})


@api_bp.route("/share", methods=["GET"])
def get_share():
    token = (request.args.get("token") or "").strip()
    if token:
        return _public_share(token)
    return _list_share_presets()


@api_bp.route("/share", methods=["POST"])
@api_auth_required()
def create_share():
    identity = g.identity
    payload = request.get_json(silent=True) or {}
    token = secrets.token_hex(16)
    preset = identity.scope().insert(
        "share_tokens",
        {
            "user_id": identity.user_id,
            "name": (payload.get("name") or "").strip() or "Shared Collection",
            "category_ids": _id_list(payload, "categoryIds", "category_ids") or [],
            "tag_ids": _id_list(payload, "tagIds", "tag_ids") or [],
            "token": token,
        },
    )[0]
    return jsonify({"success": True, "preset": preset, "link": f"/share?token={token}"}), 201


@api_bp.route("/share", methods=["DELETE"])
@api_auth_required()
def delete_share():
    payload = request.get_json(silent=True) or {}
    share_id = request.args.get("id") or payload.get("id")
    if not share_id:
        return _fail("Missing share id", 400)
    g.identity.scope().delete("share_tokens", {"id": eq(share_id), **_owner()})
    return jsonify({"success": True, "deleted": True})


@api_bp.route("/rediscover", methods=["POST"])
@api_auth_required()
def track_rediscover_click():
    payload = request.get_json(silent=True) or {}
    site_id = payload.get("siteId") or payload.get("site_id")
    if not site_id:
        return _fail("siteId is required", 400)
    g.identity.scope().update(
        "sites", {"id": eq(site_id), **_owner()}, {"last_clicked_at": iso_now()}
    )
    return jsonify({"success": True, "tracked": True})


def _days_since(value, now) -> int | None:
    moment = parse_timestamp(value)
    if not moment:
        return None
    return max(0, (now - moment).days)


@api_bp.route("/rediscover", methods=["GET"])
@api_auth_required()
def rediscover():
    limit = min(max(request.args.get("limit", type=int) or 5, 1), 20)
    days = max(request.args.get("days", type=int) or 30, 1)
    now = utcnow()
    cutoff = (now - timedelta(days=days)).isoformat()

    candidates = g.identity.scope().select(
        "sites",
        {
            **_owner(),
            "created_at": f"lt.{cutoff}",
            "or": f'(last_clicked_at.is.null,last_clicked_at.lt."{cutoff}")',
        },
        order="created_at.asc",
        limit=100,
    )
    random.shuffle(candidates)
    picked = [
        {
            **site,
            "days_since_saved": _days_since(site.get("created_at"), now),
            "days_since_clicked": _days_since(site.get("last_clicked_at"), now),
        }
        for site in candidates[:limit]
    ]
    return jsonify({"success": True, "sites": picked, "total": len(candidates)})


@api_bp.route("/export", methods=["GET"])
@api_auth_required()
def export_library():
    identity = g.identity
    fmt = (request.args.get("format") or "json").lower()
    sites, categories, tags = load_library(identity.scope(), identity.user_id)
    body, mimetype, filename = build_export(fmt, sites, categories, tags, utcnow())
    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@api_bp.route("/duplicates", methods=["GET"])
@api_auth_required()
def duplicates():
    scope = g.identity.scope()
    sites = scope.select_all(
        "sites", _owner(), columns="id,name,url", max_rows=EXPORT_PAGE_LIMIT
    )
    categories = scope.select_all("categories", _owner(), columns="id,name,color")
    tags = scope.select_all("tags", _owner(), columns="id,name,color")

    result = find_site_duplicates(
        sites, include_domains=to_bool(request.args.get("domains"), default=True)
    )
    return jsonify(
        {
            "success": True,
            **result,
            "categories": find_name_duplicates(categories),
            "tags": find_name_duplicates(tags),
            "similarCategories": similar_names(categories),
            "similarTags": similar_names(tags),
        }
    )


@api_bp.route("/links/check", methods=["POST"])
@api_auth_required()
def check_site_links():
    identity = g.identity
    if not has_feature(identity.tier, "link_health_check"):
        return _fail(
            "Link health check is available on the Pro plan", 403, tierLimited=True
        )

    scope = identity.scope()
    payload = request.get_json(silent=True) or {}
    site_ids = _id_list(payload, "siteIds", "site_ids")
    if site_ids:
        sites = scope.select_in(
            "sites", "id", site_ids, filters=_owner(), columns="id,name,url,user_id"
        )
    else:
        sites = scope.select_all(
            "sites", _owner(), columns="id,name,url,user_id", max_rows=EXPORT_PAGE_LIMIT
        )

    config = current_app.config
    summary = check_links(
        sites,
        timeout=config["LINK_CHECK_TIMEOUT"],
        workers=config["LINK_CHECK_WORKERS"],
        transport=config.get("LINK_CHECK_TRANSPORT"),
    )
    record_link_results(sites, summary["results"])
    return jsonify(
        {
            "success": True,
            "checked": summary["total"],
            "brokenCount": summary["brokenCount"],
            "broken": summary["broken"],
        }
    )


@api_bp.route("/links/broken", methods=["GET"])
@api_auth_required()
def broken_links():
    checks = latest_checks(g.identity.user_id)
    return jsonify({"success": True, "data": [check.as_dict() for check in checks]})


@api_bp.route("/profile", methods=["GET"])
@api_auth_required()
def get_profile():
    identity = g.identity
    profile = identity.scope().first("profiles", {"id": eq(identity.user_id)})
    return jsonify(
        {
            "success": True,
            "data": profile,
            "email": identity.email,
            "tier": identity.tier,
        }
    )


@api_bp.route("/profile", methods=["PATCH"])
@api_auth_required()
def update_profile():
    identity = g.identity
    payload = request.get_json(silent=True) or {}
    updates = pick(payload, PROFILE_FIELDS)
    if not updates:
        return _fail("No valid fields to update", 400)

    updates["updated_at"] = iso_now()
    rows = identity.scope().update("profiles", {"id": eq(identity.user_id)}, updates)
    if not rows:
        return _fail("Profile not found", 404)
    return jsonify({"success": True, "data": rows[0]})
