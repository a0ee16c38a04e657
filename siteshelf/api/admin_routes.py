from __future__ import annotations

import csv
import io

from flask import Response, current_app, g, jsonify, request

from siteshelf.api import api_bp
from siteshelf.extensions import get_rest
from siteshelf.models import utcnow
from siteshelf.services.admin_stats import build_admin_stats
from siteshelf.services.catalog import delete_site_relations
from siteshelf.services.content import check_links
from siteshelf.services.link_health import record_link_results
from siteshelf.services.security import api_auth_required
from siteshelf.services.supabase import SupabaseRest, batch_delete, eq
from siteshelf.services.tiers import TIER_FREE, TIER_LIMITS, TIER_PRO

BAN_DURATION = "876000h"
USERS_PAGE_SIZE = 1000
USER_EXPORT_COLUMNS = ["email", "username", "sites", "created_at", "last_sign_in", "onboarded"]
SITE_EXPORT_COLUMNS = ["name", "url", "pricing", "owner_email", "created_at"]


def _all_users(rest: SupabaseRest) -> list[dict]:
    users: list[dict] = []
    page = 1
    while True:
        batch = rest.list_users(page=page, per_page=USERS_PAGE_SIZE)
        users.extend(batch)
        if len(batch) < USERS_PAGE_SIZE:
            return users
        page += 1


def _target_user_id(payload: dict) -> str | None:
    return payload.get("userId") or request.args.get("userId")


def _csv_response(columns: list[str], rows: list[list], prefix: str) -> Response:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(columns)
    writer.writerows(rows)
    filename = f"{prefix}-export-{utcnow():%Y-%m-%d}.csv"
    return Response(
        buffer.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@api_bp.route("/admin/toggle-pro", methods=["POST"])
@api_auth_required(admin=True)
def admin_toggle_pro():
    payload = request.get_json(silent=True) or {}
    user_id = _target_user_id(payload)
    if not user_id:
        return jsonify({"success": False, "error": "userId is required"}), 400

    tier = payload.get("tier")
    if tier is None and "isPro" in payload:
        tier = TIER_PRO if payload["isPro"] else TIER_FREE
    if tier not in TIER_LIMITS:
        return (
            jsonify({"success": False, "error": "Invalid tier. Must be: free, pro, promax"}),
            400,
        )

    rest = get_rest()
    user = rest.get_user(user_id)
    if not user:
        return jsonify({"success": False, "error": "User not found"}), 404

    metadata = {**(user.get("user_metadata") or {}), "tier": tier, "is_pro": tier != TIER_FREE}
    rest.update_user(user_id, {"user_metadata": metadata})
    current_app.logger.info("Admin %s set tier %s for %s", g.identity.email, tier, user_id)
    return jsonify(
        {"success": True, "tier": tier, "is_pro": metadata["is_pro"], "user_id": user_id}
    )


@api_bp.route("/admin/ban-user", methods=["POST"])
@api_auth_required(admin=True)
def admin_ban_user():
    payload = request.get_json(silent=True) or {}
    user_id = _target_user_id(payload)
    if not user_id:
        return jsonify({"success": False, "error": "userId is required"}), 400
    ban = payload.get("ban")
    if not isinstance(ban, bool):
        return jsonify({"success": False, "error": "ban must be a boolean"}), 400
    if user_id == g.identity.user_id:
        return jsonify({"success": False, "error": "Cannot ban yourself"}), 400

    get_rest().update_user(user_id, {"ban_duration": BAN_DURATION if ban else "none"})
    current_app.logger.info(
        "Admin %s %s %s", g.identity.email, "banned" if ban else "unbanned", user_id
    )
    return jsonify({"success": True, "banned": ban, "user_id": user_id})


@api_bp.route("/admin/delete-user", methods=["DELETE", "POST"])
@api_auth_required(admin=True)
def admin_delete_user():
    payload = request.get_json(silent=True) or {}
    user_id = _target_user_id(payload)
    if not user_id:
        return jsonify({"success": False, "error": "userId is required"}), 400
    if user_id == g.identity.user_id:
        return jsonify({"success": False, "error": "Cannot delete your own account"}), 400

    rest = get_rest()
    service = rest.as_service()
    owner = {"user_id": eq(user_id)}

    site_ids = [row["id"] for row in service.select_all("sites", owner, columns="id")]
    category_ids = [row["id"] for row in service.select_all("categories", owner, columns="id")]
    tag_ids = [row["id"] for row in service.select_all("tags", owner, columns="id")]

    delete_site_relations(service, site_ids)
    batch_delete(service, "site_categories", "category_id", category_ids)
    batch_delete(service, "site_tags", "tag_id", tag_ids)
    service.delete("share_tokens", owner)
    service.delete("sites", owner)
    service.delete("categories", owner)
    service.delete("tags", owner)
    service.delete("profiles", {"id": eq(user_id)})
    rest.delete_user(user_id)

    current_app.logger.info("Admin %s deleted user %s", g.identity.email, user_id)
    return jsonify(
        {
            "success": True,
            "user_id": user_id,
            "deleted": {
                "sites": len(site_ids),
                "categories": len(category_ids),
                "tags": len(tag_ids),
            },
        }
    )


@api_bp.route("/admin/export", methods=["GET"])
@api_auth_required(admin=True)
def admin_export():
    kind = request.args.get("type")
    if kind not in {"users", "sites"}:
        return (
            jsonify({"success": False, "error": "Invalid type. Use ?type=users or ?type=sites"}),
            400,
        )

    rest = get_rest()
    service = rest.as_service()
    users = _all_users(rest)
    sites = service.select_all(
        "sites", columns="id,name,url,pricing,user_id,created_at", order="created_at.desc"
    )

    if kind == "users":
        counts: dict = {}
        for site in sites:
            counts[site.get("user_id")] = counts.get(site.get("user_id"), 0) + 1
        rows = []
        for user in users:
            meta = user.get("user_metadata") or {}
            rows.append(
                [
                    user.get("email") or "",
                    meta.get("display_name") or meta.get("username") or "",
                    counts.get(user.get("id"), 0),
                    user.get("created_at") or "",
                    user.get("last_sign_in_at") or "",
                    "Yes" if meta.get("onboarding_completed") else "No",
                ]
            )
        return _csv_response(USER_EXPORT_COLUMNS, rows, "users")

    emails = {user.get("id"): user.get("email") or "" for user in users}
    rows = [
        [
            site.get("name") or "",
            site.get("url") or "",
            site.get("pricing") or "",
            emails.get(site.get("user_id"), ""),
            site.get("created_at") or "",
        ]
        for site in sites
    ]
    return _csv_response(SITE_EXPORT_COLUMNS, rows, "sites")


@api_bp.route("/admin/check-links", methods=["GET", "POST"])
@api_auth_required(admin=True)
def admin_check_links():
    rest = get_rest()
    service = rest.as_service()
    sites = service.select_all("sites", columns="id,name,url,user_id")

    config = current_app.config
    summary = check_links(
        sites,
        timeout=config["LINK_CHECK_TIMEOUT"],
        workers=config["LINK_CHECK_WORKERS"],
        transport=config.get("LINK_CHECK_TRANSPORT"),
    )
    record_link_results(sites, summary["results"])

    owners = {str(site.get("id")): site.get("user_id") for site in sites}
    emails = {user.get("id"): user.get("email") for user in _all_users(rest)}
    names = {
        profile.get("id"): profile.get("name")
        for profile in service.select_all("profiles", columns="id,name")
    }
    broken = []
    for item in summary["broken"]:
        owner_id = owners.get(str(item["id"]))
        broken.append({**item, "ownerEmail": emails.get(owner_id), "ownerName": names.get(owner_id)})
    broken.sort(key=lambda item: item["status"])

    return jsonify(
        {
            "success": True,
            "checked": summary["total"],
            "brokenCount": summary["brokenCount"],
            "broken": broken,
        }
    )


@api_bp.route("/admin/stats", methods=["GET"])
@api_auth_required(admin=True)
def admin_stats():
    rest = get_rest()
    service = rest.as_service()
    stats = build_admin_stats(
        users=_all_users(rest),
        sites=service.select_all("sites", columns="id,user_id,url,pricing,created_at"),
        categories=service.select_all("categories", columns="id,name,color,user_id"),
        tags=service.select_all("tags", columns="id,name,color,user_id"),
        site_categories=service.select_all("site_categories", columns="site_id,category_id"),
        site_tags=service.select_all("site_tags", columns="site_id,tag_id"),
        profiles=service.select_all("profiles", columns="id,name,avatar_url"),
    )
    return jsonify({"success": True, **stats})
