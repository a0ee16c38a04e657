from __future__ import annotations

import logging
from datetime import timedelta

from flask import Flask
from sqlalchemy import func

from siteshelf.extensions import db
from siteshelf.models import LinkCheck, utcnow
from siteshelf.services.content import (
    LINK_STATUS_DNS_ERROR,
    LINK_STATUS_INVALID,
    LINK_STATUS_NOT_FOUND,
    LINK_STATUS_SERVER_ERROR,
    LINK_STATUS_TIMEOUT,
    LINK_STATUS_UNREACHABLE,
    check_links,
)
from siteshelf.services.supabase import RestScope

logger = logging.getLogger(__name__)

PROBLEMATIC_RESULTS = {
    LINK_STATUS_NOT_FOUND,
    LINK_STATUS_DNS_ERROR,
    LINK_STATUS_UNREACHABLE,
    LINK_STATUS_SERVER_ERROR,
    LINK_STATUS_TIMEOUT,
    LINK_STATUS_INVALID,
}
STALE_AFTER_DAYS = 7


def record_link_results(sites: list[dict], results: list[dict]) -> list[LinkCheck]:
    """Persist one ``LinkCheck`` row per checked site."""
    owners = {str(site.get("id")): site.get("user_id") for site in sites}
    checks = []
    for result in results:
        site_id = str(result.get("id"))
        check = LinkCheck(
            site_id=site_id,
            user_id=owners.get(site_id),
            name=result.get("name"),
            url=result.get("url") or "",
            status_code=result.get("status") or None,
            result_type=result.get("result"),
            latency_ms=result.get("latencyMs"),
            error=result.get("error"),
        )
        db.session.add(check)
        checks.append(check)
    db.session.commit()
    return checks


def latest_checks(user_id: str, broken_only: bool = True) -> list[LinkCheck]:
    newest = (
        db.session.query(LinkCheck.site_id, func.max(LinkCheck.id).label("last_id"))
        .filter(LinkCheck.user_id == user_id)
        .group_by(LinkCheck.site_id)
        .subquery()
    )
    query = LinkCheck.query.join(newest, LinkCheck.id == newest.c.last_id)
    if broken_only:
        query = query.filter(LinkCheck.result_type.in_(PROBLEMATIC_RESULTS))
    return query.order_by(LinkCheck.checked_at.desc()).all()


def _recently_checked(site_ids: list[str]) -> set[str]:
    if not site_ids:
        return set()
    stale_before = utcnow() - timedelta(days=STALE_AFTER_DAYS)
    rows = (
        db.session.query(LinkCheck.site_id)
        .filter(LinkCheck.site_id.in_(site_ids))
        .filter(LinkCheck.checked_at >= stale_before)
        .distinct()
        .all()
    )
    return {row[0] for row in rows}


def sweep_stale_links(app: Flask, service: RestScope) -> int:
    """Check a batch of sites that were never checked or not checked lately."""
    batch = app.config["LINK_SWEEP_BATCH"]
    sites = service.select_all(
        "sites", columns="id,name,url,user_id", order="created_at.asc"
    )
    fresh = _recently_checked([str(site["id"]) for site in sites])
    pending = [site for site in sites if str(site["id"]) not in fresh][:batch]
    if not pending:
        return 0

    summary = check_links(
        pending,
        timeout=app.config["LINK_CHECK_TIMEOUT"],
        workers=app.config["LINK_CHECK_WORKERS"],
        transport=app.config.get("LINK_CHECK_TRANSPORT"),
    )
    record_link_results(pending, summary["results"])
    logger.info(
        "Link sweep checked %s sites, %s broken", summary["total"], summary["brokenCount"]
    )
    return summary["total"]
