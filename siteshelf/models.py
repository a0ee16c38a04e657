import json
from datetime import datetime, timezone

from siteshelf.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ImportJob(db.Model):
    __tablename__ = "import_jobs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False, default="pending")
    source = db.Column(db.String(32), nullable=False, default="manual")
    progress = db.Column(db.Integer, nullable=False, default=0)
    total_rows = db.Column(db.Integer, nullable=False, default=0)
    total_created = db.Column(db.Integer, nullable=False, default=0)
    total_updated = db.Column(db.Integer, nullable=False, default=0)
    total_skipped = db.Column(db.Integer, nullable=False, default=0)
    total_errors = db.Column(db.Integer, nullable=False, default=0)
    categories_created = db.Column(db.Integer, nullable=False, default=0)
    tags_created = db.Column(db.Integer, nullable=False, default=0)
    tier_limited = db.Column(db.Boolean, nullable=False, default=False)
    tier_message = db.Column(db.Text, nullable=True)
    cancel_requested = db.Column(db.Boolean, nullable=False, default=False)
    report_json = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def report(self) -> dict | None:
        if not self.report_json:
            return None
        return json.loads(self.report_json)

    def as_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "source": self.source,
            "progress": self.progress,
            "total_rows": self.total_rows,
            "total_created": self.total_created,
            "total_updated": self.total_updated,
            "total_skipped": self.total_skipped,
            "total_errors": self.total_errors,
            "categories_created": self.categories_created,
            "tags_created": self.tags_created,
            "tier_limited": self.tier_limited,
            "tier_message": self.tier_message,
            "cancel_requested": self.cancel_requested,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class LinkCheck(db.Model):
    __tablename__ = "link_checks"

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.String(64), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(512), nullable=True)
    url = db.Column(db.Text, nullable=False)
    checked_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    status_code = db.Column(db.Integer, nullable=True)
    final_url = db.Column(db.Text, nullable=True)
    result_type = db.Column(db.String(64), nullable=False)
    latency_ms = db.Column(db.Integer, nullable=True)
    error = db.Column(db.Text, nullable=True)

    def as_dict(self):
        return {
            "siteId": self.site_id,
            "userId": self.user_id,
            "name": self.name,
            "url": self.url,
            "status": self.status_code or 0,
            "result": self.result_type,
            "error": self.error,
            "latencyMs": self.latency_ms,
            "checkedAt": _iso(self.checked_at),
        }
