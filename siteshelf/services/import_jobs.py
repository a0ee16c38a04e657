"""Background site imports.

The ``ImportJob`` row is the durable record of a run. Live figures such as
throughput, ETA and cancellation flags only live in this process and are
merged into the row whenever a client polls.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime

from flask import Flask

from siteshelf.extensions import db
from siteshelf.models import ImportJob, utcnow
from siteshelf.services.security import Identity
from siteshelf.services.site_import import chunk_size_for, run_import
from siteshelf.services.supabase import SupabaseError

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("pending", "running")
FINISHED_MESSAGES = {
    "done": "Import completed.",
    "cancelled": "Import cancelled.",
    "failed": "Import failed.",
}
REPORT_COUNT_COLUMNS = {
    "total_created": "created",
    "total_updated": "updated",
    "total_skipped": "skipped",
    "total_errors": "errors",
}


class JobRuntime:
    """Thread-safe, in-memory progress and cancel flags keyed by job id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._states: dict[int, dict] = {}
        self._cancelled: set[int] = set()

    def set(self, job_id: int, **values) -> None:
        with self._lock:
            self._states.setdefault(job_id, {}).update(values)

    def request_cancel(self, job_id: int) -> None:
        with self._lock:
            self._cancelled.add(job_id)

    def cancel_requested(self, job_id: int) -> bool:
        with self._lock:
            return job_id in self._cancelled

    def release(self, job_id: int) -> None:
        with self._lock:
            self._cancelled.discard(job_id)

    def snapshot(self, job_id: int) -> dict:
        with self._lock:
            state = dict(self._states.get(job_id, {}))

        elapsed = None
        started = state.get("started_at")
        if isinstance(started, datetime):
            end = state.get("finished_at") or utcnow()
            elapsed = max(0, int((end - started).total_seconds()))

        processed = int(state.get("processed_items") or 0)
        total = int(state.get("total_items") or 0)
        rate = round(processed / elapsed, 2) if elapsed and processed else None
        eta = int((total - processed) / rate) if rate and total > processed else None

        state.update(elapsed_seconds=elapsed, items_per_second=rate, eta_seconds=eta)
        return state


runtime = JobRuntime()


def create_import_job(user_id: str, rows: list[dict], source: str = "manual") -> ImportJob:
    job = ImportJob(user_id=user_id, status="pending", source=source, total_rows=len(rows))
    db.session.add(job)
    db.session.commit()
    return job


def start_import_job(
    app: Flask,
    identity: Identity,
    job_id: int,
    rows: list[dict],
    create_missing: bool = True,
) -> None:
    worker = threading.Thread(
        target=_run_import_job,
        args=(app, identity, job_id, rows, create_missing),
        name=f"site-import-{job_id}",
        daemon=True,
    )
    worker.start()


def get_import_job_details(job: ImportJob) -> dict:
    live = runtime.snapshot(job.id)
    details = job.as_dict()
    details["processed_items"] = live.get("processed_items", 0)
    details["total_items"] = live.get("total_items", job.total_rows)
    for key in ("items_per_second", "eta_seconds", "elapsed_seconds", "status_message"):
        details[key] = live.get(key)
    details["can_cancel"] = job.status in ACTIVE_STATUSES
    details["report"] = job.report

    if not details["processed_items"] and job.status not in ACTIVE_STATUSES:
        details["processed_items"] = sum(
            getattr(job, column) for column in REPORT_COUNT_COLUMNS
        )
    return details


def request_import_job_cancel(job_id: int, user_id: str) -> bool:
    job = ImportJob.query.filter_by(id=job_id, user_id=user_id).first()
    if job is None or job.status not in ACTIVE_STATUSES:
        return False

    job.cancel_requested = True
    db.session.commit()
    runtime.request_cancel(job_id)
    runtime.set(job_id, status_message="Cancel requested. Finishing the current chunk...")
    return True


def _copy_counts(job: ImportJob, report: dict) -> None:
    for column, key in REPORT_COUNT_COLUMNS.items():
        setattr(job, column, len(report.get(key) or []))
    job.categories_created = int(report.get("categoriesCreated") or 0)
    job.tags_created = int(report.get("tagsCreated") or 0)
    job.tier_limited = bool(report.get("tierLimited"))
    job.tier_message = report.get("tierMessage")


def _save_progress(job_id: int, processed: int, total: int, report: dict) -> None:
    job = db.session.get(ImportJob, job_id)
    if job is not None:
        job.progress = int(processed * 100 / total) if total else 100
        _copy_counts(job, report)
        db.session.commit()

    runtime.set(
        job_id,
        processed_items=processed,
        total_items=total,
        status_message=f"Processed {processed} of {total} rows.",
    )


def _finish(job_id: int, status: str, report: dict | None = None, error: str | None = None) -> None:
    job = db.session.get(ImportJob, job_id)
    if job is not None:
        job.status = status
        job.error_message = error
        if report is not None:
            _copy_counts(job, report)
            job.report_json = json.dumps(report, default=str)
        if status == "done":
            job.progress = 100
        db.session.commit()

    runtime.set(
        job_id,
        status=status,
        finished_at=utcnow(),
        status_message=error or FINISHED_MESSAGES[status],
    )
    runtime.release(job_id)


def _execute(app: Flask, identity: Identity, job_id: int, rows: list[dict], create_missing: bool):
    job = ImportJob.query.filter_by(id=job_id, user_id=identity.user_id).first()
    if job is None:
        logger.warning("Import job %s disappeared before it started", job_id)
        return None

    job.status = "running"
    job.progress = 0
    job.error_message = None
    db.session.commit()

    return run_import(
        identity.scope(),
        identity.relation_scope(),
        identity,
        rows,
        create_missing=create_missing,
        chunk_size=chunk_size_for(
            app.config.get("IMPORT_CHUNK_SIZE"),
            minimum=int(app.config.get("IMPORT_MIN_CHUNK_SIZE", 50)),
        ),
        import_source=job.source,
        progress=lambda processed, total, report: _save_progress(
            job_id, processed, total, report
        ),
        should_cancel=lambda: runtime.cancel_requested(job_id),
    )


def _run_import_job(
    app: Flask,
    identity: Identity,
    job_id: int,
    rows: list[dict],
    create_missing: bool = True,
) -> None:
    with app.app_context():
        db.session.remove()
        runtime.set(
            job_id,
            status="running",
            started_at=utcnow(),
            processed_items=0,
            total_items=len(rows),
            status_message="Importing sites...",
        )
        try:
            report = _execute(app, identity, job_id, rows, create_missing)
        except SupabaseError as exc:
            logger.exception("Import job %s failed upstream", job_id)
            db.session.rollback()
            _finish(job_id, "failed", error=exc.details or str(exc))
        except Exception as exc:
            logger.exception("Import job %s failed", job_id)
            db.session.rollback()
            _finish(job_id, "failed", error=str(exc))
        else:
            if report is not None:
                _finish(job_id, "cancelled" if report.get("cancelled") else "done", report)
        finally:
            db.session.remove()
