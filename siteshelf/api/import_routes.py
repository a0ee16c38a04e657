from __future__ import annotations

from flask import current_app, g, jsonify, request

from siteshelf.api import api_bp
from siteshelf.models import ImportJob
from siteshelf.services.bookmark_import import (
    ImportFormatError,
    parse_import_file,
    prepare_import_rows,
)
from siteshelf.services.common import to_bool
from siteshelf.services.import_jobs import (
    ACTIVE_STATUSES,
    create_import_job,
    get_import_job_details,
    request_import_job_cancel,
    start_import_job,
)
from siteshelf.services.security import api_auth_required
from siteshelf.services.site_import import chunk_size_for, run_import


def _import_request():
    payload = request.get_json(silent=True) or {}
    rows = payload.get("rows")
    if not isinstance(rows, list) or not rows:
        return None, (jsonify({"success": False, "error": "No rows provided"}), 400)

    options = payload.get("options") or {}
    return {
        "rows": rows,
        "create_missing": to_bool(options.get("createMissing"), default=True),
        "chunk_size": payload.get("chunkSize") or options.get("chunkSize"),
        "import_source": payload.get("importSource") or options.get("importSource") or "manual",
    }, None


@api_bp.route("/import/parse", methods=["POST"])
@api_auth_required()
def parse_import_upload():
    upload = request.files.get("file")
    if not upload:
        return jsonify({"success": False, "error": "file field is required"}), 400

    source = request.form.get("source") or "auto"
    try:
        parsed = parse_import_file(upload.filename, upload.read(), source=source)
        rows = prepare_import_rows(parsed.sites)
    except ImportFormatError as exc:
        return jsonify({"success": False, "error": str(exc)}), 400

    return jsonify({"success": True, **parsed.as_dict(), "rows": rows, "total": len(rows)})


@api_bp.route("/import", methods=["POST"])
@api_auth_required()
def import_rows():
    identity = g.identity
    options, error = _import_request()
    if error:
        return error

    config = current_app.config
    report = run_import(
        identity.scope(),
        identity.relation_scope(),
        identity,
        options["rows"],
        create_missing=options["create_missing"],
        chunk_size=chunk_size_for(
            options["chunk_size"],
            default=config["IMPORT_CHUNK_SIZE"],
            minimum=config["IMPORT_MIN_CHUNK_SIZE"],
        ),
        import_source=options["import_source"],
    )
    current_app.logger.info(
        "Import for %s: %s created, %s updated, %s errors",
        identity.user_id,
        len(report["created"]),
        len(report["updated"]),
        len(report["errors"]),
    )
    return jsonify({"success": True, "report": report})


@api_bp.route("/import/jobs", methods=["GET"])
@api_auth_required()
def list_import_jobs():
    jobs = (
        ImportJob.query.filter_by(user_id=g.identity.user_id)
        .order_by(ImportJob.created_at.desc())
        .limit(20)
        .all()
    )
    return jsonify({"success": True, "jobs": [job.as_dict() for job in jobs]})


@api_bp.route("/import/jobs", methods=["POST"])
@api_auth_required()
def start_import():
    identity = g.identity
    options, error = _import_request()
    if error:
        return error

    running = ImportJob.query.filter(
        ImportJob.user_id == identity.user_id, ImportJob.status.in_(ACTIVE_STATUSES)
    ).first()
    if running:
        return (
            jsonify(
                {
                    "success": False,
                    "error": "An import is already running",
                    "job": get_import_job_details(running),
                }
            ),
            409,
        )

    job = create_import_job(identity.user_id, options["rows"], source=options["import_source"])
    start_import_job(
        current_app._get_current_object(),
        identity,
        job.id,
        options["rows"],
        create_missing=options["create_missing"],
    )
    return jsonify({"success": True, "job": get_import_job_details(job)}), 202


@api_bp.route("/import/jobs/<int:job_id>", methods=["GET"])
@api_auth_required()
def import_job_status(job_id: int):
    job = ImportJob.query.filter_by(id=job_id, user_id=g.identity.user_id).first()
    if not job:
        return jsonify({"success": False, "error": "Import job not found"}), 404
    return jsonify({"success": True, "job": get_import_job_details(job)})


@api_bp.route("/import/jobs/<int:job_id>/cancel", methods=["POST"])
@api_auth_required()
def cancel_import_job(job_id: int):
    user_id = g.identity.user_id
    job = ImportJob.query.filter_by(id=job_id, user_id=user_id).first()
    if not job:
        return jsonify({"success": False, "error": "Import job not found"}), 404
    if not request_import_job_cancel(job_id, user_id):
        return jsonify({"success": False, "error": "Import job is not running"}), 409
    return jsonify({"success": True, "job": get_import_job_details(job)})
