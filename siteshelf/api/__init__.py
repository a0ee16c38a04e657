from flask import Blueprint, current_app, jsonify
from werkzeug.exceptions import MethodNotAllowed, NotFound

from siteshelf.services.supabase import SupabaseError, SupabaseNotConfigured

api_bp = Blueprint("api", __name__, url_prefix="/api")


@api_bp.errorhandler(SupabaseError)
def handle_upstream_error(exc: SupabaseError):
    return (
        jsonify(
            {
                "success": False,
                "error": exc.message,
                "status": exc.status,
                "details": exc.details,
            }
        ),
        502,
    )


@api_bp.errorhandler(SupabaseNotConfigured)
def handle_missing_config(exc: SupabaseNotConfigured):
    current_app.logger.error("Supabase is not configured: %s", exc)
    return jsonify({"success": False, "error": str(exc)}), 500


@api_bp.app_errorhandler(MethodNotAllowed)
def handle_method_not_allowed(exc):
    return jsonify({"success": False, "error": "Method not allowed"}), 405


@api_bp.app_errorhandler(NotFound)
def handle_not_found(exc):
    return jsonify({"success": False, "error": "Not found"}), 404


from siteshelf.api import admin_routes, import_routes, routes  # noqa: E402,F401
