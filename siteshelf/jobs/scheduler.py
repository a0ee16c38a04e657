import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler

from siteshelf.extensions import supabase
from siteshelf.services.link_health import sweep_stale_links
from siteshelf.services.supabase import SupabaseError, SupabaseNotConfigured

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def run_link_health_sweep(app):
    with app.app_context():
        try:
            service = supabase.get_rest(app).as_service()
            sweep_stale_links(app, service)
        except SupabaseNotConfigured:
            logger.warning("Link sweep skipped: Supabase is not configured")
        except SupabaseError as exc:
            logger.warning("Link sweep failed: %s", exc.details)


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["LINK_SWEEP_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_link_health_sweep,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="link_health_sweep",
            replace_existing=True,
        )
        scheduler.start()
