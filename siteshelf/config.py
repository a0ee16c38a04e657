import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def _env(*names: str, default: str = "") -> str:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return default


def _strip_quotes(value: str) -> str:
    return value.strip().strip("'\"").strip()


def _admin_emails(raw: str) -> list[str]:
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'siteshelf.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_CONTENT_LENGTH", str(20 * 1024 * 1024)))

    SUPABASE_URL = _env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL").rstrip("/")
    SUPABASE_ANON_KEY = _strip_quotes(
        _env("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY")
    )
    SUPABASE_SERVICE_KEY = (
        _strip_quotes(_env("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY"))
        or SUPABASE_ANON_KEY
    )
    SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET") or None
    SUPABASE_TIMEOUT = float(os.environ.get("SUPABASE_TIMEOUT", "15"))
    SUPABASE_TRANSPORT = None
    ADMIN_EMAILS = _admin_emails(_env("NEXT_PUBLIC_ADMIN_EMAILS", "ADMIN_EMAILS"))

    IMPORT_CHUNK_SIZE = int(os.environ.get("IMPORT_CHUNK_SIZE", "200"))
    IMPORT_MIN_CHUNK_SIZE = int(os.environ.get("IMPORT_MIN_CHUNK_SIZE", "50"))

    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    LINK_CHECK_TIMEOUT = float(os.environ.get("LINK_CHECK_TIMEOUT", "8"))
    LINK_CHECK_WORKERS = int(os.environ.get("LINK_CHECK_WORKERS", "8"))
    LINK_SWEEP_INTERVAL_MINUTES = int(
        os.environ.get("LINK_SWEEP_INTERVAL_MINUTES", "1440")
    )
    LINK_SWEEP_BATCH = int(os.environ.get("LINK_SWEEP_BATCH", "50"))
    LINK_CHECK_TRANSPORT = None


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    SUPABASE_URL = "https://project.supabase.test"
    SUPABASE_ANON_KEY = "anon-key"
    SUPABASE_SERVICE_KEY = "service-key"
    SUPABASE_JWT_SECRET = "test-jwt-secret-for-the-siteshelf-suite"
    ADMIN_EMAILS = ["admin@example.com"]
