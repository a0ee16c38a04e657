from flask import current_app
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from siteshelf.services.supabase import Supabase, SupabaseRest

db = SQLAlchemy()
migrate = Migrate()
supabase = Supabase()


def get_rest() -> SupabaseRest:
    return supabase.get_rest(current_app._get_current_object())
