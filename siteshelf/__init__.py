from flask import Flask

from siteshelf.api import api_bp
from siteshelf.config import Config
from siteshelf.extensions import db, migrate, supabase
from siteshelf.jobs.scheduler import start_scheduler


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    supabase.init_app(app)

    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized SiteShelf database.")

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
