# backend/depot/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before the engine is created in db.init_app
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.loads import loads_bp  # Load sheets & reconciliation
    from .routes.finance import finance_bp  # Accounts, cheques, payment reversal
    from .routes.inventory import inventory_bp  # Stock ledger, purchases, claims
    from .routes.history import history_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(loads_bp)
    app.register_blueprint(finance_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(history_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
