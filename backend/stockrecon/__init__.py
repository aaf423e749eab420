# backend/stockrecon/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.getLogger("stockrecon").setLevel(level)
    app.logger.setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.product_models import product_models_bp
    from .routes.products import products_bp
    from .routes.inventory_items import inventory_items_bp
    from .routes.sales import sales_bp
    from .routes.swaps import swaps_bp
    from .routes.returns import returns_bp
    from .routes.debts import debts_bp
    from .routes.customers import customers_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(product_models_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(inventory_items_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(swaps_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(debts_bp)
    app.register_blueprint(customers_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
