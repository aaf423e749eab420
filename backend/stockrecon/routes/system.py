# backend/stockrecon/routes/system.py
"""
System health endpoint.

Checks database connectivity so deployments can tell a live engine from
one that only serves stale cached stock.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, InventoryItem
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Count products and live inventory units; report latency."""
    start_time = time.time()
    try:
        product_count = db.session.query(Product).filter(Product.deleted_at.is_(None)).count()
        item_count = db.session.query(InventoryItem).filter(InventoryItem.deleted_at.is_(None)).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"products": product_count, "inventory_items": item_count},
        }
    except SQLAlchemyError as e:
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "error": str(e.__class__.__name__)}


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status = "healthy" if database["status"] == "healthy" else "unhealthy"
    body = {"status": status, "timestamp": to_utc_z(utcnow()), "checks": {"database": database}}
    return jsonify(body), 200 if status == "healthy" else 503
