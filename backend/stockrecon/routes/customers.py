# Overview: Flask API routes for customers and store-credit grants.

from flask import Blueprint, request, jsonify

from ..decorators import run, service_errors
from ..services import customer_service

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@service_errors
def list_customers():
    customers = run(customer_service.list_customers())
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)})


@customers_bp.post("")
@service_errors
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    customer = run(customer_service.create_customer(patch=payload))
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.get("/<int:customer_id>")
@service_errors
def get_customer_route(customer_id: int):
    customer = run(customer_service.get_customer(customer_id))
    return jsonify({"customer": customer.to_dict()})


@customers_bp.patch("/<int:customer_id>")
@service_errors
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    customer = run(customer_service.update_customer(customer_id, patch=payload))
    return jsonify({"customer": customer.to_dict()})


@customers_bp.post("/<int:customer_id>/store-credit")
@service_errors
def add_store_credit_route(customer_id: int):
    """Body: amount (> 0)."""
    payload = request.get_json(silent=True) or {}
    customer = run(customer_service.add_store_credit(customer_id, payload.get("amount")))
    return jsonify({"customer": customer.to_dict()})
