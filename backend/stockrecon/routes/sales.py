# Overview: Flask API routes for sales; partial outcomes come back as a 2xx summary with ok=false.

from flask import Blueprint, request, jsonify

from ..decorators import run, service_errors
from ..services import sales_service

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_CREATE_FIELDS = {
    "items", "customer_id", "customer_name", "subtotal", "tax", "discount", "total",
    "status", "payment_method", "notes", "user_id", "cashier_name", "credit_applied",
}


@sales_bp.get("")
@service_errors
def list_sales():
    sales = run(sales_service.list_sales(
        customer_id=request.args.get("customer_id", type=int),
        status=request.args.get("status"),
    ))
    return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)})


@sales_bp.post("")
@service_errors
def create_sale_route():
    """
    Create a sale.

    Body: items (SaleItem list, camelCase keys), optional customer_id,
    amounts, status, payment_method, notes, credit_applied.
    """
    payload = request.get_json(silent=True) or {}
    kwargs = {k: v for k, v in payload.items() if k in SALE_CREATE_FIELDS}
    result = run(sales_service.create_sale(**{"items": None, **kwargs}))
    return jsonify(result.to_dict()), 201


@sales_bp.get("/<int:sale_id>")
@service_errors
def get_sale_route(sale_id: int):
    sale = run(sales_service.get_sale(sale_id))
    return jsonify({"sale": sale.to_dict()})


@sales_bp.patch("/<int:sale_id>")
@service_errors
def update_sale_route(sale_id: int):
    payload = request.get_json(silent=True) or {}
    result = run(sales_service.update_sale(sale_id, updates=payload))
    return jsonify(result.to_dict())


@sales_bp.delete("/<int:sale_id>")
@service_errors
def delete_sale_route(sale_id: int):
    result = run(sales_service.delete_sale(sale_id))
    return jsonify(result.to_dict())
