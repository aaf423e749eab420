# Overview: Flask API routes for trade-in swaps.

from flask import Blueprint, request, jsonify

from ..decorators import run, service_errors
from ..services import swap_service

swaps_bp = Blueprint("swaps", __name__, url_prefix="/api/swaps")

SWAP_CREATE_FIELDS = {
    "purchased_product_id", "trade_in_imei", "trade_in_value", "purchased_product_price",
    "difference_paid", "customer_id", "customer_name", "purchased_imei", "inventory_item_id",
    "trade_in_product_id", "trade_in_product_name", "trade_in_condition", "trade_in_notes",
    "payment_method", "status", "notes",
}


@swaps_bp.get("")
@service_errors
def list_swaps():
    swaps = run(swap_service.list_swaps(customer_id=request.args.get("customer_id", type=int)))
    return jsonify({"items": [s.to_dict() for s in swaps], "count": len(swaps)})


@swaps_bp.post("")
@service_errors
def create_swap_route():
    payload = request.get_json(silent=True) or {}
    kwargs = {k: v for k, v in payload.items() if k in SWAP_CREATE_FIELDS}
    kwargs.setdefault("purchased_product_id", None)
    kwargs.setdefault("trade_in_imei", None)
    kwargs.setdefault("trade_in_value", None)
    result = run(swap_service.create_swap(**kwargs))
    return jsonify(result.to_dict()), 201


@swaps_bp.get("/<int:swap_id>")
@service_errors
def get_swap_route(swap_id: int):
    swap = run(swap_service.get_swap(swap_id))
    return jsonify({"swap": swap.to_dict()})


@swaps_bp.patch("/<int:swap_id>")
@service_errors
def update_swap_route(swap_id: int):
    payload = request.get_json(silent=True) or {}
    result = run(swap_service.update_swap(swap_id, updates=payload))
    return jsonify(result.to_dict())


@swaps_bp.delete("/<int:swap_id>")
@service_errors
def delete_swap_route(swap_id: int):
    result = run(swap_service.delete_swap(swap_id))
    return jsonify(result.to_dict())
