# Overview: Flask API routes for IMEI-tracked inventory units.

from flask import Blueprint, request, jsonify

from ..decorators import run, service_errors
from ..services import inventory_item_service
from ..time_utils import parse_timestamp
from ..validation import ValidationError

inventory_items_bp = Blueprint("inventory_items", __name__, url_prefix="/api/inventory-items")


@inventory_items_bp.get("")
@service_errors
def list_items():
    """
    Query params:
    - product_id: int (optional)
    - status: in_stock | sold | returned | defective (optional)
    - imei: str (optional) - exact lookup after normalisation
    """
    imei = request.args.get("imei")
    if imei:
        item = run(inventory_item_service.get_inventory_item_by_imei(imei))
        items = [item] if item else []
    else:
        items = run(inventory_item_service.list_inventory_items(
            product_id=request.args.get("product_id", type=int),
            status=request.args.get("status"),
        ))
    return jsonify({"items": [i.to_dict() for i in items], "count": len(items)})


@inventory_items_bp.post("")
@service_errors
def register_item():
    payload = request.get_json(silent=True) or {}
    if not payload.get("product_id"):
        raise ValidationError("product_id is required")
    created_at = parse_timestamp(payload.get("created_at"), "created_at")

    item = run(inventory_item_service.register_inventory_item(
        product_id=payload["product_id"],
        imei=payload.get("imei"),
        condition=payload.get("condition", "new"),
        purchase_cost=payload.get("purchase_cost"),
        selling_price=payload.get("selling_price"),
        sim_type=payload.get("sim_type"),
        notes=payload.get("notes"),
        created_at=created_at,
    ))
    return jsonify({"item": item.to_dict()}), 201


@inventory_items_bp.get("/<int:item_id>")
@service_errors
def get_item(item_id: int):
    item = run(inventory_item_service.get_inventory_item(item_id))
    return jsonify({"item": item.to_dict()})


@inventory_items_bp.patch("/<int:item_id>")
@service_errors
def update_item(item_id: int):
    payload = request.get_json(silent=True) or {}
    item = run(inventory_item_service.update_inventory_item(item_id, payload))
    return jsonify({"item": item.to_dict()})


@inventory_items_bp.delete("/<int:item_id>")
@service_errors
def delete_item(item_id: int):
    deleted = run(inventory_item_service.delete_inventory_item(item_id))
    return jsonify({"deleted": deleted})
