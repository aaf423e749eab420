# Overview: Flask API routes for customer returns.

from flask import Blueprint, request, jsonify

from ..decorators import run, service_errors
from ..services import return_service
from ..validation import ValidationError

returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")

RETURN_CREATE_FIELDS = {
    "items", "sale_id", "customer_id", "customer_name", "subtotal", "tax", "total",
    "refund_amount", "refund_method", "status", "processed_by", "notes", "exchange_items",
}


@returns_bp.get("")
@service_errors
def list_returns():
    returns = run(return_service.list_returns(
        sale_id=request.args.get("sale_id", type=int),
        status=request.args.get("status"),
    ))
    return jsonify({"items": [r.to_dict() for r in returns], "count": len(returns)})


@returns_bp.post("")
@service_errors
def create_return_route():
    payload = request.get_json(silent=True) or {}
    kwargs = {k: v for k, v in payload.items() if k in RETURN_CREATE_FIELDS}
    result = run(return_service.create_return(**{"items": None, **kwargs}))
    return jsonify(result.to_dict()), 201


@returns_bp.get("/<int:return_id>")
@service_errors
def get_return_route(return_id: int):
    ret = run(return_service.get_return(return_id))
    return jsonify({"return": ret.to_dict()})


@returns_bp.post("/<int:return_id>/status")
@service_errors
def update_return_status_route(return_id: int):
    """Body: status, optional processed_by."""
    payload = request.get_json(silent=True) or {}
    if not payload.get("status"):
        raise ValidationError("status is required")
    result = run(return_service.update_return_status(
        return_id, payload["status"], processed_by=payload.get("processed_by")
    ))
    return jsonify(result.to_dict())


@returns_bp.delete("/<int:return_id>")
@service_errors
def delete_return_route(return_id: int):
    result = run(return_service.delete_return(return_id))
    return jsonify(result.to_dict())
