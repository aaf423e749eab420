# Overview: Flask API routes for customer debts and debt payments.

from flask import Blueprint, request, jsonify

from ..decorators import run, service_errors
from ..services import debt_service
from ..time_utils import parse_timestamp

debts_bp = Blueprint("debts", __name__, url_prefix="/api/debts")


@debts_bp.get("")
@service_errors
def list_debts():
    debts = run(debt_service.list_debts(
        customer_id=request.args.get("customer_id", type=int),
        status=request.args.get("status"),
    ))
    return jsonify({"items": [d.to_dict() for d in debts], "count": len(debts)})


@debts_bp.post("")
@service_errors
def create_debt_route():
    payload = request.get_json(silent=True) or {}
    debt = run(debt_service.create_debt(
        amount=payload.get("amount"),
        customer_id=payload.get("customer_id"),
        sale_id=payload.get("sale_id"),
        description=payload.get("description"),
    ))
    return jsonify({"debt": debt.to_dict()}), 201


@debts_bp.get("/<int:debt_id>")
@service_errors
def get_debt_route(debt_id: int):
    debt = run(debt_service.get_debt(debt_id))
    return jsonify({"debt": debt.to_dict()})


@debts_bp.delete("/<int:debt_id>")
@service_errors
def delete_debt_route(debt_id: int):
    return jsonify({"deleted": run(debt_service.delete_debt(debt_id))})


@debts_bp.get("/<int:debt_id>/payments")
@service_errors
def list_payments_route(debt_id: int):
    payments = run(debt_service.list_debt_payments(debt_id))
    return jsonify({"items": [p.to_dict() for p in payments], "count": len(payments)})


@debts_bp.post("/<int:debt_id>/payments")
@service_errors
def add_payment_route(debt_id: int):
    """Body: amount, optional method and ISO-8601 date."""
    payload = request.get_json(silent=True) or {}
    date = parse_timestamp(payload.get("date"), "date")
    result = run(debt_service.add_debt_payment(
        debt_id, payload.get("amount"), method=payload.get("method"), date=date
    ))
    return jsonify(result.to_dict()), 201
