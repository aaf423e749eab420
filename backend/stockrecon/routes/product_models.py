# Overview: Flask API routes for the product model catalog.

from flask import Blueprint, request, jsonify

from ..decorators import run, service_errors
from ..services import product_model_service

product_models_bp = Blueprint("product_models", __name__, url_prefix="/api/product-models")


@product_models_bp.get("")
@service_errors
def list_product_models():
    """
    Query params:
    - brand: str (optional)
    - include_inactive: bool (optional)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    models = run(product_model_service.list_product_models(
        brand=request.args.get("brand"), include_inactive=include_inactive
    ))
    return jsonify({"items": [m.to_dict() for m in models], "count": len(models)})


@product_models_bp.post("")
@service_errors
def create_product_model_route():
    payload = request.get_json(silent=True) or {}
    model = run(product_model_service.create_product_model(patch=payload))
    return jsonify({"product_model": model.to_dict()}), 201


@product_models_bp.get("/<model_id>")
@service_errors
def get_product_model_route(model_id: str):
    model = run(product_model_service.get_product_model(model_id))
    return jsonify({"product_model": model.to_dict()})


@product_models_bp.patch("/<model_id>")
@service_errors
def update_product_model_route(model_id: str):
    payload = request.get_json(silent=True) or {}
    model = run(product_model_service.update_product_model(model_id, patch=payload))
    return jsonify({"product_model": model.to_dict()})


@product_models_bp.delete("/<model_id>")
@service_errors
def delete_product_model_route(model_id: str):
    model = run(product_model_service.delete_product_model(model_id))
    return jsonify({"product_model": model.to_dict()})
