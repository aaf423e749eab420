# Overview: Flask API routes for products; every stock figure returned is the resolved one.

from flask import Blueprint, request, jsonify

from ..decorators import run, service_errors
from ..services import products_service
from ..services.stock_service import resolve_stock

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@service_errors
def list_products():
    """
    List active products with resolved stock.

    Query params:
    - include_inactive: bool (optional)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    items = run(products_service.list_products(include_inactive=include_inactive))
    return jsonify({"items": items, "count": len(items)})


@products_bp.post("")
@service_errors
def create_product_route():
    payload = request.get_json(silent=True) or {}
    product = run(products_service.create_product(patch=payload))
    return jsonify({"product": product.to_dict()}), 201


async def _product_with_stock(product_id: int) -> dict:
    product = await products_service.get_product(product_id)
    data = product.to_dict()
    data["stock"] = await resolve_stock(product)
    return data


@products_bp.get("/<int:product_id>")
@service_errors
def get_product_route(product_id: int):
    return jsonify({"product": run(_product_with_stock(product_id))})


@products_bp.patch("/<int:product_id>")
@service_errors
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    product = run(products_service.update_product(product_id, patch=payload))
    return jsonify({"product": product.to_dict()})
