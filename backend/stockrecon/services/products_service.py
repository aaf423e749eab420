# backend/stockrecon/services/products_service.py
"""
Products Service

A product is either counter-backed (no product_model_id, `stock` is the
truth) or IMEI-tracked (product_model_id names a live product model,
`stock` is a cache of the in_stock item count). Writes to `stock` are
only accepted for counter-backed products; tracked stock moves by
registering or selling inventory items.
"""
from __future__ import annotations

from ..models import Product
from ..store import RecordStore, get_store
from ..validation import ValidationError, to_amount
from .product_model_service import ensure_product_model
from .stock_service import get_product_or_404, list_products_with_stock, refresh_cached_stock

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "description", "category", "price", "cost",
    "stock", "min_stock", "product_model_id", "is_active",
}


def _clean_patch(patch: dict) -> dict:
    fields = {k: v for k, v in patch.items() if k in PRODUCT_MUTABLE_FIELDS}

    if "name" in fields:
        name = fields["name"]
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required")
        fields["name"] = name.strip()

    for key in ("price", "cost"):
        if key in fields:
            fields[key] = to_amount(fields[key], key)

    for key in ("stock", "min_stock"):
        if key in fields:
            value = fields[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{key} must be a non-negative integer")

    if fields.get("product_model_id") == "":
        fields["product_model_id"] = None
    return fields


async def create_product(*, patch: dict, store: RecordStore | None = None) -> Product:
    store = store or get_store()
    fields = _clean_patch(patch)
    if "name" not in fields:
        raise ValidationError("name is required")
    if fields.get("product_model_id"):
        await ensure_product_model(fields["product_model_id"], store=store)
        # Tracked products start empty; units arrive as inventory items
        fields["stock"] = 0
    return await store.create("products", fields)


async def get_product(product_id: int, *, store: RecordStore | None = None) -> Product:
    store = store or get_store()
    return await get_product_or_404(product_id, store=store)


async def update_product(product_id: int, *, patch: dict, store: RecordStore | None = None) -> Product:
    store = store or get_store()
    product = await get_product_or_404(product_id, store=store)
    fields = _clean_patch(patch)

    tracked_after = fields.get("product_model_id", product.product_model_id)
    if "stock" in fields and tracked_after:
        raise ValidationError("stock of an IMEI-tracked product is derived from its inventory items")
    if tracked_after and tracked_after != product.product_model_id:
        await ensure_product_model(tracked_after, store=store)

    updated = await store.update(
        "products", product.id, fields, expect={"version_id": product.version_id}
    )
    if updated.product_model_id and not product.product_model_id:
        await refresh_cached_stock(updated.id, store=store)
        updated = await store.get_by_id("products", updated.id)
    return updated


async def list_products(*, include_inactive: bool = False, store: RecordStore | None = None) -> list[dict]:
    """Products with their resolved stock; `stock` in each dict is the resolved value."""
    rows = await list_products_with_stock(store=store, include_inactive=include_inactive)
    items = []
    for product, stock in rows:
        data = product.to_dict()
        data["stock"] = stock
        items.append(data)
    return items


async def find_product_by_name(name: str, *, store: RecordStore | None = None) -> Product | None:
    store = store or get_store()
    matches = await store.list("products", name=name, limit=1)
    return matches[0] if matches else None
