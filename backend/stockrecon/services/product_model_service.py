# Overview: Product model catalog; the entity a tracked product's product_model_id points at.

"""
Product Model Service

A product model is catalog data only. It never holds stock; products that
reference it become IMEI-tracked. Models are soft-deleted, and only once no
live product still references them, so a tracked product never points at a
deleted model.
"""

from __future__ import annotations

from ..errors import NotFoundError
from ..models import ProductModel
from ..store import RecordStore, get_store
from ..validation import ConflictError, ValidationError

PRODUCT_MODEL_MUTABLE_FIELDS = {
    "name", "brand", "category", "description", "image",
    "colors", "storage_options", "is_active",
}


def _string_list(value, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field} must be a list of strings")
    return [v.strip() for v in value if v.strip()]


def _clean(patch: dict) -> dict:
    fields = {k: v for k, v in patch.items() if k in PRODUCT_MODEL_MUTABLE_FIELDS}
    if "name" in fields:
        if not isinstance(fields["name"], str) or not fields["name"].strip():
            raise ValidationError("name is required")
        fields["name"] = fields["name"].strip()
    for key in ("colors", "storage_options"):
        if key in fields:
            fields[key] = _string_list(fields[key], key)
    if "is_active" in fields and not isinstance(fields["is_active"], bool):
        raise ValidationError("is_active must be a boolean")
    return fields


async def get_product_model_or_404(model_id: str, *, store: RecordStore) -> ProductModel:
    model = await store.get_by_id("product_models", model_id)
    if model is None:
        raise NotFoundError(f"Product model {model_id} not found", details={"product_model_id": model_id})
    return model


async def ensure_product_model(model_id: str, *, store: RecordStore | None = None) -> str:
    """Validate a product_model_id taken from a product payload."""
    store = store or get_store()
    if not isinstance(model_id, str):
        raise ValidationError("product_model_id must be a string")
    if await store.get_by_id("product_models", model_id) is None:
        raise ValidationError(f"product_model_id '{model_id}' does not match a product model")
    return model_id


async def create_product_model(*, patch: dict, store: RecordStore | None = None) -> ProductModel:
    store = store or get_store()
    fields = _clean(patch)
    if "name" not in fields:
        raise ValidationError("name is required")

    model_id = patch.get("id")
    if model_id not in (None, ""):
        if not isinstance(model_id, str) or len(model_id) > 64:
            raise ValidationError("id must be a string of at most 64 characters")
        if await store.get_by_id("product_models", model_id, include_deleted=True) is not None:
            raise ConflictError(f"Product model {model_id} already exists")
        fields["id"] = model_id
    return await store.create("product_models", fields)


async def get_product_model(model_id: str, *, store: RecordStore | None = None) -> ProductModel:
    store = store or get_store()
    return await get_product_model_or_404(model_id, store=store)


async def update_product_model(model_id: str, *, patch: dict, store: RecordStore | None = None) -> ProductModel:
    store = store or get_store()
    model = await get_product_model_or_404(model_id, store=store)
    return await store.update("product_models", model.id, _clean(patch))


async def list_product_models(
    *,
    brand: str | None = None,
    include_inactive: bool = False,
    store: RecordStore | None = None,
) -> list[ProductModel]:
    store = store or get_store()
    filters = {}
    if brand:
        filters["brand"] = brand
    if not include_inactive:
        filters["is_active"] = True
    return await store.list("product_models", order_by=("name",), **filters)


async def delete_product_model(model_id: str, *, store: RecordStore | None = None) -> ProductModel:
    """Soft delete. Refused while a live product is still linked to the model."""
    store = store or get_store()
    model = await get_product_model_or_404(model_id, store=store)
    linked = await store.count("products", product_model_id=model.id)
    if linked:
        raise ConflictError(
            f"Product model {model.id} is still used by {linked} product(s); unlink them first"
        )
    await store.soft_delete("product_models", model.id)
    return await store.get_by_id("product_models", model.id, include_deleted=True)
