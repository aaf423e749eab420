# Overview: IMEI-tracked inventory item registration, lookup, and the sell/restore writes.

"""
Inventory Item Service

UNIQUENESS: one live InventoryItem per normalized IMEI (spaces and dashes
removed, uppercased, 15 or 17 digits). Checked before every insert and
IMEI change; the partial unique index backs it up.

STATUS RULES:
Manual edits only move an item forward:
    in_stock -> returned | defective
    sold     -> returned | defective
    returned -> defective
in_stock -> sold happens through sales/swaps (sell_step), and
sold -> in_stock only through deleting the sale/swap that sold the unit
(the compensation of sell_step).
"""

from __future__ import annotations

from datetime import datetime

from ..errors import NotFoundError
from ..models import InventoryItem
from ..models.inventory import (
    ITEM_CONDITIONS,
    ITEM_STATUSES,
    ITEM_STATUS_IN_STOCK,
    ITEM_STATUS_SOLD,
    ITEM_STATUS_RETURNED,
    ITEM_STATUS_DEFECTIVE,
)
from ..store import RecordStore, get_store
from ..validation import ConflictError, ValidationError, normalize_imei, require_choice, to_amount, validate_imei
from .saga import Step
from .stock_service import get_product_or_404, refresh_cached_stock


MANUAL_TRANSITIONS = {
    ITEM_STATUS_IN_STOCK: {ITEM_STATUS_RETURNED, ITEM_STATUS_DEFECTIVE},
    ITEM_STATUS_SOLD: {ITEM_STATUS_RETURNED, ITEM_STATUS_DEFECTIVE},
    ITEM_STATUS_RETURNED: {ITEM_STATUS_DEFECTIVE},
    ITEM_STATUS_DEFECTIVE: set(),
}

EDITABLE_FIELDS = {"imei", "status", "condition", "sim_type", "purchase_cost", "selling_price", "notes"}


async def get_inventory_item_by_imei(imei: str, *, store: RecordStore | None = None) -> InventoryItem | None:
    store = store or get_store()
    normalized = normalize_imei(imei)
    if not normalized:
        return None
    matches = await store.list("inventory_items", imei=normalized, limit=1)
    return matches[0] if matches else None


async def get_inventory_item(item_id: int, *, store: RecordStore | None = None) -> InventoryItem:
    store = store or get_store()
    item = await store.get_by_id("inventory_items", item_id)
    if item is None:
        raise NotFoundError(f"Inventory item {item_id} not found", details={"inventory_item_id": item_id})
    return item


async def list_inventory_items(
    *,
    product_id: int | None = None,
    status: str | None = None,
    store: RecordStore | None = None,
) -> list[InventoryItem]:
    store = store or get_store()
    filters = {}
    if product_id is not None:
        filters["product_id"] = product_id
    if status is not None:
        filters["status"] = require_choice(status, "status", ITEM_STATUSES)
    return await store.list("inventory_items", order_by=("-created_at",), **filters)


async def ensure_imei_available(imei: str, *, store: RecordStore, ignore_item_id: int | None = None) -> None:
    existing = await get_inventory_item_by_imei(imei, store=store)
    if existing is not None and existing.id != ignore_item_id:
        raise ConflictError(f"IMEI {imei} already exists in inventory (status: {existing.status})")


async def register_inventory_item(
    *,
    product_id: int,
    imei: str,
    condition: str = "new",
    status: str = ITEM_STATUS_IN_STOCK,
    purchase_cost=None,
    selling_price=None,
    sim_type: str | None = None,
    customer_id: int | None = None,
    notes: str | None = None,
    created_at: datetime | None = None,
    store: RecordStore | None = None,
) -> InventoryItem:
    """Add one IMEI unit to a product and refresh the product's cached stock."""
    store = store or get_store()
    normalized = validate_imei(imei)
    require_choice(condition, "condition", ITEM_CONDITIONS)
    require_choice(status, "status", ITEM_STATUSES)
    product = await get_product_or_404(product_id, store=store)
    await ensure_imei_available(normalized, store=store)

    fields = {
        "product_id": product.id,
        "imei": normalized,
        "status": status,
        "condition": condition,
        "sim_type": sim_type,
        "purchase_cost": to_amount(purchase_cost, "purchase_cost") if purchase_cost is not None else None,
        "selling_price": to_amount(selling_price, "selling_price") if selling_price is not None else None,
        "customer_id": customer_id,
        "notes": notes,
    }
    if created_at is not None:
        fields["created_at"] = created_at
    item = await store.create("inventory_items", fields)

    if product.product_model_id:
        await refresh_cached_stock(product.id, store=store)
    return item


async def update_inventory_item(item_id: int, updates: dict, *, store: RecordStore | None = None) -> InventoryItem:
    store = store or get_store()
    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

    item = await get_inventory_item(item_id, store=store)
    fields = dict(updates)

    if "imei" in fields:
        fields["imei"] = validate_imei(fields["imei"])
        await ensure_imei_available(fields["imei"], store=store, ignore_item_id=item.id)

    if "condition" in fields:
        require_choice(fields["condition"], "condition", ITEM_CONDITIONS)

    expect = None
    if "status" in fields and fields["status"] != item.status:
        new_status = require_choice(fields["status"], "status", ITEM_STATUSES)
        if new_status not in MANUAL_TRANSITIONS.get(item.status, set()):
            raise ValidationError(f"Cannot move inventory item from {item.status} to {new_status}")
        expect = {"status": item.status}

    for money_field in ("purchase_cost", "selling_price"):
        if fields.get(money_field) is not None:
            fields[money_field] = to_amount(fields[money_field], money_field)

    updated = await store.update("inventory_items", item.id, fields, expect=expect)
    await refresh_cached_stock(updated.product_id, store=store)
    return updated


async def delete_inventory_item(item_id: int, *, store: RecordStore | None = None) -> bool:
    store = store or get_store()
    item = await store.get_by_id("inventory_items", item_id, include_deleted=True)
    if item is None:
        raise NotFoundError(f"Inventory item {item_id} not found", details={"inventory_item_id": item_id})
    deleted = await store.soft_delete("inventory_items", item_id)
    if deleted:
        await refresh_cached_stock(item.product_id, store=store)
    return deleted


def sell_step(
    item_id: int,
    *,
    product_id: int,
    sale_id: int | None,
    customer_id: int | None,
    sold_date: datetime,
    store: RecordStore,
) -> Step:
    """
    in_stock -> sold, stamping the sale and customer.

    The action only applies while the stored status is still in_stock; the
    compensation only applies while the unit is still sold to the same sale
    (sale_id NULL for swaps).
    """
    async def _sell():
        return await store.update(
            "inventory_items",
            item_id,
            {
                "status": ITEM_STATUS_SOLD,
                "sale_id": sale_id,
                "customer_id": customer_id,
                "sold_date": sold_date,
            },
            expect={"status": ITEM_STATUS_IN_STOCK},
        )

    async def _restore():
        return await store.update(
            "inventory_items",
            item_id,
            {
                "status": ITEM_STATUS_IN_STOCK,
                "sale_id": None,
                "customer_id": None,
                "sold_date": None,
            },
            expect={"status": ITEM_STATUS_SOLD, "sale_id": sale_id},
        )

    return Step(
        name="sell_item",
        entity="inventory_items",
        entity_id=item_id,
        action=_sell,
        compensation=_restore,
        context={"product_id": product_id},
    )
