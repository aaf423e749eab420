# Overview: Trade-in swaps: sell one purchased unit, register the surrendered device, and undo both.

"""
Swap Service

CREATE (completed swaps):
    The purchased product is sold exactly like a one-unit sale (IMEI unit
    guarded on in_stock, or the counter decremented). The surrendered device
    always becomes a NEW in_stock InventoryItem whose notes carry
    "Trade-in from swap #<swap_number>." so deletion can recognise it.
    A trade-in landing on a counter-backed product also bumps its counter.

STATUS:
    A pending or cancelled swap has no stock effects. Moving it to
    completed runs the same batch as a completed create. A completed swap
    never leaves completed, so its effects always match its status and
    deletion knows exactly what to reverse.

DELETE:
    The purchased unit/stock is restored as in sale deletion. The trade-in
    unit is removed ONLY if its notes carry this swap's marker; a unit
    re-registered under the same IMEI by hand is left alone and reported
    in `skipped`.

Validation mirrors the desktop swap handler: difference_paid must equal
purchased price minus trade-in value (within 0.01) and cannot be negative.
"""

from __future__ import annotations

import logging
import secrets
from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError
from ..models import InventoryItem, Product, Swap
from ..models.inventory import ITEM_CONDITIONS, ITEM_STATUS_IN_STOCK
from ..models.sales import PAYMENT_METHODS, SWAP_STATUSES
from ..store import RecordStore, StoreError, get_store
from ..validation import CENT, ValidationError, normalize_imei, require_choice, to_amount, validate_imei
from stockrecon.time_utils import utcnow
from .allocation_service import allocate
from .credit_service import get_customer_or_404
from .inventory_item_service import ensure_imei_available, get_inventory_item_by_imei, sell_step
from .products_service import find_product_by_name
from .saga import AllocationShortfall, OperationResult, Step, run_actions, run_compensations
from .stock_service import counter_step, get_product_or_404, refresh_tracked_stock

logger = logging.getLogger(__name__)

SWAP_MUTABLE_FIELDS = {"status", "payment_method", "notes"}

DIFFERENCE_TOLERANCE = Decimal("0.01")


def _is_completed_status(status) -> bool:
    return status in (None, "", "completed")


def trade_in_marker(swap_number: str) -> str:
    return f"Trade-in from swap #{swap_number}."


async def _next_swap_number(*, store: RecordStore) -> str:
    while True:
        number = f"SWAP-{secrets.randbelow(1_000_000):06d}"
        if not await store.count("swaps", swap_number=number, include_deleted=True):
            return number


async def _resolve_trade_in_product(
    *,
    product_id: int | None,
    name: str | None,
    value: Decimal,
    store: RecordStore,
    result: OperationResult,
) -> Product:
    if product_id:
        return await get_product_or_404(product_id, store=store)

    existing = await find_product_by_name(name, store=store)
    if existing is not None:
        return existing

    ratio = Decimal(str(current_app.config.get("TRADE_IN_COST_RATIO", 0.8)))
    product = await store.create("products", {
        "name": name,
        "category": "Trade-in",
        "price": value,
        "cost": (value * ratio).quantize(CENT),
        "stock": 0,
        "min_stock": 0,
    })
    result.related["trade_in_product"] = product
    result.applied.append(f"create:products:{product.id}")
    logger.info("Created trade-in product %s (%s)", product.id, name)
    return product


def trade_in_step(
    *,
    swap_number: str,
    imei: str,
    product_id: int,
    condition: str,
    value: Decimal,
    customer_id: int | None,
    extra_notes: str | None,
    store: RecordStore,
) -> Step:
    """
    Register the surrendered device; the compensation removes it again.

    The compensation returns the removed item, or None when the live unit
    under that IMEI was not created by this swap (or is gone already).
    """
    marker = trade_in_marker(swap_number)

    async def _register():
        notes = f"{marker} {extra_notes}" if extra_notes else marker
        return await store.create("inventory_items", {
            "product_id": product_id,
            "imei": imei,
            "status": ITEM_STATUS_IN_STOCK,
            "condition": condition,
            "purchase_cost": value,
            "customer_id": customer_id,
            "notes": notes,
        })

    async def _remove():
        item = await get_inventory_item_by_imei(imei, store=store)
        if item is None or marker not in (item.notes or ""):
            return None
        if not await store.soft_delete("inventory_items", item.id):
            return None
        return item

    return Step(
        name="trade_in",
        entity="inventory_items",
        entity_id=imei,
        action=_register,
        compensation=_remove,
        context={"product_id": product_id},
    )


def _purchase_refs(inventory_item_id: int | None, purchased_imei: str | None) -> list | None:
    if inventory_item_id:
        return [inventory_item_id]
    if purchased_imei:
        return [purchased_imei]
    return None


async def _allocate_purchase(
    purchased: Product,
    refs: list | None,
    *,
    store: RecordStore,
    result: OperationResult,
) -> InventoryItem | None:
    """Pick the unit a completed swap sells. Counter-backed products need none."""
    if not purchased.product_model_id:
        return None
    allocation = await allocate(purchased.id, 1, refs, store=store)
    if allocation.items:
        return allocation.items[0]
    result.shortfalls.append(AllocationShortfall(
        product_id=purchased.id, requested=1, allocated=0, unresolved_refs=list(refs or []),
    ))
    return None


async def _apply_swap(
    swap: Swap,
    *,
    purchased: Product,
    trade_in_product: Product,
    unit: InventoryItem | None,
    explicit: bool,
    store: RecordStore,
    result: OperationResult,
) -> None:
    """Run the completed-swap batch: register the trade-in and sell the purchase."""
    steps = [trade_in_step(
        swap_number=swap.swap_number,
        imei=swap.trade_in_imei,
        product_id=trade_in_product.id,
        condition=swap.trade_in_condition,
        value=swap.trade_in_value,
        customer_id=swap.customer_id,
        extra_notes=swap.trade_in_notes,
        store=store,
    )]
    if not trade_in_product.product_model_id:
        steps.append(counter_step(trade_in_product.id, 1, store=store))
    if unit is not None:
        steps.append(sell_step(
            unit.id,
            product_id=purchased.id,
            sale_id=None,
            customer_id=swap.customer_id,
            sold_date=utcnow(),
            store=store,
        ))
    elif not purchased.product_model_id:
        steps.append(counter_step(purchased.id, -1, store=store))

    outcomes = await run_actions(steps)
    lost = [o for o in outcomes if o.step.name == "sell_item" and o.conflict]
    result.absorb([o for o in outcomes if not (o.step.name == "sell_item" and o.conflict)], label="apply")
    if lost:
        logger.warning("Swap %s: unit %s was sold elsewhere first", swap.swap_number, unit.id)
        result.shortfalls.append(AllocationShortfall(
            product_id=purchased.id,
            requested=1,
            allocated=0,
            unresolved_refs=[unit.id] if explicit else [],
        ))
        try:
            result.record = await store.update(
                "swaps", swap.id, {"inventory_item_id": None, "purchased_imei": None}
            )
        except (NotFoundError, StoreError) as exc:
            result.record_failure("swaps", swap.id, "record_allocation", exc)

    for outcome in outcomes:
        if outcome.step.name == "trade_in" and outcome.ok:
            result.related["trade_in_item"] = outcome.value

    await refresh_tracked_stock(
        [p.id for p in (purchased, trade_in_product) if p.product_model_id], store=store, result=result
    )


async def create_swap(
    *,
    purchased_product_id: int,
    trade_in_imei: str,
    trade_in_value,
    purchased_product_price=None,
    difference_paid=None,
    customer_id: int | None = None,
    customer_name: str | None = None,
    purchased_imei: str | None = None,
    inventory_item_id: int | None = None,
    trade_in_product_id: int | None = None,
    trade_in_product_name: str | None = None,
    trade_in_condition: str = "used",
    trade_in_notes: str | None = None,
    payment_method: str = "cash",
    status: str | None = "completed",
    notes: str | None = None,
    store: RecordStore | None = None,
) -> OperationResult:
    """
    Record a swap. Only a completed swap moves stock; a pending one keeps
    the requested purchase unit (id or IMEI) until update_swap completes it.
    """
    store = store or get_store()
    result = OperationResult(operation="create_swap")

    if not purchased_product_id:
        raise ValidationError("purchased_product_id is required")
    imei = validate_imei(trade_in_imei)
    value = to_amount(trade_in_value, "trade_in_value")
    require_choice(trade_in_condition, "trade_in_condition", ITEM_CONDITIONS)
    require_choice(payment_method, "payment_method", PAYMENT_METHODS)
    if status is not None:
        require_choice(status, "status", SWAP_STATUSES)
    if not trade_in_product_id and not (trade_in_product_name or "").strip():
        raise ValidationError("trade_in_product_name is required when trade_in_product_id is not given")

    purchased = await get_product_or_404(purchased_product_id, store=store)
    price = to_amount(
        purchased_product_price if purchased_product_price is not None else purchased.price,
        "purchased_product_price",
    )
    difference = price - value
    if difference < 0:
        raise ValidationError("trade_in_value cannot exceed the purchased product price")
    if difference_paid is not None:
        paid = to_amount(difference_paid, "difference_paid", allow_negative=True)
        if abs(paid - difference) > DIFFERENCE_TOLERANCE:
            raise ValidationError(f"difference_paid must equal {difference:.2f}")
    customer = await get_customer_or_404(customer_id, store=store) if customer_id else None
    await ensure_imei_available(imei, store=store)
    if trade_in_product_id:
        await get_product_or_404(trade_in_product_id, store=store)

    completed = _is_completed_status(status)
    refs = _purchase_refs(inventory_item_id, purchased_imei)

    if completed:
        unit = await _allocate_purchase(purchased, refs, store=store, result=result)
        held_id, held_imei = (unit.id, unit.imei) if unit else (None, None)
    else:
        unit = None
        held_id, held_imei = inventory_item_id, normalize_imei(purchased_imei) or None

    trade_in_product = await _resolve_trade_in_product(
        product_id=trade_in_product_id,
        name=(trade_in_product_name or "").strip(),
        value=value,
        store=store,
        result=result,
    )

    swap = await store.create("swaps", {
        "swap_number": await _next_swap_number(store=store),
        "customer_id": customer.id if customer else None,
        "customer_name": customer_name or (customer.name if customer else None),
        "purchased_product_id": purchased.id,
        "purchased_product_name": purchased.name,
        "purchased_product_price": price,
        "purchased_imei": held_imei,
        "inventory_item_id": held_id,
        "trade_in_product_id": trade_in_product.id,
        "trade_in_product_name": trade_in_product.name,
        "trade_in_imei": imei,
        "trade_in_condition": trade_in_condition,
        "trade_in_notes": trade_in_notes,
        "trade_in_value": value,
        "difference_paid": difference,
        "payment_method": payment_method,
        "status": status,
        "notes": notes,
    })
    result.record = swap

    if completed:
        await _apply_swap(
            swap,
            purchased=purchased,
            trade_in_product=trade_in_product,
            unit=unit,
            explicit=bool(refs),
            store=store,
            result=result,
        )

    result.log_summary()
    return result


async def delete_swap(swap_id: int, *, store: RecordStore | None = None) -> OperationResult:
    store = store or get_store()
    result = OperationResult(operation="delete_swap")

    swap = await store.get_by_id("swaps", swap_id, include_deleted=True)
    if swap is None:
        raise NotFoundError(f"Swap {swap_id} not found", details={"swap_id": swap_id})
    result.record = swap

    if swap.deleted_at is not None or not await store.soft_delete("swaps", swap.id):
        result.noop = True
        result.log_summary()
        return result

    if not swap.is_completed:
        result.record = await store.get_by_id("swaps", swap.id, include_deleted=True)
        result.log_summary()
        return result

    purchased = await store.get_by_id("products", swap.purchased_product_id, include_deleted=True)
    trade_in_product = await store.get_by_id("products", swap.trade_in_product_id, include_deleted=True)

    steps = [trade_in_step(
        swap_number=swap.swap_number,
        imei=swap.trade_in_imei,
        product_id=swap.trade_in_product_id,
        condition=swap.trade_in_condition,
        value=swap.trade_in_value,
        customer_id=swap.customer_id,
        extra_notes=None,
        store=store,
    )]

    unit_id = swap.inventory_item_id
    if unit_id is None and swap.purchased_imei:
        item = await get_inventory_item_by_imei(swap.purchased_imei, store=store)
        unit_id = item.id if item else None
    if purchased is None:
        result.record_failure("products", swap.purchased_product_id, "restore_stock", "purchased product not found")
    elif unit_id is not None:
        steps.append(sell_step(
            unit_id,
            product_id=purchased.id,
            sale_id=None,
            customer_id=swap.customer_id,
            sold_date=swap.created_at,
            store=store,
        ))
    elif not purchased.product_model_id:
        steps.append(counter_step(purchased.id, -1, store=store))

    outcomes = await run_compensations(steps)
    trade_in_outcome = next(o for o in outcomes if o.step.name == "trade_in")
    result.absorb([o for o in outcomes if o is not trade_in_outcome], label="restore")

    if not trade_in_outcome.ok:
        result.record_failure("inventory_items", swap.trade_in_imei, "remove_trade_in", trade_in_outcome.error)
    elif trade_in_outcome.value is None:
        result.skipped.append(f"trade_in:inventory_items:{swap.trade_in_imei}")
        logger.warning(
            "Swap %s: trade-in IMEI %s is not marked as created by this swap; left in place",
            swap.swap_number, swap.trade_in_imei,
        )
    else:
        result.applied.append(f"trade_in:restore:inventory_items:{trade_in_outcome.value.id}")
        if trade_in_product is not None and not trade_in_product.product_model_id:
            result.absorb(await run_actions([counter_step(trade_in_product.id, -1, store=store)]), label="restore")

    await refresh_tracked_stock(
        [p.id for p in (purchased, trade_in_product) if p is not None and p.product_model_id],
        store=store,
        result=result,
    )
    result.record = await store.get_by_id("swaps", swap.id, include_deleted=True)
    result.log_summary()
    return result



async def update_swap(swap_id: int, *, updates: dict, store: RecordStore | None = None) -> OperationResult:
    """
    Edit status, payment method or notes.

    A pending/cancelled swap that becomes completed runs the create batch
    then (allocation, trade-in registration, stock). A completed swap cannot
    leave completed: deleting it is the only way to reverse its effects.
    """
    store = store or get_store()
    result = OperationResult(operation="update_swap")

    unknown = set(updates) - SWAP_MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
    if "status" in updates:
        require_choice(updates["status"], "status", SWAP_STATUSES)
    if "payment_method" in updates:
        require_choice(updates["payment_method"], "payment_method", PAYMENT_METHODS)

    swap = await get_swap(swap_id, store=store)
    result.record = swap

    was_completed = swap.is_completed
    will_complete = _is_completed_status(updates["status"]) if "status" in updates else was_completed
    if was_completed and not will_complete:
        raise ValidationError("A completed swap cannot change status; delete it to reverse its stock effects")

    fields = dict(updates)
    if was_completed or not will_complete:
        result.record = await store.update("swaps", swap.id, fields)
        result.log_summary()
        return result

    purchased = await get_product_or_404(swap.purchased_product_id, store=store)
    trade_in_product = await get_product_or_404(swap.trade_in_product_id, store=store)
    await ensure_imei_available(swap.trade_in_imei, store=store)
    refs = _purchase_refs(swap.inventory_item_id, swap.purchased_imei)
    unit = await _allocate_purchase(purchased, refs, store=store, result=result)

    fields["inventory_item_id"] = unit.id if unit else None
    fields["purchased_imei"] = unit.imei if unit else None
    # Guarded on the old status so two completions cannot both apply
    swap = await store.update("swaps", swap.id, fields, expect={"status": swap.status})
    result.record = swap

    await _apply_swap(
        swap,
        purchased=purchased,
        trade_in_product=trade_in_product,
        unit=unit,
        explicit=bool(refs),
        store=store,
        result=result,
    )
    result.log_summary()
    return result


async def get_swap(swap_id: int, *, store: RecordStore | None = None) -> Swap:
    store = store or get_store()
    swap = await store.get_by_id("swaps", swap_id)
    if swap is None:
        raise NotFoundError(f"Swap {swap_id} not found", details={"swap_id": swap_id})
    return swap


async def list_swaps(*, customer_id: int | None = None, store: RecordStore | None = None) -> list[Swap]:
    store = store or get_store()
    filters = {"customer_id": customer_id} if customer_id is not None else {}
    return await store.list("swaps", order_by=("-created_at",), **filters)
