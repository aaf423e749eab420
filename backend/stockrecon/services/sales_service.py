# Overview: Sale create/update/delete orchestration over inventory, product counters and store credit.

"""
Sales Service

Every sale mutation is a saga of independent writes (see saga.py).

CREATE (status completed, or NULL):
    1. validate items, products, customer and applied credit (no writes)
    2. plan allocations for tracked lines; AllocationMismatch aborts here
    3. create the sale row
    4. one batch: sell each allocated unit (guarded on in_stock), decrement
       each plain product's counter, consume the applied credit
    5. write the units actually sold and the credit note back into the sale
    6. refresh the cached stock of tracked products
A pending / cancelled / refunded sale is stored without inventory effects.

DELETE:
    The soft delete is the claim: only the call that stamps deleted_at runs
    the compensations, so a repeated delete is a no-op. A completed sale's
    units go back to in_stock, plain stock is added back, applied credit is
    returned to the customer and debts tied to the sale are soft-deleted.

UPDATE:
    When items change on a completed sale, the old plain quantities are
    added back before the new item set is applied. IMEI units already sold
    to the sale are NOT un-sold on edit: units the new items still reference
    stay attached, the rest stay sold and are logged for an operator. Delete
    and recreate the sale to release them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import Decimal

from ..errors import AllocationMismatch, NotFoundError
from ..line_items import SaleItem
from ..models import InventoryItem, Product, Sale
from ..models.inventory import ITEM_STATUS_SOLD
from ..models.sales import PAYMENT_METHODS, SALE_STATUSES, SALE_STATUS_COMPLETED
from ..store import RecordStore, StoreError, get_store
from ..validation import ValidationError, normalize_imei, require_choice, to_amount
from stockrecon.time_utils import utcnow
from .allocation_service import Allocation, allocate, refs_for
from .credit_service import (
    credit_note,
    credit_step,
    credit_to_restore,
    ensure_credit_available,
    get_customer_or_404,
)
from .inventory_item_service import sell_step
from .saga import AllocationShortfall, OperationResult, Step, run_actions, run_compensations
from .stock_service import counter_step, refresh_tracked_stock

logger = logging.getLogger(__name__)

SALE_MUTABLE_FIELDS = {
    "items", "customer_id", "customer_name", "subtotal", "tax", "discount",
    "total", "status", "payment_method", "notes", "user_id", "cashier_name",
}


@dataclass
class LinePlan:
    """What one sale line will do to inventory."""
    item: SaleItem
    product: Product
    allocation: Allocation | None = None
    # Units already sold to this sale that the line keeps (updates only)
    kept: list[InventoryItem] = field(default_factory=list)

    @property
    def tracked(self) -> bool:
        return bool(self.product.product_model_id)

    @property
    def requested(self) -> int:
        refs = refs_for(self.item)
        return len(refs) if refs else self.item.quantity


# ----------------------------------------------------------------------
# validation
# ----------------------------------------------------------------------

def _coerce_items(raw) -> list[SaleItem]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")

    items = []
    for index, entry in enumerate(raw):
        item = entry if isinstance(entry, SaleItem) else SaleItem.from_dict(entry)
        if item.product_id is None:
            raise ValidationError(f"items[{index}].productId is required")
        if item.has_explicit_refs and item.quantity <= 0:
            item = replace(item, quantity=len(refs_for(item)))
        if item.quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be positive")
        unit_price = to_amount(item.unit_price, f"items[{index}].unitPrice")
        total = to_amount(item.total, f"items[{index}].total")
        if not total and unit_price:
            total = to_amount(unit_price * item.quantity, f"items[{index}].total")
        items.append(replace(item, unit_price=unit_price, total=total))
    return items


def _sale_amounts(items: list[SaleItem], *, subtotal=None, tax=None, discount=None, total=None) -> dict:
    if subtotal is None:
        subtotal = to_amount(sum((item.total for item in items), Decimal("0")), "subtotal")
    else:
        subtotal = to_amount(subtotal, "subtotal")
    tax = to_amount(tax or 0, "tax")
    discount = to_amount(discount or 0, "discount")
    total = to_amount(total, "total") if total is not None else subtotal + tax - discount
    if total < 0:
        raise ValidationError("total cannot be negative")
    return {"subtotal": subtotal, "tax": tax, "discount": discount, "total": total}


async def _load_products(items: list[SaleItem], *, store: RecordStore, include_deleted: bool = False) -> dict[int, Product]:
    products = {}
    for item in items:
        if item.product_id in products:
            continue
        product = await store.get_by_id("products", item.product_id, include_deleted=include_deleted)
        if product is None:
            raise NotFoundError(f"Product {item.product_id} not found", details={"product_id": item.product_id})
        products[product.id] = product
    return products


def _is_completed_status(status) -> bool:
    return status in (None, "", SALE_STATUS_COMPLETED)


# ----------------------------------------------------------------------
# allocation planning
# ----------------------------------------------------------------------

def _match_held(ref, units: list[InventoryItem], claimed: set[int]) -> InventoryItem | None:
    for unit in units:
        if unit.id in claimed:
            continue
        if isinstance(ref, int) and not isinstance(ref, bool) and unit.id == ref:
            return unit
        if isinstance(ref, str) and normalize_imei(ref) == unit.imei:
            return unit
    return None


async def _plan_lines(
    items: list[SaleItem],
    products: dict[int, Product],
    *,
    store: RecordStore,
    held: dict[int, list[InventoryItem]] | None = None,
) -> list[LinePlan]:
    """
    Decide which units every tracked line takes.

    `held` maps product id -> units already sold to the sale being edited.
    Held units are reused before anything new is allocated, and no unit is
    handed to two lines.
    """
    held = held or {}
    claimed: set[int] = set()
    plans = []

    for item in items:
        plan = LinePlan(item=item, product=products[item.product_id])
        plans.append(plan)
        if not plan.tracked:
            continue

        candidates = held.get(plan.product.id, [])
        refs = refs_for(item)
        if refs:
            remaining = []
            for ref in refs:
                unit = _match_held(ref, candidates, claimed)
                if unit is None:
                    remaining.append(ref)
                    continue
                claimed.add(unit.id)
                plan.kept.append(unit)
            quantity = len(remaining)
        else:
            remaining = None
            for unit in candidates:
                if len(plan.kept) >= item.quantity:
                    break
                if unit.id not in claimed:
                    claimed.add(unit.id)
                    plan.kept.append(unit)
            quantity = item.quantity - len(plan.kept)

        if remaining == [] or quantity <= 0:
            plan.allocation = Allocation(product_id=plan.product.id, requested=0)
            continue

        try:
            plan.allocation = await allocate(
                plan.product.id, quantity, remaining, exclude_ids=claimed, store=store
            )
        except AllocationMismatch:
            if not plan.kept:
                raise
            plan.allocation = Allocation(
                product_id=plan.product.id, requested=quantity, unresolved_refs=list(remaining)
            )
        claimed.update(unit.id for unit in plan.allocation.items)

    return plans


async def _held_units(sale_id: int, *, store: RecordStore) -> dict[int, list[InventoryItem]]:
    units = await store.list(
        "inventory_items", sale_id=sale_id, status=ITEM_STATUS_SOLD, order_by=("created_at",)
    )
    held = defaultdict(list)
    for unit in units:
        held[unit.product_id].append(unit)
    return held


# ----------------------------------------------------------------------
# applying / reversing
# ----------------------------------------------------------------------

async def _apply_plans(
    sale: Sale,
    plans: list[LinePlan],
    *,
    store: RecordStore,
    result: OperationResult,
    credit_amount: Decimal | None = None,
) -> tuple[list[SaleItem], bool]:
    """
    Run the forward batch for `plans` and return (resolved items, credit consumed).

    A sell guarded on in_stock that loses its race is a shortfall for its
    line, not a failure: another transaction owns that unit now.
    """
    sold_date = utcnow()
    steps: list[Step] = []
    plain: dict[int, int] = defaultdict(int)

    for plan in plans:
        if plan.tracked:
            for unit in plan.allocation.items if plan.allocation else []:
                steps.append(sell_step(
                    unit.id,
                    product_id=plan.product.id,
                    sale_id=sale.id,
                    customer_id=sale.customer_id,
                    sold_date=sold_date,
                    store=store,
                ))
        else:
            plain[plan.product.id] += plan.item.quantity

    for product_id, quantity in plain.items():
        steps.append(counter_step(product_id, -quantity, store=store))
    if credit_amount:
        steps.append(credit_step(sale.customer_id, credit_amount, store=store))

    outcomes = await run_actions(steps)

    lost = {o.step.entity_id for o in outcomes if o.step.name == "sell_item" and o.conflict}
    for unit_id in sorted(lost):
        logger.warning("Sale %s: unit %s left in_stock before it could be sold", sale.id, unit_id)
    result.absorb(
        [o for o in outcomes if not (o.step.name == "sell_item" and o.conflict)], label="apply"
    )
    sold = {o.step.entity_id for o in outcomes if o.step.name == "sell_item" and o.ok}
    credit_consumed = any(o.ok for o in outcomes if o.step.name == "store_credit")

    resolved = []
    for plan in plans:
        if not plan.tracked:
            resolved.append(plan.item)
            continue

        allocation = plan.allocation or Allocation(product_id=plan.product.id, requested=0)
        units = plan.kept + [unit for unit in allocation.items if unit.id in sold]
        unresolved = list(allocation.unresolved_refs)
        if refs_for(plan.item):
            unresolved += [unit.id for unit in allocation.items if unit.id in lost]
        if len(units) < plan.requested or unresolved:
            result.shortfalls.append(AllocationShortfall(
                product_id=plan.product.id,
                requested=plan.requested,
                allocated=len(units),
                unresolved_refs=unresolved,
            ))
        resolved.append(replace(
            plan.item,
            inventory_item_ids=[unit.id for unit in units],
            imeis=[unit.imei for unit in units],
        ))

    return resolved, credit_consumed


async def _reversal_steps(
    sale: Sale,
    items: list[SaleItem],
    *,
    store: RecordStore,
    result: OperationResult,
    include_tracked: bool = True,
    include_credit: bool = True,
) -> list[Step]:
    """
    Rebuild the creation steps of `sale` from its persisted items.

    Units are found by recorded item id, then by recorded IMEI, then by
    whatever is still sold to this sale. Only the compensations are meant
    to be run.
    """
    steps: list[Step] = []
    plain: dict[int, int] = defaultdict(int)
    units: dict[int, int] = {}
    fallback_products: set[int] = set()

    for item in items:
        if item.product_id is None:
            continue
        product = await store.get_by_id("products", item.product_id, include_deleted=True)
        if product is None:
            result.record_failure("products", item.product_id, "restore_stock", f"Product {item.product_id} not found")
            continue

        if not product.product_model_id:
            if item.quantity > 0:
                plain[product.id] += item.quantity
            continue
        if not include_tracked:
            continue

        if item.inventory_item_ids:
            for unit_id in item.inventory_item_ids:
                units.setdefault(unit_id, product.id)
        elif item.imeis:
            for imei in item.imeis:
                matches = await store.list("inventory_items", imei=normalize_imei(imei), limit=1)
                if matches:
                    units.setdefault(matches[0].id, product.id)
                else:
                    result.record_failure("inventory_items", imei, "restore_item", f"No live unit with IMEI {imei}")
        else:
            fallback_products.add(product.id)

    for product_id in sorted(fallback_products):
        for unit in await store.list("inventory_items", sale_id=sale.id, product_id=product_id, status=ITEM_STATUS_SOLD):
            units.setdefault(unit.id, product_id)

    for unit_id, product_id in units.items():
        steps.append(sell_step(
            unit_id,
            product_id=product_id,
            sale_id=sale.id,
            customer_id=sale.customer_id,
            sold_date=sale.created_at,
            store=store,
        ))
    for product_id, quantity in plain.items():
        steps.append(counter_step(product_id, -quantity, store=store))

    if include_credit:
        amount = credit_to_restore(sale)
        if amount > 0:
            steps.append(credit_step(sale.customer_id, amount, store=store))
    return steps


def _tracked_ids(plans: list[LinePlan]) -> set[int]:
    return {plan.product.id for plan in plans if plan.tracked}


# ----------------------------------------------------------------------
# operations
# ----------------------------------------------------------------------

async def create_sale(
    *,
    items,
    customer_id: int | None = None,
    customer_name: str | None = None,
    subtotal=None,
    tax=None,
    discount=None,
    total=None,
    status: str | None = SALE_STATUS_COMPLETED,
    payment_method: str = "cash",
    notes: str | None = None,
    user_id: str | None = None,
    cashier_name: str | None = None,
    credit_applied=None,
    store: RecordStore | None = None,
) -> OperationResult:
    """
    Record a sale and apply its inventory and credit effects.

    Returns an OperationResult whose record is the stored sale. Shortfalls
    and failed sub-writes are reported there; validation and not-found
    problems raise before anything is written.
    """
    store = store or get_store()
    result = OperationResult(operation="create_sale")

    line_items = _coerce_items(items)
    amounts = _sale_amounts(line_items, subtotal=subtotal, tax=tax, discount=discount, total=total)
    if status is not None:
        require_choice(status, "status", SALE_STATUSES)
    require_choice(payment_method, "payment_method", PAYMENT_METHODS)

    products = await _load_products(line_items, store=store)
    customer = await get_customer_or_404(customer_id, store=store) if customer_id else None
    completed = _is_completed_status(status)

    credit_amount = None
    if credit_applied is None and payment_method == "credit" and customer is not None:
        credit_applied = amounts["total"]
    if credit_applied is not None:
        credit_amount = to_amount(credit_applied, "credit_applied")
        if credit_amount and customer is None:
            raise ValidationError("credit_applied requires a customer")
        if credit_amount > amounts["total"]:
            raise ValidationError("credit_applied cannot exceed the sale total")
        if credit_amount and completed:
            await ensure_credit_available(customer.id, credit_amount, store=store)
        else:
            credit_amount = None

    plans = await _plan_lines(line_items, products, store=store) if completed else []

    sale = await store.create("sales", {
        "customer_id": customer.id if customer else None,
        "customer_name": customer_name or (customer.name if customer else None),
        "items": line_items,
        "status": status,
        "payment_method": payment_method,
        "notes": notes,
        "user_id": user_id,
        "cashier_name": cashier_name,
        **amounts,
    })
    result.record = sale

    if completed:
        resolved, credit_consumed = await _apply_plans(
            sale, plans, store=store, result=result, credit_amount=credit_amount
        )
        fields = {"items": resolved}
        if credit_consumed:
            note = credit_note(credit_amount, cash=amounts["total"] - credit_amount)
            fields["notes"] = f"{notes}\n{note}" if notes else note
        try:
            result.record = await store.update("sales", sale.id, fields)
        except (NotFoundError, StoreError) as exc:
            result.record_failure("sales", sale.id, "record_allocation", exc)
        await refresh_tracked_stock(_tracked_ids(plans), store=store, result=result)

    result.log_summary()
    return result


async def update_sale(sale_id: int, *, updates: dict, store: RecordStore | None = None) -> OperationResult:
    """
    Edit a sale.

    Inventory effects follow the item set and the status:
    - items changed on a completed sale: old plain quantities are added back
    - resulting sale completed and (items changed or it was not completed
      before): the new item set is applied as in create_sale
    Moving a completed sale to another status without touching its items
    leaves inventory as it is; deleting the sale is the reversal path.
    """
    store = store or get_store()
    result = OperationResult(operation="update_sale")

    unknown = set(updates) - SALE_MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

    sale = await store.get_by_id("sales", sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    result.record = sale

    fields = dict(updates)
    old_items = sale.line_items
    new_items = _coerce_items(fields["items"]) if "items" in fields else old_items
    items_changed = "items" in fields and [i.to_dict() for i in new_items] != [i.to_dict() for i in old_items]

    if "status" in fields and fields["status"] is not None:
        require_choice(fields["status"], "status", SALE_STATUSES)
    if "payment_method" in fields:
        require_choice(fields["payment_method"], "payment_method", PAYMENT_METHODS)
    if "customer_id" in fields and fields["customer_id"]:
        await get_customer_or_404(fields["customer_id"], store=store)
    for key in ("subtotal", "tax", "discount", "total"):
        if key in fields:
            fields[key] = to_amount(fields[key] or 0, key)
    if "items" in fields:
        fields["items"] = new_items

    was_completed = sale.is_completed
    will_complete = _is_completed_status(fields.get("status", sale.status))
    apply_new = will_complete and (items_changed or not was_completed)

    plans = []
    if apply_new:
        products = await _load_products(new_items, store=store)
        held = await _held_units(sale.id, store=store) if was_completed else {}
        plans = await _plan_lines(new_items, products, store=store, held=held)

    if items_changed and was_completed:
        steps = await _reversal_steps(
            sale, old_items, store=store, result=result, include_tracked=False, include_credit=False
        )
        result.absorb(await run_compensations(steps), label="reverse")

    updated = await store.update("sales", sale.id, fields)
    result.record = updated

    if apply_new:
        resolved, _ = await _apply_plans(updated, plans, store=store, result=result)
        kept_ids = {unit_id for item in resolved for unit_id in item.inventory_item_ids}
        for units in (await _held_units(sale.id, store=store)).values():
            for unit in units:
                if unit.id not in kept_ids:
                    logger.warning(
                        "Sale %s: unit %s (IMEI %s) no longer referenced after edit; still sold",
                        sale.id, unit.id, unit.imei,
                    )
        try:
            result.record = await store.update("sales", sale.id, {"items": resolved})
        except (NotFoundError, StoreError) as exc:
            result.record_failure("sales", sale.id, "record_allocation", exc)
        await refresh_tracked_stock(_tracked_ids(plans), store=store, result=result)

    result.log_summary()
    return result


async def delete_sale(sale_id: int, *, store: RecordStore | None = None) -> OperationResult:
    """Soft-delete a sale and reverse its effects exactly once."""
    store = store or get_store()
    result = OperationResult(operation="delete_sale")

    sale = await store.get_by_id("sales", sale_id, include_deleted=True)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    result.record = sale

    if sale.deleted_at is not None or not await store.soft_delete("sales", sale.id):
        result.noop = True
        result.log_summary()
        return result

    tracked: set[int] = set()
    if sale.is_completed:
        steps = await _reversal_steps(sale, sale.line_items, store=store, result=result)
        tracked = {s.context["product_id"] for s in steps if s.name == "sell_item"}
        result.absorb(await run_compensations(steps), label="restore")

    for debt in await store.list("debts", sale_id=sale.id):
        try:
            await store.soft_delete("debts", debt.id)
            result.applied.append(f"soft_delete:debts:{debt.id}")
        except (NotFoundError, StoreError) as exc:
            result.record_failure("debts", debt.id, "soft_delete", exc)

    await refresh_tracked_stock(tracked, store=store, result=result)
    result.record = await store.get_by_id("sales", sale.id, include_deleted=True)
    result.log_summary()
    return result


async def get_sale(sale_id: int, *, store: RecordStore | None = None) -> Sale:
    store = store or get_store()
    sale = await store.get_by_id("sales", sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


async def list_sales(*, customer_id: int | None = None, status: str | None = None, store: RecordStore | None = None) -> list[Sale]:
    store = store or get_store()
    filters = {}
    if customer_id is not None:
        filters["customer_id"] = customer_id
    if status is not None:
        filters["status"] = require_choice(status, "status", SALE_STATUSES)
    return await store.list("sales", order_by=("-created_at",), **filters)
