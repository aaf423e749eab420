# Overview: Customer returns; additive records plus a once-only store-credit refund.

"""
Return Service

Creating a return never moves inventory. Whether a returned handset is
resellable or defective is an operator's call, made afterwards through
update_inventory_item. For `exchange` refunds the replacement items are
appended to the notes ("EXCHANGE ITEMS:" followed by their JSON) for that
manual reconciliation.

STORE CREDIT:
A return refunded as `store_credit` for a known customer credits
refund_amount when it first reaches `completed`. `credited_at` is claimed
with a conditional write before the ledger moves, so the credit is posted
at most once however often the status is set.
A ledger failure after the claim is reported, not retried; see
_post_store_credit for the repair.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import replace
from decimal import Decimal

from ..errors import NotFoundError
from ..line_items import SaleItem, encode_line_items
from ..models import Return
from ..models.sales import (
    REFUND_METHODS,
    RETURN_STATUSES,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_PENDING,
)
from ..store import RecordStore, StaleWriteError, StoreError, get_store
from ..validation import CENT, ValidationError, require_choice, to_amount
from stockrecon.time_utils import day_stamp, utcnow
from .credit_service import apply_credit, get_customer_or_404
from .saga import OperationResult

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


async def _next_return_number(*, store: RecordStore) -> str:
    today = day_stamp()
    while True:
        suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
        number = f"RET-{today}-{suffix}"
        if not await store.count("returns", return_number=number, include_deleted=True):
            return number


def _coerce_return_items(raw) -> list[SaleItem]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")
    items = []
    for index, entry in enumerate(raw):
        item = entry if isinstance(entry, SaleItem) else SaleItem.from_dict(entry)
        if item.product_id is None:
            raise ValidationError(f"items[{index}].productId is required")
        if item.quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be positive")
        unit_price = to_amount(item.unit_price, f"items[{index}].unitPrice")
        total = to_amount(item.total, f"items[{index}].total")
        items.append(replace(item, unit_price=unit_price, total=total))
    return items


async def _post_store_credit(ret: Return, *, store: RecordStore, result: OperationResult) -> Return:
    """
    Claim credited_at, then move the customer's balance.

    The claim lands first. If the ledger write then fails the return stays
    marked as credited with nothing posted, and a later completion will not
    retry it. The failure entry names the amount; the operator repairs it by
    granting that amount with add_store_credit
    (POST /api/customers/<id>/store-credit).
    """
    if ret.refund_method != "store_credit" or not ret.customer_id:
        return ret
    amount = Decimal(str(ret.refund_amount or 0)).quantize(CENT)
    if amount <= 0 or ret.credited_at is not None:
        return ret

    try:
        ret = await store.update("returns", ret.id, {"credited_at": utcnow()}, expect={"credited_at": None})
    except StaleWriteError:
        logger.info("Return %s already credited", ret.return_number)
        return ret

    try:
        await apply_credit(ret.customer_id, amount, store=store)
        result.applied.append(f"store_credit:apply:customers:{ret.customer_id}")
    except (NotFoundError, StoreError) as exc:
        result.record_failure(
            "customers",
            ret.customer_id,
            "store_credit",
            f"{exc}; return {ret.return_number} is marked credited but {amount} was not posted, "
            f"grant it with add_store_credit to repair",
        )
    return ret


async def create_return(
    *,
    items,
    sale_id: int | None = None,
    customer_id: int | None = None,
    customer_name: str | None = None,
    subtotal=None,
    tax=None,
    total=None,
    refund_amount=None,
    refund_method: str = "cash",
    status: str = RETURN_STATUS_PENDING,
    processed_by: str | None = None,
    notes: str | None = None,
    exchange_items=None,
    store: RecordStore | None = None,
) -> OperationResult:
    store = store or get_store()
    result = OperationResult(operation="create_return")

    line_items = _coerce_return_items(items)
    require_choice(refund_method, "refund_method", REFUND_METHODS)
    require_choice(status, "status", RETURN_STATUSES)

    if sale_id is not None:
        sale = await store.get_by_id("sales", sale_id)
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        customer_id = customer_id or sale.customer_id
        customer_name = customer_name or sale.customer_name
    if customer_id:
        customer = await get_customer_or_404(customer_id, store=store)
        customer_name = customer_name or customer.name

    if subtotal is None:
        subtotal = sum((item.total for item in line_items), Decimal("0"))
    subtotal = to_amount(subtotal, "subtotal")
    tax = to_amount(tax or 0, "tax")
    total = to_amount(total, "total") if total is not None else subtotal + tax
    refund = to_amount(refund_amount, "refund_amount") if refund_amount is not None else total
    if refund_method == "store_credit" and not customer_id:
        raise ValidationError("store_credit refunds require a customer")

    if refund_method == "exchange" and exchange_items:
        block = "EXCHANGE ITEMS:\n" + encode_line_items(_coerce_return_items(exchange_items))
        notes = f"{notes}\n\n{block}" if notes else block

    ret = await store.create("returns", {
        "return_number": await _next_return_number(store=store),
        "sale_id": sale_id,
        "customer_id": customer_id,
        "customer_name": customer_name,
        "items": line_items,
        "subtotal": subtotal,
        "tax": tax,
        "total": total,
        "refund_amount": refund,
        "refund_method": refund_method,
        "status": status,
        "processed_by": processed_by,
        "notes": notes,
    })
    result.record = ret

    if status == RETURN_STATUS_COMPLETED:
        result.record = await _post_store_credit(ret, store=store, result=result)

    result.log_summary()
    return result


async def update_return_status(
    return_id: int,
    status: str,
    *,
    processed_by: str | None = None,
    store: RecordStore | None = None,
) -> OperationResult:
    store = store or get_store()
    result = OperationResult(operation="update_return_status")
    require_choice(status, "status", RETURN_STATUSES)

    ret = await get_return(return_id, store=store)
    fields = {"status": status}
    if processed_by is not None:
        fields["processed_by"] = processed_by
    ret = await store.update("returns", ret.id, fields)
    result.record = ret

    if status == RETURN_STATUS_COMPLETED:
        result.record = await _post_store_credit(ret, store=store, result=result)

    result.log_summary()
    return result


async def delete_return(return_id: int, *, store: RecordStore | None = None) -> OperationResult:
    """Soft delete. A credit already posted stays with the customer."""
    store = store or get_store()
    result = OperationResult(operation="delete_return")
    ret = await store.get_by_id("returns", return_id, include_deleted=True)
    if ret is None:
        raise NotFoundError(f"Return {return_id} not found", details={"return_id": return_id})
    result.noop = not await store.soft_delete("returns", ret.id)
    result.record = await store.get_by_id("returns", ret.id, include_deleted=True)
    result.log_summary()
    return result


async def get_return(return_id: int, *, store: RecordStore | None = None) -> Return:
    store = store or get_store()
    ret = await store.get_by_id("returns", return_id)
    if ret is None:
        raise NotFoundError(f"Return {return_id} not found", details={"return_id": return_id})
    return ret


async def list_returns(*, sale_id: int | None = None, status: str | None = None, store: RecordStore | None = None) -> list[Return]:
    store = store or get_store()
    filters = {}
    if sale_id is not None:
        filters["sale_id"] = sale_id
    if status is not None:
        filters["status"] = require_choice(status, "status", RETURN_STATUSES)
    return await store.list("returns", order_by=("-created_at",), **filters)
