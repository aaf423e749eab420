# Overview: Customer debts and their append-only payments.

"""
Debt Service

paid only grows: every payment is a new DebtPayment row followed by a
version-guarded `paid += amount` on the debt. The debt flips to `paid`
once paid >= amount. Payments cannot be deleted; a debt is only reversed
by soft-deleting it (done automatically when its sale is deleted).
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from ..errors import NotFoundError
from ..models import Debt, DebtPayment
from ..models.customers import DEBT_STATUS_ACTIVE, DEBT_STATUS_PAID
from ..store import RecordStore, StoreError, get_store
from ..validation import CENT, ValidationError, require_choice, to_amount
from stockrecon.time_utils import utcnow
from .credit_service import get_customer_or_404
from .saga import OperationResult

logger = logging.getLogger(__name__)

DEBT_STATUSES = (DEBT_STATUS_ACTIVE, DEBT_STATUS_PAID)


async def get_debt(debt_id: int, *, store: RecordStore | None = None) -> Debt:
    store = store or get_store()
    debt = await store.get_by_id("debts", debt_id)
    if debt is None:
        raise NotFoundError(f"Debt {debt_id} not found", details={"debt_id": debt_id})
    return debt


async def create_debt(
    *,
    amount,
    customer_id: int | None = None,
    sale_id: int | None = None,
    description: str | None = None,
    store: RecordStore | None = None,
) -> Debt:
    store = store or get_store()
    total = to_amount(amount, "amount")
    if total <= 0:
        raise ValidationError("amount must be greater than 0")
    if customer_id:
        await get_customer_or_404(customer_id, store=store)
    if sale_id is not None and await store.get_by_id("sales", sale_id) is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})

    return await store.create("debts", {
        "customer_id": customer_id,
        "sale_id": sale_id,
        "amount": total,
        "paid": Decimal("0"),
        "status": DEBT_STATUS_ACTIVE,
        "description": description,
    })


async def add_debt_payment(
    debt_id: int,
    amount,
    *,
    method: str | None = None,
    date: datetime | None = None,
    store: RecordStore | None = None,
) -> OperationResult:
    """
    Record a payment and roll it into the debt.

    The payment row is written first. If the debt update then fails the
    payment still exists and the failure is reported for reconciliation.
    """
    store = store or get_store()
    result = OperationResult(operation="add_debt_payment")

    paid_now = to_amount(amount, "amount")
    if paid_now <= 0:
        raise ValidationError("amount must be greater than 0")
    debt = await get_debt(debt_id, store=store)
    result.record = debt

    payment = await store.create("debt_payments", {
        "debt_id": debt.id,
        "amount": paid_now,
        "date": date or utcnow(),
        "method": method,
    })
    result.related["payment"] = payment
    result.applied.append(f"create:debt_payments:{payment.id}")

    new_paid = (Decimal(str(debt.paid or 0)) + paid_now).quantize(CENT)
    status = DEBT_STATUS_PAID if new_paid >= Decimal(str(debt.amount)) else DEBT_STATUS_ACTIVE
    try:
        result.record = await store.update(
            "debts",
            debt.id,
            {"paid": new_paid, "status": status},
            expect={"version_id": debt.version_id},
        )
        result.applied.append(f"apply_payment:debts:{debt.id}")
    except (NotFoundError, StoreError) as exc:
        result.record_failure("debts", debt.id, "apply_payment", exc)

    result.log_summary()
    return result


async def list_debt_payments(debt_id: int, *, store: RecordStore | None = None) -> list[DebtPayment]:
    store = store or get_store()
    await get_debt(debt_id, store=store)
    return await store.list("debt_payments", debt_id=debt_id, order_by=("date",))


async def list_debts(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    store: RecordStore | None = None,
) -> list[Debt]:
    store = store or get_store()
    filters = {}
    if customer_id is not None:
        filters["customer_id"] = customer_id
    if status is not None:
        filters["status"] = require_choice(status, "status", DEBT_STATUSES)
    return await store.list("debts", order_by=("-created_at",), **filters)


async def delete_debt(debt_id: int, *, store: RecordStore | None = None) -> bool:
    store = store or get_store()
    return await store.soft_delete("debts", debt_id)
