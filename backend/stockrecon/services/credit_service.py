# Overview: Customer store-credit ledger and recovery of applied credit from sale notes.

"""
Credit Ledger

apply_credit(customer_id, delta) moves a customer's signed store_credit.
Negative deltas consume credit at sale time, positive deltas restore it on
sale deletion or grant it on store-credit returns.

The ledger does not enforce a floor. Callers validate that a customer has
enough credit before consuming it (see ensure_credit_available).

APPLIED-CREDIT NOTE:
Sales record consumed credit in their notes as "Credit: <label> <amount>"
(label from CREDIT_CURRENCY_LABEL, "NLe" by default). On deletion the amount
is recovered from that note; a sale paid by `credit` with no such note
restores its full total.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..errors import NotFoundError
from ..models import Customer, Sale
from ..store import RecordStore, get_store
from ..validation import ValidationError, CENT
from .saga import Step

DEFAULT_CURRENCY_LABEL = "NLe"


def currency_label() -> str:
    return current_app.config.get("CREDIT_CURRENCY_LABEL", DEFAULT_CURRENCY_LABEL)


def credit_note(amount: Decimal, *, cash: Decimal | None = None, label: str | None = None) -> str:
    """Sale note text, e.g. `Credit: NLe 40.00. Cash: NLe 60.00` or `Credit: NLe 100.00 (Fully paid)`."""
    label = label or currency_label()
    note = f"Credit: {label} {amount:,.2f}"
    if cash and cash > 0:
        return f"{note}. Cash: {label} {cash:,.2f}"
    return f"{note} (Fully paid)"


def parse_credit_from_notes(notes: str | None, label: str | None = None) -> Decimal | None:
    """Amount from the first "Credit: <label> <amount>" in notes, or None."""
    if not notes:
        return None
    label = label or currency_label()
    match = re.search(rf"Credit: {re.escape(label)} ([\d,]+(?:\.\d+)?)", notes)
    if not match:
        return None
    try:
        return Decimal(match.group(1).replace(",", "")).quantize(CENT)
    except InvalidOperation:
        return None


def credit_to_restore(sale: Sale, label: str | None = None) -> Decimal:
    """
    Store credit that deleting `sale` must give back. Never negative.

    The note wins over the sale total: a sale edited after checkout still
    restores what was actually consumed.
    """
    if not sale.customer_id:
        return Decimal("0")
    amount = parse_credit_from_notes(sale.notes, label)
    if not amount and sale.payment_method == "credit":
        amount = Decimal(str(sale.total or 0))
    if not amount or amount < 0:
        return Decimal("0")
    return amount.quantize(CENT)


async def get_customer_or_404(customer_id: int, *, store: RecordStore) -> Customer:
    customer = await store.get_by_id("customers", customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


async def ensure_credit_available(customer_id: int, amount: Decimal, *, store: RecordStore | None = None) -> Customer:
    store = store or get_store()
    customer = await get_customer_or_404(customer_id, store=store)
    available = Decimal(str(customer.store_credit or 0))
    if amount > available:
        raise ValidationError(
            f"Customer {customer_id} has {available:.2f} store credit; {amount:.2f} requested"
        )
    return customer


async def apply_credit(customer_id: int, delta: Decimal, *, store: RecordStore | None = None) -> Customer:
    """
    Add `delta` (signed) to the customer's store credit.

    Point read + write guarded on version_id; a concurrent change raises
    StaleWriteError for the caller to report.
    """
    store = store or get_store()
    customer = await get_customer_or_404(customer_id, store=store)
    current = Decimal(str(customer.store_credit or 0))
    return await store.update(
        "customers",
        customer_id,
        {"store_credit": (current + Decimal(delta)).quantize(CENT)},
        expect={"version_id": customer.version_id},
    )


def credit_step(customer_id: int, amount: Decimal, *, store: RecordStore) -> Step:
    """Consume `amount` of store credit; the compensation gives it back."""
    async def _consume():
        return await apply_credit(customer_id, -amount, store=store)

    async def _restore():
        return await apply_credit(customer_id, amount, store=store)

    return Step(
        name="store_credit",
        entity="customers",
        entity_id=customer_id,
        action=_consume,
        compensation=_restore,
        context={"amount": str(amount)},
    )
