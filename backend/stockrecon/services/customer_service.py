# Overview: Customer master data and manual store-credit grants.

from __future__ import annotations

from ..models import Customer
from ..store import RecordStore, get_store
from ..validation import ValidationError, to_amount
from .credit_service import apply_credit, get_customer_or_404

CUSTOMER_MUTABLE_FIELDS = {"name", "phone", "email"}


def _clean(patch: dict) -> dict:
    fields = {k: v for k, v in patch.items() if k in CUSTOMER_MUTABLE_FIELDS}
    if "name" in fields:
        if not isinstance(fields["name"], str) or not fields["name"].strip():
            raise ValidationError("name is required")
        fields["name"] = fields["name"].strip()
    return fields


async def create_customer(*, patch: dict, store: RecordStore | None = None) -> Customer:
    store = store or get_store()
    fields = _clean(patch)
    if "name" not in fields:
        raise ValidationError("name is required")
    if patch.get("store_credit") is not None:
        fields["store_credit"] = to_amount(patch["store_credit"], "store_credit")
    return await store.create("customers", fields)


async def get_customer(customer_id: int, *, store: RecordStore | None = None) -> Customer:
    store = store or get_store()
    return await get_customer_or_404(customer_id, store=store)


async def update_customer(customer_id: int, *, patch: dict, store: RecordStore | None = None) -> Customer:
    """Edit contact fields. store_credit only moves through the credit ledger."""
    store = store or get_store()
    if "store_credit" in patch:
        raise ValidationError("store_credit is changed through credit grants, not edits")
    customer = await get_customer_or_404(customer_id, store=store)
    return await store.update(
        "customers", customer.id, _clean(patch), expect={"version_id": customer.version_id}
    )


async def list_customers(*, store: RecordStore | None = None) -> list[Customer]:
    store = store or get_store()
    return await store.list("customers", order_by=("name",))


async def add_store_credit(customer_id: int, amount, *, store: RecordStore | None = None) -> Customer:
    """Manual grant (goodwill, deposit). Must be positive."""
    store = store or get_store()
    credit = to_amount(amount, "amount")
    if credit <= 0:
        raise ValidationError("amount must be greater than 0")
    return await apply_credit(customer_id, credit, store=store)
