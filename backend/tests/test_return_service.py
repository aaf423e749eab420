# Overview: Pytest coverage for returns, exchange notes and once-only store credit.

import asyncio
import json
import re
from decimal import Decimal

import pytest

from stockrecon.errors import NotFoundError
from stockrecon.models import Customer, InventoryItem
from stockrecon.services.return_service import create_return, delete_return, update_return_status
from stockrecon.services.sales_service import create_sale
from stockrecon.validation import ValidationError


@pytest.fixture
def sold(store, phone, make_customer):
    product, units = phone
    customer = make_customer(store_credit="10.00")
    sale = asyncio.run(create_sale(
        items=[{"productId": product.id, "quantity": 1, "unitPrice": 1500}],
        customer_id=customer.id,
        store=store,
    )).record
    return product, units, customer, sale


def _items(product):
    return [{"productId": product.id, "productName": product.name, "quantity": 1, "unitPrice": 1500, "total": 1500}]


class TestCreateReturn:

    def test_additive_only(self, store, db_session, sold):
        product, units, customer, sale = sold
        result = asyncio.run(create_return(items=_items(product), sale_id=sale.id, store=store))

        ret = result.record
        assert result.ok
        assert re.fullmatch(r"RET-\d{8}-[A-Z0-9]{6}", ret.return_number)
        assert ret.status == "pending"
        assert ret.customer_id == customer.id
        assert ret.refund_amount == Decimal("1500.00")
        assert db_session.get(InventoryItem, units[0].id).status == "sold"

    def test_exchange_items_recorded_in_notes(self, store, sold):
        product, _, _, sale = sold
        result = asyncio.run(create_return(
            items=_items(product),
            sale_id=sale.id,
            refund_method="exchange",
            notes="Wrong colour",
            exchange_items=[{"productId": product.id, "quantity": 1}],
            store=store,
        ))
        notes = result.record.notes
        head, block = notes.split("\n\nEXCHANGE ITEMS:\n")
        assert head == "Wrong colour"
        assert json.loads(block)[0]["productId"] == product.id

    def test_store_credit_requires_customer(self, store, phone):
        product, _ = phone
        with pytest.raises(ValidationError):
            asyncio.run(create_return(items=_items(product), refund_method="store_credit", store=store))

    def test_unknown_sale(self, store, phone):
        product, _ = phone
        with pytest.raises(NotFoundError):
            asyncio.run(create_return(items=_items(product), sale_id=999, store=store))

    @pytest.mark.parametrize("field", ["unitPrice", "total"])
    def test_oversized_line_amount_rejected(self, store, phone, field):
        product, _ = phone
        items = _items(product)
        items[0][field] = "1e30"
        with pytest.raises(ValidationError, match=rf"items\[0\].{field} is too large"):
            asyncio.run(create_return(items=items, store=store))


class TestStoreCreditRefund:

    def test_credited_once_on_completion(self, store, db_session, sold):
        product, _, customer, sale = sold
        ret = asyncio.run(create_return(
            items=_items(product), sale_id=sale.id, refund_method="store_credit",
            refund_amount="200.00", store=store,
        )).record
        assert db_session.get(Customer, customer.id).store_credit == Decimal("10.00")

        result = asyncio.run(update_return_status(ret.id, "completed", processed_by="u-1", store=store))
        assert result.ok
        assert result.record.credited_at is not None
        assert result.record.processed_by == "u-1"
        assert db_session.get(Customer, customer.id).store_credit == Decimal("210.00")

        asyncio.run(update_return_status(ret.id, "approved", store=store))
        asyncio.run(update_return_status(ret.id, "completed", store=store))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("210.00")

    def test_created_completed_credits_immediately(self, store, db_session, sold):
        product, _, customer, sale = sold
        asyncio.run(create_return(
            items=_items(product), sale_id=sale.id, refund_method="store_credit",
            refund_amount="40.00", status="completed", store=store,
        ))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("50.00")

    def test_cash_refund_never_credits(self, store, db_session, sold):
        product, _, customer, sale = sold
        ret = asyncio.run(create_return(items=_items(product), sale_id=sale.id, store=store)).record
        asyncio.run(update_return_status(ret.id, "completed", store=store))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("10.00")

    def test_failed_credit_names_repair(self, store, db_session, sold):
        product, _, customer, sale = sold
        ret = asyncio.run(create_return(
            items=_items(product), sale_id=sale.id, refund_method="store_credit",
            refund_amount="25.00", store=store,
        )).record
        asyncio.run(store.soft_delete("customers", customer.id))

        result = asyncio.run(update_return_status(ret.id, "completed", store=store))
        assert not result.ok
        assert result.record.credited_at is not None
        [failure] = result.failures
        assert failure.action == "store_credit"
        assert "25.00 was not posted" in failure.error
        assert "add_store_credit" in failure.error

        again = asyncio.run(update_return_status(ret.id, "completed", store=store))
        assert again.ok
        assert db_session.get(Customer, customer.id).store_credit == Decimal("10.00")


class TestDeleteReturn:

    def test_soft_delete_then_noop(self, store, sold):
        product, _, _, sale = sold
        ret = asyncio.run(create_return(items=_items(product), sale_id=sale.id, store=store)).record

        first = asyncio.run(delete_return(ret.id, store=store))
        assert not first.noop
        assert first.record.deleted_at is not None
        assert asyncio.run(delete_return(ret.id, store=store)).noop
