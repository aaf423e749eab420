# Overview: Pytest coverage for trade-in swaps and their reversal.

import asyncio
from decimal import Decimal

import pytest

from stockrecon.models import InventoryItem, Product, Swap
from stockrecon.services.inventory_item_service import get_inventory_item_by_imei
from stockrecon.services.stock_service import resolve_stock
from stockrecon.services.swap_service import create_swap, delete_swap, update_swap
from stockrecon.validation import ConflictError, ValidationError

TRADE_IN_IMEI = "123456789012345"


def _stock(product, store):
    return asyncio.run(resolve_stock(product, store=store))


def _swap(product, **overrides):
    kwargs = dict(
        purchased_product_id=product.id,
        trade_in_imei=TRADE_IN_IMEI,
        trade_in_value="600.00",
        trade_in_product_name="Used iPhone 11",
        difference_paid="900.00",
    )
    kwargs.update(overrides)
    return create_swap(**kwargs)


class TestSwapLifecycle:

    def test_round_trip_tracked_purchase(self, store, db_session, phone):
        product, units = phone

        result = asyncio.run(_swap(product, store=store))
        assert result.ok
        swap = result.record
        assert swap.swap_number.startswith("SWAP-") and len(swap.swap_number) == 11
        assert swap.inventory_item_id == units[0].id
        assert _stock(product, store) == 4

        trade_in = asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store))
        assert trade_in.status == "in_stock"
        assert trade_in.condition == "used"
        assert f"Trade-in from swap #{swap.swap_number}." in trade_in.notes
        assert db_session.get(InventoryItem, units[0].id).status == "sold"

        deleted = asyncio.run(delete_swap(swap.id, store=store))
        assert deleted.ok
        assert deleted.skipped == []
        assert _stock(product, store) == 5
        assert db_session.get(InventoryItem, units[0].id).status == "in_stock"
        assert asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store)) is None

    def test_round_trip_plain_purchase(self, store, make_product):
        case = make_product("Phone case", price="50.00", stock=3)
        result = asyncio.run(_swap(case, trade_in_value="20.00", difference_paid="30.00", store=store))
        assert result.ok
        assert _stock(case, store) == 2

        asyncio.run(delete_swap(result.record.id, store=store))
        assert _stock(case, store) == 3

    def test_trade_in_product_created_and_counted(self, store, db_session, phone, app):
        product, _ = phone
        result = asyncio.run(_swap(product, store=store))
        trade_product = result.related["trade_in_product"]

        assert trade_product.name == "Used iPhone 11"
        assert trade_product.price == Decimal("600.00")
        assert trade_product.cost == Decimal("480.00")
        assert _stock(db_session.get(Product, trade_product.id), store) == 1

        asyncio.run(delete_swap(result.record.id, store=store))
        assert _stock(db_session.get(Product, trade_product.id), store) == 0

    def test_existing_trade_in_product_reused(self, store, phone, make_product):
        product, _ = phone
        existing = make_product("Used iPhone 11", stock=2)
        result = asyncio.run(_swap(product, store=store))
        assert result.record.trade_in_product_id == existing.id
        assert "trade_in_product" not in result.related
        assert _stock(existing, store) == 3

    def test_reregistered_imei_is_left_alone(self, store, db_session, phone):
        product, _ = phone
        swap = asyncio.run(_swap(product, store=store)).record

        trade_in = asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store))
        trade_in.notes = "Bought over the counter"
        db_session.commit()

        result = asyncio.run(delete_swap(swap.id, store=store))
        assert result.skipped == [f"trade_in:inventory_items:{TRADE_IN_IMEI}"]
        assert asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store)) is not None
        assert _stock(product, store) == 5

    def test_second_delete_is_noop(self, store, phone):
        product, _ = phone
        swap = asyncio.run(_swap(product, store=store)).record
        asyncio.run(delete_swap(swap.id, store=store))

        again = asyncio.run(delete_swap(swap.id, store=store))
        assert again.noop
        assert _stock(product, store) == 5

    def test_no_unit_available_reports_shortfall(self, store, make_product):
        empty = make_product("Pixel 8", price="1500.00", tracked=True)
        result = asyncio.run(_swap(empty, store=store))
        [shortfall] = result.shortfalls
        assert shortfall.missing == 1
        assert result.record.inventory_item_id is None
        assert asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store)) is not None


class TestSwapValidation:

    def test_difference_must_match(self, store, phone):
        product, _ = phone
        with pytest.raises(ValidationError):
            asyncio.run(_swap(product, difference_paid="800.00", store=store))

    def test_difference_within_tolerance(self, store, phone):
        product, _ = phone
        result = asyncio.run(_swap(product, difference_paid="900.01", store=store))
        assert result.record.difference_paid == Decimal("900.00")

    def test_trade_in_cannot_exceed_price(self, store, phone):
        product, _ = phone
        with pytest.raises(ValidationError):
            asyncio.run(_swap(product, trade_in_value="1600.00", difference_paid=None, store=store))

    def test_invalid_trade_in_imei(self, store, phone):
        product, _ = phone
        with pytest.raises(ValidationError):
            asyncio.run(_swap(product, trade_in_imei="12345", store=store))

    def test_live_trade_in_imei_conflicts(self, store, phone):
        product, units = phone
        with pytest.raises(ConflictError):
            asyncio.run(_swap(product, trade_in_imei=units[4].imei, store=store))

    def test_trade_in_product_name_required(self, store, phone):
        product, _ = phone
        with pytest.raises(ValidationError):
            asyncio.run(_swap(product, trade_in_product_name="  ", store=store))


class TestSwapUpdate:

    def test_only_bookkeeping_fields(self, store, phone):
        product, _ = phone
        swap = asyncio.run(_swap(product, store=store)).record

        updated = asyncio.run(update_swap(swap.id, updates={"notes": "Screen scratched"}, store=store))
        assert updated.record.notes == "Screen scratched"
        with pytest.raises(ValidationError):
            asyncio.run(update_swap(swap.id, updates={"trade_in_value": 1}, store=store))

    def test_pending_swap_completed_later_applies_and_reverses(self, store, make_product):
        case = make_product("Phone case", price="50.00", stock=5)
        pending = asyncio.run(_swap(
            case, trade_in_value="20.00", difference_paid="30.00", status="pending", store=store
        )).record
        assert _stock(case, store) == 5
        assert asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store)) is None

        completed = asyncio.run(update_swap(pending.id, updates={"status": "completed"}, store=store))
        assert completed.ok
        assert completed.record.status == "completed"
        assert _stock(case, store) == 4
        trade_in = asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store))
        assert f"Trade-in from swap #{pending.swap_number}." in trade_in.notes

        deleted = asyncio.run(delete_swap(pending.id, store=store))
        assert deleted.ok
        assert deleted.skipped == []
        assert _stock(case, store) == 5
        assert asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store)) is None

    def test_pending_swap_keeps_requested_unit_until_completed(self, store, db_session, phone):
        product, units = phone
        pending = asyncio.run(_swap(
            product, inventory_item_id=units[3].id, status="pending", store=store
        )).record
        assert pending.inventory_item_id == units[3].id
        assert db_session.get(InventoryItem, units[3].id).status == "in_stock"

        result = asyncio.run(update_swap(pending.id, updates={"status": "completed"}, store=store))
        assert result.record.inventory_item_id == units[3].id
        assert db_session.get(InventoryItem, units[3].id).status == "sold"
        assert _stock(product, store) == 4

    def test_completed_swap_cannot_be_cancelled(self, store, db_session, phone):
        product, units = phone
        swap = asyncio.run(_swap(product, store=store)).record

        with pytest.raises(ValidationError):
            asyncio.run(update_swap(swap.id, updates={"status": "cancelled"}, store=store))
        assert db_session.get(Swap, swap.id).status == "completed"

        asyncio.run(delete_swap(swap.id, store=store))
        assert _stock(product, store) == 5
        assert db_session.get(InventoryItem, units[0].id).status == "in_stock"
        assert asyncio.run(get_inventory_item_by_imei(TRADE_IN_IMEI, store=store)) is None

    def test_completing_with_taken_trade_in_imei_conflicts(self, store, make_product, make_units):
        case = make_product("Phone case", price="50.00", stock=5)
        pending = asyncio.run(_swap(
            case, trade_in_value="20.00", difference_paid="30.00", status="pending", store=store
        )).record
        tracked = make_product("Galaxy A05", tracked=True)
        [unit] = make_units(tracked, 1)
        unit.imei = TRADE_IN_IMEI
        store.session.commit()

        with pytest.raises(ConflictError):
            asyncio.run(update_swap(pending.id, updates={"status": "completed"}, store=store))
        assert _stock(case, store) == 5
