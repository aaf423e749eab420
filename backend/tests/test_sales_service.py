# Overview: Pytest coverage for sale creation, editing and deletion with their compensations.

import asyncio
from decimal import Decimal

import pytest

from stockrecon.errors import AllocationMismatch, NotFoundError
from stockrecon.models import Customer, Debt, InventoryItem, Product
from stockrecon.services.sales_service import create_sale, delete_sale, get_sale, update_sale
from stockrecon.services.stock_service import resolve_stock
from stockrecon.store import RecordStore, StoreError
from stockrecon.validation import ValidationError


def _stock(product, store):
    return asyncio.run(resolve_stock(product, store=store))


def _line(product, quantity, **extra):
    line = {"productId": product.id, "productName": product.name, "quantity": quantity, "unitPrice": 10}
    line.update(extra)
    return line


class TestSaleLifecycle:
    """Create then delete returns every unit and counter to where it was."""

    def test_tracked_round_trip(self, store, db_session, phone, make_customer):
        product, units = phone
        customer = make_customer()

        result = asyncio.run(create_sale(items=[_line(product, 2)], customer_id=customer.id, store=store))
        assert result.ok
        sale = result.record
        assert _stock(product, store) == 3

        sold = [db_session.get(InventoryItem, u.id) for u in units[:2]]
        assert all(u.status == "sold" for u in sold)
        assert all(u.sale_id == sale.id and u.customer_id == customer.id for u in sold)
        assert all(u.sold_date is not None for u in sold)
        assert sale.line_items[0].inventory_item_ids == [units[0].id, units[1].id]
        assert db_session.get(Product, product.id).stock == 3

        deleted = asyncio.run(delete_sale(sale.id, store=store))
        assert deleted.ok and not deleted.noop
        assert _stock(product, store) == 5
        for unit in units[:2]:
            restored = db_session.get(InventoryItem, unit.id)
            assert restored.status == "in_stock"
            assert restored.sale_id is None
            assert restored.customer_id is None
            assert restored.sold_date is None
        assert db_session.get(Product, product.id).stock == 5

    def test_plain_round_trip(self, store, make_product):
        cable = make_product("USB-C cable", stock=10)
        result = asyncio.run(create_sale(items=[_line(cable, 3), _line(cable, 1)], store=store))
        assert result.ok
        assert _stock(cable, store) == 6

        asyncio.run(delete_sale(result.record.id, store=store))
        assert _stock(cable, store) == 10

    def test_plain_stock_floors_at_zero(self, store, make_product):
        cable = make_product("USB-C cable", stock=1)
        asyncio.run(create_sale(items=[_line(cable, 4)], store=store))
        assert _stock(cable, store) == 0

    def test_pending_sale_has_no_effects(self, store, phone, make_product):
        product, _ = phone
        cable = make_product(stock=4)
        result = asyncio.run(create_sale(
            items=[_line(product, 1), _line(cable, 1)], status="pending", store=store
        ))
        assert result.ok
        assert _stock(product, store) == 5
        assert _stock(cable, store) == 4

        asyncio.run(delete_sale(result.record.id, store=store))
        assert _stock(product, store) == 5
        assert _stock(cable, store) == 4

    def test_explicit_imeis_sold(self, store, db_session, phone):
        product, units = phone
        result = asyncio.run(create_sale(
            items=[_line(product, 1, imeis=[units[3].imei])], store=store
        ))
        assert result.ok
        assert db_session.get(InventoryItem, units[3].id).status == "sold"
        assert db_session.get(InventoryItem, units[0].id).status == "in_stock"


class TestSaleShortfalls:

    def test_partial_allocation_reports_shortfall(self, store, db_session, make_product, make_units):
        product = make_product("Pixel 7", tracked=True)
        units = make_units(product, 2)

        result = asyncio.run(create_sale(items=[_line(product, 3)], store=store))
        assert not result.ok
        assert result.failures == []
        [shortfall] = result.shortfalls
        assert shortfall.requested == 3
        assert shortfall.allocated == 2
        assert shortfall.missing == 1
        assert _stock(product, store) == 0
        assert sorted(result.record.line_items[0].inventory_item_ids) == sorted(u.id for u in units)

    def test_two_lines_never_share_a_unit(self, store, db_session, make_product, make_units):
        product = make_product("Pixel 7", tracked=True)
        make_units(product, 3)

        result = asyncio.run(create_sale(items=[_line(product, 2), _line(product, 2)], store=store))
        first, second = result.record.line_items
        assert len(first.inventory_item_ids) == 2
        assert len(second.inventory_item_ids) == 1
        assert not set(first.inventory_item_ids) & set(second.inventory_item_ids)
        assert result.shortfalls[0].missing == 1

    def test_explicit_refs_all_invalid_abort_before_writes(self, store, db_session, phone):
        product, units = phone
        units[0].status = "sold"
        db_session.commit()

        with pytest.raises(AllocationMismatch):
            asyncio.run(create_sale(items=[_line(product, 1, inventoryItemIds=[units[0].id])], store=store))
        assert asyncio.run(store.count("sales")) == 0

    def test_lost_guard_race_becomes_shortfall(self, db_session, phone):
        """A unit grabbed by another writer between allocation and sell is dropped, not re-picked."""
        product, units = phone
        stolen = units[0].id

        class RacingStore(RecordStore):
            raced = False

            async def update(self, entity, record_id, fields, *, expect=None):
                if entity == "inventory_items" and record_id == stolen and not self.raced:
                    self.raced = True
                    await RecordStore.update(self, entity, record_id, {"status": "sold"})
                return await super().update(entity, record_id, fields, expect=expect)

        store = RacingStore()
        result = asyncio.run(create_sale(items=[_line(product, 2)], store=store))

        [shortfall] = result.shortfalls
        assert shortfall.allocated == 1
        assert shortfall.missing == 1
        assert result.failures == []
        assert result.record.line_items[0].inventory_item_ids == [units[1].id]
        assert db_session.get(InventoryItem, stolen).sale_id is None
        assert db_session.get(InventoryItem, units[2].id).status == "in_stock"

    def test_failed_sub_write_reported_and_siblings_kept(self, db_session, phone, make_product):
        product, _ = phone
        cable = make_product("USB-C cable", stock=10)

        class FailingCounterStore(RecordStore):
            async def update(self, entity, record_id, fields, *, expect=None):
                if entity == "products" and "stock" in fields and record_id == cable.id:
                    raise StoreError("connection reset", entity=entity, entity_id=record_id)
                return await super().update(entity, record_id, fields, expect=expect)

        store = FailingCounterStore()
        result = asyncio.run(create_sale(items=[_line(product, 1), _line(cable, 2)], store=store))

        assert not result.ok
        [failure] = result.failures
        assert failure.entity == "products"
        assert failure.entity_id == cable.id
        assert "connection reset" in failure.error
        assert _stock(product, store) == 4
        assert _stock(cable, store) == 10
        assert result.to_dict()["failures"][0]["entity"] == "products"


class TestSaleValidation:

    def test_unknown_product(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(create_sale(items=[{"productId": 404, "quantity": 1}], store=store))

    def test_empty_items(self, store):
        with pytest.raises(ValidationError):
            asyncio.run(create_sale(items=[], store=store))

    def test_non_positive_quantity(self, store, make_product):
        cable = make_product(stock=3)
        with pytest.raises(ValidationError):
            asyncio.run(create_sale(items=[_line(cable, 0)], store=store))

    def test_bad_payment_method(self, store, make_product):
        cable = make_product(stock=3)
        with pytest.raises(ValidationError):
            asyncio.run(create_sale(items=[_line(cable, 1)], payment_method="barter", store=store))

    def test_credit_beyond_balance(self, store, make_product, make_customer):
        cable = make_product(stock=3)
        customer = make_customer(store_credit="5.00")
        with pytest.raises(ValidationError):
            asyncio.run(create_sale(
                items=[_line(cable, 1)], customer_id=customer.id, credit_applied="8.00", store=store
            ))

    @pytest.mark.parametrize("value", ["1e30", "-5"])
    def test_out_of_range_unit_price(self, store, make_product, value):
        cable = make_product(stock=3)
        with pytest.raises(ValidationError, match=r"items\[0\]\.unitPrice"):
            asyncio.run(create_sale(items=[_line(cable, 1, unitPrice=value)], store=store))

    def test_oversized_line_total(self, store, make_product):
        cable = make_product(stock=3)
        with pytest.raises(ValidationError, match=r"items\[0\]\.total is too large"):
            asyncio.run(create_sale(items=[_line(cable, 2, unitPrice="9000000000")], store=store))
        assert _stock(cable, store) == 3


class TestSaleCredit:

    def test_credit_consumed_and_noted(self, store, db_session, make_product, make_customer):
        cable = make_product(stock=3)
        customer = make_customer(store_credit="50.00")

        result = asyncio.run(create_sale(
            items=[_line(cable, 2)], total="20.00", customer_id=customer.id,
            credit_applied="15.00", notes="Walk-in", store=store,
        ))
        assert result.ok
        assert db_session.get(Customer, customer.id).store_credit == Decimal("35.00")
        assert result.record.notes == "Walk-in\nCredit: NLe 15.00. Cash: NLe 5.00"

        asyncio.run(delete_sale(result.record.id, store=store))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("50.00")

    def test_restores_noted_amount_not_edited_total(self, store, db_session, make_product, make_customer):
        cable = make_product(stock=3)
        customer = make_customer(store_credit="0.00")
        sale = asyncio.run(store.create("sales", {
            "customer_id": customer.id,
            "items": [_line(cable, 1)],
            "total": Decimal("175.00"),
            "payment_method": "credit",
            "status": "completed",
            "notes": "Credit: NLe 150.00 (Fully paid)",
        }))

        asyncio.run(delete_sale(sale.id, store=store))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("150.00")

    def test_credit_payment_without_note_restores_total(self, store, db_session, make_product, make_customer):
        cable = make_product(stock=3)
        customer = make_customer()
        sale = asyncio.run(store.create("sales", {
            "customer_id": customer.id,
            "items": [_line(cable, 1)],
            "total": Decimal("1250.50"),
            "payment_method": "credit",
        }))

        asyncio.run(delete_sale(sale.id, store=store))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("1250.50")

    def test_thousands_separator_in_note(self, store, db_session, make_product, make_customer):
        cable = make_product(stock=3)
        customer = make_customer()
        sale = asyncio.run(store.create("sales", {
            "customer_id": customer.id,
            "items": [_line(cable, 1)],
            "total": Decimal("2000.00"),
            "payment_method": "cash",
            "notes": "Credit: NLe 1,200.00. Cash: NLe 800.00",
        }))

        asyncio.run(delete_sale(sale.id, store=store))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("1200.00")


class TestSaleDelete:

    def test_second_delete_is_noop(self, store, db_session, make_product, make_customer):
        cable = make_product(stock=5)
        customer = make_customer()
        result = asyncio.run(create_sale(
            items=[_line(cable, 2)], customer_id=customer.id, payment_method="credit",
            total="0.00", store=store,
        ))
        sale_id = result.record.id

        first = asyncio.run(delete_sale(sale_id, store=store))
        stamp = first.record.deleted_at
        second = asyncio.run(delete_sale(sale_id, store=store))

        assert second.noop
        assert second.applied == []
        assert second.record.deleted_at == stamp
        assert _stock(cable, store) == 5

    def test_missing_sale(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(delete_sale(999, store=store))

    def test_linked_debts_soft_deleted(self, store, db_session, make_product, make_customer):
        cable = make_product(stock=5)
        customer = make_customer()
        sale = asyncio.run(create_sale(items=[_line(cable, 1)], customer_id=customer.id, store=store)).record
        debt = asyncio.run(store.create("debts", {"customer_id": customer.id, "sale_id": sale.id, "amount": 10}))

        result = asyncio.run(delete_sale(sale.id, store=store))
        assert f"soft_delete:debts:{debt.id}" in result.applied
        assert db_session.get(Debt, debt.id).deleted_at is not None

    def test_units_since_marked_defective_are_reported(self, store, db_session, phone):
        product, units = phone
        sale = asyncio.run(create_sale(items=[_line(product, 1)], store=store)).record
        db_session.get(InventoryItem, units[0].id).status = "defective"
        db_session.commit()

        result = asyncio.run(delete_sale(sale.id, store=store))
        [failure] = result.failures
        assert failure.entity == "inventory_items"
        assert failure.entity_id == units[0].id
        assert db_session.get(InventoryItem, units[0].id).status == "defective"


class TestSaleUpdate:

    def test_plain_items_reversed_then_reapplied(self, store, make_product):
        cable = make_product("Cable", stock=10)
        case = make_product("Case", stock=10)
        sale = asyncio.run(create_sale(items=[_line(cable, 3)], store=store)).record

        result = asyncio.run(update_sale(sale.id, updates={"items": [_line(case, 2)]}, store=store))
        assert result.ok
        assert _stock(cable, store) == 10
        assert _stock(case, store) == 8

    def test_held_units_kept_on_edit(self, store, db_session, phone, make_product):
        product, units = phone
        cable = make_product("Cable", stock=10)
        sale = asyncio.run(create_sale(items=[_line(product, 2)], store=store)).record

        result = asyncio.run(update_sale(
            sale.id, updates={"items": [_line(product, 2), _line(cable, 1)]}, store=store
        ))
        assert result.ok
        assert _stock(product, store) == 3
        assert _stock(cable, store) == 9
        assert sorted(result.record.line_items[0].inventory_item_ids) == [units[0].id, units[1].id]

    def test_growing_quantity_allocates_remainder(self, store, db_session, phone):
        product, units = phone
        sale = asyncio.run(create_sale(items=[_line(product, 1)], store=store)).record

        result = asyncio.run(update_sale(sale.id, updates={"items": [_line(product, 3)]}, store=store))
        assert _stock(product, store) == 2
        assert result.record.line_items[0].inventory_item_ids == [u.id for u in units[:3]]

    def test_dropped_units_stay_sold(self, store, db_session, phone):
        product, units = phone
        sale = asyncio.run(create_sale(items=[_line(product, 2)], store=store)).record

        asyncio.run(update_sale(sale.id, updates={"items": [_line(product, 1)]}, store=store))
        assert _stock(product, store) == 3
        assert db_session.get(InventoryItem, units[1].id).status == "sold"

    def test_pending_to_completed_applies_items(self, store, make_product):
        cable = make_product(stock=4)
        sale = asyncio.run(create_sale(items=[_line(cable, 1)], status="pending", store=store)).record

        asyncio.run(update_sale(sale.id, updates={"status": "completed"}, store=store))
        assert _stock(cable, store) == 3

    def test_unknown_field_rejected(self, store, make_product):
        cable = make_product(stock=4)
        sale = asyncio.run(create_sale(items=[_line(cable, 1)], store=store)).record
        with pytest.raises(ValidationError):
            asyncio.run(update_sale(sale.id, updates={"deleted_at": None}, store=store))

    def test_stored_lines_round_trip_through_edit(self, store, db_session, phone):
        product, units = phone
        sale = asyncio.run(create_sale(items=[_line(product, 2)], store=store)).record
        stored = [item.to_dict() for item in asyncio.run(get_sale(sale.id, store=store)).line_items]
        assert stored[0]["imeis"] and stored[0]["inventoryItemIds"]
        stored[0]["unitPrice"] = 12

        result = asyncio.run(update_sale(sale.id, updates={"items": stored}, store=store))
        assert result.ok
        assert not result.shortfalls
        assert _stock(product, store) == 3
        line = result.record.line_items[0]
        assert line.quantity == 2
        assert sorted(line.inventory_item_ids) == [units[0].id, units[1].id]

    def test_stored_lines_resell_after_delete(self, store, phone):
        product, units = phone
        sale = asyncio.run(create_sale(items=[_line(product, 2)], store=store)).record
        stored = [item.to_dict() for item in sale.line_items]
        asyncio.run(delete_sale(sale.id, store=store))
        assert _stock(product, store) == 5

        result = asyncio.run(create_sale(items=stored, store=store))
        assert result.ok
        assert _stock(product, store) == 3
        assert result.record.line_items[0].quantity == 2

    def test_missing_quantity_counts_units_once(self, store, phone):
        product, units = phone
        line = _line(product, 0, inventoryItemIds=[units[0].id], imeis=[units[0].imei])

        result = asyncio.run(create_sale(items=[line], store=store))
        assert result.ok
        assert result.record.line_items[0].quantity == 1
        assert _stock(product, store) == 4
