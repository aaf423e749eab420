# Overview: Pytest coverage for the credit ledger and debt payments.

import asyncio
from decimal import Decimal

import pytest

from stockrecon.errors import NotFoundError
from stockrecon.models import Customer, Debt
from stockrecon.services.credit_service import (
    apply_credit,
    credit_note,
    credit_to_restore,
    parse_credit_from_notes,
)
from stockrecon.services.customer_service import add_store_credit, update_customer
from stockrecon.services.debt_service import (
    add_debt_payment,
    create_debt,
    delete_debt,
    list_debt_payments,
    list_debts,
)
from stockrecon.models import Sale
from stockrecon.validation import ValidationError


class TestCreditLedger:

    def test_signed_deltas(self, store, db_session, make_customer):
        customer = make_customer(store_credit="20.00")
        asyncio.run(apply_credit(customer.id, Decimal("-25.00"), store=store))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("-5.00")
        asyncio.run(apply_credit(customer.id, Decimal("5.00"), store=store))
        assert db_session.get(Customer, customer.id).store_credit == Decimal("0.00")

    def test_unknown_customer(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(apply_credit(42, Decimal("1.00"), store=store))

    def test_manual_grant_must_be_positive(self, store, make_customer):
        customer = make_customer()
        with pytest.raises(ValidationError):
            asyncio.run(add_store_credit(customer.id, "0", store=store))
        assert asyncio.run(add_store_credit(customer.id, "12.5", store=store)).store_credit == Decimal("12.50")

    def test_store_credit_not_editable_directly(self, store, make_customer):
        customer = make_customer()
        with pytest.raises(ValidationError):
            asyncio.run(update_customer(customer.id, patch={"store_credit": 100}, store=store))


class TestCreditNotes:

    def test_note_format(self, db_session):
        assert credit_note(Decimal("1200")) == "Credit: NLe 1,200.00 (Fully paid)"
        assert credit_note(Decimal("40"), cash=Decimal("60")) == "Credit: NLe 40.00. Cash: NLe 60.00"

    def test_parse(self, db_session):
        assert parse_credit_from_notes("Credit: NLe 150.00") == Decimal("150.00")
        assert parse_credit_from_notes("paid\nCredit: NLe 1,500. Cash: NLe 10") == Decimal("1500.00")
        assert parse_credit_from_notes("Credit: USD 150.00") is None
        assert parse_credit_from_notes(None) is None

    def test_label_follows_config(self, app, db_session):
        app.config["CREDIT_CURRENCY_LABEL"] = "GHS"
        try:
            assert credit_note(Decimal("5")) == "Credit: GHS 5.00 (Fully paid)"
            assert parse_credit_from_notes("Credit: GHS 5.00") == Decimal("5.00")
        finally:
            app.config["CREDIT_CURRENCY_LABEL"] = "NLe"

    def test_restore_requires_customer(self, db_session):
        sale = Sale(customer_id=None, payment_method="credit", total=Decimal("10.00"), notes="Credit: NLe 10.00")
        assert credit_to_restore(sale) == Decimal("0")


class TestDebts:

    def test_payments_accumulate_until_paid(self, store, db_session, make_customer):
        customer = make_customer()
        debt = asyncio.run(create_debt(amount="100.00", customer_id=customer.id, store=store))
        assert debt.status == "active"

        first = asyncio.run(add_debt_payment(debt.id, "40.00", method="cash", store=store))
        assert first.ok
        assert first.record.paid == Decimal("40.00")
        assert first.record.status == "active"
        assert first.related["payment"].amount == Decimal("40.00")

        second = asyncio.run(add_debt_payment(debt.id, "60.00", store=store))
        assert second.record.paid == Decimal("100.00")
        assert second.record.status == "paid"

        payments = asyncio.run(list_debt_payments(debt.id, store=store))
        assert [p.amount for p in payments] == [Decimal("40.00"), Decimal("60.00")]

    def test_overpayment_marks_paid(self, store):
        debt = asyncio.run(create_debt(amount="10.00", store=store))
        result = asyncio.run(add_debt_payment(debt.id, "15.00", store=store))
        assert result.record.status == "paid"
        assert result.record.paid == Decimal("15.00")

    def test_payment_must_be_positive(self, store):
        debt = asyncio.run(create_debt(amount="10.00", store=store))
        with pytest.raises(ValidationError):
            asyncio.run(add_debt_payment(debt.id, "0", store=store))
        with pytest.raises(ValidationError):
            asyncio.run(add_debt_payment(debt.id, "-5", store=store))

    def test_payment_on_missing_debt(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(add_debt_payment(77, "5.00", store=store))

    def test_delete_and_filter(self, store, db_session, make_customer):
        customer = make_customer()
        keep = asyncio.run(create_debt(amount="10.00", customer_id=customer.id, store=store))
        gone = asyncio.run(create_debt(amount="20.00", customer_id=customer.id, store=store))

        assert asyncio.run(delete_debt(gone.id, store=store)) is True
        assert asyncio.run(delete_debt(gone.id, store=store)) is False
        assert [d.id for d in asyncio.run(list_debts(customer_id=customer.id, store=store))] == [keep.id]
        assert db_session.get(Debt, gone.id).deleted_at is not None
