from __future__ import annotations

from ..extensions import db
from ..line_items import decode_line_items
from stockrecon.time_utils import to_utc_z, utcnow


SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_REFUNDED = "refunded"
SALE_STATUSES = (SALE_STATUS_PENDING, SALE_STATUS_COMPLETED, SALE_STATUS_CANCELLED, SALE_STATUS_REFUNDED)

PAYMENT_METHODS = ("cash", "card", "bank_transfer", "credit", "other")

SWAP_STATUSES = ("pending", "completed", "cancelled")

RETURN_STATUS_PENDING = "pending"
RETURN_STATUS_APPROVED = "approved"
RETURN_STATUS_REJECTED = "rejected"
RETURN_STATUS_COMPLETED = "completed"
RETURN_STATUSES = (RETURN_STATUS_PENDING, RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED, RETURN_STATUS_COMPLETED)

REFUND_METHODS = ("cash", "store_credit", "original_payment", "exchange")


def _money(value):
    return float(value) if value is not None else None


class Sale(db.Model):
    """
    Sale document.

    `items` holds a JSON array of SaleItem records. Read it through
    `line_items`; writes go through the record store, which encodes it.

    A sale whose status is NULL is treated as completed (older rows).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_customer", "customer_id"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    items = db.Column(db.Text, nullable=False, default="[]")

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=True, default=SALE_STATUS_COMPLETED)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    notes = db.Column(db.Text, nullable=True)

    # Cashier identity comes from the external auth layer
    user_id = db.Column(db.String(64), nullable=True)
    cashier_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    @property
    def line_items(self):
        return decode_line_items(self.items)

    @property
    def is_completed(self) -> bool:
        return self.status in (None, "", SALE_STATUS_COMPLETED)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "items": [item.to_dict() for item in self.line_items],
            "subtotal": _money(self.subtotal),
            "tax": _money(self.tax),
            "discount": _money(self.discount),
            "total": _money(self.total),
            "status": self.status,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "user_id": self.user_id,
            "cashier_name": self.cashier_name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }


class Swap(db.Model):
    """
    Trade-in transaction.

    The customer buys one unit of the purchased product and surrenders a
    device, which always becomes a new InventoryItem keyed by trade_in_imei.
    inventory_item_id / purchased_imei identify the purchased unit when the
    purchased product is IMEI-tracked.
    """
    __tablename__ = "swaps"
    __table_args__ = (
        db.UniqueConstraint("swap_number", name="uq_swaps_number"),
        db.Index("ix_swaps_trade_in_imei", "trade_in_imei"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    swap_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    purchased_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    purchased_product_name = db.Column(db.String(255), nullable=True)
    purchased_product_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    purchased_imei = db.Column(db.String(17), nullable=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)

    trade_in_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    trade_in_product_name = db.Column(db.String(255), nullable=True)
    trade_in_imei = db.Column(db.String(17), nullable=False)
    trade_in_condition = db.Column(db.String(16), nullable=False, default="used")
    trade_in_notes = db.Column(db.Text, nullable=True)
    trade_in_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    difference_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    status = db.Column(db.String(16), nullable=True, default="completed")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    @property
    def is_completed(self) -> bool:
        return self.status in (None, "", "completed")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "swap_number": self.swap_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "purchased_product_id": self.purchased_product_id,
            "purchased_product_name": self.purchased_product_name,
            "purchased_product_price": _money(self.purchased_product_price),
            "purchased_imei": self.purchased_imei,
            "inventory_item_id": self.inventory_item_id,
            "trade_in_product_id": self.trade_in_product_id,
            "trade_in_product_name": self.trade_in_product_name,
            "trade_in_imei": self.trade_in_imei,
            "trade_in_condition": self.trade_in_condition,
            "trade_in_notes": self.trade_in_notes,
            "trade_in_value": _money(self.trade_in_value),
            "difference_paid": _money(self.difference_paid),
            "payment_method": self.payment_method,
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }


class Return(db.Model):
    """
    Customer return document.

    Creating a return never touches inventory: whether a returned unit is
    resellable or defective is decided by an operator. Exchange items are
    appended to `notes` for that manual reconciliation.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_returns_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    items = db.Column(db.Text, nullable=False, default="[]")

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    refund_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    refund_method = db.Column(db.String(32), nullable=False, default="cash")

    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_PENDING)
    processed_by = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Set once the store-credit refund has been posted to the customer
    credited_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    @property
    def line_items(self):
        return decode_line_items(self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "items": [item.to_dict() for item in self.line_items],
            "subtotal": _money(self.subtotal),
            "tax": _money(self.tax),
            "total": _money(self.total),
            "refund_amount": _money(self.refund_amount),
            "refund_method": self.refund_method,
            "status": self.status,
            "processed_by": self.processed_by,
            "notes": self.notes,
            "credited_at": to_utc_z(self.credited_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
