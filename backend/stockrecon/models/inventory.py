from __future__ import annotations

import uuid

from ..extensions import db
from stockrecon.time_utils import to_utc_z, utcnow


ITEM_STATUS_IN_STOCK = "in_stock"
ITEM_STATUS_SOLD = "sold"
ITEM_STATUS_RETURNED = "returned"
ITEM_STATUS_DEFECTIVE = "defective"
ITEM_STATUSES = (ITEM_STATUS_IN_STOCK, ITEM_STATUS_SOLD, ITEM_STATUS_RETURNED, ITEM_STATUS_DEFECTIVE)

ITEM_CONDITIONS = ("new", "refurbished", "used")


def _money(value):
    return float(value) if value is not None else None


def _new_model_id() -> str:
    return uuid.uuid4().hex


class ProductModel(db.Model):
    """
    Catalog entry for a handset model (brand, colours, storage variants).

    Linking a Product to a model is what makes it IMEI-tracked. Ids are opaque
    strings so catalog rows imported from elsewhere keep their ids.
    """
    __tablename__ = "product_models"
    __table_args__ = (
        db.Index("ix_product_models_name", "name"),
    )

    id = db.Column(db.String(64), primary_key=True, default=_new_model_id)

    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)
    image = db.Column(db.String(512), nullable=True)

    colors = db.Column(db.JSON, nullable=False, default=list)
    storage_options = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<ProductModel id={self.id!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "description": self.description,
            "image": self.image,
            "colors": list(self.colors or []),
            "storage_options": list(self.storage_options or []),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    A product linked to a product model (product_model_id set) is IMEI-tracked.
    Its sellable quantity is the count of live in_stock InventoryItem rows and
    the stored `stock` column is only a cached copy, never authoritative.
    Products without a model reference keep `stock` as the authoritative counter.

    Callers read quantities through services.stock_service.resolve_stock,
    never from the column directly.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_model", "product_model_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(128), nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Authoritative only when product_model_id is NULL
    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    product_model_id = db.Column(db.String(64), db.ForeignKey("product_models.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_tracked(self) -> bool:
        return bool(self.product_model_id)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} tracked={self.is_tracked}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": _money(self.price),
            "cost": _money(self.cost),
            "stock": self.stock,
            "min_stock": self.min_stock,
            "product_model_id": self.product_model_id,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryItem(db.Model):
    """
    One physical, IMEI-identified unit of a tracked product.

    UNIQUENESS: at most one live (deleted_at IS NULL) row per normalized IMEI.
    Enforced in inventory_item_service and backed by a partial unique index.

    STATUS TRANSITIONS:
    in_stock -> sold | returned | defective. The only backwards move is
    sold -> in_stock, performed when the sale/swap that sold the unit is
    deleted.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.Index("ix_inventory_items_product_status", "product_id", "status"),
        db.Index(
            "uq_inventory_items_live_imei",
            "imei",
            unique=True,
            sqlite_where=db.text("deleted_at IS NULL"),
            postgresql_where=db.text("deleted_at IS NULL"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    imei = db.Column(db.String(17), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_IN_STOCK)
    condition = db.Column(db.String(16), nullable=False, default="new")
    sim_type = db.Column(db.String(32), nullable=True)

    purchase_cost = db.Column(db.Numeric(12, 2), nullable=True)
    selling_price = db.Column(db.Numeric(12, 2), nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    sold_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    product = db.relationship("Product", backref=db.backref("inventory_items", lazy=True))

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} imei={self.imei} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "imei": self.imei,
            "status": self.status,
            "condition": self.condition,
            "sim_type": self.sim_type,
            "purchase_cost": _money(self.purchase_cost),
            "selling_price": _money(self.selling_price),
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "sold_date": to_utc_z(self.sold_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
