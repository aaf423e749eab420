# Overview: Stock resolution for counter-backed and IMEI-ledger-backed products.

"""
Stock Resolver

A product's sellable quantity comes from one of two sources:
- CounterBacked: products without a product model keep an authoritative
  `stock` counter.
- LedgerBacked: products with a product model (IMEI-tracked) derive stock
  from the number of live InventoryItem rows with status in_stock. The
  stored `stock` column is a cache, refreshed after tracked mutations.

Callers use resolve_stock() and never read Product.stock themselves.

FAILURE MODE:
If the in_stock count cannot be read, LedgerBacked falls back to the
last-known cached value instead of raising. Availability degrades, the UI
keeps working.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFoundError
from ..models import Product
from ..models.inventory import ITEM_STATUS_IN_STOCK
from ..store import RecordStore, StoreError, get_store
from .saga import Step

logger = logging.getLogger(__name__)


class StockSource:
    def __init__(self, product: Product):
        self.product = product

    @property
    def last_known(self) -> int:
        return max(0, int(self.product.stock or 0))

    async def resolve(self, store: RecordStore) -> int:
        raise NotImplementedError


class CounterBacked(StockSource):
    async def resolve(self, store: RecordStore) -> int:
        return self.last_known


class LedgerBacked(StockSource):
    async def resolve(self, store: RecordStore) -> int:
        try:
            return await store.count(
                "inventory_items",
                product_id=self.product.id,
                status=ITEM_STATUS_IN_STOCK,
            )
        except (SQLAlchemyError, StoreError):
            logger.warning(
                "In-stock count failed for product %s; using last known stock %s",
                self.product.id, self.last_known, exc_info=True,
            )
            return self.last_known


def stock_source_for(product: Product) -> StockSource:
    if product.product_model_id:
        return LedgerBacked(product)
    return CounterBacked(product)


async def resolve_stock(product: Product, *, store: RecordStore | None = None) -> int:
    """Current sellable quantity, always >= 0."""
    store = store or get_store()
    return await stock_source_for(product).resolve(store)


async def get_product_or_404(product_id: int, *, store: RecordStore) -> Product:
    product = await store.get_by_id("products", product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


async def resolve_stock_by_id(product_id: int, *, store: RecordStore | None = None) -> int:
    store = store or get_store()
    product = await get_product_or_404(product_id, store=store)
    return await resolve_stock(product, store=store)


async def adjust_counter(product_id: int, delta: int, *, store: RecordStore) -> int:
    """
    Apply `delta` to a counter-backed product's stock, floored at 0.

    Point read + write guarded on version_id. A concurrent change raises
    StaleWriteError, which the caller reports; it is not retried.
    """
    product = await get_product_or_404(product_id, store=store)
    if product.product_model_id:
        raise ValueError(f"product {product_id} is IMEI-tracked; its stock is derived")
    new_stock = max(0, int(product.stock or 0) + delta)
    await store.update(
        "products",
        product_id,
        {"stock": new_stock},
        expect={"version_id": product.version_id},
    )
    return new_stock


def counter_step(product_id: int, delta: int, *, store: RecordStore) -> Step:
    """Counter adjustment by `delta`; the compensation applies -delta."""
    async def _apply():
        return await adjust_counter(product_id, delta, store=store)

    async def _revert():
        return await adjust_counter(product_id, -delta, store=store)

    return Step(
        name="adjust_stock",
        entity="products",
        entity_id=product_id,
        action=_apply,
        compensation=_revert,
        context={"product_id": product_id, "delta": delta},
    )


async def refresh_cached_stock(product_id: int, *, store: RecordStore | None = None) -> int:
    """Copy the derived in_stock count of a tracked product into its stock column."""
    store = store or get_store()
    product = await get_product_or_404(product_id, store=store)
    if not product.product_model_id:
        return product.stock or 0
    count = await store.count("inventory_items", product_id=product_id, status=ITEM_STATUS_IN_STOCK)
    if count != product.stock:
        await store.update("products", product_id, {"stock": count})
    return count


async def list_products_with_stock(*, store: RecordStore | None = None, include_inactive: bool = False) -> list[tuple[Product, int]]:
    """Point reads per product. No stored stock value leaks through for tracked products."""
    store = store or get_store()
    filters = {} if include_inactive else {"is_active": True}
    products = await store.list("products", order_by=("name",), **filters)
    return [(product, await resolve_stock(product, store=store)) for product in products]


async def find_duplicate_imeis(*, store: RecordStore | None = None) -> dict[str, list[int]]:
    """Live IMEIs held by more than one inventory item (should always be empty)."""
    store = store or get_store()
    seen: dict[str, list[int]] = defaultdict(list)
    for item in await store.list("inventory_items"):
        seen[item.imei].append(item.id)
    return {imei: ids for imei, ids in seen.items() if len(ids) > 1}


async def find_stock_drift(*, store: RecordStore | None = None) -> list[dict]:
    """Tracked products whose cached stock column disagrees with the derived count."""
    store = store or get_store()
    drift = []
    for product in await store.list("products"):
        if not product.product_model_id:
            continue
        derived = await store.count("inventory_items", product_id=product.id, status=ITEM_STATUS_IN_STOCK)
        if derived != (product.stock or 0):
            drift.append({"product_id": product.id, "cached": product.stock, "derived": derived})
    return drift


async def refresh_tracked_stock(product_ids, *, store: RecordStore, result) -> None:
    """Refresh cached stock after a batch; failures are reported on `result`, not raised."""
    for product_id in sorted(set(product_ids)):
        try:
            await refresh_cached_stock(product_id, store=store)
        except (NotFoundError, StoreError) as exc:
            result.record_failure("products", product_id, "refresh_stock", exc)
