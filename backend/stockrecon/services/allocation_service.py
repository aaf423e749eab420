# Overview: Selects which IMEI units satisfy a sale or swap line; never writes.

"""
Item Allocator

allocate() is a pure selection step. The orchestrator performs the actual
in_stock -> sold write with an optimistic guard, so a selection here is
advisory: a unit picked by two concurrent sales is sold to only one of
them, and the other reports the shortfall.

RULES:
- Explicit refs (ints are inventory item ids, strings are IMEIs) resolve to
  live items. A ref is rejected if its item is missing, belongs to another
  product, is not in_stock, or was already claimed by an earlier line.
  Some refs rejected -> degraded result with the valid subset.
  All refs rejected -> AllocationMismatch.
- Without refs, the `quantity` oldest in_stock items (created_at ascending,
  id as tie-breaker) are picked. Fewer available -> whatever exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..errors import AllocationMismatch
from ..line_items import SaleItem
from ..models import InventoryItem
from ..models.inventory import ITEM_STATUS_IN_STOCK
from ..store import RecordStore, get_store
from ..validation import normalize_imei
from .saga import AllocationShortfall


@dataclass
class Allocation:
    product_id: int
    requested: int
    items: list[InventoryItem] = field(default_factory=list)
    unresolved_refs: list = field(default_factory=list)

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - len(self.items))

    def to_shortfall(self) -> AllocationShortfall | None:
        if not self.shortfall and not self.unresolved_refs:
            return None
        return AllocationShortfall(
            product_id=self.product_id,
            requested=self.requested,
            allocated=len(self.items),
            unresolved_refs=list(self.unresolved_refs),
        )


def refs_for(item: SaleItem) -> list:
    """
    Explicit refs carried by a sale line, one per unit.

    A stored line carries both the ids and the IMEIs of the same units, so
    ids win and IMEIs are only used when no ids are present.
    """
    if item.inventory_item_ids:
        return list(item.inventory_item_ids)
    return list(item.imeis)


async def _resolve_ref(ref, *, store: RecordStore) -> InventoryItem | None:
    if isinstance(ref, int) and not isinstance(ref, bool):
        return await store.get_by_id("inventory_items", ref)
    if isinstance(ref, str):
        imei = normalize_imei(ref)
        if not imei:
            return None
        matches = await store.list("inventory_items", imei=imei, limit=1)
        return matches[0] if matches else None
    return None


async def allocate(
    product_id: int,
    quantity: int,
    explicit_refs: Iterable | None = None,
    *,
    exclude_ids: Iterable[int] = (),
    store: RecordStore | None = None,
) -> Allocation:
    store = store or get_store()
    excluded = set(exclude_ids)
    refs = list(explicit_refs or [])

    if refs:
        allocation = Allocation(product_id=product_id, requested=len(refs))
        for ref in refs:
            item = await _resolve_ref(ref, store=store)
            if (
                item is None
                or item.product_id != product_id
                or item.status != ITEM_STATUS_IN_STOCK
                or item.id in excluded
            ):
                allocation.unresolved_refs.append(ref)
                continue
            excluded.add(item.id)
            allocation.items.append(item)

        if not allocation.items:
            raise AllocationMismatch(
                f"None of the referenced units are in stock for product {product_id}",
                details={"product_id": product_id, "refs": refs},
            )
        return allocation

    allocation = Allocation(product_id=product_id, requested=max(0, quantity))
    if quantity <= 0:
        return allocation

    candidates = await store.list(
        "inventory_items",
        product_id=product_id,
        status=ITEM_STATUS_IN_STOCK,
        order_by=("created_at",),
        limit=quantity + len(excluded),
    )
    for item in candidates:
        if item.id in excluded:
            continue
        allocation.items.append(item)
        if len(allocation.items) >= quantity:
            break
    return allocation
