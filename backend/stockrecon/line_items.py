# Overview: SaleItem value type and the JSON codec for line-item columns.

"""
Line items are persisted as JSON text inside their parent row (sales.items,
returns.items). Business logic only ever sees SaleItem values; the text form
exists at the record-store boundary.

Decoding is defensive:
- unknown/missing numeric fields default to 0
- unknown/missing string fields default to ""
- any parse failure degrades to an empty list
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

logger = logging.getLogger(__name__)


def _number(value: Any) -> Decimal:
    if value is None or value == "" or isinstance(value, bool):
        return Decimal("0")
    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return num if num.is_finite() else Decimal("0")


def _int(value: Any) -> int:
    num = _number(value)
    return int(num)


def _id(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str) and v]


def _id_list(value: Any) -> list[int]:
    if not isinstance(value, list):
        return []
    ids = [_id(v) for v in value]
    return [v for v in ids if v is not None]


@dataclass
class SaleItem:
    product_id: int | None
    quantity: int
    unit_price: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    product_name: str = ""
    imeis: list[str] = field(default_factory=list)
    inventory_item_ids: list[int] = field(default_factory=list)

    @property
    def has_explicit_refs(self) -> bool:
        return bool(self.imeis or self.inventory_item_ids)

    @classmethod
    def from_dict(cls, data: Any) -> "SaleItem":
        if not isinstance(data, dict):
            data = {}
        # Older rows carry "price" instead of "unitPrice"
        unit_price = data.get("unitPrice", data.get("price"))
        return cls(
            product_id=_id(data.get("productId")),
            quantity=_int(data.get("quantity")),
            unit_price=_number(unit_price),
            total=_number(data.get("total")),
            product_name=_string(data.get("productName")),
            imeis=_string_list(data.get("imeis")),
            inventory_item_ids=_id_list(data.get("inventoryItemIds")),
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "productId": self.product_id,
            "productName": self.product_name,
            "quantity": self.quantity,
            "unitPrice": float(self.unit_price),
            "total": float(self.total),
        }
        if self.imeis:
            out["imeis"] = list(self.imeis)
        if self.inventory_item_ids:
            out["inventoryItemIds"] = list(self.inventory_item_ids)
        return out


def decode_line_items(raw: Any) -> list[SaleItem]:
    """Parse a JSON text column (or an already-decoded list) into SaleItems."""
    if not raw:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Unparseable line items column; treating as empty")
            return []
    if not isinstance(raw, list):
        return []
    return [SaleItem.from_dict(entry) for entry in raw]


def encode_line_items(items: Iterable[SaleItem | dict]) -> str:
    payload = []
    for item in items:
        if isinstance(item, SaleItem):
            payload.append(item.to_dict())
        else:
            payload.append(SaleItem.from_dict(item).to_dict())
    return json.dumps(payload)
