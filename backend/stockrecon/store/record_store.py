# Overview: CRUD record store over the SQLAlchemy models; the only place rows are written.

"""
Record Store

The reconciliation services never touch the session directly. Every entity
is reached through five operations (list / get_by_id / create / update /
soft_delete, plus count) so the services behave the same way they would over
a hosted table API.

GUARANTEES:
- Each write commits on its own. There is no transaction spanning two writes.
- Every update stamps updated_at; rows with a version_id get it bumped.
- update(..., expect={...}) is a conditional write. The WHERE clause carries
  the expected values and a zero rowcount raises StaleWriteError.
- soft_delete only affects live rows and reports whether this call did it.
- Soft-deleted rows are invisible to list/get_by_id/count unless
  include_deleted=True.
- Line-item lists are JSON-encoded here on the way in.

The methods are coroutines so the services read the same as they would over
a networked client, but the session calls underneath block. Nothing here
yields to the event loop, so gathered calls run one after another and a
retry backoff stalls the whole loop.
"""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import func, update as sa_update
from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFoundError
from ..extensions import db
from ..line_items import encode_line_items
from ..models import ProductModel, Product, InventoryItem, Sale, Swap, Return, Customer, Debt, DebtPayment
from stockrecon.time_utils import utcnow
from .concurrency import run_with_retry


ENTITY_MODELS = {
    "product_models": ProductModel,
    "products": Product,
    "inventory_items": InventoryItem,
    "sales": Sale,
    "swaps": Swap,
    "returns": Return,
    "customers": Customer,
    "debts": Debt,
    "debt_payments": DebtPayment,
}

# Columns holding JSON-encoded SaleItem arrays
LINE_ITEM_COLUMNS = {"sales": {"items"}, "returns": {"items"}}


class StoreError(Exception):
    """A write against the record store failed."""
    def __init__(self, message: str, *, entity: str | None = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class StaleWriteError(StoreError):
    """A conditional write found the row no longer matching its guard."""


class RecordStore:
    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def model_for(self, entity: str):
        try:
            return ENTITY_MODELS[entity]
        except KeyError:
            raise ValueError(f"unknown entity '{entity}'")

    @staticmethod
    def _column(model, key: str):
        col = model.__table__.columns.get(key)
        if col is None:
            raise ValueError(f"{model.__tablename__} has no column '{key}'")
        return getattr(model, key)

    def _prepare(self, entity: str, fields: dict) -> dict:
        model = self.model_for(entity)
        values = {}
        json_columns = LINE_ITEM_COLUMNS.get(entity, set())
        for key, value in fields.items():
            self._column(model, key)
            if key in json_columns and not isinstance(value, str):
                value = encode_line_items(value or [])
            values[key] = value
        return values

    def _filtered(self, entity: str, include_deleted: bool, filters: dict):
        model = self.model_for(entity)
        q = self.session.query(model)
        if not include_deleted:
            q = q.filter(model.deleted_at.is_(None))
        for key, value in filters.items():
            col = self._column(model, key)
            if value is None:
                q = q.filter(col.is_(None))
            elif isinstance(value, (list, tuple, set)):
                q = q.filter(col.in_(list(value)))
            else:
                q = q.filter(col == value)
        return model, q

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def list(
        self,
        entity: str,
        *,
        order_by: Iterable[str] | None = None,
        include_deleted: bool = False,
        limit: int | None = None,
        **filters,
    ) -> list:
        """
        List rows matching equality filters (a list/tuple value means IN).

        order_by takes column names; a leading '-' sorts descending.
        id is always appended as the final tie-breaker.
        """
        def _op():
            model, q = self._filtered(entity, include_deleted, filters)
            ordering = []
            for key in order_by or ():
                if key.startswith("-"):
                    ordering.append(self._column(model, key[1:]).desc())
                else:
                    ordering.append(self._column(model, key).asc())
            ordering.append(model.id.asc())
            q = q.order_by(*ordering)
            if limit is not None:
                q = q.limit(limit)
            return q.all()

        return run_with_retry(_op, session=self.session)

    async def count(self, entity: str, *, include_deleted: bool = False, **filters) -> int:
        def _op():
            model, q = self._filtered(entity, include_deleted, filters)
            return int(q.with_entities(func.count(model.id)).scalar() or 0)

        return run_with_retry(_op, session=self.session)

    async def get_by_id(self, entity: str, record_id: Any, *, include_deleted: bool = False):
        if record_id is None:
            return None

        def _op():
            model, q = self._filtered(entity, include_deleted, {})
            return q.filter(model.id == record_id).first()

        return run_with_retry(_op, session=self.session)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    async def create(self, entity: str, fields: dict):
        model = self.model_for(entity)
        values = self._prepare(entity, fields)
        now = utcnow()
        values.setdefault("created_at", now)
        values["updated_at"] = now

        row = model(**values)
        try:
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(f"create {entity} failed: {exc}", entity=entity) from exc
        return row

    async def update(self, entity: str, record_id: Any, fields: dict, *, expect: dict | None = None):
        """
        Write `fields` onto one live row.

        Raises NotFoundError if the row is missing or soft-deleted and
        StaleWriteError if `expect` no longer matches the stored values.
        """
        model = self.model_for(entity)
        values = self._prepare(entity, fields)
        values["updated_at"] = utcnow()
        if "version_id" in model.__table__.columns and "version_id" not in values:
            values["version_id"] = model.version_id + 1

        stmt = sa_update(model).where(model.id == record_id, model.deleted_at.is_(None))
        for key, expected in (expect or {}).items():
            col = self._column(model, key)
            stmt = stmt.where(col.is_(None) if expected is None else col == expected)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        try:
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                self.session.rollback()
                live = self.session.query(model.id).filter(
                    model.id == record_id, model.deleted_at.is_(None)
                ).first()
                if live is None:
                    raise NotFoundError(
                        f"{entity} {record_id} not found",
                        details={"entity": entity, "id": record_id},
                    )
                raise StaleWriteError(
                    f"{entity} {record_id} changed before the write was applied",
                    entity=entity,
                    entity_id=record_id,
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(
                f"update {entity} {record_id} failed: {exc}", entity=entity, entity_id=record_id
            ) from exc

        row = self.session.get(model, record_id)
        if row is not None:
            self.session.refresh(row)
        return row

    async def soft_delete(self, entity: str, record_id: Any) -> bool:
        """
        Stamp deleted_at on a live row.

        Returns True if this call deleted it, False if it was already deleted.
        Raises NotFoundError if the row never existed.
        """
        model = self.model_for(entity)
        now = utcnow()
        stmt = (
            sa_update(model)
            .where(model.id == record_id, model.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(
                f"soft delete {entity} {record_id} failed: {exc}", entity=entity, entity_id=record_id
            ) from exc

        if result.rowcount == 1:
            return True

        exists = self.session.query(model.id).filter(model.id == record_id).first()
        if exists is None:
            raise NotFoundError(f"{entity} {record_id} not found", details={"entity": entity, "id": record_id})
        return False


def get_store() -> RecordStore:
    return RecordStore()
