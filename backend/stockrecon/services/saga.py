# Overview: Step/compensation pairs and the best-effort batch runner used by every orchestrated operation.

"""
Saga primitives

There is no transaction spanning the writes of one sale/swap/return, so each
multi-row operation is written as a list of Steps. A Step pairs the forward
write (`action`) with its inverse (`compensation`). Creation runs actions;
deletion rebuilds the same steps from the persisted record and runs their
compensations.

POLICY (best effort, report everything):
- All steps of one batch are scheduled with asyncio.gather. The record
  store's session calls block, so in practice the steps of a batch run one
  after another; callers must not rely on any order inside a batch.
- A failing step never stops its siblings. Failures become SubWriteFailure
  entries on the OperationResult and are logged.
- Nothing is retried and nothing is rolled back automatically.
- A guard rejection (StaleWriteError) is reported as a conflict so the caller
  can turn it into an allocation shortfall where that is the right reading.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ..store import StaleWriteError

logger = logging.getLogger(__name__)

StepFn = Callable[[], Awaitable[Any]]


@dataclass
class Step:
    name: str
    entity: str
    entity_id: Any
    action: StepFn | None = None
    compensation: StepFn | None = None
    # Free-form context carried into outcomes (product_id for item steps)
    context: dict = field(default_factory=dict)


@dataclass
class StepOutcome:
    step: Step
    ok: bool
    value: Any = None
    error: BaseException | None = None

    @property
    def conflict(self) -> bool:
        return isinstance(self.error, StaleWriteError)


@dataclass
class SubWriteFailure:
    entity: str
    entity_id: Any
    action: str
    error: str

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "entity_id": self.entity_id,
            "action": self.action,
            "error": self.error,
        }


@dataclass
class AllocationShortfall:
    product_id: Any
    requested: int
    allocated: int
    unresolved_refs: list = field(default_factory=list)

    @property
    def missing(self) -> int:
        return max(0, self.requested - self.allocated)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "allocated": self.allocated,
            "missing": self.missing,
            "unresolved_refs": list(self.unresolved_refs),
        }


@dataclass
class OperationResult:
    """Structured partial-success summary returned by every orchestrated operation."""
    operation: str
    record: Any = None
    applied: list[str] = field(default_factory=list)
    failures: list[SubWriteFailure] = field(default_factory=list)
    shortfalls: list[AllocationShortfall] = field(default_factory=list)
    # Compensations deliberately not applied (e.g. trade-in item not created by this swap)
    skipped: list[str] = field(default_factory=list)
    # Secondary records produced by the operation, keyed by role
    related: dict = field(default_factory=dict)
    noop: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.shortfalls

    def record_failure(self, entity: str, entity_id: Any, action: str, error: BaseException | str) -> None:
        message = str(error)
        self.failures.append(SubWriteFailure(entity, entity_id, action, message))
        logger.warning(
            "%s: sub-write failed (entity=%s id=%s action=%s): %s",
            self.operation, entity, entity_id, action, message,
        )

    def absorb(self, outcomes: list[StepOutcome], *, label: str) -> None:
        """Fold step outcomes into applied/failures. Conflicts count as failures here."""
        for outcome in outcomes:
            step_label = f"{outcome.step.name}:{label}"
            if outcome.ok:
                self.applied.append(f"{step_label}:{outcome.step.entity}:{outcome.step.entity_id}")
            else:
                self.record_failure(outcome.step.entity, outcome.step.entity_id, step_label, outcome.error)

    def log_summary(self) -> None:
        record_id = getattr(self.record, "id", None)
        logger.info(
            "%s id=%s applied=%d failed=%d shortfalls=%d noop=%s",
            self.operation, record_id, len(self.applied), len(self.failures), len(self.shortfalls), self.noop,
        )

    def to_dict(self) -> dict:
        record = self.record.to_dict() if hasattr(self.record, "to_dict") else self.record
        return {
            "operation": self.operation,
            "ok": self.ok,
            "noop": self.noop,
            "record": record,
            "applied": list(self.applied),
            "failures": [f.to_dict() for f in self.failures],
            "shortfalls": [s.to_dict() for s in self.shortfalls],
            "skipped": list(self.skipped),
            "related": {
                key: value.to_dict() if hasattr(value, "to_dict") else value
                for key, value in self.related.items()
            },
        }


async def _run_one(step: Step, fn: StepFn) -> StepOutcome:
    try:
        value = await fn()
    except Exception as exc:
        return StepOutcome(step=step, ok=False, error=exc)
    return StepOutcome(step=step, ok=True, value=value)


async def run_actions(steps: list[Step]) -> list[StepOutcome]:
    """Schedule every step's action in one gather and wait for the whole batch."""
    runnable = [s for s in steps if s.action is not None]
    return list(await asyncio.gather(*(_run_one(s, s.action) for s in runnable)))


async def run_compensations(steps: list[Step]) -> list[StepOutcome]:
    """Schedule every step's compensation in one gather and wait for the whole batch."""
    runnable = [s for s in steps if s.compensation is not None]
    return list(await asyncio.gather(*(_run_one(s, s.compensation) for s in runnable)))
