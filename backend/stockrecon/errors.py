# Overview: Error taxonomy raised by the reconciliation services.


class ReconciliationError(Exception):
    """Base class for operation-level errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(ReconciliationError):
    """Referenced record does not exist or is soft-deleted."""


class AllocationMismatch(ReconciliationError):
    """Explicit IMEI/item references do not match the product or are not in stock."""
