# Overview: Ledger error taxonomy shared by services and routes.

"""
Every business-rule violation leaves the service layer as one of these.

Each kind carries a stable machine-readable ``code`` and the HTTP status the
API maps it to. Nothing below the service boundary lets a raw SQLAlchemy
error reach a caller.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger errors."""
    code = "LEDGER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """400-level input problem, always recoverable by the caller."""
    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidPaymentError(ValidationError):
    """Missing payment method or insufficient cash tendered."""
    code = "INVALID_PAYMENT"


class NotFoundError(LedgerError):
    """Entity absent or owned by another seller."""
    code = "NOT_FOUND"
    http_status = 404


class ItemNotFoundError(NotFoundError):
    code = "ITEM_NOT_FOUND"


class ConflictError(LedgerError):
    """409-level invalid state transition."""
    code = "CONFLICT"
    http_status = 409


class InsufficientStockError(LedgerError):
    code = "INSUFFICIENT_STOCK"
    http_status = 400

    def __init__(self, item_id: int, available: int, requested: int, name: str | None = None):
        label = name or f"item {item_id}"
        super().__init__(
            f"Insufficient stock for {label} (available: {available})",
            details={
                "item_id": item_id,
                "available": available,
                "requested": requested,
            },
        )
        self.item_id = item_id
        self.available = available
        self.requested = requested


class InternalError(LedgerError):
    """Unexpected failure; callers only ever see a generic message."""
    code = "INTERNAL_ERROR"
    http_status = 500

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": "Internal server error",
            "details": {},
        }
