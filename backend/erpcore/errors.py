# Overview: Domain exception hierarchy shared by services and the HTTP error handler.

"""
Every failure raised by the transaction core carries:
- error: short JSON slug returned to API clients (e.g. "not_found")
- code: stable machine-readable code (e.g. "RECEPTION_NOT_FOUND")
- status_code: HTTP status the error handler uses

Services raise these and never log or swallow them. The unit of work rolls the
transaction back, and create_app() renders them as {error, code, message}.
"""

from __future__ import annotations


class DomainError(Exception):
    status_code = 400
    error = "domain_error"
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, code: str | None = None, error: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if error is not None:
            self.error = error
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.error, "code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(DomainError):
    """400-level input problem, detected before any transaction opens."""
    status_code = 400
    error = "validation_error"
    code = "VALIDATION_ERROR"


class InvalidStatusError(DomainError):
    """Requested status is not part of the aggregate's vocabulary."""
    status_code = 400
    error = "invalid_status"
    code = "INVALID_STATUS"


class EmptyItemsError(DomainError):
    status_code = 400
    error = "empty_items"
    code = "EMPTY_ITEMS"


class NotFoundError(DomainError):
    status_code = 404
    error = "not_found"
    code = "NOT_FOUND"


class AlreadyApprovedError(DomainError):
    status_code = 409
    error = "already_approved"
    code = "ALREADY_APPROVED"


class AlreadyOpenError(DomainError):
    status_code = 409
    error = "already_open"
    code = "ALREADY_OPEN"


class AlreadyClosedError(DomainError):
    status_code = 409
    error = "already_closed"
    code = "ALREADY_CLOSED"


class InvalidTransitionError(DomainError):
    status_code = 409
    error = "invalid_transition"
    code = "INVALID_TRANSITION"


class ClosedRegisterError(DomainError):
    status_code = 409
    error = "closed_register"
    code = "CLOSED_REGISTER"


class OverReceiptError(DomainError):
    status_code = 409
    error = "over_receipt"
    code = "OVER_RECEIPT"


class InsufficientStockError(DomainError):
    """Requested decrease exceeds the quantity available across all locations."""
    status_code = 409
    error = "insufficient_stock"
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, requested: int, available: int, *, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available
