"""
Exception taxonomy for order fulfillment and settlement.

Every error carries:
- Error code (for client handling)
- HTTP status code (for API responses)
- Structured detail (required/available amounts, ids, statuses)

Errors are raised synchronously and never retried internally; the operator
decides whether to retry (e.g. rescanning a card).
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class CashlessError(Exception):
    """Base exception for all settlement core errors."""

    error_code = "cashless_error"
    http_status = 500

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "type": self.__class__.__name__,
                "detail": {key: _jsonable(value) for key, value in self.detail.items()},
            }
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    return value


class NotFound(CashlessError):
    """Order, product or account does not exist (or account is inactive)."""

    error_code = "not_found"
    http_status = 404

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found: {identifier}", resource=resource, id=identifier)
        self.resource = resource
        self.identifier = identifier


class ValidationError(CashlessError):
    """Malformed input: non 4-digit PIN, empty line list, unknown status."""

    error_code = "validation_error"
    http_status = 400


class AuthenticationFailure(CashlessError):
    """PIN does not match the resolved account."""

    error_code = "authentication_failed"
    http_status = 401

    def __init__(self, message: str = "Invalid PIN", **detail: Any):
        super().__init__(message, **detail)


class InsufficientStock(CashlessError):
    """A product cannot cover the quantity an order needs."""

    error_code = "insufficient_stock"
    http_status = 400

    def __init__(
        self,
        product_id: int,
        available: int,
        required: int,
        product_name: Optional[str] = None,
        message: Optional[str] = None,
    ):
        label = product_name or f"product {product_id}"
        super().__init__(
            message or f"Insufficient stock for {label}. Available: {available}, required: {required}",
            product_id=product_id,
            product_name=product_name,
            available=available,
            required=required,
        )
        self.product_id = product_id
        self.available = available
        self.required = required


class ProductUnavailable(InsufficientStock):
    """Product is flagged as not available for sale."""

    error_code = "product_unavailable"

    def __init__(self, product_id: int, required: int, product_name: Optional[str] = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            product_id=product_id,
            available=0,
            required=required,
            product_name=product_name,
            message=f"Product {label} is not available",
        )


class InsufficientBalance(CashlessError):
    """Payer balance is below the order total."""

    error_code = "insufficient_balance"
    http_status = 400

    def __init__(self, required: Decimal, available: Decimal):
        super().__init__(
            "Insufficient balance",
            required=required,
            available=available,
        )
        self.required = required
        self.available = available


class InvalidStateTransition(CashlessError):
    """Order status machine violation."""

    error_code = "invalid_state_transition"
    http_status = 400

    def __init__(self, order_id: int, current: Any, requested: Any):
        super().__init__(
            f"Order {order_id} cannot move from {_jsonable(current)} to {_jsonable(requested)}",
            order_id=order_id,
            current_status=current,
            requested_status=requested,
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested


class ScanTimeout(CashlessError):
    """No fresh card scan arrived within the scan attempt window."""

    error_code = "scan_timeout"
    http_status = 408
