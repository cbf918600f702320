"""
Pydantic schemas for API request/response models.
"""
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cashless.core.identity import PayerSummary
from cashless.core.ledger import LineDetail, OrderDetails
from cashless.core.settlement import SettlementResult
from cashless.database.models import Order, OrderLine, OrderStatus, PayerKind


class OrderLineRequest(BaseModel):
    """A requested order line. Quantities are validated by the ledger."""

    product_id: int = Field(..., description="Product identifier")
    quantity: int = Field(..., description="Units requested (positive)")


class CreateOrderRequest(BaseModel):
    """Request schema for creating an order."""

    lines: List[OrderLineRequest] = Field(..., description="Requested order lines")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "lines": [
                        {"product_id": 1, "quantity": 3},
                        {"product_id": 2, "quantity": 1},
                    ]
                }
            ]
        }
    }


class SettleOrderRequest(BaseModel):
    """Request schema for settling an order with a card and PIN."""

    card_id: str = Field(..., description="Card identifier read from the payer's card")
    pin: str = Field(..., description="Four-digit PIN")

    model_config = {
        "json_schema_extra": {"examples": [{"card_id": "04A2B9C1", "pin": "1234"}]}
    }


class UpdateStatusRequest(BaseModel):
    """Request schema for an operator status override."""

    status: str = Field(..., description="pending, ready, completed or cancelled")


class ResolveCardRequest(BaseModel):
    """Request schema for resolving a card."""

    card_id: str = Field(..., description="Card identifier")


class CardScanRequest(BaseModel):
    """Scan reported by the card reader device."""

    card_id: str = Field(..., description="Card identifier")
    scanned_at: Optional[datetime] = Field(
        default=None, description="When the card was seen (defaults to receipt time)"
    )


class OrderLineResponse(BaseModel):
    """Order line with its snapshot price."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    @classmethod
    def from_line(cls, line: OrderLine) -> "OrderLineResponse":
        return cls.model_validate(line)


class OrderResponse(BaseModel):
    """Response schema for an order."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Order ID")
    status: OrderStatus = Field(..., description="Order status")
    total_amount: Decimal = Field(..., description="Sum of line subtotals")
    payment_method: str = Field(..., description="How the order was paid")
    holder_id: Optional[int] = Field(default=None, description="Paying holder, if any")
    secondary_holder_id: Optional[int] = Field(
        default=None, description="Paying secondary holder, if any"
    )
    lines: List[OrderLineResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls.model_validate(order)


class PayerResponse(BaseModel):
    """Display identity and balance of a payer."""

    id: int
    card_id: str
    display_name: str
    balance: Decimal
    kind: PayerKind

    @classmethod
    def from_summary(cls, summary: PayerSummary) -> "PayerResponse":
        return cls(
            id=summary.id,
            card_id=summary.card_id,
            display_name=summary.display_name,
            balance=summary.balance,
            kind=summary.kind,
        )


class LineDetailResponse(BaseModel):
    """Order line joined with product display fields."""

    id: int
    product_id: int
    product_name: str
    description: Optional[str] = None
    category: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    @classmethod
    def from_detail(cls, detail: LineDetail) -> "LineDetailResponse":
        return cls(**asdict(detail))


class OrderDetailsResponse(BaseModel):
    """Response schema for order details."""

    order: OrderResponse
    lines: List[LineDetailResponse]
    payer: Optional[PayerResponse] = None

    @classmethod
    def from_details(cls, details: OrderDetails) -> "OrderDetailsResponse":
        return cls(
            order=OrderResponse.from_order(details.order),
            lines=[LineDetailResponse.from_detail(line) for line in details.lines],
            payer=PayerResponse.from_summary(details.payer) if details.payer else None,
        )


class SettleOrderResponse(BaseModel):
    """Response schema for a successful settlement."""

    order: OrderResponse
    payer: PayerResponse
    balance_before: Decimal
    balance_after: Decimal

    @classmethod
    def from_result(cls, result: SettlementResult) -> "SettleOrderResponse":
        return cls(
            order=OrderResponse.from_order(result.order),
            payer=PayerResponse.from_summary(result.payer),
            balance_before=result.balance_before,
            balance_after=result.balance_after,
        )


class CancelOrderResponse(BaseModel):
    """Response schema for a cancellation."""

    order_id: int
    status: OrderStatus


class CardScanResponse(BaseModel):
    """A scan as stored by the feed."""

    card_id: str
    scanned_at: datetime


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
