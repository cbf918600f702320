"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CreateOrderRequest,
    OrderDetailsResponse,
    OrderResponse,
    SettleOrderRequest,
    SettleOrderResponse,
)

__all__ = [
    "app",
    "CreateOrderRequest",
    "OrderDetailsResponse",
    "OrderResponse",
    "SettleOrderRequest",
    "SettleOrderResponse",
]
