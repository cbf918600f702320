"""Database package for the settlement core."""
from .connection import (
    close_db,
    create_engine_from_settings,
    create_session_factory,
    get_session_factory,
    init_db,
)
from .models import (
    Base,
    Holder,
    InventoryChangeType,
    InventoryRecord,
    Order,
    OrderEvent,
    OrderLine,
    OrderStatus,
    PayerKind,
    Product,
    SecondaryHolder,
)

__all__ = [
    "Base",
    "Holder",
    "SecondaryHolder",
    "PayerKind",
    "Product",
    "Order",
    "OrderLine",
    "OrderStatus",
    "OrderEvent",
    "InventoryRecord",
    "InventoryChangeType",
    "close_db",
    "create_engine_from_settings",
    "create_session_factory",
    "get_session_factory",
    "init_db",
]
