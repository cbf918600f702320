"""
Stock bookkeeping for orders.

Stock is never reserved when an order is created; the creation-time check is
advisory. The check made here while the product rows are locked, at the
moment of settlement, is the authoritative one.

Every mutation writes an InventoryRecord in the caller's transaction, so the
records always sum to the stock actually taken from or given back to a
product on behalf of an order.
"""
from typing import Dict, List, Mapping, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cashless.database.models import InventoryChangeType, InventoryRecord, Product
from cashless.errors import InsufficientStock, NotFound, ProductUnavailable
from cashless.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


async def load_products(
    session: AsyncSession, product_ids: List[int], lock: bool = False
) -> Dict[int, Product]:
    """
    Load products by id.

    With lock=True the rows are locked in ascending id order, so concurrent
    transactions touching overlapping products always queue instead of
    deadlocking.
    """
    if not product_ids:
        return {}
    stmt = (
        select(Product)
        .where(Product.id.in_(sorted(set(product_ids))))
        .order_by(Product.id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return {product.id: product for product in result.scalars()}


def check_stock(products: Mapping[int, Product], required: Mapping[int, int]) -> None:
    """
    Verify every product exists, is available and can cover its quantity.

    Products are checked in the order of required, so the error names the
    first failing line.

    Raises:
        NotFound: If a product id is unknown
        ProductUnavailable: If a product is flagged unavailable
        InsufficientStock: If stock is below the required quantity
    """
    for product_id, quantity in required.items():
        product = products.get(product_id)
        if product is None:
            raise NotFound("product", product_id)
        if not product.is_available:
            raise ProductUnavailable(product_id, required=quantity, product_name=product.name)
        if product.stock_quantity < quantity:
            raise InsufficientStock(
                product_id,
                available=product.stock_quantity,
                required=quantity,
                product_name=product.name,
            )


def _move_stock(
    session: AsyncSession,
    product: Product,
    change: int,
    change_type: InventoryChangeType,
    order_id: Optional[int],
    notes: Optional[str] = None,
) -> InventoryRecord:
    previous = product.stock_quantity
    product.stock_quantity = previous + change
    record = InventoryRecord(
        product_id=product.id,
        order_id=order_id,
        change_type=change_type,
        quantity_change=change,
        previous_stock=previous,
        new_stock=product.stock_quantity,
        notes=notes,
    )
    session.add(record)
    metrics.record_stock_movement(change_type.value, change)
    logger.info(
        "stock_moved",
        product_id=product.id,
        order_id=order_id,
        change_type=change_type.value,
        quantity_change=change,
        previous_stock=previous,
        new_stock=product.stock_quantity,
    )
    return record


def take_stock(
    session: AsyncSession,
    products: Mapping[int, Product],
    required: Mapping[int, int],
    order_id: int,
    change_type: InventoryChangeType = InventoryChangeType.SALE,
) -> List[InventoryRecord]:
    """Decrement stock for each required product. Call check_stock first."""
    return [
        _move_stock(session, products[product_id], -quantity, change_type, order_id)
        for product_id, quantity in required.items()
    ]


async def taken_for_order(session: AsyncSession, order_id: int) -> Dict[int, int]:
    """Net units currently taken from each product on behalf of order_id."""
    stmt = (
        select(InventoryRecord.product_id, func.sum(InventoryRecord.quantity_change))
        .where(InventoryRecord.order_id == order_id)
        .group_by(InventoryRecord.product_id)
        .order_by(InventoryRecord.product_id)
    )
    result = await session.execute(stmt)
    return {product_id: -int(net) for product_id, net in result.all() if net and net < 0}


async def restore_for_order(session: AsyncSession, order_id: int) -> Dict[int, int]:
    """
    Give back whatever stock is still recorded as taken for order_id.

    Orders that never took stock restore nothing, and a second call restores
    nothing because the first one's records already balance the movements.

    Returns:
        Dict[int, int]: Units restored per product id
    """
    taken = await taken_for_order(session, order_id)
    if not taken:
        return {}

    products = await load_products(session, list(taken), lock=True)
    for product_id, quantity in taken.items():
        _move_stock(
            session,
            products[product_id],
            quantity,
            InventoryChangeType.CANCELLATION_RESTOCK,
            order_id,
        )
    return taken
