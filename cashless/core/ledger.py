"""
Order ledger: order intake and the order status state machine.

Orders are created pending with unit prices snapshotted from the catalog.
Transitions are applied to a locked order row inside a single unit of work,
together with an OrderEvent audit row.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cashless.core import inventory
from cashless.core.identity import IdentityResolver, PayerSummary
from cashless.database.models import (
    Order,
    OrderEvent,
    OrderLine,
    OrderStatus,
    PayerKind,
    Product,
)
from cashless.errors import InvalidStateTransition, NotFound, ValidationError
from cashless.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    """
    Parse an order status name.

    Raises:
        ValidationError: For anything outside pending/ready/completed/cancelled
    """
    try:
        return OrderStatus(value)
    except ValueError:
        allowed = [status.value for status in OrderStatus]
        raise ValidationError(
            f"Invalid status. Must be one of: {allowed}", status=value
        ) from None


@dataclass(frozen=True)
class LineRequest:
    """A requested order line."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class LineDetail:
    """Order line joined with product display fields."""

    id: int
    product_id: int
    product_name: str
    description: Optional[str]
    category: Optional[str]
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


@dataclass
class OrderDetails:
    """An order, its lines and its payer's display identity."""

    order: Order
    lines: List[LineDetail] = field(default_factory=list)
    payer: Optional[PayerSummary] = None


def _coerce_line(raw: Union[LineRequest, Mapping[str, Any]]) -> LineRequest:
    if isinstance(raw, LineRequest):
        line = raw
    else:
        try:
            line = LineRequest(product_id=raw["product_id"], quantity=raw["quantity"])
        except (KeyError, TypeError):
            raise ValidationError(
                "Each line must have product_id and positive quantity"
            ) from None

    # bool is an int subclass; True is not a quantity
    for name in ("product_id", "quantity"):
        value = getattr(line, name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(
                "Each line must have product_id and positive quantity", **{name: value}
            )
    if line.quantity <= 0:
        raise ValidationError(
            "Each line must have product_id and positive quantity", quantity=line.quantity
        )
    return line


async def lock_order(session: AsyncSession, order_id: int) -> Order:
    """
    Load and lock an order row for the rest of the transaction.

    Raises:
        NotFound: If the order does not exist
    """
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = (await session.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise NotFound("order", order_id)
    return order


def record_order_event(
    session: AsyncSession,
    order: Order,
    event_type: str,
    event_data: Dict[str, Any],
    correlation_id: uuid.UUID,
) -> None:
    """Add an audit event for order to the current transaction."""
    session.add(
        OrderEvent(
            order_id=order.id,
            event_type=event_type,
            event_data=event_data,
            correlation_id=correlation_id,
        )
    )


def apply_transition(
    session: AsyncSession,
    order: Order,
    new_status: OrderStatus,
    correlation_id: uuid.UUID,
    **event_data: Any,
) -> None:
    """
    Move a locked order to new_status and record the event.

    Raises:
        InvalidStateTransition: If the state machine forbids the move
    """
    current = order.status
    if not order.can_transition_to(new_status):
        raise InvalidStateTransition(order.id, current, new_status)

    order.status = new_status
    record_order_event(
        session,
        order,
        f"order.{new_status.value}",
        {"from_status": current.value, "to_status": new_status.value, **event_data},
        correlation_id,
    )
    metrics.record_transition(current.value, new_status.value)
    logger.info(
        "order_status_changed",
        correlation_id=str(correlation_id),
        order_id=order.id,
        from_status=current.value,
        to_status=new_status.value,
    )


class OrderLedger:
    """Creates orders and owns their non-settlement transitions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        identity_resolver: Optional[IdentityResolver] = None,
        default_page_size: int = 20,
    ):
        self.session_factory = session_factory
        self.identity_resolver = identity_resolver or IdentityResolver(session_factory)
        self.default_page_size = default_page_size

    async def create_order(
        self,
        lines: Sequence[Union[LineRequest, Mapping[str, Any]]],
        payment_method: str = "rfid",
    ) -> Order:
        """
        Create a pending order priced from the current catalog.

        Availability and stock are checked but not reserved.

        Raises:
            ValidationError: If lines are empty or malformed
            NotFound: If a product id is unknown
            InsufficientStock: If a product is unavailable or short of stock
        """
        if not lines:
            raise ValidationError("Items are required and must be a non-empty array")
        requested = [_coerce_line(raw) for raw in lines]

        required: Dict[int, int] = {}
        for line in requested:
            required[line.product_id] = required.get(line.product_id, 0) + line.quantity

        correlation_id = uuid.uuid4()

        async with self.session_factory.begin() as session:
            products = await inventory.load_products(session, list(required))
            inventory.check_stock(products, required)

            order_lines = []
            for line in requested:
                unit_price = to_money(products[line.product_id].price)
                order_lines.append(
                    OrderLine(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=unit_price,
                        subtotal=to_money(unit_price * line.quantity),
                    )
                )
            total_amount = to_money(
                sum((line.subtotal for line in order_lines), Decimal("0.00"))
            )

            order = Order(
                total_amount=total_amount,
                status=OrderStatus.PENDING,
                payment_method=payment_method,
                lines=order_lines,
            )
            session.add(order)
            await session.flush()

            record_order_event(
                session,
                order,
                "order.created",
                {
                    "total_amount": str(total_amount),
                    "lines": [
                        {
                            "product_id": line.product_id,
                            "quantity": line.quantity,
                            "unit_price": str(line.unit_price),
                        }
                        for line in order_lines
                    ],
                },
                correlation_id,
            )

        metrics.record_order_created(float(total_amount))
        logger.info(
            "order_created",
            correlation_id=str(correlation_id),
            order_id=order.id,
            total_amount=str(total_amount),
            line_count=len(order_lines),
        )
        return order

    async def mark_ready(self, order_id: int) -> Order:
        """
        Mark an order as prepared.

        Raises:
            NotFound: If the order does not exist
            InvalidStateTransition: Unless the order is pending
        """
        correlation_id = uuid.uuid4()
        async with self.session_factory.begin() as session:
            order = await lock_order(session, order_id)
            if order.status is not OrderStatus.PENDING:
                raise InvalidStateTransition(order.id, order.status, OrderStatus.READY)
            apply_transition(session, order, OrderStatus.READY, correlation_id)
        return order

    async def cancel(self, order_id: int) -> Order:
        """
        Cancel a pending or ready order.

        Stock still recorded as taken for the order is given back; an order
        that never took stock restores nothing.

        Raises:
            NotFound: If the order does not exist
            InvalidStateTransition: If the order is completed or cancelled
        """
        correlation_id = uuid.uuid4()
        async with self.session_factory.begin() as session:
            order = await lock_order(session, order_id)
            if order.status.is_terminal:
                raise InvalidStateTransition(order.id, order.status, OrderStatus.CANCELLED)

            restored = await inventory.restore_for_order(session, order.id)
            apply_transition(
                session,
                order,
                OrderStatus.CANCELLED,
                correlation_id,
                restored={str(product_id): qty for product_id, qty in restored.items()},
            )
        return order

    async def get_order(self, order_id: int) -> Order:
        """
        Load an order with its lines.

        Raises:
            NotFound: If the order does not exist
        """
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFound("order", order_id)
            return order

    async def get_details(self, order_id: int) -> OrderDetails:
        """
        Load an order, its lines joined with product fields, and its payer.

        Raises:
            NotFound: If the order does not exist
        """
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFound("order", order_id)

            stmt = (
                select(OrderLine, Product)
                .join(Product, OrderLine.product_id == Product.id)
                .where(OrderLine.order_id == order_id)
                .order_by(OrderLine.id)
            )
            rows = (await session.execute(stmt)).all()
            lines = [
                LineDetail(
                    id=line.id,
                    product_id=line.product_id,
                    product_name=product.name,
                    description=product.description,
                    category=product.category,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.subtotal,
                )
                for line, product in rows
            ]

            payer = None
            if order.payer_kind is not None:
                payer_id = (
                    order.holder_id
                    if order.payer_kind is PayerKind.HOLDER
                    else order.secondary_holder_id
                )
                account = await self.identity_resolver.load_payer(
                    session, order.payer_kind, payer_id
                )
                if account is not None:
                    payer = PayerSummary.from_payer(account)

            return OrderDetails(order=order, lines=lines, payer=payer)

    async def list_orders(
        self,
        status: Optional[Union[str, OrderStatus]] = None,
        holder_id: Optional[int] = None,
        secondary_holder_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> List[Order]:
        """List orders newest first, with optional filters and pagination."""
        page = page if page and page > 0 else 1
        limit = limit if limit and limit > 0 else self.default_page_size

        stmt = select(Order)
        if status is not None:
            stmt = stmt.where(Order.status == parse_status(status))
        if holder_id is not None:
            stmt = stmt.where(Order.holder_id == holder_id)
        if secondary_holder_id is not None:
            stmt = stmt.where(Order.secondary_holder_id == secondary_holder_id)
        if start is not None:
            stmt = stmt.where(Order.created_at >= start)
        if end is not None:
            stmt = stmt.where(Order.created_at <= end)
        stmt = (
            stmt.order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
