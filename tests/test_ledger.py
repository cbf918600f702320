"""
Unit tests for order intake and the order status state machine.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import select

from cashless.core import inventory
from cashless.core.ledger import LineRequest, OrderLedger, parse_status
from cashless.database.models import (
    InventoryChangeType,
    InventoryRecord,
    Order,
    OrderEvent,
    OrderStatus,
    Product,
)
from cashless.errors import (
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    ProductUnavailable,
    ValidationError,
)
from conftest import SeedData, get_product


class TestCreateOrder:
    """Order creation prices lines from the catalog at creation time."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_order_totals_snapshot_prices(
        self, ledger: OrderLedger, seed: SeedData
    ) -> None:
        """Three burgers at 25.00 and one lemonade at 50.00 come to 125.00."""
        order = await ledger.create_order(
            [
                LineRequest(product_id=seed.burger_id, quantity=3),
                LineRequest(product_id=seed.drink_id, quantity=1),
            ]
        )

        assert order.status is OrderStatus.PENDING
        assert order.total_amount == Decimal("125.00")
        assert order.payment_method == "rfid"
        assert order.holder_id is None
        assert order.secondary_holder_id is None
        assert [(line.product_id, line.quantity) for line in order.lines] == [
            (seed.burger_id, 3),
            (seed.drink_id, 1),
        ]
        assert [line.unit_price for line in order.lines] == [Decimal("25.00"), Decimal("50.00")]
        assert [line.subtotal for line in order.lines] == [Decimal("75.00"), Decimal("50.00")]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_order_accepts_mappings(
        self, ledger: OrderLedger, seed: SeedData
    ) -> None:
        order = await ledger.create_order([{"product_id": seed.burger_id, "quantity": 2}])
        assert order.total_amount == Decimal("50.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_order_does_not_reserve_stock(
        self, ledger: OrderLedger, session_factory: Any, seed: SeedData
    ) -> None:
        await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=4)])

        burger = await get_product(session_factory, seed.burger_id)
        assert burger.stock_quantity == 10

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_total_unaffected_by_later_price_change(
        self, ledger: OrderLedger, session_factory: Any, seed: SeedData
    ) -> None:
        """Changing the catalog price after creation leaves the order total alone."""
        order = await ledger.create_order(
            [LineRequest(product_id=seed.burger_id, quantity=3)]
        )

        async with session_factory.begin() as session:
            burger = await session.get(Product, seed.burger_id)
            burger.price = Decimal("99.00")

        stored = await ledger.get_order(order.id)
        assert stored.total_amount == Decimal("75.00")
        assert stored.lines[0].unit_price == Decimal("25.00")
        assert stored.total_amount == stored.lines_total

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_lines_checked_against_combined_quantity(
        self, ledger: OrderLedger, seed: SeedData
    ) -> None:
        """Two lines of the same product must fit in stock together."""
        with pytest.raises(InsufficientStock) as exc_info:
            await ledger.create_order(
                [
                    LineRequest(product_id=seed.drink_id, quantity=3),
                    LineRequest(product_id=seed.drink_id, quantity=3),
                ]
            )

        assert exc_info.value.required == 6
        assert exc_info.value.available == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_order_records_created_event(
        self, ledger: OrderLedger, session_factory: Any, seed: SeedData
    ) -> None:
        order = await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=1)])

        async with session_factory() as session:
            events = (
                await session.execute(select(OrderEvent).where(OrderEvent.order_id == order.id))
            ).scalars().all()

        assert [event.event_type for event in events] == ["order.created"]
        assert events[0].event_data["total_amount"] == "25.00"


class TestCreateOrderValidation:
    """Malformed or unsatisfiable requests are rejected before anything is written."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_lines_rejected(self, ledger: OrderLedger, seed: SeedData) -> None:
        with pytest.raises(ValidationError, match="non-empty"):
            await ledger.create_order([])

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -2, True, "3", 1.5])
    async def test_bad_quantity_rejected(
        self, ledger: OrderLedger, seed: SeedData, quantity: Any
    ) -> None:
        with pytest.raises(ValidationError):
            await ledger.create_order([{"product_id": seed.burger_id, "quantity": quantity}])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_product_id_rejected(self, ledger: OrderLedger, seed: SeedData) -> None:
        with pytest.raises(ValidationError):
            await ledger.create_order([{"quantity": 1}])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_product(self, ledger: OrderLedger, seed: SeedData) -> None:
        with pytest.raises(NotFound) as exc_info:
            await ledger.create_order([LineRequest(product_id=9999, quantity=1)])

        assert exc_info.value.resource == "product"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unavailable_product(self, ledger: OrderLedger, seed: SeedData) -> None:
        with pytest.raises(ProductUnavailable):
            await ledger.create_order([LineRequest(product_id=seed.unavailable_id, quantity=1)])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_out_of_stock_product(
        self, ledger: OrderLedger, session_factory: Any, seed: SeedData
    ) -> None:
        with pytest.raises(InsufficientStock) as exc_info:
            await ledger.create_order([LineRequest(product_id=seed.sold_out_id, quantity=1)])

        assert exc_info.value.product_id == seed.sold_out_id
        assert exc_info.value.available == 0
        assert exc_info.value.required == 1

        async with session_factory() as session:
            count = len((await session.execute(select(Order))).scalars().all())
        assert count == 0


class TestTransitions:
    """mark_ready and cancel follow the order status machine."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mark_ready(self, ledger: OrderLedger, seed: SeedData) -> None:
        order = await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=1)])

        ready = await ledger.mark_ready(order.id)

        assert ready.status is OrderStatus.READY
        assert (await ledger.get_order(order.id)).status is OrderStatus.READY

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mark_ready_twice_rejected(self, ledger: OrderLedger, seed: SeedData) -> None:
        order = await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=1)])
        await ledger.mark_ready(order.id)

        with pytest.raises(InvalidStateTransition):
            await ledger.mark_ready(order.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_pending_and_ready(self, ledger: OrderLedger, seed: SeedData) -> None:
        pending = await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=1)])
        ready = await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=1)])
        await ledger.mark_ready(ready.id)

        assert (await ledger.cancel(pending.id)).status is OrderStatus.CANCELLED
        assert (await ledger.cancel(ready.id)).status is OrderStatus.CANCELLED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancelled_order_is_terminal(self, ledger: OrderLedger, seed: SeedData) -> None:
        order = await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=1)])
        await ledger.cancel(order.id)

        with pytest.raises(InvalidStateTransition) as exc_info:
            await ledger.cancel(order.id)
        assert exc_info.value.current is OrderStatus.CANCELLED

        with pytest.raises(InvalidStateTransition):
            await ledger.mark_ready(order.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_unsettled_order_restores_nothing(
        self, ledger: OrderLedger, session_factory: Any, seed: SeedData
    ) -> None:
        """Stock was never taken for an unsettled order, so none is given back."""
        order = await ledger.create_order([LineRequest(product_id=seed.drink_id, quantity=2)])

        await ledger.cancel(order.id)

        drink = await get_product(session_factory, seed.drink_id)
        assert drink.stock_quantity == 5
        async with session_factory() as session:
            records = (
                await session.execute(
                    select(InventoryRecord).where(InventoryRecord.order_id == order.id)
                )
            ).scalars().all()
        assert records == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_gives_back_stock_taken_for_order(
        self, ledger: OrderLedger, session_factory: Any, seed: SeedData
    ) -> None:
        """Stock recorded as taken for an order returns to the shelf exactly once."""
        order = await ledger.create_order([LineRequest(product_id=seed.drink_id, quantity=2)])
        async with session_factory.begin() as session:
            products = await inventory.load_products(session, [seed.drink_id], lock=True)
            inventory.take_stock(session, products, {seed.drink_id: 2}, order.id)
        assert (await get_product(session_factory, seed.drink_id)).stock_quantity == 3

        await ledger.cancel(order.id)

        assert (await get_product(session_factory, seed.drink_id)).stock_quantity == 5
        async with session_factory() as session:
            records = (
                await session.execute(
                    select(InventoryRecord)
                    .where(InventoryRecord.order_id == order.id)
                    .order_by(InventoryRecord.id)
                )
            ).scalars().all()
        restock = records[-1]
        assert [record.change_type for record in records] == [
            InventoryChangeType.SALE,
            InventoryChangeType.CANCELLATION_RESTOCK,
        ]
        assert restock.quantity_change == 2
        assert (restock.previous_stock, restock.new_stock) == (3, 5)

        async with session_factory.begin() as session:
            assert await inventory.taken_for_order(session, order.id) == {}
            assert await inventory.restore_for_order(session, order.id) == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transition_events_recorded(
        self, ledger: OrderLedger, session_factory: Any, seed: SeedData
    ) -> None:
        order = await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=1)])
        await ledger.mark_ready(order.id)
        await ledger.cancel(order.id)

        async with session_factory() as session:
            events = (
                await session.execute(
                    select(OrderEvent)
                    .where(OrderEvent.order_id == order.id)
                    .order_by(OrderEvent.id)
                )
            ).scalars().all()

        assert [event.event_type for event in events] == [
            "order.created",
            "order.ready",
            "order.cancelled",
        ]
        assert events[2].event_data["from_status"] == "ready"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_order(self, ledger: OrderLedger, seed: SeedData) -> None:
        with pytest.raises(NotFound):
            await ledger.mark_ready(424242)
        with pytest.raises(NotFound):
            await ledger.cancel(424242)
        with pytest.raises(NotFound):
            await ledger.get_details(424242)

    @pytest.mark.unit
    def test_parse_status(self) -> None:
        assert parse_status("ready") is OrderStatus.READY
        with pytest.raises(ValidationError, match="Must be one of"):
            parse_status("shipped")


class TestQueries:
    """Order details and listings."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_details_of_unsettled_order(self, ledger: OrderLedger, seed: SeedData) -> None:
        order = await ledger.create_order(
            [
                LineRequest(product_id=seed.burger_id, quantity=3),
                LineRequest(product_id=seed.drink_id, quantity=1),
            ]
        )

        details = await ledger.get_details(order.id)

        assert details.order.id == order.id
        assert details.payer is None
        assert [line.product_name for line in details.lines] == ["Burger", "Lemonade"]
        assert details.lines[0].category == "food"
        assert details.lines[1].subtotal == Decimal("50.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_orders_filters_and_pages(
        self, ledger: OrderLedger, seed: SeedData
    ) -> None:
        created = []
        for _ in range(5):
            created.append(
                await ledger.create_order([LineRequest(product_id=seed.burger_id, quantity=1)])
            )
        await ledger.mark_ready(created[0].id)
        await ledger.cancel(created[1].id)

        everything = await ledger.list_orders()
        assert [order.id for order in everything] == [order.id for order in reversed(created)]

        ready = await ledger.list_orders(status="ready")
        assert [order.id for order in ready] == [created[0].id]

        first_page = await ledger.list_orders(page=1, limit=2)
        second_page = await ledger.list_orders(page=2, limit=2)
        assert [order.id for order in first_page] == [created[4].id, created[3].id]
        assert [order.id for order in second_page] == [created[2].id, created[1].id]

        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert await ledger.list_orders(start=future) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_orders_rejects_unknown_status(
        self, ledger: OrderLedger, seed: SeedData
    ) -> None:
        with pytest.raises(ValidationError):
            await ledger.list_orders(status="lost")
