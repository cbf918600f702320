"""
Settlement engine: turns a pending or ready order into a completed one.

Orchestrates the settlement flow inside one database transaction:
1. Validate PIN format (before any lookup)
2. Lock the order row and check its status
3. Resolve the card to an active payer and lock the account row
4. Verify the PIN
5. Lock every implicated product row and re-check stock
6. Check the payer's balance
7. Attach payer, debit, decrement stock, mark completed
8. Commit (or roll back everything on any failure)

Because the status check happens under the order row lock, a retried or
concurrent settlement of the same order sees the completed status and fails
instead of debiting twice.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cashless.core import inventory
from cashless.core.credentials import CredentialVerifier, validate_pin_format
from cashless.core.identity import IdentityResolver, PayerSummary
from cashless.core.ledger import OrderLedger, apply_transition, lock_order, parse_status
from cashless.database.models import InventoryChangeType, Order, OrderStatus
from cashless.errors import (
    AuthenticationFailure,
    CashlessError,
    InsufficientBalance,
    InvalidStateTransition,
)
from cashless.monitoring.metrics import Timer, metrics

logger = structlog.get_logger(__name__)

SETTLEABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.READY)


@dataclass
class SettlementResult:
    """Outcome of a successful settlement."""

    order: Order
    payer: PayerSummary
    balance_before: Decimal
    balance_after: Decimal

    @property
    def amount_debited(self) -> Decimal:
        return self.balance_before - self.balance_after


class SettlementEngine:
    """
    Applies payment and stock changes for an order as one unit.

    Handles the complete settlement lifecycle with row-level locking so
    that concurrent attempts on the same order, account or products cannot
    both succeed when only one should.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        identity_resolver: Optional[IdentityResolver] = None,
        credential_verifier: Optional[CredentialVerifier] = None,
        ledger: Optional[OrderLedger] = None,
    ):
        self.session_factory = session_factory
        self.identity_resolver = identity_resolver or IdentityResolver(session_factory)
        self.credential_verifier = credential_verifier or CredentialVerifier()
        self.ledger = ledger or OrderLedger(session_factory, self.identity_resolver)

    async def settle(self, order_id: int, card_id: str, pin: str) -> SettlementResult:
        """
        Settle an order with the payer behind card_id.

        Args:
            order_id: Order to settle
            card_id: Card identifier of the payer
            pin: Four-digit PIN entered by the payer

        Returns:
            SettlementResult: Completed order and the payer's balances

        Raises:
            ValidationError: If the PIN is malformed
            NotFound: If the order or an active account does not exist
            InvalidStateTransition: If the order is completed or cancelled
            AuthenticationFailure: If the PIN does not match
            InsufficientStock: If a product can no longer cover its line
            InsufficientBalance: If the payer cannot cover the total
        """
        correlation_id = uuid.uuid4()
        timer = Timer()
        payer_kind = "unknown"

        logger.info(
            "settlement_started",
            correlation_id=str(correlation_id),
            order_id=order_id,
            card_id=card_id,
        )

        try:
            validate_pin_format(pin)

            async with self.session_factory.begin() as session:
                order = await lock_order(session, order_id)
                if order.status not in SETTLEABLE_STATUSES:
                    raise InvalidStateTransition(order.id, order.status, OrderStatus.COMPLETED)

                payer = await self.identity_resolver.find_payer(session, card_id, lock=True)
                payer_kind = payer.kind.value

                if not await self.credential_verifier.verify_pin(payer, pin):
                    raise AuthenticationFailure(order_id=order.id)

                required = order.required_quantities()
                products = await inventory.load_products(session, list(required), lock=True)
                inventory.check_stock(products, required)

                total = order.total_amount
                if payer.balance < total:
                    raise InsufficientBalance(required=total, available=payer.balance)

                balance_before = payer.balance
                order.attach_payer(payer)
                balance_after = payer.debit(total)
                inventory.take_stock(
                    session, products, required, order.id, InventoryChangeType.SALE
                )
                apply_transition(
                    session,
                    order,
                    OrderStatus.COMPLETED,
                    correlation_id,
                    payer_kind=payer_kind,
                    payer_id=payer.id,
                    amount=str(total),
                    balance_before=str(balance_before),
                    balance_after=str(balance_after),
                )
                summary = PayerSummary.from_payer(payer)

        except CashlessError as e:
            metrics.record_settlement(e.error_code, payer_kind, timer.elapsed)
            logger.warning(
                "settlement_rejected",
                correlation_id=str(correlation_id),
                order_id=order_id,
                error_code=e.error_code,
                error=e.message,
                detail={key: str(value) for key, value in e.detail.items()},
            )
            raise

        metrics.record_settlement("completed", payer_kind, timer.elapsed)
        logger.info(
            "settlement_completed",
            correlation_id=str(correlation_id),
            order_id=order_id,
            payer_kind=payer_kind,
            payer_id=summary.id,
            amount=str(total),
            balance_after=str(balance_after),
            duration_seconds=timer.elapsed,
        )

        return SettlementResult(
            order=order,
            payer=summary,
            balance_before=balance_before,
            balance_after=balance_after,
        )

    async def update_status(
        self, order_id: int, new_status: Union[str, OrderStatus]
    ) -> Order:
        """
        Operator override of an order's status.

        Completing through this path takes stock exactly like settlement
        (same locks, same re-check) but never touches any balance: it is
        used when payment was collected by other means.

        Raises:
            ValidationError: If new_status is not a known status
            NotFound: If the order does not exist
            InvalidStateTransition: If the state machine forbids the move
            InsufficientStock: If completing and a product is short
        """
        status = parse_status(new_status)

        if status is OrderStatus.CANCELLED:
            return await self.ledger.cancel(order_id)
        if status is OrderStatus.READY:
            return await self.ledger.mark_ready(order_id)

        correlation_id = uuid.uuid4()
        async with self.session_factory.begin() as session:
            order = await lock_order(session, order_id)
            if not order.can_transition_to(status):
                raise InvalidStateTransition(order.id, order.status, status)

            # only completion remains reachable here
            required = order.required_quantities()
            products = await inventory.load_products(session, list(required), lock=True)
            inventory.check_stock(products, required)
            inventory.take_stock(
                session, products, required, order.id, InventoryChangeType.MANUAL_COMPLETION
            )
            order.payment_method = "manual"
            apply_transition(session, order, status, correlation_id, override=True)

        logger.info(
            "order_completed_by_override",
            correlation_id=str(correlation_id),
            order_id=order_id,
        )
        return order
