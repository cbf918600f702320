"""
Card to account resolution across the two account kinds.

Holders are searched first, then secondary holders. Inactive accounts never
resolve, so balances and PINs cannot be used against disabled accounts.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, Tuple, Type, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cashless.database.models import Holder, PayerKind, SecondaryHolder
from cashless.errors import NotFound, ValidationError

logger = structlog.get_logger(__name__)

AccountModel = Union[Type[Holder], Type[SecondaryHolder]]

# Lookup order matters: a card registered in both tables resolves to the holder
ACCOUNT_MODELS: Tuple[AccountModel, ...] = (Holder, SecondaryHolder)

MODEL_BY_KIND = {model.kind: model for model in ACCOUNT_MODELS}


class Payer(Protocol):
    """Capability set shared by every account kind."""

    kind: PayerKind
    id: int
    card_id: str
    balance: Decimal
    is_active: bool

    @property
    def display_name(self) -> str: ...

    def verify_pin(self, pin: str) -> bool: ...

    def debit(self, amount: Decimal) -> Decimal: ...


@dataclass(frozen=True)
class PayerSummary:
    """Display identity of a payer, detached from any session."""

    id: int
    card_id: str
    display_name: str
    balance: Decimal
    kind: PayerKind

    @classmethod
    def from_payer(cls, payer: Payer) -> "PayerSummary":
        return cls(
            id=payer.id,
            card_id=payer.card_id,
            display_name=payer.display_name,
            balance=payer.balance,
            kind=payer.kind,
        )


class IdentityResolver:
    """Resolves card identifiers to active payers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def _normalize_card_id(card_id: str) -> str:
        if not isinstance(card_id, str) or not card_id.strip():
            raise ValidationError("Card identifier is required")
        return card_id.strip()

    async def find_payer(
        self, session: AsyncSession, card_id: str, lock: bool = False
    ) -> Payer:
        """
        Find the active account for card_id within an open unit of work.

        Args:
            session: Database session owning the current transaction
            card_id: Card identifier read from the card
            lock: Lock the account row until the transaction ends

        Raises:
            ValidationError: If card_id is empty
            NotFound: If no active account carries the card
        """
        card_id = self._normalize_card_id(card_id)

        for model in ACCOUNT_MODELS:
            stmt = (
                select(model)
                .where(model.card_id == card_id, model.is_active.is_(True))
                .execution_options(populate_existing=True)
            )
            if lock:
                stmt = stmt.with_for_update()
            account = (await session.execute(stmt)).scalar_one_or_none()
            if account is not None:
                logger.debug(
                    "card_resolved",
                    card_id=card_id,
                    payer_kind=model.kind.value,
                    payer_id=account.id,
                )
                return account

        logger.info("card_not_resolved", card_id=card_id)
        raise NotFound("account", card_id)

    async def resolve_by_card(self, card_id: str) -> PayerSummary:
        """Resolve a card to its payer's display identity and balance."""
        async with self.session_factory() as session:
            payer = await self.find_payer(session, card_id)
            return PayerSummary.from_payer(payer)

    async def load_payer(
        self, session: AsyncSession, kind: PayerKind, payer_id: int
    ) -> Optional[Payer]:
        """Load a payer by kind and id, regardless of its active flag."""
        return await session.get(MODEL_BY_KIND[kind], payer_id)
