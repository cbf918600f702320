"""SQLAlchemy database models for the settlement core."""
import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional

import bcrypt
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column, relationship

from cashless.config import get_settings
from cashless.errors import InsufficientBalance, ValidationError

# BIGINT ids do not alias the SQLite rowid, so they would never autoincrement there
BigIntId = BigInteger().with_variant(Integer(), "sqlite")

MONEY = Numeric(12, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PayerKind(str, enum.Enum):
    """The two disjoint account kinds."""

    HOLDER = "holder"
    SECONDARY_HOLDER = "secondary_holder"


class OrderStatus(str, enum.Enum):
    """Order lifecycle states."""

    PENDING = "pending"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


# completed and cancelled accept nothing
ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.CANCELLED}
    ),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class InventoryChangeType(str, enum.Enum):
    """Reasons this core moves stock."""

    SALE = "sale"
    MANUAL_COMPLETION = "manual_completion"
    CANCELLATION_RESTOCK = "cancellation_restock"


class AccountMixin:
    """
    Columns and behaviour shared by both account kinds.

    Holder and SecondaryHolder are mapped to separate tables but expose the
    same capability set, so the settlement engine can treat either one as a
    payer without branching on its kind.
    """

    kind: ClassVar[PayerKind]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    credential_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    pin_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @declared_attr.directive
    def __table_args__(cls) -> tuple:
        return (
            CheckConstraint("balance >= 0", name=f"{cls.__tablename__}_non_negative_balance"),
        )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def set_pin(self, pin: str, rounds: Optional[int] = None) -> None:
        """Store a bcrypt hash of the PIN, at the configured cost unless rounds is given."""
        rounds = rounds or get_settings().bcrypt_rounds
        self.pin_hash = bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode(
            "utf-8"
        )

    def verify_pin(self, pin: str) -> bool:
        """Compare a PIN against the stored hash. Accounts without a PIN never match."""
        if not self.pin_hash:
            return False
        return bcrypt.checkpw(pin.encode("utf-8"), self.pin_hash.encode("utf-8"))

    def debit(self, amount: Decimal) -> Decimal:
        """
        Subtract amount from the balance.

        Returns:
            Decimal: The new balance

        Raises:
            ValidationError: If amount is negative
            InsufficientBalance: If the balance cannot cover amount
        """
        if amount < 0:
            raise ValidationError("Debit amount must not be negative", amount=amount)
        if self.balance < amount:
            raise InsufficientBalance(required=amount, available=self.balance)
        self.balance = self.balance - amount
        return self.balance


class Holder(AccountMixin, Base):
    """Primary membership account."""

    __tablename__ = "holders"

    kind: ClassVar[PayerKind] = PayerKind.HOLDER

    def __repr__(self) -> str:
        return f"<Holder(id={self.id}, card_id={self.card_id}, balance={self.balance})>"


class SecondaryHolder(AccountMixin, Base):
    """Staff / secondary account, stored apart from holders."""

    __tablename__ = "secondary_holders"

    kind: ClassVar[PayerKind] = PayerKind.SECONDARY_HOLDER

    def __repr__(self) -> str:
        return f"<SecondaryHolder(id={self.id}, card_id={self.card_id}, balance={self.balance})>"


class Product(Base):
    """
    Catalog product.

    Price and availability are edited by catalog management; stock is
    decremented here on settlement.
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="non_negative_price"),
        CheckConstraint("stock_quantity >= 0", name="non_negative_stock"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name={self.name}, stock={self.stock_quantity})>"


class Order(Base):
    """
    Order header.

    Owns the status state machine. total_amount is fixed at creation from
    snapshot line prices and never recomputed from the catalog.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="rfid")
    holder_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("holders.id"), nullable=True, index=True
    )
    secondary_holder_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("secondary_holders.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    lines: Mapped[List["OrderLine"]] = relationship(
        back_populates="order",
        lazy="selectin",
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="non_negative_total"),
        CheckConstraint(
            "holder_id IS NULL OR secondary_holder_id IS NULL", name="single_payer"
        ),
        Index("idx_orders_status_created", "status", "created_at"),
    )

    @property
    def lines_total(self) -> Decimal:
        """Sum of line subtotals."""
        return sum((line.subtotal for line in self.lines), Decimal("0.00"))

    @property
    def payer_kind(self) -> Optional[PayerKind]:
        if self.holder_id is not None:
            return PayerKind.HOLDER
        if self.secondary_holder_id is not None:
            return PayerKind.SECONDARY_HOLDER
        return None

    def required_quantities(self) -> Dict[int, int]:
        """Total quantity needed per product, across duplicate lines."""
        required: Dict[int, int] = {}
        for line in self.lines:
            required[line.product_id] = required.get(line.product_id, 0) + line.quantity
        return required

    def can_transition_to(self, status: OrderStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def attach_payer(self, payer: Any) -> None:
        """Record the payer on whichever reference column matches its kind."""
        if payer.kind is PayerKind.HOLDER:
            self.holder_id = payer.id
            self.secondary_holder_id = None
        else:
            self.secondary_holder_id = payer.id
            self.holder_id = None

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, total={self.total_amount}, status={self.status})>"


class OrderLine(Base):
    """Order line with the unit price captured at order creation."""

    __tablename__ = "order_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    order: Mapped["Order"] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="positive_quantity"),
        CheckConstraint("unit_price >= 0", name="non_negative_unit_price"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderLine(order_id={self.order_id}, product_id={self.product_id}, "
            f"qty={self.quantity}, unit_price={self.unit_price})>"
        )


class InventoryRecord(Base):
    """
    Stock movement audit trail.

    One row per stock mutation made by this core, written in the same
    transaction as the mutation. Immutable once written.
    """

    __tablename__ = "inventory_records"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False, index=True)
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id"), nullable=True, index=True
    )
    change_type: Mapped[InventoryChangeType] = mapped_column(
        Enum(
            InventoryChangeType,
            name="inventory_change_type",
            native_enum=False,
            create_constraint=True,
            length=30,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord(product_id={self.product_id}, order_id={self.order_id}, "
            f"change={self.quantity_change})>"
        )


class OrderEvent(Base):
    """
    Order status audit trail.

    Stores every status transition together with the correlation id of the
    request that caused it.
    """

    __tablename__ = "order_events"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    correlation_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    __table_args__ = (Index("idx_order_events_type", "event_type"),)

    def __repr__(self) -> str:
        return f"<OrderEvent(id={self.id}, order_id={self.order_id}, type={self.event_type})>"
