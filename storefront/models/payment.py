"""Модель платежа."""
import enum
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import String, Numeric, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database import Base

if TYPE_CHECKING:
    from storefront.models.order import Order


class PaymentMethod(str, enum.Enum):
    """Способ оплаты, как его сообщает процессор."""

    CARD = "card"
    VOUCHER = "voucher"
    TRANSFER = "transfer"
    WALLET = "wallet"
    ACCOUNT_MONEY = "account_money"
    MANUAL = "manual"
    UNKNOWN = "unknown"


class Payment(Base):
    """
    Модель платежа.

    На один заказ может приходиться несколько записей (повторные попытки),
    но external_id уникален: это якорь идемпотентности для перехода в PAID.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String, nullable=False, default="mercadopago")
    external_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    external_status: Mapped[str] = mapped_column(String, nullable=False)
    status_detail: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    method: Mapped[str] = mapped_column(String, nullable=False, default=PaymentMethod.UNKNOWN.value)
    raw_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="payments")
