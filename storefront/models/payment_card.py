"""Модель сохранённой карты."""
from datetime import datetime

from sqlalchemy import String, Boolean, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database import Base


class PaymentCard(Base):
    """Сохранённая карта. Номер и CVV не храним, только токен процессора."""

    __tablename__ = "payment_cards"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    token_id: Mapped[str] = mapped_column(String, nullable=False)
    brand: Mapped[str] = mapped_column(String(20), nullable=False)  # visa / master / amex
    last_four: Mapped[str] = mapped_column(String(4), nullable=False)
    holder_name: Mapped[str] = mapped_column(String, nullable=False)
    expiration_month: Mapped[int] = mapped_column(Integer, nullable=False)
    expiration_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
