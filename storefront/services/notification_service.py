"""Сервис уведомлений пользователей."""
import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.notification import Notification

logger = logging.getLogger(__name__)

# Одинаковое уведомление в этом окне повторно не создаётся
DUPLICATE_WINDOW = timedelta(minutes=5)


class NotificationService:
    """Сервис уведомлений пользователей."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> Notification:
        """
        Создать уведомление.

        Если такое же уведомление уже создавалось за последние 5 минут,
        возвращается существующее.
        """
        stmt = select(Notification).where(
            Notification.user_id == user_id,
            Notification.type == type,
            Notification.title == title,
            Notification.message == message,
            Notification.created_at >= datetime.utcnow() - DUPLICATE_WINDOW,
        )
        result = await self.db.execute(stmt)
        existing = result.scalars().first()
        if existing:
            logger.info(f"Дубликат уведомления для пользователя {user_id} пропущен: {title}")
            return existing

        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)
        return notification

    async def notify_payment_confirmed(self, user_id: int, order_id: int, amount) -> None:
        """Уведомления об успешной оплате и смене статуса заказа."""
        await self.create(
            user_id=user_id,
            type="PAYMENT",
            title="Pago confirmado",
            message=f"Tu pago de ${amount} para el pedido #{order_id} fue procesado exitosamente",
            data={"order_id": order_id},
        )
        await self.create(
            user_id=user_id,
            type="ORDER_STATUS",
            title="Pedido en preparación",
            message=f"Tu pedido #{order_id} está siendo preparado para envío",
            data={"order_id": order_id, "status": "PAID"},
        )

    async def notify_payment_rejected(self, user_id: int, order_id: int, reason: str | None) -> None:
        """Уведомление об отклонённой оплате."""
        await self.create(
            user_id=user_id,
            type="PAYMENT",
            title="Pago rechazado",
            message=f"Tu pago para el pedido #{order_id} fue rechazado. {reason or 'Intenta con otra tarjeta'}",
            data={"order_id": order_id, "reason": reason},
        )

    async def list_for_user(self, user_id: int, limit: int = 50) -> list[Notification]:
        """Уведомления пользователя, новые сверху."""
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(self, notification_id: int, user_id: int) -> Notification | None:
        """Отметить уведомление прочитанным."""
        stmt = select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
        result = await self.db.execute(stmt)
        notification = result.scalar_one_or_none()
        if notification is None:
            return None

        notification.is_read = True
        await self.db.commit()
        await self.db.refresh(notification)
        return notification
