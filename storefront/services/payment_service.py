"""Сервис для работы с платежами."""
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.exceptions import ExternalServiceError
from storefront.models.order import OrderStatus
from storefront.models.payment import Payment
from storefront.models.user import User
from storefront.services.mercadopago_client import MercadoPagoClient, ProcessorPayment
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import MarkPaidResult, OrderService, PaymentDetails
from storefront.services.product_service import invalidate_product_cache

logger = logging.getLogger(__name__)


# Статус платежа MercadoPago -> статус заказа
STATUS_MAPPING = {
    "approved": OrderStatus.PAID,
    "pending": OrderStatus.PENDING,
    "authorized": OrderStatus.PENDING,
    "in_process": OrderStatus.PENDING,
    "in_mediation": OrderStatus.PENDING,
    "rejected": OrderStatus.FAILED,
    "cancelled": OrderStatus.CANCELLED,
    "refunded": OrderStatus.REFUNDED,
    "charged_back": OrderStatus.DISPUTED,
}


def map_external_status(external_status: str | None) -> OrderStatus | None:
    """Перевести статус процессора во внутренний. None для неизвестных статусов."""
    if not external_status:
        return None
    return STATUS_MAPPING.get(external_status.lower())


@dataclass
class PaymentIntent:
    """Ответ создателя платежа: куда отправить клиента."""

    order_id: int
    preference_id: str
    init_point: str


@dataclass
class WebhookOutcome:
    """Что сделал обработчик уведомления (для логов и тестов)."""

    action: str  # ignored / unknown_reference / duplicate / applied / stale / no_change
    order_id: int | None = None
    status: str | None = None


async def notify_paid(db: AsyncSession, result: MarkPaidResult) -> None:
    """
    Побочные эффекты после успешной оплаты: уведомления и сброс кэша каталога.

    Выполняются после commit; их ошибки логируются и не откатывают оплату.
    """
    order = result.order
    try:
        await NotificationService(db).notify_payment_confirmed(order.user_id, order.id, order.total_amount)
    except SQLAlchemyError as e:
        logger.error(f"Не удалось создать уведомления об оплате заказа {order.id}: {e}", exc_info=True)
        await db.rollback()
    await invalidate_product_cache()


class PaymentService:
    """Сервис для работы с платежами."""

    def __init__(self, db: AsyncSession, processor: MercadoPagoClient):
        self.db = db
        self.processor = processor
        self.orders = OrderService(db)

    async def create_payment_intent(
        self,
        user: User,
        items: list[dict],
        order_id: int | None = None,
    ) -> PaymentIntent:
        """
        Создать платёж в MercadoPago и вернуть init_point.

        Если передан order_id, используется существующий заказ владельца
        (PENDING, либо FAILED, который осознанно возвращается в PENDING).
        Иначе создаётся новый PENDING заказ с зафиксированными ценами.
        При ошибке процессора заказ остаётся PENDING для повторной попытки.
        """
        if order_id is not None:
            order = await self.orders.get_for_user(order_id, user.id)
            order = await self.orders.prepare_for_payment(order)
        else:
            order = await self.orders.create_pending_order(user.id, items)

        preference_items = [
            {
                "id": str(item.product_id),
                "title": item.name_snapshot,
                "quantity": item.quantity,
                "unit_price": float(item.unit_price),
                "currency_id": order.currency,
            }
            for item in order.items
        ]
        if order.shipping_amount and order.shipping_amount > 0:
            preference_items.append({
                "id": "shipping",
                "title": "Envío",
                "quantity": 1,
                "unit_price": float(order.shipping_amount),
                "currency_id": order.currency,
            })

        frontend = settings.frontend_url.rstrip("/")
        try:
            preference = await self.processor.create_preference(
                items=preference_items,
                external_reference=str(order.id),
                back_urls={
                    "success": f"{frontend}/payment/success",
                    "failure": f"{frontend}/payment/failure",
                    "pending": f"{frontend}/payment/pending",
                },
                notification_url=settings.webhook_url,
            )
        except ExternalServiceError as e:
            logger.error(f"Не удалось создать preference для заказа {order.id}, заказ остаётся PENDING")
            e.details["order_id"] = order.id
            raise

        await self.orders.set_preference(order.id, preference.id)
        logger.info(f"Платёж для заказа {order.id} создан: preference={preference.id}")
        return PaymentIntent(order_id=order.id, preference_id=preference.id, init_point=preference.init_point)

    async def process_notification(self, payload: dict[str, Any], query: dict[str, Any] | None = None) -> WebhookOutcome:
        """
        Обработать уведомление MercadoPago.

        Тело уведомления не является источником истины: по id из него
        запрашивается актуальный платёж у процессора. Ошибка процессора
        пробрасывается наружу, чтобы webhook ответил не 2xx и процессор повторил доставку.
        """
        query = query or {}
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        topic = payload.get("type") or payload.get("topic") or query.get("type") or query.get("topic")
        payment_id = data.get("id") or query.get("data.id") or query.get("id")

        if topic != "payment" or not payment_id:
            logger.info(f"Уведомление типа '{topic}' пропущено")
            return WebhookOutcome(action="ignored")

        try:
            processor_payment = await self.processor.get_payment(str(payment_id))
        except ExternalServiceError as e:
            if e.details.get("http_status") != 404:
                raise
            # Процессор не знает такого платежа: поддельное или ошибочное уведомление
            logger.warning(f"Платёж {payment_id} не найден у процессора, уведомление пропущено")
            return WebhookOutcome(action="unknown_reference")

        logger.info(
            f"Платёж {processor_payment.id}: статус={processor_payment.status}, "
            f"reference={processor_payment.external_reference}"
        )
        return await self.apply_processor_payment(processor_payment)

    async def apply_processor_payment(self, processor_payment: ProcessorPayment) -> WebhookOutcome:
        """Применить авторитетный статус платежа к заказу."""
        reference = processor_payment.external_reference
        if not reference or not reference.isdigit():
            logger.warning(f"Платёж {processor_payment.id} без корректного external_reference: {reference!r}")
            return WebhookOutcome(action="unknown_reference")

        order_id = int(reference)
        order = await self.orders.get_by_id(order_id)
        if order is None:
            logger.warning(f"Заказ {order_id} для платежа {processor_payment.id} не найден")
            return WebhookOutcome(action="unknown_reference", order_id=order_id)

        target = map_external_status(processor_payment.status)
        if target is None:
            logger.warning(f"Неизвестный статус платежа '{processor_payment.status}', заказ {order_id} не изменён")
            return WebhookOutcome(action="ignored", order_id=order_id, status=order.status)

        if target.value == order.status:
            logger.info(f"Повторное уведомление для заказа {order_id} ({order.status}), пропускаем")
            return WebhookOutcome(action="duplicate", order_id=order_id, status=order.status)

        if target == OrderStatus.PAID:
            result = await self.orders.try_mark_paid(
                order_id,
                PaymentDetails(
                    external_id=processor_payment.id,
                    external_status=processor_payment.status,
                    status_detail=processor_payment.status_detail,
                    amount=processor_payment.transaction_amount,
                    method=processor_payment.method,
                    raw_payload=processor_payment.model_dump(mode="json"),
                ),
            )
            if not result.applied:
                return WebhookOutcome(action="duplicate", order_id=order_id, status=result.order.status)
            await notify_paid(self.db, result)
            return WebhookOutcome(action="applied", order_id=order_id, status=OrderStatus.PAID.value)

        if target == OrderStatus.PENDING:
            return WebhookOutcome(action="no_change", order_id=order_id, status=order.status)

        if target in (OrderStatus.FAILED, OrderStatus.CANCELLED):
            if await self.orders.is_declined_attempt(processor_payment.id):
                # Отказ по карте уже обработан при списании: заказ остаётся PENDING
                logger.info(f"Отказ {processor_payment.id} по карте уже записан, заказ {order_id} не меняется")
                return WebhookOutcome(action="duplicate", order_id=order_id, status=order.status)
            applied = await self.orders.try_transition(order_id, target, [OrderStatus.PENDING])
        else:
            # REFUNDED / DISPUTED возможны только для оплаченного заказа
            applied = await self.orders.try_transition(
                order_id,
                target,
                [OrderStatus.PAID],
                restock=target == OrderStatus.REFUNDED,
            )
            if applied and target == OrderStatus.REFUNDED:
                await invalidate_product_cache()

        if not applied:
            current = await self.orders.get_by_id(order_id)
            logger.info(
                f"Устаревшее уведомление {processor_payment.status} для заказа {order_id} "
                f"в статусе {current.status}, пропускаем"
            )
            return WebhookOutcome(action="stale", order_id=order_id, status=current.status)

        return WebhookOutcome(action="applied", order_id=order_id, status=target.value)

    async def list_payments(self, page: int = 1, limit: int = 50) -> list[Payment]:
        """Все платежи (для админки)."""
        stmt = select(Payment).order_by(Payment.created_at.desc()).offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
