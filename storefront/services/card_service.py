"""Сервис сохранённых карт и оплаты картой без редиректа."""
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import CardNotFoundError, ValidationFailedError
from storefront.models.order import OrderStatus
from storefront.models.payment import PaymentMethod
from storefront.models.payment_card import PaymentCard
from storefront.models.user import User
from storefront.services.mercadopago_client import MercadoPagoClient
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService, PaymentDetails
from storefront.services.payment_service import map_external_status, notify_paid

logger = logging.getLogger(__name__)


def detect_card_brand(card_number: str) -> str:
    """Определить платёжную систему по BIN (в терминах payment_method_id MercadoPago)."""
    if card_number.startswith("4"):
        return "visa"
    if card_number[:2] in ("34", "37"):
        return "amex"
    prefix2 = int(card_number[:2])
    prefix4 = int(card_number[:4])
    if 51 <= prefix2 <= 55 or 2221 <= prefix4 <= 2720:
        return "master"
    raise ValidationFailedError("Платёжная система карты не поддерживается")


@dataclass
class CardChargeResult:
    """Результат оплаты сохранённой картой."""

    success: bool
    status: str
    status_detail: str | None
    payment_id: str
    order_id: int
    order_status: str


class CardService:
    """Сервис сохранённых карт."""

    def __init__(self, db: AsyncSession, processor: MercadoPagoClient):
        self.db = db
        self.processor = processor
        self.orders = OrderService(db)

    async def save_card(
        self,
        user: User,
        card_number: str,
        holder_name: str,
        expiration_month: int,
        expiration_year: int,
        security_code: str,
    ) -> PaymentCard:
        """
        Токенизировать карту и сохранить ссылку на неё.

        В БД попадают только токен, платёжная система и последние 4 цифры.
        """
        number = card_number.replace(" ", "")
        if not number.isdigit() or not 13 <= len(number) <= 19:
            raise ValidationFailedError("Некорректный номер карты")

        brand = detect_card_brand(number)
        token_id = await self.processor.create_card_token(
            card_number=number,
            holder_name=holder_name,
            expiration_month=expiration_month,
            expiration_year=expiration_year,
            security_code=security_code,
        )

        card = PaymentCard(
            user_id=user.id,
            token_id=token_id,
            brand=brand,
            last_four=number[-4:],
            holder_name=holder_name,
            expiration_month=expiration_month,
            expiration_year=expiration_year,
        )
        self.db.add(card)
        await self.db.commit()
        await self.db.refresh(card)
        logger.info(f"Карта ****{card.last_four} сохранена для пользователя {user.id}")
        return card

    async def list_cards(self, user_id: int) -> list[PaymentCard]:
        """Активные карты пользователя."""
        stmt = (
            select(PaymentCard)
            .where(PaymentCard.user_id == user_id, PaymentCard.is_active == True)  # noqa: E712
            .order_by(PaymentCard.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_active_card(self, card_id: int, user_id: int) -> PaymentCard:
        stmt = select(PaymentCard).where(
            PaymentCard.id == card_id,
            PaymentCard.user_id == user_id,
            PaymentCard.is_active == True,  # noqa: E712
        )
        result = await self.db.execute(stmt)
        card = result.scalar_one_or_none()
        if card is None:
            raise CardNotFoundError(card_id)
        return card

    async def deactivate_card(self, card_id: int, user_id: int) -> None:
        """Удалить карту (мягко)."""
        card = await self.get_active_card(card_id, user_id)
        card.is_active = False
        await self.db.commit()

    async def pay_with_card(self, user: User, order_id: int, card_id: int) -> CardChargeResult:
        """
        Оплатить заказ сохранённой картой.

        Одобренный платёж проходит через тот же try_mark_paid, что и webhook.
        Отклонённый оставляет заказ в PENDING: можно повторить с другой картой.
        """
        # ORM объекты истекают после rollback в OrderService, нужные поля читаем заранее
        user_id, payer_email = user.id, user.email
        card = await self.get_active_card(card_id, user_id)
        token_id, brand, last_four = card.token_id, card.brand, card.last_four
        order = await self.orders.get_for_user(order_id, user_id)
        order = await self.orders.prepare_for_payment(order)
        total_amount = order.total_amount

        logger.info(f"Оплата заказа {order_id} картой ****{last_four} (пользователь {user_id})")
        charge = await self.processor.charge_card(
            token_id=token_id,
            amount=total_amount,
            description=f"Pedido #{order_id}",
            payer_email=payer_email,
            payment_method_id=brand,
            external_reference=str(order_id),
            idempotency_key=f"{order_id}-{card_id}-{uuid.uuid4()}",
        )
        logger.info(f"Ответ процессора по заказу {order_id}: {charge.status} ({charge.status_detail})")

        target = map_external_status(charge.status)
        order_status = order.status

        if target == OrderStatus.PAID:
            result = await self.orders.try_mark_paid(
                order_id,
                PaymentDetails(
                    external_id=charge.id,
                    external_status=charge.status,
                    status_detail=charge.status_detail,
                    amount=charge.transaction_amount or total_amount,
                    method=PaymentMethod.CARD,
                    raw_payload=charge.model_dump(mode="json"),
                ),
            )
            if result.applied:
                await notify_paid(self.db, result)
            order_status = result.order.status
        elif target in (OrderStatus.FAILED, OrderStatus.CANCELLED):
            logger.info(f"Оплата заказа {order_id} отклонена: {charge.status_detail}, заказ остаётся PENDING")
            # Запись нужна webhook-у: по этому платежу он не переведёт заказ в FAILED
            await self.orders.record_declined_attempt(
                order_id,
                PaymentDetails(
                    external_id=charge.id,
                    external_status=charge.status,
                    status_detail=charge.status_detail,
                    amount=charge.transaction_amount or total_amount,
                    method=PaymentMethod.CARD,
                    raw_payload=charge.model_dump(mode="json"),
                ),
            )
            order_status = (await self.orders.get_by_id(order_id)).status
            try:
                await NotificationService(self.db).notify_payment_rejected(user_id, order_id, charge.status_detail)
            except SQLAlchemyError as e:
                logger.error(f"Не удалось создать уведомление об отказе по заказу {order_id}: {e}", exc_info=True)
                await self.db.rollback()

        return CardChargeResult(
            success=order_status == OrderStatus.PAID.value,
            status=charge.status,
            status_detail=charge.status_detail,
            payment_id=charge.id,
            order_id=order_id,
            order_status=order_status,
        )
