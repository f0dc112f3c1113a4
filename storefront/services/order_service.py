"""Сервис для работы с заказами."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.config import settings
from storefront.exceptions import (
    InsufficientStockError,
    InvalidOrderStateError,
    OrderNotFoundError,
    ValidationFailedError,
)
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.payment import Payment, PaymentMethod
from storefront.models.product import Product
from storefront.services.inventory_service import InventoryService, StockChange

logger = logging.getLogger(__name__)

# Из каких статусов заказ может стать оплаченным. FAILED допускается:
# после отклонённой попытки покупатель может оплатить ту же preference повторно.
PAYABLE_STATUSES = (OrderStatus.PENDING.value, OrderStatus.FAILED.value)

# Статусы процессора для отклонённого списания картой
DECLINED_STATUSES = ("rejected", "cancelled")

CENT = Decimal("0.01")


@dataclass
class PaymentDetails:
    """Данные платежа процессора для записи Payment."""

    external_id: str
    external_status: str
    amount: Decimal
    method: PaymentMethod = PaymentMethod.UNKNOWN
    provider: str = "mercadopago"
    status_detail: str | None = None
    raw_payload: dict[str, Any] | None = None


@dataclass
class MarkPaidResult:
    """Результат попытки перевести заказ в PAID."""

    applied: bool
    order: Order | None
    payment: Payment | None = None
    stock_changes: list[StockChange] = field(default_factory=list)


class OrderService:
    """Сервис для работы с заказами."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_pending_order(self, user_id: int, items: list[dict]) -> Order:
        """
        Создать заказ в статусе PENDING.

        Цены перечитываются из БД (клиенту не доверяем) и фиксируются в позициях.
        Проверка остатков рекомендательная: товар не резервируется.
        """
        if not items:
            raise ValidationFailedError("Заказ должен содержать хотя бы один товар")

        quantities: dict[int, int] = {}
        for item in items:
            quantity = item.get("quantity")
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise ValidationFailedError(
                    "Количество должно быть положительным целым числом",
                    {"product_id": item.get("product_id"), "quantity": quantity},
                )
            product_id = int(item["product_id"])
            quantities[product_id] = quantities.get(product_id, 0) + quantity

        stmt = select(Product).where(Product.id.in_(list(quantities)), Product.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt)
        products = {product.id: product for product in result.scalars().all()}

        missing = [product_id for product_id in quantities if product_id not in products]
        if missing:
            raise ValidationFailedError("Товар не найден или неактивен", {"product_ids": missing})

        issues = await InventoryService(self.db).check_availability(quantities)
        if issues:
            raise InsufficientStockError("Недостаточно товара на складе", {"issues": issues})

        shipping = settings.shipping_cost.quantize(CENT)
        order = Order(
            user_id=user_id,
            status=OrderStatus.PENDING.value,
            total_amount=Decimal("0"),
            shipping_amount=shipping,
            currency=settings.currency_id,
        )
        self.db.add(order)
        await self.db.flush()

        items_total = Decimal("0")
        for product_id, quantity in quantities.items():
            product = products[product_id]
            unit_price = Decimal(product.price).quantize(CENT)
            line_total = unit_price * quantity
            items_total += line_total
            self.db.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                name_snapshot=product.name,
                quantity=quantity,
                unit_price=unit_price,
                total_price=line_total,
            ))

        order.total_amount = items_total + shipping
        await self.db.commit()

        logger.info(f"Создан заказ {order.id} для пользователя {user_id}: total={order.total_amount}")
        return await self.get_by_id(order.id)

    async def get_by_id(self, order_id: int) -> Order | None:
        """Получить заказ по ID вместе с позициями и платежами."""
        stmt = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.payments))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_user(self, order_id: int, user_id: int) -> Order:
        """Получить заказ владельца. Чужой заказ неотличим от несуществующего."""
        order = await self.get_by_id(order_id)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundError(order_id)
        return order

    async def list_for_user(self, user_id: int, page: int = 1, limit: int = 20) -> list[Order]:
        """Получить заказы пользователя."""
        stmt = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.payments))
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self, status: str | None = None, page: int = 1, limit: int = 50) -> list[Order]:
        """Получить все заказы (для админки)."""
        stmt = select(Order).options(selectinload(Order.items), selectinload(Order.payments))
        if status:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc()).offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_pending_created_before(self, cutoff: datetime) -> list[Order]:
        """
        Неоплаченные заказы с preference, созданные раньше cutoff.

        FAILED тоже попадает в выборку: после отклонения покупатель мог
        оплатить ту же preference, а webhook об этом потеряться.
        """
        stmt = (
            select(Order)
            .where(
                Order.status.in_(PAYABLE_STATUSES),
                Order.preference_id.is_not(None),
                Order.created_at < cutoff,
            )
            .order_by(Order.created_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def set_preference(self, order_id: int, preference_id: str) -> None:
        """Запомнить preference, созданную для заказа."""
        await self.db.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(preference_id=preference_id, payment_method="mercadopago", updated_at=datetime.utcnow())
        )
        await self.db.commit()

    async def try_mark_paid(self, order_id: int, details: PaymentDetails) -> MarkPaidResult:
        """
        Перевести заказ в PAID, если он ещё не оплачен.

        Единственная точка сериализации для webhook, оплаты сохранённой картой
        и ручной смены статуса. В одной транзакции:
        условный UPDATE (status IN PENDING/FAILED), запись Payment и списание
        остатков. Проигравший параллельный вызов получает applied=False и
        ничего не меняет. Любая ошибка откатывает всю транзакцию целиком.
        """
        now = datetime.utcnow()
        try:
            result = await self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status.in_(PAYABLE_STATUSES))
                .values(
                    status=OrderStatus.PAID.value,
                    paid_at=now,
                    updated_at=now,
                    payment_method=details.provider,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                logger.info(f"Заказ {order_id} не в оплачиваемом статусе, повторная оплата пропущена")
                return MarkPaidResult(applied=False, order=await self.get_by_id(order_id))

            payment = Payment(
                order_id=order_id,
                provider=details.provider,
                external_id=details.external_id,
                external_status=details.external_status,
                status_detail=details.status_detail,
                amount=details.amount,
                method=details.method.value,
                raw_payload=details.raw_payload,
            )
            self.db.add(payment)
            await self.db.flush()

            stock_changes = await InventoryService(self.db).decrement_for_order(order_id)
            await self.db.commit()
        except IntegrityError:
            # Платёж с таким external_id уже зафиксирован другим вызовом
            await self.db.rollback()
            logger.info(f"Платёж {details.external_id} уже зафиксирован, заказ {order_id} не изменён")
            return MarkPaidResult(applied=False, order=await self.get_by_id(order_id))
        except Exception:
            await self.db.rollback()
            logger.error(f"Ошибка при переводе заказа {order_id} в PAID, транзакция откачена", exc_info=True)
            raise

        logger.info(f"Заказ {order_id} оплачен (платёж {details.external_id}, {details.amount})")
        return MarkPaidResult(
            applied=True,
            order=await self.get_by_id(order_id),
            payment=payment,
            stock_changes=stock_changes,
        )

    async def try_transition(
        self,
        order_id: int,
        to_status: OrderStatus,
        allowed_from: Iterable[OrderStatus],
        restock: bool = False,
    ) -> bool:
        """
        Условная смена статуса (не для PAID).

        Применяется, только если текущий статус входит в allowed_from.
        При restock=True товар возвращается на склад в той же транзакции.
        """
        if to_status == OrderStatus.PAID:
            raise ValueError("Для перевода в PAID используйте try_mark_paid")

        try:
            result = await self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status.in_([s.value for s in allowed_from]))
                .values(status=to_status.value, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                return False

            if restock:
                await InventoryService(self.db).restore_for_order(order_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Заказ {order_id} переведён в {to_status.value}")
        return True

    async def record_declined_attempt(self, order_id: int, details: PaymentDetails) -> bool:
        """
        Записать отклонённое списание сохранённой картой.

        Заказ остаётся PENDING, чтобы покупатель мог повторить оплату другой картой.
        Если webhook по этому платежу уже успел перевести заказ в FAILED,
        заказ возвращается в PENDING в той же транзакции.
        Возвращает False, если попытка уже была записана.
        """
        try:
            self.db.add(Payment(
                order_id=order_id,
                provider=details.provider,
                external_id=details.external_id,
                external_status=details.external_status,
                status_detail=details.status_detail,
                amount=details.amount,
                method=details.method.value,
                raw_payload=details.raw_payload,
            ))
            await self.db.flush()
            await self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.FAILED.value)
                .values(status=OrderStatus.PENDING.value, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Отклонённый платёж {details.external_id} уже записан для заказа {order_id}")
            return False
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Отклонённый платёж {details.external_id} записан, заказ {order_id} остаётся PENDING")
        return True

    async def is_declined_attempt(self, external_id: str) -> bool:
        """Платёж уже записан как отклонённое списание картой."""
        stmt = select(Payment.id).where(
            Payment.external_id == external_id,
            Payment.external_status.in_(DECLINED_STATUSES),
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def reopen_for_retry(self, order_id: int) -> bool:
        """Осознанный повтор оплаты: FAILED -> PENDING."""
        return await self.try_transition(order_id, OrderStatus.PENDING, [OrderStatus.FAILED])

    async def prepare_for_payment(self, order: Order) -> Order:
        """
        Убедиться, что заказ можно оплачивать.

        FAILED заказ возвращается в PENDING, оплаченный или отменённый отклоняется.
        """
        if order.status == OrderStatus.FAILED.value:
            await self.reopen_for_retry(order.id)
            order = await self.get_by_id(order.id)
        if order.status != OrderStatus.PENDING.value:
            raise InvalidOrderStateError(
                f"Заказ {order.id} нельзя оплатить в статусе {order.status}",
                {"order_id": order.id, "status": order.status},
            )
        return order

    async def cancel_for_user(self, order_id: int, user_id: int) -> Order:
        """
        Отменить заказ по запросу владельца.

        Только из PENDING. Если параллельно пришла оплата, побеждает PAID.
        Остатки не трогаем: у неоплаченного заказа они не списывались.
        """
        await self.get_for_user(order_id, user_id)

        cancelled = await self.try_transition(order_id, OrderStatus.CANCELLED, [OrderStatus.PENDING])
        order = await self.get_by_id(order_id)
        if not cancelled:
            raise InvalidOrderStateError(
                f"Заказ можно отменить только в статусе PENDING. Текущий статус: {order.status}",
                {"order_id": order_id, "status": order.status},
            )
        return order

    async def admin_set_status(
        self,
        order_id: int,
        status: OrderStatus,
        on_paid: Callable[[MarkPaidResult], Awaitable[None]] | None = None,
    ) -> Order:
        """
        Ручная смена статуса администратором.

        Использует те же условные переходы, что и webhook.
        on_paid вызывается после commit, если заказ действительно стал PAID.
        """
        order = await self.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status == status.value:
            return order

        if status == OrderStatus.PAID:
            result = await self.try_mark_paid(
                order_id,
                PaymentDetails(
                    external_id=f"manual-{order_id}",
                    external_status="approved",
                    amount=order.total_amount,
                    method=PaymentMethod.MANUAL,
                    provider="manual",
                ),
            )
            applied = result.applied
            if applied and on_paid is not None:
                await on_paid(result)
        elif status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
            applied = await self.try_transition(order_id, status, [OrderStatus.PENDING])
        elif status == OrderStatus.REFUNDED:
            applied = await self.try_transition(order_id, status, [OrderStatus.PAID], restock=True)
        elif status == OrderStatus.DISPUTED:
            applied = await self.try_transition(order_id, status, [OrderStatus.PAID])
        else:
            applied = await self.reopen_for_retry(order_id)

        order = await self.get_by_id(order_id)
        if not applied:
            raise InvalidOrderStateError(
                f"Переход {order.status} -> {status.value} недопустим",
                {"order_id": order_id, "status": order.status},
            )
        return order
