"""Фоновая сверка зависших PENDING заказов с процессором."""
import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import ExternalServiceError
from storefront.services.mercadopago_client import MercadoPagoClient
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Подстраховка на случай потерянных webhook.

    Для неоплаченных (PENDING и FAILED) заказов старше min_age ищет платежи у процессора по
    external_reference и прогоняет их через тот же обработчик, что и webhook.
    """

    def __init__(self, db: AsyncSession, processor: MercadoPagoClient):
        self.db = db
        self.processor = processor
        self.orders = OrderService(db)
        self.payments = PaymentService(db, processor)

    async def reconcile_pending(self, min_age: timedelta) -> int:
        """Вернуть количество заказов, статус которых изменился."""
        cutoff = datetime.utcnow() - min_age
        # Только id: rollback внутри обработчика истекает ORM объекты
        order_ids = [order.id for order in await self.orders.list_pending_created_before(cutoff)]
        if not order_ids:
            return 0

        logger.info(f"Сверка {len(order_ids)} неоплаченных заказов с MercadoPago")
        updated = 0
        for order_id in order_ids:
            try:
                processor_payments = await self.processor.search_payments(str(order_id))
            except ExternalServiceError as e:
                logger.warning(f"Не удалось получить платежи по заказу {order_id}: {e.message}")
                continue

            changed = False
            for processor_payment in processor_payments:
                outcome = await self.payments.apply_processor_payment(processor_payment)
                changed = changed or outcome.action == "applied"
            if changed:
                updated += 1

        logger.info(f"Сверка завершена: обновлено {updated} заказов")
        return updated
