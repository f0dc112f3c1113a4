"""Скрипт для ручного запуска сверки PENDING заказов с MercadoPago."""
import argparse
import asyncio
import logging
from datetime import timedelta

from storefront.database import AsyncSessionLocal
from storefront.services.mercadopago_client import MercadoPagoClient
from storefront.services.reconciliation_service import ReconciliationService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main(min_age_minutes: int):
    """Сверить зависшие заказы."""
    try:
        async with AsyncSessionLocal() as db:
            service = ReconciliationService(db, MercadoPagoClient())
            updated = await service.reconcile_pending(min_age=timedelta(minutes=min_age_minutes))
            logger.info(f"Обновлено {updated} заказов (PENDING старше {min_age_minutes} мин)")
    except Exception as e:
        logger.error(f"Ошибка при сверке заказов: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Сверка PENDING заказов с MercadoPago')
    parser.add_argument('--min-age', type=int, default=5, help='Минимальный возраст заказа в минутах')
    args = parser.parse_args()
    asyncio.run(main(args.min_age))
