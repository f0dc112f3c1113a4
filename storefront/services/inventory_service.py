"""Сервис управления остатками на складе."""
import logging
from collections import Counter
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.order import OrderItem
from storefront.models.product import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockChange:
    """Изменение остатка одного товара."""

    product_id: int
    product_name: str
    quantity: int
    old_stock: int
    new_stock: int

    @property
    def oversold(self) -> bool:
        # Только для списаний: возврат всегда увеличивает остаток
        return self.new_stock <= self.old_stock and self.old_stock < self.quantity


class InventoryService:
    """
    Списание и возврат товара по позициям заказа.

    Сервис никогда не делает commit: он работает внутри единицы работы
    вызывающего кода, вместе со сменой статуса заказа.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _quantities_for_order(self, order_id: int) -> Counter:
        stmt = select(OrderItem.product_id, OrderItem.quantity).where(OrderItem.order_id == order_id)
        result = await self.db.execute(stmt)
        quantities: Counter = Counter()
        for product_id, quantity in result.all():
            quantities[product_id] += quantity
        return quantities

    async def _lock_products(self, product_ids: list[int]) -> list[Product]:
        # Блокируем строки в порядке id, чтобы параллельные заказы не ловили deadlock
        stmt = (
            select(Product)
            .where(Product.id.in_(product_ids))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def decrement_for_order(self, order_id: int) -> list[StockChange]:
        """
        Списать товар со склада по позициям оплаченного заказа.

        Остаток не уходит ниже нуля. Если товара меньше, чем оплачено,
        это фиксируется в логе как аномалия (перепродажа), но списание
        не прерывается: заказ уже оплачен.
        """
        quantities = await self._quantities_for_order(order_id)
        if not quantities:
            return []

        changes = []
        for product in await self._lock_products(sorted(quantities)):
            quantity = quantities[product.id]
            old_stock = product.stock
            new_stock = max(0, old_stock - quantity)

            if old_stock < quantity:
                logger.warning(
                    f"Перепродажа: товар '{product.name}' (id={product.id}) в заказе {order_id}. "
                    f"Доступно: {old_stock}, оплачено: {quantity}. Остаток обнулён"
                )

            product.stock = new_stock
            changes.append(StockChange(product.id, product.name, quantity, old_stock, new_stock))
            logger.info(
                f"Списано {quantity} ед. товара '{product.name}' для заказа {order_id}: "
                f"{old_stock} -> {new_stock}"
            )

        await self.db.flush()
        return changes

    async def restore_for_order(self, order_id: int) -> list[StockChange]:
        """Вернуть товар на склад. Только увеличивает остаток, поэтому без ограничений."""
        quantities = await self._quantities_for_order(order_id)
        if not quantities:
            return []

        changes = []
        for product in await self._lock_products(sorted(quantities)):
            quantity = quantities[product.id]
            old_stock = product.stock
            product.stock = old_stock + quantity
            changes.append(StockChange(product.id, product.name, quantity, old_stock, product.stock))
            logger.info(
                f"Возвращено {quantity} ед. товара '{product.name}' по заказу {order_id}: "
                f"{old_stock} -> {product.stock}"
            )

        await self.db.flush()
        return changes

    async def check_availability(self, quantities: dict[int, int]) -> list[dict]:
        """
        Рекомендательная проверка остатков перед созданием платежа.

        Ничего не резервирует. Возвращает список проблем (пустой, если всё в наличии).
        """
        stmt = select(Product).where(Product.id.in_(list(quantities)))
        result = await self.db.execute(stmt)
        products = {product.id: product for product in result.scalars().all()}

        issues = []
        for product_id, requested in quantities.items():
            product = products.get(product_id)
            if product is None:
                issues.append({"product_id": product_id, "issue": "not_found"})
            elif product.stock < requested:
                issues.append({
                    "product_id": product_id,
                    "product_name": product.name,
                    "requested": requested,
                    "available": product.stock,
                    "issue": "insufficient_stock",
                })
        return issues
