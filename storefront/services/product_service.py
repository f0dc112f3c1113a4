"""Сервис для работы с продуктами."""
import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.cache import cache_service
from storefront.exceptions import ValidationFailedError
from storefront.models.product import Product

logger = logging.getLogger(__name__)

CATALOG_PREFIX = "catalog:"
CATALOG_TTL = 300


def catalog_list_key(page: int, limit: int, search: str | None) -> str:
    return f"{CATALOG_PREFIX}list:{search or ''}:{page}:{limit}"


def catalog_item_key(product_id: int) -> str:
    return f"{CATALOG_PREFIX}item:{product_id}"


def product_to_dict(product: Product) -> dict:
    """Сериализация продукта для API и кэша."""
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": float(product.price),
        "stock": product.stock,
        "image_url": product.image_url,
        "is_active": product.is_active,
    }


async def invalidate_product_cache() -> None:
    """Сбросить кэш каталога (после изменения остатков или цен)."""
    deleted = await cache_service.invalidate_prefix(CATALOG_PREFIX)
    if deleted:
        logger.info(f"Кэш каталога очищен: {deleted} ключей")


class ProductService:
    """Сервис для работы с продуктами."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active(self, search: str | None = None, page: int = 1, limit: int = 20) -> list[dict]:
        """Активные продукты. Результат кэшируется на 5 минут."""
        cache_key = catalog_list_key(page, limit, search)
        cached = await cache_service.get(cache_key)
        if cached is not None:
            return cached

        stmt = select(Product).where(Product.is_active == True)  # noqa: E712
        if search:
            stmt = stmt.where(Product.name.ilike(f"%{search}%"))
        stmt = stmt.order_by(Product.id).offset((page - 1) * limit).limit(limit)

        result = await self.db.execute(stmt)
        products = [product_to_dict(product) for product in result.scalars().all()]
        await cache_service.set(cache_key, products, ttl=CATALOG_TTL)
        return products

    async def get_by_id(self, product_id: int) -> Product | None:
        """Получить продукт по ID."""
        return await self.db.get(Product, product_id)

    async def get_dict(self, product_id: int) -> dict | None:
        cache_key = catalog_item_key(product_id)
        cached = await cache_service.get(cache_key)
        if cached is not None:
            return cached

        product = await self.get_by_id(product_id)
        if product is None or not product.is_active:
            return None
        data = product_to_dict(product)
        await cache_service.set(cache_key, data, ttl=CATALOG_TTL)
        return data

    async def create(
        self,
        name: str,
        price: Decimal,
        stock: int,
        description: str | None = None,
        image_url: str | None = None,
    ) -> Product:
        """Создать продукт (админка)."""
        if stock < 0:
            raise ValidationFailedError("Остаток не может быть отрицательным", {"stock": stock})
        if price <= 0:
            raise ValidationFailedError("Цена должна быть больше нуля", {"price": str(price)})

        product = Product(
            name=name,
            price=price,
            stock=stock,
            description=description,
            image_url=image_url,
        )
        self.db.add(product)
        await self.db.commit()
        await self.db.refresh(product)
        await invalidate_product_cache()
        return product
