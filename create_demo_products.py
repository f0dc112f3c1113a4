"""Скрипт для наполнения каталога демо-товарами."""
import asyncio
from decimal import Decimal

from sqlalchemy import select

from storefront.database import AsyncSessionLocal, engine
from storefront.models.product import Product
from storefront.services.product_service import ProductService

DEMO_PRODUCTS = [
    {"name": "Camiseta básica", "price": Decimal("249.00"), "stock": 30, "description": "Algodón 100%"},
    {"name": "Sudadera con capucha", "price": Decimal("699.00"), "stock": 12, "description": "Talla unitalla"},
    {"name": "Gorra bordada", "price": Decimal("199.50"), "stock": 25},
    {"name": "Taza de cerámica", "price": Decimal("129.90"), "stock": 40},
    {"name": "Tote bag", "price": Decimal("149.00"), "stock": 0, "description": "Agotado temporalmente"},
]


async def create_demo_products():
    """Создать демо-товары, если их ещё нет."""
    async with AsyncSessionLocal() as db:
        product_service = ProductService(db)

        for data in DEMO_PRODUCTS:
            result = await db.execute(select(Product).where(Product.name == data["name"]))
            if result.scalar_one_or_none():
                print(f"⏭️  Товар '{data['name']}' уже существует")
                continue

            product = await product_service.create(**data)
            print(f"✅ Создан товар '{product.name}' (ID: {product.id}, остаток: {product.stock})")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_demo_products())
