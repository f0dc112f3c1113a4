"""API v1 роутеры."""
from fastapi import APIRouter

from storefront.api.v1 import admin, auth, cards, notifications, orders, payments, products

router = APIRouter()

# Подключаем все роутеры
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(products.router, prefix="/products", tags=["products"])
router.include_router(orders.router, prefix="/orders", tags=["orders"])
router.include_router(payments.router, prefix="/payments", tags=["payments"])
router.include_router(cards.router, prefix="/cards", tags=["cards"])
router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
