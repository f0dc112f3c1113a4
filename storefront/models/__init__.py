"""Модели базы данных."""
from storefront.models.user import User
from storefront.models.product import Product
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.payment import Payment, PaymentMethod
from storefront.models.payment_card import PaymentCard
from storefront.models.notification import Notification

__all__ = [
    "User",
    "Product",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentMethod",
    "PaymentCard",
    "Notification",
]
