"""Orders API."""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.dependencies import get_current_user
from storefront.database import get_db
from storefront.models.order import Order
from storefront.models.payment import Payment
from storefront.models.user import User
from storefront.services.order_service import OrderService

router = APIRouter()


class OrderItemResponse(BaseModel):
    """Элемент заказа в ответе."""

    id: int
    product_id: int
    name: str
    quantity: int
    unit_price: float
    total_price: float


class PaymentSummary(BaseModel):
    """Краткая информация о платеже."""

    id: int
    provider: str
    external_id: str
    status: str
    status_detail: str | None = None
    amount: float
    method: str
    created_at: datetime


class OrderResponse(BaseModel):
    """Ответ с информацией о заказе."""

    id: int
    user_id: int
    status: str
    total_amount: float
    shipping_amount: float
    currency: str
    preference_id: str | None = None
    payment_method: str | None = None
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None = None
    items: List[OrderItemResponse] = []
    payment: PaymentSummary | None = None


def payment_summary(payment: Payment | None) -> PaymentSummary | None:
    if payment is None:
        return None
    return PaymentSummary(
        id=payment.id,
        provider=payment.provider,
        external_id=payment.external_id,
        status=payment.external_status,
        status_detail=payment.status_detail,
        amount=float(payment.amount),
        method=payment.method,
        created_at=payment.created_at,
    )


def order_to_response(order: Order) -> OrderResponse:
    """Заказ с позициями и последним платежом."""
    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        status=order.status,
        total_amount=float(order.total_amount),
        shipping_amount=float(order.shipping_amount or 0),
        currency=order.currency,
        preference_id=order.preference_id,
        payment_method=order.payment_method,
        created_at=order.created_at,
        updated_at=order.updated_at,
        paid_at=order.paid_at,
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                name=item.name_snapshot,
                quantity=item.quantity,
                unit_price=float(item.unit_price),
                total_price=float(item.total_price),
            )
            for item in order.items
        ],
        payment=payment_summary(order.payments[-1] if order.payments else None),
    )


@router.get("", response_model=List[OrderResponse])
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Заказы текущего пользователя."""
    orders = await OrderService(db).list_for_user(user.id, page=page, limit=limit)
    return [order_to_response(order) for order in orders]


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Текущее состояние заказа.

    Этот же endpoint опрашивает мобильный клиент после возврата из оплаты.
    """
    order = await OrderService(db).get_for_user(order_id, user.id)
    return order_to_response(order)


@router.patch("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Отмена заказа покупателем. Только для PENDING."""
    order = await OrderService(db).cancel_for_user(order_id, user.id)
    return order_to_response(order)
