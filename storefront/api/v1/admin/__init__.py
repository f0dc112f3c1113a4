"""Админка: заказы и платежи."""
from datetime import datetime
from functools import partial
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.v1.orders import OrderResponse, order_to_response
from storefront.core.dependencies import get_current_admin
from storefront.database import get_db
from storefront.models.order import OrderStatus
from storefront.models.user import User
from storefront.services.mercadopago_client import MercadoPagoClient, get_payment_client
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService, notify_paid
from storefront.services.product_service import invalidate_product_cache

router = APIRouter()


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class AdminPaymentResponse(BaseModel):
    """Платёж в списке админки."""

    id: int
    order_id: int
    provider: str
    external_id: str
    external_status: str
    status_detail: str | None = None
    amount: float
    method: str
    created_at: datetime


@router.get("/orders", response_model=List[OrderResponse])
async def list_orders(
    status: OrderStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Все заказы с фильтром по статусу."""
    orders = await OrderService(db).list_all(status=status.value if status else None, page=page, limit=limit)
    return [order_to_response(order) for order in orders]


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    request: UpdateOrderStatusRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Ручная смена статуса заказа.

    Проходит через те же условные переходы, что и webhook: ручная
    отметка PAID создаёт запись платежа и списывает остатки.
    """
    # Уведомления и сброс кэша, как при оплате через webhook
    order = await OrderService(db).admin_set_status(order_id, request.status, on_paid=partial(notify_paid, db))
    if request.status == OrderStatus.REFUNDED:
        await invalidate_product_cache()
    return order_to_response(order)


@router.get("/payments", response_model=List[AdminPaymentResponse])
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_payment_client),
):
    payments = await PaymentService(db, processor).list_payments(page=page, limit=limit)
    return [
        AdminPaymentResponse(
            id=payment.id,
            order_id=payment.order_id,
            provider=payment.provider,
            external_id=payment.external_id,
            external_status=payment.external_status,
            status_detail=payment.status_detail,
            amount=float(payment.amount),
            method=payment.method,
            created_at=payment.created_at,
        )
        for payment in payments
    ]
