"""Payments API."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.v1.orders import PaymentSummary, payment_summary
from storefront.core.dependencies import get_current_user
from storefront.database import get_db
from storefront.models.user import User
from storefront.services.card_service import CardService
from storefront.services.mercadopago_client import MercadoPagoClient, get_payment_client
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


class PaymentItemRequest(BaseModel):
    """Позиция корзины. Цена берётся из каталога, а не от клиента."""

    product_id: int
    quantity: int


class CreatePaymentRequest(BaseModel):
    """Запрос на создание платежа. Либо items, либо order_id существующего заказа."""

    items: list[PaymentItemRequest] = []
    order_id: int | None = None


class CreatePaymentResponse(BaseModel):
    init_point: str
    preference_id: str
    order_id: int


class PayWithCardRequest(BaseModel):
    """Оплата сохранённой картой."""

    order_id: int
    card_id: int


class CardPaymentInfo(BaseModel):
    id: str
    status: str
    status_detail: str | None = Field(default=None, serialization_alias="statusDetail")


class OrderStatusInfo(BaseModel):
    id: int
    status: str


class PayWithCardResponse(BaseModel):
    success: bool
    payment: CardPaymentInfo
    order: OrderStatusInfo


class OrderPaymentStatusResponse(BaseModel):
    """Статус оплаты заказа для экрана ожидания."""

    order_id: int
    status: str
    payment: PaymentSummary | None = None


@router.post("/create", response_model=CreatePaymentResponse)
async def create_payment(
    request: CreatePaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_payment_client),
):
    """
    Создать платёж MercadoPago (Checkout Pro).

    Возвращает init_point для редиректа. Остатки проверяются,
    но не резервируются: окончательное списание происходит при оплате.
    """
    if not request.items and request.order_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Нужно передать items или order_id",
        )

    intent = await PaymentService(db, processor).create_payment_intent(
        user=user,
        items=[item.model_dump() for item in request.items],
        order_id=request.order_id,
    )
    return CreatePaymentResponse(
        init_point=intent.init_point,
        preference_id=intent.preference_id,
        order_id=intent.order_id,
    )


@router.post("/webhook")
async def mercadopago_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_payment_client),
):
    """
    Webhook для уведомлений MercadoPago.

    Без авторизации: тело уведомления не считается достоверным, статус
    платежа всегда перечитывается у процессора. Отвечает 200 на всё, что
    обработано или сознательно пропущено. Ошибки БД и процессора
    дают 5xx, чтобы MercadoPago повторил доставку.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    query = dict(request.query_params)
    logger.info(f"Уведомление MercadoPago: type={payload.get('type') or query.get('type')}, query={query}")

    outcome = await PaymentService(db, processor).process_notification(payload, query)
    logger.info(f"Уведомление обработано: {outcome.action} (заказ {outcome.order_id}, статус {outcome.status})")
    return {"ok": True, "action": outcome.action}


@router.post("/pay-with-card")
async def pay_with_card(
    request: PayWithCardRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_payment_client),
):
    """Списание с сохранённой карты без редиректа."""
    result = await CardService(db, processor).pay_with_card(user, request.order_id, request.card_id)
    response = PayWithCardResponse(
        success=result.success,
        payment=CardPaymentInfo(id=result.payment_id, status=result.status, status_detail=result.status_detail),
        order=OrderStatusInfo(id=result.order_id, status=result.order_status),
    )
    return response.model_dump(by_alias=True)


@router.get("/order/{order_id}/status", response_model=OrderPaymentStatusResponse)
async def get_order_payment_status(
    order_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Статус заказа и последний платёж по нему."""
    order = await OrderService(db).get_for_user(order_id, user.id)
    return OrderPaymentStatusResponse(
        order_id=order.id,
        status=order.status,
        payment=payment_summary(order.payments[-1] if order.payments else None),
    )
