"""Сохранённые карты."""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.dependencies import get_current_user
from storefront.database import get_db
from storefront.models.payment_card import PaymentCard
from storefront.models.user import User
from storefront.services.card_service import CardService
from storefront.services.mercadopago_client import MercadoPagoClient, get_payment_client

router = APIRouter()


class SaveCardRequest(BaseModel):
    """Данные карты. Номер и CVV уходят в процессор и не сохраняются."""

    card_number: str
    holder_name: str
    expiration_month: int = Field(ge=1, le=12)
    expiration_year: int = Field(ge=2000)
    security_code: str = Field(min_length=3, max_length=4)


class CardResponse(BaseModel):
    id: int
    brand: str
    last_four: str
    holder_name: str
    expiration_month: int
    expiration_year: int
    created_at: datetime


def _card_response(card: PaymentCard) -> CardResponse:
    return CardResponse(
        id=card.id,
        brand=card.brand,
        last_four=card.last_four,
        holder_name=card.holder_name,
        expiration_month=card.expiration_month,
        expiration_year=card.expiration_year,
        created_at=card.created_at,
    )


@router.post("", response_model=CardResponse, status_code=status.HTTP_201_CREATED)
async def save_card(
    request: SaveCardRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_payment_client),
):
    """Токенизировать и сохранить карту."""
    card = await CardService(db, processor).save_card(
        user=user,
        card_number=request.card_number,
        holder_name=request.holder_name,
        expiration_month=request.expiration_month,
        expiration_year=request.expiration_year,
        security_code=request.security_code,
    )
    return _card_response(card)


@router.get("", response_model=List[CardResponse])
async def list_cards(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_payment_client),
):
    cards = await CardService(db, processor).list_cards(user.id)
    return [_card_response(card) for card in cards]


@router.delete("/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_card(
    card_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: MercadoPagoClient = Depends(get_payment_client),
):
    """Удалить карту. Запись остаётся неактивной для истории платежей."""
    await CardService(db, processor).deactivate_card(card_id, user.id)
