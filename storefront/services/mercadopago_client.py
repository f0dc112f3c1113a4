"""Клиент API MercadoPago."""
import logging
import uuid
from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel, field_validator

from storefront.config import settings
from storefront.exceptions import ExternalServiceError
from storefront.models.payment import PaymentMethod

logger = logging.getLogger(__name__)


# payment_type_id MercadoPago -> наш способ оплаты
PAYMENT_TYPE_MAPPING = {
    "credit_card": PaymentMethod.CARD,
    "debit_card": PaymentMethod.CARD,
    "prepaid_card": PaymentMethod.CARD,
    "ticket": PaymentMethod.VOUCHER,
    "atm": PaymentMethod.VOUCHER,
    "bank_transfer": PaymentMethod.TRANSFER,
    "account_money": PaymentMethod.ACCOUNT_MONEY,
    "digital_wallet": PaymentMethod.WALLET,
    "digital_currency": PaymentMethod.WALLET,
}


class Preference(BaseModel):
    """Созданная preference (платёжный запрос)."""

    id: str
    init_point: str


class ProcessorPayment(BaseModel):
    """Платёж в том виде, в каком его возвращает процессор."""

    id: str
    status: str
    status_detail: str | None = None
    transaction_amount: Decimal = Decimal("0")
    external_reference: str | None = None
    payment_type_id: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        # MercadoPago отдаёт id числом
        return str(v)

    @property
    def method(self) -> PaymentMethod:
        return PAYMENT_TYPE_MAPPING.get(self.payment_type_id or "", PaymentMethod.UNKNOWN)


class MercadoPagoClient:
    """
    Тонкая обёртка над REST API MercadoPago.

    Любая сетевая ошибка или ответ не 2xx превращается в ExternalServiceError.
    """

    def __init__(
        self,
        access_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token if access_token is not None else settings.mercadopago_access_token
        self.base_url = base_url or settings.mercadopago_api_url
        self.timeout = timeout or settings.mercadopago_timeout
        self._transport = transport

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        idempotency_key: str | None = None,
    ) -> dict:
        if not self.access_token:
            raise ExternalServiceError("MercadoPago access token not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    headers=self._headers(idempotency_key),
                )
        except httpx.HTTPError as e:
            logger.error(f"MercadoPago {method} {path} failed: {e}", exc_info=True)
            raise ExternalServiceError("Платёжный сервис недоступен", {"path": path}) from e

        if response.status_code >= 400:
            logger.error(f"MercadoPago {method} {path} returned {response.status_code}: {response.text}")
            raise ExternalServiceError(
                "Платёжный сервис вернул ошибку",
                {"path": path, "http_status": response.status_code, "body": response.text[:500]},
            )

        return response.json()

    async def create_preference(
        self,
        items: list[dict],
        external_reference: str,
        back_urls: dict[str, str],
        notification_url: str,
    ) -> Preference:
        """Создать preference и получить init_point для редиректа клиента."""
        payload = {
            "items": items,
            "external_reference": external_reference,
            "notification_url": notification_url,
            "back_urls": back_urls,
            "auto_return": "approved",
        }
        data = await self._request(
            "POST",
            "/checkout/preferences",
            json=payload,
            idempotency_key=f"preference-{external_reference}-{uuid.uuid4()}",
        )
        logger.info(f"MercadoPago preference created: {data.get('id')} for reference {external_reference}")
        return Preference.model_validate(data)

    async def get_payment(self, payment_id: str) -> ProcessorPayment:
        """Авторитетный статус платежа по его id."""
        data = await self._request("GET", f"/v1/payments/{payment_id}")
        return ProcessorPayment.model_validate(data)

    async def search_payments(self, external_reference: str) -> list[ProcessorPayment]:
        """Все платежи по external_reference, от старых к новым."""
        data = await self._request(
            "GET",
            "/v1/payments/search",
            params={
                "external_reference": external_reference,
                "sort": "date_created",
                "criteria": "asc",
            },
        )
        return [ProcessorPayment.model_validate(item) for item in data.get("results", [])]

    async def create_card_token(
        self,
        card_number: str,
        holder_name: str,
        expiration_month: int,
        expiration_year: int,
        security_code: str,
    ) -> str:
        """Токенизировать карту. Возвращает token_id."""
        data = await self._request(
            "POST",
            "/v1/card_tokens",
            json={
                "card_number": card_number,
                "expiration_month": expiration_month,
                "expiration_year": expiration_year,
                "security_code": security_code,
                "cardholder": {"name": holder_name},
            },
        )
        token_id = data.get("id")
        if not token_id:
            raise ExternalServiceError("MercadoPago не вернул токен карты")
        return token_id

    async def charge_card(
        self,
        token_id: str,
        amount: Decimal,
        description: str,
        payer_email: str,
        payment_method_id: str,
        external_reference: str,
        idempotency_key: str,
    ) -> ProcessorPayment:
        """Списать сумму с токенизированной карты без редиректа."""
        data = await self._request(
            "POST",
            "/v1/payments",
            json={
                "transaction_amount": float(amount),
                "token": token_id,
                "description": description,
                "installments": 1,
                "payment_method_id": payment_method_id,
                "external_reference": external_reference,
                "payer": {"email": payer_email},
            },
            idempotency_key=idempotency_key,
        )
        return ProcessorPayment.model_validate(data)


def get_payment_client() -> MercadoPagoClient:
    """Dependency для получения клиента процессора."""
    return MercadoPagoClient()
