"""HTTP клиент Order API для мобильного приложения."""
import logging
from typing import Literal

import httpx
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

OrderStatusValue = Literal["PENDING", "PAID", "FAILED", "CANCELLED", "REFUNDED", "DISPUTED"]


class OrderApiError(Exception):
    """Order API недоступен или вернул неожиданный ответ."""


class OrderStatusView(BaseModel):
    """Та часть заказа, которая нужна для сверки."""

    id: int
    status: OrderStatusValue
    total_amount: float | None = None


class OrderApiClient:
    """Клиент с bearer токеном пользователя."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def get_order(self, order_id: int) -> OrderStatusView:
        """
        Текущий статус заказа.

        Бросает OrderApiError при сетевой ошибке, ответе не 2xx
        или если в ответе нет распознаваемого заказа.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    f"/api/v1/orders/{order_id}",
                    headers={"Authorization": f"Bearer {self.token}"},
                )
        except httpx.HTTPError as e:
            raise OrderApiError(f"Order API недоступен: {e}") from e

        if not response.is_success:
            raise OrderApiError(f"Order API вернул {response.status_code} для заказа {order_id}")

        try:
            return OrderStatusView.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise OrderApiError(f"Нераспознанный ответ Order API для заказа {order_id}") from e
