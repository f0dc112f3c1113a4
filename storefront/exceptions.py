"""
Иерархия ошибок магазина.

Сервисы бросают эти исключения, а единый обработчик в main.py
превращает их в JSON-ответ с кодом ошибки и HTTP статусом.
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    """Базовая ошибка магазина."""

    status_code: int = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Формат ответа API."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationFailedError(StorefrontError):
    """Некорректные входные данные. Повторять запрос без изменений бессмысленно."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("validation_error", message, details)


class InsufficientStockError(StorefrontError):
    """
    Недостаточно товара на складе на момент создания платежа.

    Проверка рекомендательная: остаток может измениться до оплаты.
    """

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("INSUFFICIENT_STOCK", message, details)


class ExternalServiceError(StorefrontError):
    """Платёжный процессор недоступен или вернул ошибку."""

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", message, details)


class OrderNotFoundError(StorefrontError):
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__("order_not_found", f"Заказ {order_id} не найден", {"order_id": order_id})


class CardNotFoundError(StorefrontError):
    status_code = 404

    def __init__(self, card_id: int):
        super().__init__("card_not_found", "Карта не найдена или неактивна", {"card_id": card_id})


class InvalidOrderStateError(StorefrontError):
    """Операция недопустима в текущем статусе заказа."""

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_order_state", message, details)
