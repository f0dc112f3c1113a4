"""Хранение незавершённой сессии оплаты между перезапусками приложения."""
import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class PaymentSession(BaseModel):
    """Сессия оплаты: заказ, ушедший во внешний checkout."""

    order_id: int
    preference_id: str | None = None
    started_at: datetime
    last_checked_at: datetime | None = None


class FileSessionStore:
    """
    Сессия в JSON файле. Аналог AsyncStorage мобильного клиента.

    Одновременно хранится не больше одной сессии.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> PaymentSession | None:
        if not self.path.exists():
            return None
        try:
            return PaymentSession.model_validate_json(self.path.read_text(encoding="utf-8"))
        except ValidationError as e:
            # Повреждённый файл не должен блокировать новые оплаты
            logger.warning(f"Сессия оплаты в {self.path} повреждена, сбрасываем: {e}")
            self.clear()
            return None

    def save(self, session: PaymentSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(session.model_dump_json(), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
