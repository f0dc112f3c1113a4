"""Кэширование через Redis."""
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from storefront.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """
    Сервис для работы с кэшем Redis.

    Кэш необязателен: если Redis недоступен, все операции
    становятся no-op и приложение работает напрямую с БД.
    """

    def __init__(self, url: str | None = None):
        self._url = url or settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def connect(self):
        """Подключение к Redis."""
        if self._redis:
            return
        try:
            client = redis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
            )
            await client.ping()
            self._redis = client
        except (RedisError, OSError) as e:
            logger.warning(f"Redis недоступен, работаем без кэша: {e}")
            self._redis = None

    async def disconnect(self):
        """Отключение от Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    async def get(self, key: str) -> Any | None:
        """Получить значение из кэша."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            logger.warning(f"Ошибка чтения кэша {key}: {e}")
            return None
        return json.loads(value) if value else None

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Установить значение в кэш."""
        if not self._redis:
            return False
        try:
            await self._redis.setex(key, ttl, json.dumps(value, default=str))
            return True
        except RedisError as e:
            logger.warning(f"Ошибка записи кэша {key}: {e}")
            return False

    async def invalidate_prefix(self, prefix: str) -> int:
        """Удалить все ключи, начинающиеся с prefix. Возвращает число удалённых."""
        if not self._redis:
            return 0
        deleted = 0
        try:
            async for key in self._redis.scan_iter(match=f"{prefix}*", count=200):
                deleted += await self._redis.delete(key)
        except RedisError as e:
            logger.warning(f"Ошибка очистки кэша {prefix}: {e}")
        return deleted


# Глобальный экземпляр
cache_service = CacheService()

