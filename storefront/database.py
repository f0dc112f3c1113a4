"""Подключение к базе данных."""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from storefront.config import settings


class Base(DeclarativeBase):
    """Базовый класс для всех моделей."""

    pass


def make_engine(url: str, **kwargs) -> AsyncEngine:
    """Асинхронный движок. Для postgres проверяем соединения из пула перед выдачей."""
    if url.startswith("postgresql"):
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=False, **kwargs)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: сервисы читают атрибуты заказа после commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = make_engine(settings.database_url)
AsyncSessionLocal = make_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency для получения сессии БД. Незавершённая транзакция откатывается."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
