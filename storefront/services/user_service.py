"""Покупатели и администраторы магазина."""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.security import check_password, hash_password
from storefront.exceptions import ValidationFailedError
from storefront.models.user import User

logger = logging.getLogger(__name__)

ROLES = ("customer", "admin")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    """Регистрация и вход по email и паролю."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def authenticate(self, email: str, password: str) -> User | None:
        """Вернуть пользователя при верном пароле и отметить время входа."""
        user = await self.get_by_email(email)
        if user is None or not check_password(password, user.password_hash):
            logger.info(f"Неудачная попытка входа для {normalize_email(email)}")
            return None

        user.last_login = datetime.utcnow()
        await self.db.commit()
        return user

    async def register(
        self,
        email: str,
        password: str,
        full_name: str | None = None,
        role: str = "customer",
    ) -> User:
        email = normalize_email(email)
        if role not in ROLES:
            raise ValidationFailedError(f"Неизвестная роль: {role}", {"role": role})
        if await self.get_by_email(email):
            raise ValidationFailedError("Пользователь с таким email уже существует", {"email": email})

        user = User(email=email, password_hash=hash_password(password), full_name=full_name, role=role)
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"Зарегистрирован пользователь {user.id} ({role})")
        return user
