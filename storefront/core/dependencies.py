"""Dependencies для FastAPI."""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.security import read_access_token
from storefront.database import get_db
from storefront.models.user import User

bearer_scheme = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Покупатель из bearer токена. Пользователь перечитывается из БД на каждый запрос."""
    claims = read_access_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Неверный или истекший токен")

    user = await db.get(User, claims.user_id)
    if user is None:
        raise _unauthorized("Пользователь не найден")
    return user


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    # Роль берём из БД, а не из токена
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Недостаточно прав доступа",
        )
    return user
