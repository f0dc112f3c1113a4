"""Пароли и JWT токены покупателей."""
from datetime import datetime, timedelta

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from storefront.config import settings

ALGORITHM = "HS256"
# bcrypt учитывает только первые 72 байта
BCRYPT_MAX_BYTES = 72


class TokenClaims(BaseModel):
    """Содержимое access токена."""

    user_id: int
    role: str = "customer"


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8")[:BCRYPT_MAX_BYTES], salt).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    """Сверить пароль с хешем. Битый хеш считается несовпадением."""
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:BCRYPT_MAX_BYTES], password_hash.encode("utf-8"))
    except ValueError:
        return False


def issue_access_token(user_id: int, role: str = "customer", ttl: timedelta | None = None) -> str:
    expires_at = datetime.utcnow() + (ttl or timedelta(hours=settings.access_token_expire_hours))
    claims = {"user_id": str(user_id), "role": role, "exp": expires_at}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def read_access_token(token: str) -> TokenClaims | None:
    """Разобрать токен. None для просроченного, поддельного или неполного."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
        return TokenClaims.model_validate(payload)
    except (JWTError, ValidationError):
        return None
