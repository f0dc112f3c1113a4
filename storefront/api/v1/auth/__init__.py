"""Авторизация покупателей."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.dependencies import get_current_user
from storefront.core.security import issue_access_token
from storefront.database import get_db
from storefront.models.user import User
from storefront.services.user_service import UserService

router = APIRouter()


class RegisterRequest(BaseModel):
    """Запрос на регистрацию."""

    email: str
    password: str = Field(min_length=6)
    full_name: str | None = None


class LoginRequest(BaseModel):
    """Запрос на авторизацию."""

    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str | None = None
    role: str
    created_at: datetime


class TokenResponse(BaseModel):
    """Ответ с токеном доступа."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        created_at=user.created_at,
    )


def _token_for(user: User) -> TokenResponse:
    return TokenResponse(access_token=issue_access_token(user.id, user.role), user=_user_response(user))


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Регистрация покупателя. Сразу возвращает токен."""
    user = await UserService(db).register(
        email=request.email,
        password=request.password,
        full_name=request.full_name,
    )
    return _token_for(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Авторизация по email и паролю."""
    user = await UserService(db).authenticate(request.email, request.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный email или пароль",
        )
    return _token_for(user)


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return _user_response(user)
