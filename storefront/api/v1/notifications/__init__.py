"""Уведомления пользователя."""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.dependencies import get_current_user
from storefront.database import get_db
from storefront.models.notification import Notification
from storefront.models.user import User
from storefront.services.notification_service import NotificationService

router = APIRouter()


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: dict | None = None
    is_read: bool
    created_at: datetime


def _notification_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        data=notification.data,
        is_read=notification.is_read,
        created_at=notification.created_at,
    )


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notifications = await NotificationService(db).list_for_user(user.id, limit=limit)
    return [_notification_response(n) for n in notifications]


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService(db).mark_read(notification_id, user.id)
    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Уведомление не найдено",
        )
    return _notification_response(notification)
