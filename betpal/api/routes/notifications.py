"""Notification route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from betpal.database.db import get_db_session, run_in_transaction
from betpal.services import notification_service
from betpal.services.errors import BetPalError
from betpal.api.auth_dependencies import require_user
from betpal.api.routes import to_http_exception
from betpal.models.schemas import (
    NotificationResponse,
    NotificationListResponse,
    UnreadCountResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/notifications", response_model=NotificationListResponse)
async def get_notifications(
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get user notifications with pagination."""
    try:
        user_id = user.get("id")
        result = await notification_service.get_user_notifications(
            session, user_id, limit=limit, offset=offset, unread_only=unread_only
        )
        return result
    except Exception as e:
        logger.error(f"Error fetching notifications: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error fetching notifications: {str(e)}")


@router.get("/api/notifications/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    user: dict = Depends(require_user), session: AsyncSession = Depends(get_db_session)
):
    """Get unread notification count for user."""
    try:
        user_id = user.get("id")
        count = await notification_service.get_unread_count(session, user_id)
        return {"count": count}
    except Exception as e:
        logger.error(f"Error fetching unread count: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error fetching unread count: {str(e)}")


@router.put("/api/notifications/mark-all-read")
async def mark_all_notifications_as_read(user: dict = Depends(require_user)):
    """Mark all user notifications as read."""
    try:
        user_id = user.get("id")
        count = await run_in_transaction(notification_service.mark_all_as_read, user_id)
        return {"success": True, "count": count}
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error marking all notifications as read: {str(e)}")
        raise HTTPException(
            status_code=500, detail=f"Error marking all notifications as read: {str(e)}"
        )


@router.put("/api/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_as_read(
    notification_id: int,
    user: dict = Depends(require_user),
):
    """Mark a single notification as read."""
    try:
        user_id = user.get("id")
        return await run_in_transaction(
            notification_service.mark_as_read, notification_id, user_id
        )
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error marking notification as read: {str(e)}")
        raise HTTPException(
            status_code=500, detail=f"Error marking notification as read: {str(e)}"
        )
