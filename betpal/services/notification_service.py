"""
Notification service for managing user notifications.

Handles creation, retrieval, and read-status updates for in-app notifications.
Bet and friend transitions emit notifications through emit_notification(),
which isolates the insert in a SAVEPOINT so a failing notification never
rolls back the settlement it belongs to.
"""

from typing import List, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_
from betpal.database.models import Notification, NotificationType
from betpal.services.errors import ErrorKind, NotFoundError
from betpal.utils.datetime_utils import utcnow, isoformat_or_none
import logging

logger = logging.getLogger(__name__)

VALID_TYPES = {t.value for t in NotificationType}


def _notification_to_dict(notification: Notification) -> Dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "message": notification.message,
        "is_read": notification.is_read,
        "read_at": isoformat_or_none(notification.read_at),
        "bet_id": notification.bet_id,
        "friendship_id": notification.friendship_id,
        "created_at": isoformat_or_none(notification.created_at),
    }


def _build_notification(
    user_id: int,
    type: str,
    message: str,
    bet_id: Optional[int] = None,
    friendship_id: Optional[int] = None,
) -> Notification:
    if not user_id:
        raise ValueError("user_id is required")
    if not type:
        raise ValueError("type is required")
    if type not in VALID_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
    if not message:
        raise ValueError("message is required")

    return Notification(
        user_id=user_id,
        type=type,
        message=message,
        bet_id=bet_id,
        friendship_id=friendship_id,
        is_read=False,
    )


async def create_notification(
    session: AsyncSession,
    user_id: int,
    type: str,
    message: str,
    bet_id: Optional[int] = None,
    friendship_id: Optional[int] = None,
) -> Dict:
    """
    Create a single notification for a user.

    Args:
        session: Database session
        user_id: ID of the user to notify
        type: Notification type (NotificationType enum value)
        message: Notification message text
        bet_id: Optional bet the notification refers to
        friendship_id: Optional friendship the notification refers to

    Returns:
        Dict containing the created notification data

    Raises:
        ValueError: If required fields are missing or invalid
    """
    notification = _build_notification(user_id, type, message, bet_id, friendship_id)

    session.add(notification)
    await session.flush()
    await session.refresh(notification)

    return _notification_to_dict(notification)


async def emit_notification(
    session: AsyncSession,
    user_id: int,
    type: str,
    message: str,
    bet_id: Optional[int] = None,
    friendship_id: Optional[int] = None,
) -> Optional[Dict]:
    """
    Best-effort notification used by state transitions.

    The insert runs inside a SAVEPOINT. If anything goes wrong the savepoint
    is rolled back, the failure is logged, and None is returned; the
    surrounding transaction stays usable.

    Returns:
        The created notification dict, or None if emission failed
    """
    try:
        async with session.begin_nested():
            return await create_notification(
                session,
                user_id=user_id,
                type=type,
                message=message,
                bet_id=bet_id,
                friendship_id=friendship_id,
            )
    except Exception as e:
        logger.warning(f"Failed to emit {type} notification for user {user_id}: {e}")
        return None


async def emit_notifications_bulk(
    session: AsyncSession,
    notifications_list: List[Dict]
) -> List[Dict]:
    """
    Best-effort bulk emission in a single SAVEPOINT.

    Args:
        session: Database session
        notifications_list: List of notification dicts, each containing:
            - user_id (int, required)
            - type (str, required)
            - message (str, required)
            - bet_id (int, optional)
            - friendship_id (int, optional)

    Returns:
        List of created notification dicts (empty if emission failed)
    """
    if not notifications_list:
        return []

    try:
        async with session.begin_nested():
            notification_objects = [
                _build_notification(
                    notif_data.get("user_id"),
                    notif_data.get("type"),
                    notif_data.get("message"),
                    notif_data.get("bet_id"),
                    notif_data.get("friendship_id"),
                )
                for notif_data in notifications_list
            ]

            # Bulk insert
            session.add_all(notification_objects)
            await session.flush()
            for notif in notification_objects:
                await session.refresh(notif)
    except Exception as e:
        logger.warning(f"Failed to emit {len(notifications_list)} bulk notifications: {e}")
        return []

    return [_notification_to_dict(notif) for notif in notification_objects]


async def get_user_notifications(
    session: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False
) -> Dict:
    """
    Fetch user notifications with pagination.

    Args:
        session: Database session
        user_id: ID of the user
        limit: Maximum number of notifications to return (default: 50)
        offset: Number of notifications to skip (default: 0)
        unread_only: If True, only return unread notifications (default: False)

    Returns:
        Dict containing:
            - notifications: List of notification dicts (newest first)
            - total_count: Total number of notifications matching the criteria
            - has_more: Boolean indicating if there are more notifications
    """
    query = select(Notification).where(Notification.user_id == user_id)

    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    # Get total count
    count_query = select(func.count()).select_from(query.subquery())
    total_result = await session.execute(count_query)
    total_count = total_result.scalar_one() or 0

    # Get paginated notifications
    query = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(query)
    notifications = result.scalars().all()

    notification_dicts = [_notification_to_dict(notif) for notif in notifications]
    has_more = (offset + len(notification_dicts)) < total_count

    return {
        "notifications": notification_dicts,
        "total_count": total_count,
        "has_more": has_more,
    }


async def get_unread_count(session: AsyncSession, user_id: int) -> int:
    """
    Get count of unread notifications for a user.

    Args:
        session: Database session
        user_id: ID of the user

    Returns:
        Integer count of unread notifications
    """
    result = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(
            and_(
                Notification.user_id == user_id,
                Notification.is_read == False  # noqa: E712
            )
        )
    )
    return result.scalar_one() or 0


async def mark_as_read(
    session: AsyncSession,
    notification_id: int,
    user_id: int
) -> Dict:
    """
    Mark a single notification as read.

    Idempotent: marking an already-read notification is a no-op and keeps
    the original read_at.

    Args:
        session: Database session
        notification_id: ID of the notification
        user_id: ID of the user (ensures the user owns the notification)

    Returns:
        Updated notification dict

    Raises:
        NotFoundError: If notification not found or doesn't belong to user
    """
    # Only flips unread rows, so a second call changes nothing
    await session.execute(
        update(Notification)
        .where(
            and_(
                Notification.id == notification_id,
                Notification.user_id == user_id,
                Notification.is_read == False  # noqa: E712
            )
        )
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    result = await session.execute(
        select(Notification)
        .where(
            and_(
                Notification.id == notification_id,
                Notification.user_id == user_id
            )
        )
        .execution_options(populate_existing=True)
    )
    notification = result.scalar_one_or_none()

    if not notification:
        raise NotFoundError(
            ErrorKind.NOTIFICATION_NOT_FOUND, "Notification not found or access denied"
        )

    return _notification_to_dict(notification)


async def mark_all_as_read(session: AsyncSession, user_id: int) -> int:
    """
    Mark all user notifications as read.

    Args:
        session: Database session
        user_id: ID of the user

    Returns:
        Count of notifications marked as read
    """
    result = await session.execute(
        update(Notification)
        .where(
            and_(
                Notification.user_id == user_id,
                Notification.is_read == False  # noqa: E712
            )
        )
        .values(
            is_read=True,
            read_at=utcnow()
        )
        .execution_options(synchronize_session=False)
    )
    await session.flush()
    return result.rowcount
