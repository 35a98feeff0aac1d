"""
Friend service for managing friend requests and friendships.

A friendship is a single directional row: user_id is the requester and
friend_id the addressee. The row starts pending and is accepted or rejected
by the addressee; removing a friendship deletes the row so either side can
ask again later.
"""

from typing import List, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.exc import IntegrityError
from betpal.database.models import (
    Friendship,
    FriendshipStatus,
    NotificationType,
)
from betpal.services import notification_service, user_service
from betpal.services.errors import (
    AuthorizationError,
    ErrorKind,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from betpal.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def _pair_clause(user_id: int, other_id: int):
    return or_(
        and_(Friendship.user_id == user_id, Friendship.friend_id == other_id),
        and_(Friendship.user_id == other_id, Friendship.friend_id == user_id),
    )


async def _get_friendship(session: AsyncSession, friendship_id: int) -> Friendship:
    result = await session.execute(
        select(Friendship)
        .where(Friendship.id == friendship_id)
        .execution_options(populate_existing=True)
    )
    friendship = result.scalar_one_or_none()
    if not friendship:
        raise NotFoundError(ErrorKind.FRIENDSHIP_NOT_FOUND, "Friend request not found")
    return friendship


async def _compare_and_set_status(
    session: AsyncSession, friendship_id: int, new_status: str
) -> bool:
    result = await session.execute(
        update(Friendship)
        .where(
            and_(
                Friendship.id == friendship_id,
                Friendship.status == FriendshipStatus.PENDING.value,
            )
        )
        .values(status=new_status, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def are_friends(session: AsyncSession, user_id: int, other_id: int) -> bool:
    """
    Check if two users have an accepted friendship (in either direction).

    Args:
        session: Database session
        user_id: First user ID
        other_id: Second user ID

    Returns:
        True if the users are friends
    """
    result = await session.execute(
        select(Friendship.id).where(
            and_(
                _pair_clause(user_id, other_id),
                Friendship.status == FriendshipStatus.ACCEPTED.value,
            )
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def add_friend(session: AsyncSession, requester_id: int, username_or_email: str) -> Dict:
    """
    Send a friend request to a user found by username or email.

    Any existing row for the pair blocks a new request, whatever its status
    and whichever side sent it.

    Args:
        session: Database session
        requester_id: User sending the request
        username_or_email: Target username or email

    Returns:
        Dict with friendship data

    Raises:
        NotFoundError: If the target user does not exist
        ValidationError: If the user tries to befriend themselves
        StateConflictError: If a friendship or request already exists
    """
    target = await user_service.find_user_by_username_or_email(session, username_or_email)
    if not target:
        raise NotFoundError(ErrorKind.USER_NOT_FOUND, "User not found")
    if target["id"] == requester_id:
        raise ValidationError(ErrorKind.SELF_FRIENDSHIP, "You cannot add yourself as a friend")

    existing = await session.execute(
        select(Friendship).where(_pair_clause(requester_id, target["id"])).limit(1)
    )
    existing = existing.scalar_one_or_none()
    if existing:
        if existing.status == FriendshipStatus.ACCEPTED.value:
            message = "You are already friends with this user"
        elif existing.user_id == target["id"] and existing.status == FriendshipStatus.PENDING.value:
            message = "This user already sent you a friend request. Accept it instead."
        else:
            message = "Friend request already exists"
        raise StateConflictError(ErrorKind.DUPLICATE_REQUEST, message)

    friendship = Friendship(
        user_id=requester_id,
        friend_id=target["id"],
        status=FriendshipStatus.PENDING.value,
    )
    session.add(friendship)
    try:
        await session.flush()
    except IntegrityError as e:
        # uq_friendships_pair caught a concurrent request for the same pair
        raise StateConflictError(ErrorKind.DUPLICATE_REQUEST, "Friend request already exists") from e
    await session.refresh(friendship)

    names = await user_service.get_usernames(session, [requester_id])
    await notification_service.emit_notification(
        session,
        user_id=target["id"],
        type=NotificationType.FRIEND_REQUEST.value,
        message=f"{names.get(requester_id, 'Someone')} sent you a friend request",
        friendship_id=friendship.id,
    )

    logger.info(f"Friend request {friendship.id} sent from user {requester_id} to {target['id']}")
    return await _format_friendship(session, friendship)


async def accept_friend_request(
    session: AsyncSession, friendship_id: int, acting_user_id: int
) -> Dict:
    """
    Accept a pending friend request.

    Args:
        session: Database session
        friendship_id: Friendship row ID
        acting_user_id: Must be the addressee of the request

    Returns:
        Dict with updated friendship data

    Raises:
        NotFoundError: If the request does not exist
        AuthorizationError: If the acting user is not the addressee
        StateConflictError: If the request is no longer pending
    """
    friendship = await _get_friendship(session, friendship_id)
    if friendship.friend_id != acting_user_id:
        raise AuthorizationError(ErrorKind.NOT_AUTHORIZED, "Not authorized to accept this request")

    if not await _compare_and_set_status(session, friendship_id, FriendshipStatus.ACCEPTED.value):
        raise StateConflictError(ErrorKind.REQUEST_NOT_PENDING, "Friend request is no longer pending")

    names = await user_service.get_usernames(session, [acting_user_id])
    await notification_service.emit_notification(
        session,
        user_id=friendship.user_id,
        type=NotificationType.FRIEND_ACCEPTED.value,
        message=f"{names.get(acting_user_id, 'Someone')} accepted your friend request",
        friendship_id=friendship_id,
    )

    logger.info(f"Friend request {friendship_id} accepted by user {acting_user_id}")
    return await _format_friendship(session, await _get_friendship(session, friendship_id))


async def reject_friend_request(
    session: AsyncSession, friendship_id: int, acting_user_id: int
) -> Dict:
    """
    Reject a pending friend request. The requester is not notified.

    Raises:
        NotFoundError: If the request does not exist
        AuthorizationError: If the acting user is not the addressee
        StateConflictError: If the request is no longer pending
    """
    friendship = await _get_friendship(session, friendship_id)
    if friendship.friend_id != acting_user_id:
        raise AuthorizationError(ErrorKind.NOT_AUTHORIZED, "Not authorized to reject this request")

    if not await _compare_and_set_status(session, friendship_id, FriendshipStatus.REJECTED.value):
        raise StateConflictError(ErrorKind.REQUEST_NOT_PENDING, "Friend request is no longer pending")

    logger.info(f"Friend request {friendship_id} rejected by user {acting_user_id}")
    return await _format_friendship(session, await _get_friendship(session, friendship_id))


async def remove_friend(session: AsyncSession, friendship_id: int, acting_user_id: int) -> None:
    """
    Delete a friendship (or request) row. Either side may remove it.

    Raises:
        NotFoundError: If the friendship does not exist
        AuthorizationError: If the acting user is on neither side
    """
    friendship = await _get_friendship(session, friendship_id)
    if acting_user_id not in (friendship.user_id, friendship.friend_id):
        raise AuthorizationError(ErrorKind.NOT_AUTHORIZED, "Not authorized to remove this friendship")

    await session.execute(
        delete(Friendship)
        .where(Friendship.id == friendship_id)
        .execution_options(synchronize_session=False)
    )
    await session.flush()
    logger.info(f"Friendship {friendship_id} removed by user {acting_user_id}")


async def get_friends(session: AsyncSession, user_id: int) -> Dict:
    """
    Get a user's friends and open requests.

    Args:
        session: Database session
        user_id: User to list friendships for

    Returns:
        Dict with:
            - friends: accepted friendships (either direction)
            - pending_requests: incoming requests awaiting this user
            - sent_requests: outgoing requests still pending
    """
    result = await session.execute(
        select(Friendship)
        .where(
            and_(
                or_(Friendship.user_id == user_id, Friendship.friend_id == user_id),
                Friendship.status.in_(
                    [FriendshipStatus.PENDING.value, FriendshipStatus.ACCEPTED.value]
                ),
            )
        )
        .order_by(Friendship.created_at.desc(), Friendship.id.desc())
        .execution_options(populate_existing=True)
    )
    rows = result.scalars().all()
    formatted = await _format_friendships_batch(session, rows)

    friends, pending_requests, sent_requests = [], [], []
    for row, item in zip(rows, formatted):
        if row.status == FriendshipStatus.ACCEPTED.value:
            other_id = row.friend_id if row.user_id == user_id else row.user_id
            friends.append({
                "friendship_id": row.id,
                "user_id": other_id,
                "username": item["friend_username"] if row.user_id == user_id else item["username"],
                "since": isoformat_or_none(row.updated_at or row.created_at),
            })
        elif row.friend_id == user_id:
            pending_requests.append(item)
        else:
            sent_requests.append(item)

    return {
        "friends": friends,
        "pending_requests": pending_requests,
        "sent_requests": sent_requests,
    }


async def _format_friendships_batch(
    session: AsyncSession, friendships: List[Friendship]
) -> List[Dict]:
    """
    Batch-format Friendship rows into response dicts with usernames.

    Fetches every referenced username in a single query.
    """
    if not friendships:
        return []

    user_ids = set()
    for f in friendships:
        user_ids.update([f.user_id, f.friend_id])
    usernames = await user_service.get_usernames(session, user_ids)

    return [
        {
            "id": f.id,
            "user_id": f.user_id,
            "username": usernames.get(f.user_id, "Unknown"),
            "friend_id": f.friend_id,
            "friend_username": usernames.get(f.friend_id, "Unknown"),
            "status": f.status,
            "created_at": isoformat_or_none(f.created_at),
        }
        for f in friendships
    ]


async def _format_friendship(session: AsyncSession, friendship: Friendship) -> Dict:
    results = await _format_friendships_batch(session, [friendship])
    return results[0]
