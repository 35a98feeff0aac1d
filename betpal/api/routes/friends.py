"""Friend system route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from betpal.database.db import get_db_session, run_in_transaction
from betpal.services import friend_service
from betpal.services.errors import BetPalError
from betpal.api.auth_dependencies import require_user
from betpal.api.routes import limiter, to_http_exception
from betpal.models.schemas import (
    FriendRequestCreate,
    FriendshipResponse,
    FriendListResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/friends/request", response_model=FriendshipResponse)
@limiter.limit("20/minute")
async def send_friend_request(
    request: Request,
    payload: FriendRequestCreate,
    user: dict = Depends(require_user),
):
    """Send a friend request by username or email."""
    try:
        return await run_in_transaction(
            friend_service.add_friend, user["id"], payload.username_or_email
        )
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error sending friend request: {e}")
        raise HTTPException(status_code=500, detail="Error sending friend request")


@router.post("/api/friends/{friendship_id}/accept", response_model=FriendshipResponse)
async def accept_friend_request(
    friendship_id: int,
    user: dict = Depends(require_user),
):
    """Accept a pending friend request."""
    try:
        return await run_in_transaction(
            friend_service.accept_friend_request, friendship_id, user["id"]
        )
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error accepting friend request: {e}")
        raise HTTPException(status_code=500, detail="Error accepting friend request")


@router.post("/api/friends/{friendship_id}/reject", response_model=FriendshipResponse)
async def reject_friend_request(
    friendship_id: int,
    user: dict = Depends(require_user),
):
    """Reject a pending friend request."""
    try:
        return await run_in_transaction(
            friend_service.reject_friend_request, friendship_id, user["id"]
        )
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error rejecting friend request: {e}")
        raise HTTPException(status_code=500, detail="Error rejecting friend request")


@router.delete("/api/friends/{friendship_id}", status_code=204)
async def remove_friend(
    friendship_id: int,
    user: dict = Depends(require_user),
):
    """Remove a friend (or withdraw a request)."""
    try:
        await run_in_transaction(friend_service.remove_friend, friendship_id, user["id"])
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error removing friend: {e}")
        raise HTTPException(status_code=500, detail="Error removing friend")


@router.get("/api/friends", response_model=FriendListResponse)
async def get_friends(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get friends plus incoming and outgoing requests."""
    try:
        return await friend_service.get_friends(session, user["id"])
    except Exception as e:
        logger.error(f"Error fetching friends: {e}")
        raise HTTPException(status_code=500, detail="Error fetching friends")
