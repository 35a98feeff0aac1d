"""
Authentication dependencies for FastAPI routes.

Identity is established upstream by the auth provider, which forwards the
authenticated user's ID in the X-User-Id header. These dependencies only
resolve that ID to a user profile.
"""

from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from betpal.services import user_service
from betpal.database import db

USER_ID_HEADER = "X-User-Id"


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER),
) -> dict:
    """
    Dependency to get the current authenticated user from the identity header.

    The lookup uses its own short-lived session, so no transaction is held
    open while the route runs its own.

    Args:
        x_user_id: User ID forwarded by the auth provider

    Returns:
        User dictionary

    Raises:
        HTTPException: If the header is missing, malformed, or the user does not exist
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity",
        )

    async with db.AsyncSessionLocal() as session:
        user = await user_service.get_user_by_id(session, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


async def require_user(user: dict = Depends(get_current_user)) -> dict:
    """Require any authenticated user."""
    return user
