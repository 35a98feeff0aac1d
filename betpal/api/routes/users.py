"""User profile route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from betpal.database.db import get_db_session
from betpal.services import bet_service
from betpal.services.errors import BetPalError
from betpal.api.auth_dependencies import require_user
from betpal.api.routes import to_http_exception
from betpal.models.schemas import BettingSummaryResponse, UserResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/users/me", response_model=UserResponse)
async def get_current_user_info(user: dict = Depends(require_user)):
    """Get the current user's profile, balance and record."""
    return user


@router.get("/api/users/me/summary", response_model=BettingSummaryResponse)
async def get_betting_summary(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get aggregated betting statistics for the current user."""
    try:
        return await bet_service.get_betting_summary(session, user["id"])
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching betting summary: {e}")
        raise HTTPException(status_code=500, detail="Error fetching betting summary")
