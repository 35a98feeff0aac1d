"""
Bet lifecycle route handlers.

Mutations run through run_in_transaction: each gets its own transaction and
transient store failures are retried before surfacing as 503.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from betpal.database.db import get_db_session, run_in_transaction
from betpal.services import bet_service
from betpal.services.errors import BetPalError
from betpal.api.auth_dependencies import require_user
from betpal.api.routes import limiter, to_http_exception
from betpal.models.schemas import (
    BetCreate,
    BetInvite,
    BetResolve,
    BetRespond,
    BetResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/bets", response_model=BetResponse, status_code=201)
@limiter.limit("30/minute")
async def create_bet(
    request: Request,
    payload: BetCreate,
    user: dict = Depends(require_user),
):
    """Create a bet, invite participants and escrow the creator's stake."""
    try:
        return await run_in_transaction(
            bet_service.create_bet,
            creator_id=user["id"],
            title=payload.title,
            description=payload.description,
            stake=payload.stake,
            deadline=payload.deadline,
            resolution_type=payload.resolution_type,
            judge_id=payload.judge_id,
            participant_usernames=payload.participant_usernames,
        )
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error creating bet: {e}")
        raise HTTPException(status_code=500, detail="Error creating bet")


@router.get("/api/bets", response_model=List[BetResponse])
async def list_bets(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List bets the current user created or joined, newest first."""
    try:
        return await bet_service.get_user_bets(session, user["id"])
    except Exception as e:
        logger.error(f"Error fetching bets: {e}")
        raise HTTPException(status_code=500, detail="Error fetching bets")


@router.get("/api/bets/invitations", response_model=List[BetResponse])
async def list_invitations(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List pending bets the current user was invited to."""
    try:
        return await bet_service.get_pending_invitations(session, user["id"])
    except Exception as e:
        logger.error(f"Error fetching invitations: {e}")
        raise HTTPException(status_code=500, detail="Error fetching invitations")


@router.get("/api/bets/{bet_id}", response_model=BetResponse)
async def get_bet(
    bet_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a single bet with participants."""
    try:
        return await bet_service.get_bet(session, bet_id)
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching bet {bet_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching bet")


@router.post("/api/bets/{bet_id}/join", response_model=BetResponse)
async def join_bet(
    bet_id: int,
    user: dict = Depends(require_user),
):
    """Join a bet the current user was invited to."""
    try:
        return await run_in_transaction(bet_service.join_bet, user["id"], bet_id)
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error joining bet {bet_id}: {e}")
        raise HTTPException(status_code=500, detail="Error joining bet")


@router.post("/api/bets/{bet_id}/respond", response_model=BetResponse)
async def respond_to_invitation(
    bet_id: int,
    payload: BetRespond,
    user: dict = Depends(require_user),
):
    """Accept or reject a pending invitation."""
    try:
        return await run_in_transaction(
            bet_service.respond_to_invitation, user["id"], bet_id, payload.accept
        )
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error responding to bet {bet_id}: {e}")
        raise HTTPException(status_code=500, detail="Error responding to invitation")


@router.post("/api/bets/{bet_id}/resolve", response_model=BetResponse)
async def resolve_bet(
    bet_id: int,
    payload: BetResolve,
    user: dict = Depends(require_user),
):
    """Resolve an active bet and pay out the winner."""
    try:
        return await run_in_transaction(
            bet_service.resolve_bet, user["id"], bet_id, payload.winner_id
        )
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error resolving bet {bet_id}: {e}")
        raise HTTPException(status_code=500, detail="Error resolving bet")


@router.post("/api/bets/{bet_id}/invite", response_model=BetResponse)
async def invite_participant(
    bet_id: int,
    payload: BetInvite,
    user: dict = Depends(require_user),
):
    """Invite another user to a bet."""
    try:
        return await run_in_transaction(
            bet_service.invite_participant, bet_id, user["id"], payload.username
        )
    except BetPalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error inviting to bet {bet_id}: {e}")
        raise HTTPException(status_code=500, detail="Error inviting participant")
