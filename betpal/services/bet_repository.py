"""
Bet repository: data access for bets and bet participants.

Pure persistence helpers. Business rules (who may do what, when) live in
bet_service; this module only reads rows, inserts rows, and applies
compare-and-swap status updates whose rowcount tells the caller whether the
expected state still held.
"""

from typing import Dict, List, Optional, Sequence
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_, and_
from betpal.database.models import (
    Bet,
    BetParticipant,
    BetStatus,
    ParticipantStatus,
)
from betpal.services import user_service
from betpal.utils.datetime_utils import isoformat_or_none


async def get_bet_row(session: AsyncSession, bet_id: int) -> Optional[Bet]:
    """Load a bet, always refreshed from the database."""
    result = await session.execute(
        select(Bet).where(Bet.id == bet_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_bet_row_for_update(session: AsyncSession, bet_id: int) -> Optional[Bet]:
    """
    Load a bet and lock its row until the transaction ends.

    Uses SELECT ... FOR UPDATE on PostgreSQL; SQLite ignores the lock clause
    and relies on its database-level write lock.
    """
    result = await session.execute(
        select(Bet)
        .where(Bet.id == bet_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_participant_row(
    session: AsyncSession, bet_id: int, user_id: int
) -> Optional[BetParticipant]:
    """Get the participant row for (bet, user), if any."""
    result = await session.execute(
        select(BetParticipant)
        .where(
            and_(
                BetParticipant.bet_id == bet_id,
                BetParticipant.participant_id == user_id,
            )
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_participants(session: AsyncSession, bet_id: int) -> List[BetParticipant]:
    """All participant rows of a bet, oldest invitation first."""
    result = await session.execute(
        select(BetParticipant)
        .where(BetParticipant.bet_id == bet_id)
        .order_by(BetParticipant.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_accepted_participant_ids(session: AsyncSession, bet_id: int) -> List[int]:
    """User IDs of participants whose stake is in escrow."""
    result = await session.execute(
        select(BetParticipant.participant_id)
        .where(
            and_(
                BetParticipant.bet_id == bet_id,
                BetParticipant.status == ParticipantStatus.ACCEPTED.value,
            )
        )
        .order_by(BetParticipant.id)
    )
    return list(result.scalars().all())


async def add_bet_row(
    session: AsyncSession,
    title: str,
    description: Optional[str],
    stake: int,
    deadline: datetime,
    resolution_type: str,
    created_by: int,
    judge_id: Optional[int],
) -> Bet:
    """Insert a new pending bet and return it with its ID populated."""
    bet = Bet(
        title=title,
        description=description,
        stake=stake,
        deadline=deadline,
        status=BetStatus.PENDING.value,
        resolution_type=resolution_type,
        created_by=created_by,
        judge_id=judge_id,
        winner_id=None,
    )
    session.add(bet)
    await session.flush()
    return bet


async def add_participant_rows(
    session: AsyncSession, bet_id: int, user_ids: Sequence[int]
) -> List[BetParticipant]:
    """Insert invited participant rows for every user ID."""
    rows = [
        BetParticipant(
            bet_id=bet_id,
            participant_id=user_id,
            status=ParticipantStatus.INVITED.value,
        )
        for user_id in user_ids
    ]
    session.add_all(rows)
    await session.flush()
    return rows


async def compare_and_set_bet_status(
    session: AsyncSession,
    bet_id: int,
    expected: Sequence[str],
    new_status: str,
    **values,
) -> bool:
    """
    Move a bet to new_status only if its current status is in expected.

    Returns:
        True if the row was updated, False if another caller changed it first
    """
    result = await session.execute(
        update(Bet)
        .where(and_(Bet.id == bet_id, Bet.status.in_(list(expected))))
        .values(status=new_status, updated_at=func.now(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def compare_and_set_participant_status(
    session: AsyncSession,
    bet_id: int,
    user_id: int,
    expected: str,
    new_status: str,
) -> bool:
    """
    Move a participant row from expected to new_status.

    Returns:
        True if the row was updated, False if it was not in the expected state
    """
    result = await session.execute(
        update(BetParticipant)
        .where(
            and_(
                BetParticipant.bet_id == bet_id,
                BetParticipant.participant_id == user_id,
                BetParticipant.status == expected,
            )
        )
        .values(status=new_status, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_user_bet_ids(session: AsyncSession, user_id: int) -> List[int]:
    """
    IDs of bets the user created or accepted, newest first.

    Bets the user was only invited to (or rejected) are excluded.
    """
    accepted = (
        select(BetParticipant.bet_id)
        .where(
            and_(
                BetParticipant.participant_id == user_id,
                BetParticipant.status == ParticipantStatus.ACCEPTED.value,
            )
        )
    )
    result = await session.execute(
        select(Bet.id)
        .where(or_(Bet.created_by == user_id, Bet.id.in_(accepted)))
        .order_by(Bet.created_at.desc(), Bet.id.desc())
    )
    return list(result.scalars().all())


async def list_invited_bet_ids(session: AsyncSession, user_id: int) -> List[int]:
    """IDs of bets not yet completed where the user still has an unanswered invitation."""
    result = await session.execute(
        select(Bet.id)
        .join(BetParticipant, BetParticipant.bet_id == Bet.id)
        .where(
            and_(
                BetParticipant.participant_id == user_id,
                BetParticipant.status == ParticipantStatus.INVITED.value,
                Bet.status != BetStatus.COMPLETED.value,
            )
        )
        .order_by(Bet.created_at.desc(), Bet.id.desc())
    )
    return list(result.scalars().all())


async def format_bets(session: AsyncSession, bet_ids: Sequence[int]) -> List[Dict]:
    """
    Batch-format bets into response dicts with participants and usernames.

    Fetches bets, participant rows and every referenced username in three
    queries regardless of how many bets are requested. Order of bet_ids is
    preserved.

    Args:
        session: Database session
        bet_ids: Bet IDs to format

    Returns:
        List of bet dicts
    """
    if not bet_ids:
        return []

    bet_result = await session.execute(
        select(Bet).where(Bet.id.in_(list(bet_ids))).execution_options(populate_existing=True)
    )
    bets = {bet.id: bet for bet in bet_result.scalars().all()}

    participant_result = await session.execute(
        select(BetParticipant)
        .where(BetParticipant.bet_id.in_(list(bet_ids)))
        .order_by(BetParticipant.id)
        .execution_options(populate_existing=True)
    )
    participants_by_bet: Dict[int, List[BetParticipant]] = {}
    for participant in participant_result.scalars().all():
        participants_by_bet.setdefault(participant.bet_id, []).append(participant)

    user_ids = set()
    for bet in bets.values():
        user_ids.update([bet.created_by, bet.judge_id, bet.winner_id])
    for rows in participants_by_bet.values():
        user_ids.update(p.participant_id for p in rows)
    usernames = await user_service.get_usernames(session, user_ids)

    formatted = []
    for bet_id in bet_ids:
        bet = bets.get(bet_id)
        if not bet:
            continue
        formatted.append({
            "id": bet.id,
            "title": bet.title,
            "description": bet.description,
            "stake": bet.stake,
            "deadline": isoformat_or_none(bet.deadline),
            "status": bet.status,
            "resolution_type": bet.resolution_type,
            "created_by": bet.created_by,
            "creator_username": usernames.get(bet.created_by),
            "judge_id": bet.judge_id,
            "judge_username": usernames.get(bet.judge_id),
            "winner_id": bet.winner_id,
            "winner_username": usernames.get(bet.winner_id),
            "participants": [
                {
                    "user_id": p.participant_id,
                    "username": usernames.get(p.participant_id, "Unknown"),
                    "status": p.status,
                }
                for p in participants_by_bet.get(bet.id, [])
            ],
            "created_at": isoformat_or_none(bet.created_at),
            "updated_at": isoformat_or_none(bet.updated_at),
        })
    return formatted


async def format_bet(session: AsyncSession, bet_id: int) -> Optional[Dict]:
    """Format a single bet; delegates to format_bets."""
    results = await format_bets(session, [bet_id])
    return results[0] if results else None
