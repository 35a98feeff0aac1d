"""
Bet service: the bet lifecycle and settlement engine.

State machine:
    pending --(an invited participant accepts)--> active
    active  --(authorized resolver picks a winner)--> completed

Every operation runs inside the caller's transaction and only flushes.
Status transitions are compare-and-swap updates guarded by the expected
status, and balances move through user_service's atomic increments, so a
repeated or concurrent call fails with StateConflictError instead of being
applied twice. Raising any error means the caller must roll back.
"""

import math
from typing import Dict, List, Optional, Sequence
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from betpal.database.models import (
    Bet,
    BetParticipant,
    BetStatus,
    NotificationType,
    ParticipantStatus,
    ResolutionType,
)
from betpal.services import bet_repository, friend_service, notification_service, user_service
from betpal.services.errors import (
    AuthorizationError,
    ErrorKind,
    InsufficientFundsError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from betpal.utils import constants
from betpal.utils.datetime_utils import ensure_utc, utcnow
import logging

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Input validation (no store access)
# ──────────────────────────────────────────────────────────────


def _validate_stake(stake) -> int:
    if isinstance(stake, bool) or not isinstance(stake, int):
        raise ValidationError(ErrorKind.INVALID_STAKE, "Stake must be a whole number of tokens")
    if stake < constants.MIN_STAKE:
        raise ValidationError(
            ErrorKind.INVALID_STAKE, f"Stake must be at least {constants.MIN_STAKE} token"
        )
    return stake


def _validate_deadline(deadline: datetime) -> datetime:
    if not isinstance(deadline, datetime):
        raise ValidationError(ErrorKind.INVALID_DEADLINE, "Deadline must be a datetime")
    deadline = ensure_utc(deadline)
    if deadline <= utcnow():
        raise ValidationError(ErrorKind.INVALID_DEADLINE, "Deadline must be in the future")
    return deadline


def _validate_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError(ErrorKind.INVALID_INPUT, "Title is required")
    if len(title) > constants.MAX_TITLE_LENGTH:
        raise ValidationError(
            ErrorKind.INVALID_INPUT,
            f"Title must be at most {constants.MAX_TITLE_LENGTH} characters",
        )
    return title


def _validate_resolution(resolution_type: str, judge_id: Optional[int]) -> Optional[int]:
    valid = {r.value for r in ResolutionType}
    if resolution_type not in valid:
        raise ValidationError(
            ErrorKind.INVALID_INPUT, f"resolution_type must be one of {sorted(valid)}"
        )
    if resolution_type == ResolutionType.JUDGE.value:
        if judge_id is None:
            raise ValidationError(ErrorKind.INVALID_INPUT, "A judge is required for judge resolution")
        return judge_id
    # Self-resolved bets never carry a judge
    return None


def _normalize_usernames(usernames: Sequence[str]) -> List[str]:
    seen = []
    for name in usernames or []:
        name = (name or "").strip()
        if name and name not in seen:
            seen.append(name)
    if not seen:
        raise ValidationError(ErrorKind.INVALID_INPUT, "Invite at least one participant")
    return seen


def _short_title(title: str) -> str:
    limit = constants.NOTIFICATION_TITLE_PREVIEW
    return f"{title[:limit]}{'...' if len(title) > limit else ''}"


# ──────────────────────────────────────────────────────────────
# Shared rule checks
# ──────────────────────────────────────────────────────────────


def _check_impartial_judge(judge_id: Optional[int], stakeholder_ids: Sequence[int]) -> None:
    if judge_id is None or not constants.ENFORCE_IMPARTIAL_JUDGE:
        return
    if judge_id in stakeholder_ids:
        raise ValidationError(
            ErrorKind.PARTIAL_JUDGE, "The judge cannot be the creator or a participant of the bet"
        )


async def _check_friendship_gate(
    session: AsyncSession, inviter_id: int, invitee_ids: Sequence[int]
) -> None:
    if not constants.REQUIRE_FRIENDSHIP_FOR_INVITES:
        return
    for invitee_id in invitee_ids:
        if not await friend_service.are_friends(session, inviter_id, invitee_id):
            raise AuthorizationError(
                ErrorKind.NOT_FRIENDS, "You can only invite friends to a bet"
            )


async def _load_bet(session: AsyncSession, bet_id: int, for_update: bool = False) -> Bet:
    if for_update:
        bet = await bet_repository.get_bet_row_for_update(session, bet_id)
    else:
        bet = await bet_repository.get_bet_row(session, bet_id)
    if not bet:
        raise NotFoundError(ErrorKind.BET_NOT_FOUND, "Bet not found")
    return bet


async def _load_user(session: AsyncSession, user_id: int) -> Dict:
    user = await user_service.get_user_by_id(session, user_id)
    if not user:
        raise NotFoundError(ErrorKind.USER_NOT_FOUND, f"User {user_id} not found")
    return user


# ──────────────────────────────────────────────────────────────
# Create / invite
# ──────────────────────────────────────────────────────────────


async def create_bet(
    session: AsyncSession,
    creator_id: int,
    title: str,
    description: Optional[str],
    stake: int,
    deadline: datetime,
    resolution_type: str,
    judge_id: Optional[int] = None,
    participant_usernames: Sequence[str] = (),
) -> Dict:
    """
    Create a pending bet, invite participants and escrow the creator's stake.

    Unknown usernames fail the whole call; nothing is written in that case.

    Args:
        session: Database session
        creator_id: User creating the bet
        title: Bet title
        description: Optional free text
        stake: Tokens each stakeholder commits (>= 1)
        deadline: Must be in the future (naive values are treated as UTC)
        resolution_type: "self" or "judge"
        judge_id: Required when resolution_type is "judge"
        participant_usernames: Usernames to invite (at least one)

    Returns:
        Dict with the created bet and its participants

    Raises:
        ValidationError: Bad stake, deadline, title, resolution or participants
        NotFoundError: Creator, judge or a participant username does not exist
        AuthorizationError: Invitee is not a friend (when the friendship gate is on)
        InsufficientFundsError: Creator balance is lower than the stake
    """
    title = _validate_title(title)
    stake = _validate_stake(stake)
    deadline = _validate_deadline(deadline)
    judge_id = _validate_resolution(resolution_type, judge_id)
    usernames = _normalize_usernames(participant_usernames)

    creator = await _load_user(session, creator_id)
    if creator["username"] in usernames:
        raise ValidationError(ErrorKind.INVALID_INPUT, "You cannot invite yourself to your own bet")

    resolved = await user_service.resolve_usernames(session, usernames)
    missing = [name for name in usernames if name not in resolved]
    if missing:
        raise NotFoundError(ErrorKind.USER_NOT_FOUND, f"User not found: {', '.join(missing)}")
    participant_ids = [resolved[name] for name in usernames]

    if judge_id is not None:
        await _load_user(session, judge_id)
        _check_impartial_judge(judge_id, [creator_id] + participant_ids)

    await _check_friendship_gate(session, creator_id, participant_ids)

    if creator["token_balance"] < stake:
        raise InsufficientFundsError()

    bet = await bet_repository.add_bet_row(
        session,
        title=title,
        description=description,
        stake=stake,
        deadline=deadline,
        resolution_type=resolution_type,
        created_by=creator_id,
        judge_id=judge_id,
    )
    await bet_repository.add_participant_rows(session, bet.id, participant_ids)

    # Creator's stake goes into escrow at creation time
    await user_service.debit_tokens(session, creator_id, stake)

    await notification_service.emit_notifications_bulk(
        session,
        [
            {
                "user_id": participant_id,
                "type": NotificationType.BET_INVITE.value,
                "message": f"{creator['username']} invited you to bet: {_short_title(title)}",
                "bet_id": bet.id,
            }
            for participant_id in participant_ids
        ],
    )

    logger.info(
        f"Bet {bet.id} created by user {creator_id} (stake={stake}, "
        f"participants={participant_ids}, resolution={resolution_type})"
    )
    return await bet_repository.format_bet(session, bet.id)


async def invite_participant(
    session: AsyncSession, bet_id: int, inviter_id: int, target_username: str
) -> Dict:
    """
    Invite another user to an existing bet.

    Only the creator or an accepted participant may invite. Bet status is
    unchanged.

    Raises:
        NotFoundError: Bet or target user missing
        AuthorizationError: Inviter is not a stakeholder (or not friends with target)
        StateConflictError: Target already invited / is the creator, or bet completed
        ValidationError: Target is the bet's judge
    """
    bet = await _load_bet(session, bet_id)

    accepted_ids = await bet_repository.get_accepted_participant_ids(session, bet_id)
    if inviter_id != bet.created_by and inviter_id not in accepted_ids:
        raise AuthorizationError(
            ErrorKind.NOT_AUTHORIZED_PARTICIPANT, "Only participants can invite others to this bet"
        )
    if bet.status == BetStatus.COMPLETED.value:
        raise StateConflictError(
            ErrorKind.BET_NOT_ACCEPTING_PARTICIPANTS, "This bet is already completed"
        )

    target = await user_service.get_user_by_username(session, target_username)
    if not target:
        raise NotFoundError(ErrorKind.USER_NOT_FOUND, "User not found")
    if target["id"] == bet.created_by:
        raise StateConflictError(ErrorKind.ALREADY_INVITED, "The creator is already part of this bet")
    if await bet_repository.get_participant_row(session, bet_id, target["id"]):
        raise StateConflictError(ErrorKind.ALREADY_INVITED, "User is already invited to this bet")

    if bet.resolution_type == ResolutionType.JUDGE.value:
        _check_impartial_judge(bet.judge_id, [target["id"]])
    await _check_friendship_gate(session, inviter_id, [target["id"]])

    try:
        await bet_repository.add_participant_rows(session, bet_id, [target["id"]])
    except IntegrityError as e:
        # Unique (bet_id, participant_id) caught a concurrent invite
        raise StateConflictError(
            ErrorKind.ALREADY_INVITED, "User is already invited to this bet"
        ) from e

    inviter_names = await user_service.get_usernames(session, [inviter_id])
    await notification_service.emit_notification(
        session,
        user_id=target["id"],
        type=NotificationType.BET_INVITE.value,
        message=f"{inviter_names.get(inviter_id, 'Someone')} invited you to bet: {_short_title(bet.title)}",
        bet_id=bet_id,
    )

    logger.info(f"User {target['id']} invited to bet {bet_id} by user {inviter_id}")
    return await bet_repository.format_bet(session, bet_id)


# ──────────────────────────────────────────────────────────────
# Join / respond
# ──────────────────────────────────────────────────────────────


async def _accept_invitation(
    session: AsyncSession, acting_user_id: int, bet_id: int, require_pending: bool, verb: str
) -> Dict:
    """
    Shared accept path for join_bet and respond_to_invitation(accept=True).

    The participant CAS precedes the debit and the bet CAS comes last. An
    accept racing a resolution fails on the bet CAS and rolls back.
    """
    bet = await _load_bet(session, bet_id)
    participant = await bet_repository.get_participant_row(session, bet_id, acting_user_id)

    if not participant:
        raise NotFoundError(ErrorKind.NOT_INVITED, "You were not invited to this bet")
    if participant.status == ParticipantStatus.ACCEPTED.value:
        raise StateConflictError(ErrorKind.ALREADY_JOINED, "You already joined this bet")
    if participant.status == ParticipantStatus.REJECTED.value:
        raise StateConflictError(
            ErrorKind.BET_NOT_ACCEPTING_PARTICIPANTS, "You already rejected this invitation"
        )
    if bet.status == BetStatus.COMPLETED.value or (
        require_pending and bet.status != BetStatus.PENDING.value
    ):
        raise StateConflictError(
            ErrorKind.BET_NOT_ACCEPTING_PARTICIPANTS, "This bet is no longer accepting participants"
        )

    balance = await user_service.get_token_balance(session, acting_user_id)
    if balance < bet.stake:
        raise InsufficientFundsError()

    accepted = await bet_repository.compare_and_set_participant_status(
        session,
        bet_id,
        acting_user_id,
        expected=ParticipantStatus.INVITED.value,
        new_status=ParticipantStatus.ACCEPTED.value,
    )
    if not accepted:
        raise StateConflictError(ErrorKind.ALREADY_JOINED, "You already joined this bet")

    await user_service.debit_tokens(session, acting_user_id, bet.stake)

    expected = [BetStatus.PENDING.value]
    if not require_pending:
        # Activating an already active bet is a no-op
        expected.append(BetStatus.ACTIVE.value)
    activated = await bet_repository.compare_and_set_bet_status(
        session, bet_id, expected=expected, new_status=BetStatus.ACTIVE.value
    )
    if not activated:
        raise StateConflictError(
            ErrorKind.BET_NOT_ACCEPTING_PARTICIPANTS, "This bet is no longer accepting participants"
        )

    names = await user_service.get_usernames(session, [acting_user_id])
    await notification_service.emit_notification(
        session,
        user_id=bet.created_by,
        type=NotificationType.BET_ACCEPTED.value,
        message=f"{names.get(acting_user_id, 'Someone')} {verb} your bet: {_short_title(bet.title)}",
        bet_id=bet_id,
    )

    logger.info(f"User {acting_user_id} joined bet {bet_id} (stake={bet.stake} escrowed)")
    return await bet_repository.format_bet(session, bet_id)


async def join_bet(session: AsyncSession, acting_user_id: int, bet_id: int) -> Dict:
    """
    Accept an invitation to a bet and escrow the stake.

    Allowed while the bet is pending or active.

    Raises:
        NotFoundError: Bet missing, or the user was not invited
        StateConflictError: Already joined, invitation rejected, bet completed
        InsufficientFundsError: Balance lower than the stake
    """
    return await _accept_invitation(
        session, acting_user_id, bet_id, require_pending=False, verb="has joined"
    )


async def respond_to_invitation(
    session: AsyncSession, acting_user_id: int, bet_id: int, accept: bool
) -> Dict:
    """
    Accept or reject an invitation while the bet is still pending.

    Accepting behaves like join_bet. Rejecting is terminal for the
    participant, moves no tokens and leaves the bet status unchanged.

    Raises:
        NotFoundError: Bet missing, or the user was not invited
        StateConflictError: Bet not pending, or the invitation was already answered
        InsufficientFundsError: Accepting with a balance lower than the stake
    """
    if accept:
        return await _accept_invitation(
            session, acting_user_id, bet_id, require_pending=True, verb="accepted"
        )

    bet = await _load_bet(session, bet_id, for_update=True)
    participant = await bet_repository.get_participant_row(session, bet_id, acting_user_id)

    if not participant:
        raise NotFoundError(ErrorKind.NOT_INVITED, "Invitation not found")
    if bet.status != BetStatus.PENDING.value:
        raise StateConflictError(
            ErrorKind.BET_NOT_ACCEPTING_PARTICIPANTS, "This bet is no longer accepting participants"
        )
    if participant.status == ParticipantStatus.ACCEPTED.value:
        raise StateConflictError(ErrorKind.ALREADY_JOINED, "You already joined this bet")

    rejected = await bet_repository.compare_and_set_participant_status(
        session,
        bet_id,
        acting_user_id,
        expected=ParticipantStatus.INVITED.value,
        new_status=ParticipantStatus.REJECTED.value,
    )
    if not rejected:
        raise StateConflictError(
            ErrorKind.BET_NOT_ACCEPTING_PARTICIPANTS, "This invitation was already answered"
        )

    names = await user_service.get_usernames(session, [acting_user_id])
    await notification_service.emit_notification(
        session,
        user_id=bet.created_by,
        type=NotificationType.BET_REJECTED.value,
        message=f"{names.get(acting_user_id, 'Someone')} rejected your bet: {_short_title(bet.title)}",
        bet_id=bet_id,
    )

    logger.info(f"User {acting_user_id} rejected bet {bet_id}")
    return await bet_repository.format_bet(session, bet_id)


# ──────────────────────────────────────────────────────────────
# Resolve
# ──────────────────────────────────────────────────────────────


async def resolve_bet(
    session: AsyncSession, acting_user_id: int, bet_id: int, winner_id: int
) -> Dict:
    """
    Resolve an active bet and pay the whole pot to the winner.

    The pot is stake × stakeholders (accepted participants plus creator),
    exactly what was escrowed; nothing is deducted. Losers only get their
    loss counter bumped since their stake already left their balance.

    Args:
        session: Database session
        acting_user_id: User resolving the bet
        bet_id: Bet to resolve
        winner_id: The creator or an accepted participant

    Returns:
        Dict with the completed bet

    Raises:
        NotFoundError: Bet missing
        StateConflictError: Bet is not active (pending or already completed)
        AuthorizationError: Actor is not a stakeholder (self) or not the judge (judge)
        ValidationError: Winner is not a stakeholder
    """
    bet = await _load_bet(session, bet_id, for_update=True)

    if bet.status != BetStatus.ACTIVE.value:
        raise StateConflictError(ErrorKind.BET_NOT_RESOLVABLE, "This bet cannot be resolved")

    accepted_ids = await bet_repository.get_accepted_participant_ids(session, bet_id)
    stakeholders = [bet.created_by] + [pid for pid in accepted_ids if pid != bet.created_by]

    if bet.resolution_type == ResolutionType.JUDGE.value:
        if acting_user_id != bet.judge_id:
            raise AuthorizationError(
                ErrorKind.NOT_AUTHORIZED_JUDGE, "Only the judge can resolve this bet"
            )
    elif acting_user_id not in stakeholders:
        raise AuthorizationError(
            ErrorKind.NOT_AUTHORIZED_PARTICIPANT, "Only participants can resolve this bet"
        )

    if winner_id not in stakeholders:
        raise ValidationError(
            ErrorKind.INVALID_WINNER, "The winner must be the creator or an accepted participant"
        )

    completed = await bet_repository.compare_and_set_bet_status(
        session,
        bet_id,
        expected=[BetStatus.ACTIVE.value],
        new_status=BetStatus.COMPLETED.value,
        winner_id=winner_id,
    )
    if not completed:
        raise StateConflictError(ErrorKind.BET_NOT_RESOLVABLE, "This bet cannot be resolved")

    total_winnings = bet.stake * len(stakeholders)
    loser_ids = [uid for uid in stakeholders if uid != winner_id]

    await user_service.credit_tokens(session, winner_id, total_winnings)
    await user_service.record_win(session, winner_id)
    await user_service.record_losses(session, loser_ids)

    names = await user_service.get_usernames(session, [winner_id])
    winner_name = names.get(winner_id, "Someone")
    title = _short_title(bet.title)

    notifications = [
        {
            "user_id": uid,
            "type": NotificationType.BET_COMPLETED.value,
            "message": (
                f"Congratulations! You won the bet: {title}"
                if uid == winner_id
                else f"The bet: {title} was decided. {winner_name} won."
            ),
            "bet_id": bet_id,
        }
        for uid in stakeholders
    ]
    notifications.append(
        {
            "user_id": winner_id,
            "type": NotificationType.TOKENS_RECEIVED.value,
            "message": f"You received {total_winnings} tokens from the bet: {title}",
            "bet_id": bet_id,
        }
    )
    await notification_service.emit_notifications_bulk(session, notifications)

    logger.info(
        f"Bet {bet_id} resolved by user {acting_user_id}: winner={winner_id}, "
        f"payout={total_winnings}, stakeholders={len(stakeholders)}"
    )
    return await bet_repository.format_bet(session, bet_id)


# ──────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────


async def get_bet(session: AsyncSession, bet_id: int) -> Dict:
    """
    Get a single bet with its participants.

    Raises:
        NotFoundError: If the bet does not exist
    """
    bet = await bet_repository.format_bet(session, bet_id)
    if not bet:
        raise NotFoundError(ErrorKind.BET_NOT_FOUND, "Bet not found")
    return bet


async def get_user_bets(session: AsyncSession, user_id: int) -> List[Dict]:
    """Bets the user created or accepted, newest first."""
    bet_ids = await bet_repository.list_user_bet_ids(session, user_id)
    return await bet_repository.format_bets(session, bet_ids)


async def get_pending_invitations(session: AsyncSession, user_id: int) -> List[Dict]:
    """
    Bets the user has been invited to but not answered.

    Covers pending and active bets, the states join_bet still accepts;
    invitations on completed bets are dropped.
    """
    bet_ids = await bet_repository.list_invited_bet_ids(session, user_id)
    return await bet_repository.format_bets(session, bet_ids)


def calculate_win_rate(wins: int, losses: int) -> int:
    """Win percentage rounded half up; 0 when there are no wins."""
    if wins <= 0:
        return 0
    return math.floor(wins / (wins + losses) * 100 + 0.5)


async def get_betting_summary(session: AsyncSession, user_id: int) -> Dict:
    """
    Aggregate betting statistics for a user's profile.

    Returns:
        Dict with total_bets, created_count, participated_count, won_count,
        total_wins, total_losses, win_rate, tokens_won and token_balance

    Raises:
        NotFoundError: If the user does not exist
    """
    user = await _load_user(session, user_id)

    bet_ids = await bet_repository.list_user_bet_ids(session, user_id)
    created_result = await session.execute(
        select(func.count()).select_from(Bet).where(Bet.created_by == user_id)
    )
    created_count = created_result.scalar_one() or 0

    # Pot of every won bet: stake × (accepted participants + creator)
    accepted_counts = (
        select(
            BetParticipant.bet_id.label("bet_id"),
            func.count().label("accepted"),
        )
        .where(BetParticipant.status == ParticipantStatus.ACCEPTED.value)
        .group_by(BetParticipant.bet_id)
        .subquery()
    )
    won_result = await session.execute(
        select(Bet.stake, func.coalesce(accepted_counts.c.accepted, 0))
        .outerjoin(accepted_counts, accepted_counts.c.bet_id == Bet.id)
        .where(
            and_(
                Bet.winner_id == user_id,
                Bet.status == BetStatus.COMPLETED.value,
            )
        )
    )
    won_rows = won_result.all()
    tokens_won = sum(stake * (accepted + 1) for stake, accepted in won_rows)

    return {
        "user_id": user_id,
        "total_bets": len(bet_ids),
        "created_count": created_count,
        "participated_count": len(bet_ids) - created_count,
        "won_count": len(won_rows),
        "total_wins": user["total_wins"],
        "total_losses": user["total_losses"],
        "win_rate": calculate_win_rate(user["total_wins"], user["total_losses"]),
        "tokens_won": tokens_won,
        "token_balance": user["token_balance"],
    }
