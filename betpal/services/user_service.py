"""
User service layer for profile lookups and token ledger updates.

All balance and win/loss counter changes go through this module and are
issued as single SQL statements (``balance = balance - :n``) so concurrent
callers never lose an update.
"""

from typing import Optional, Dict, List, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_
from betpal.database.models import User
from betpal.services.errors import (
    ErrorKind,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from betpal.utils.constants import STARTING_TOKEN_BALANCE
from betpal.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)


async def create_user(
    session: AsyncSession,
    username: str,
    email: Optional[str] = None,
    token_balance: int = STARTING_TOKEN_BALANCE,
    avatar_url: Optional[str] = None,
) -> int:
    """
    Create a user profile.

    Identity is owned by the external auth provider; this only creates the
    profile row the engine reads balances from.

    Args:
        session: Database session
        username: Unique username
        email: Optional email (normalized to lowercase)
        token_balance: Initial token balance
        avatar_url: Optional avatar URL

    Returns:
        User ID of the created user

    Raises:
        ValidationError: If the username is empty or already taken
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError(ErrorKind.INVALID_INPUT, "username is required")
    if token_balance < 0:
        raise ValidationError(ErrorKind.INVALID_INPUT, "token_balance cannot be negative")

    result = await session.execute(select(User.id).where(User.username == username))
    if result.scalar_one_or_none():
        raise ValidationError(ErrorKind.INVALID_INPUT, f"Username {username} is already taken")

    new_user = User(
        username=username,
        email=email.strip().lower() if email else None,
        avatar_url=avatar_url,
        token_balance=token_balance,
        total_wins=0,
        total_losses=0,
    )
    session.add(new_user)
    await session.flush()
    return new_user.id


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[Dict]:
    """Get user by exact username."""
    username = (username or "").strip()
    if not username:
        return None
    result = await session.execute(
        select(User).where(User.username == username).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def find_user_by_username_or_email(
    session: AsyncSession, username_or_email: str
) -> Optional[Dict]:
    """
    Look up a user by username, or by email (case-insensitive).

    Args:
        session: Database session
        username_or_email: Username or email address

    Returns:
        User dictionary or None if not found
    """
    value = (username_or_email or "").strip()
    if not value:
        return None

    result = await session.execute(
        select(User)
        .where(or_(User.username == value, func.lower(User.email) == value.lower()))
        .order_by(User.id)
        .limit(1)
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def resolve_usernames(session: AsyncSession, usernames: Iterable[str]) -> Dict[str, int]:
    """
    Resolve usernames to user IDs in a single query.

    Args:
        session: Database session
        usernames: Usernames to look up

    Returns:
        Dict of username -> user_id for every username that exists
    """
    names = [u for u in usernames if u]
    if not names:
        return {}
    result = await session.execute(
        select(User.id, User.username).where(User.username.in_(names))
    )
    return {row.username: row.id for row in result.all()}


async def get_usernames(session: AsyncSession, user_ids: Iterable[int]) -> Dict[int, str]:
    """Batch-fetch usernames keyed by user ID."""
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    result = await session.execute(
        select(User.id, User.username).where(User.id.in_(list(ids)))
    )
    return {row.id: row.username for row in result.all()}


async def get_token_balance(session: AsyncSession, user_id: int) -> int:
    """
    Read the current token balance straight from the database.

    Raises:
        NotFoundError: If the user does not exist
    """
    result = await session.execute(select(User.token_balance).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFoundError(ErrorKind.USER_NOT_FOUND, "User not found")
    return balance


async def debit_tokens(session: AsyncSession, user_id: int, amount: int) -> None:
    """
    Atomically move tokens out of a user's balance (escrow).

    The balance check and the decrement are one conditional UPDATE, so two
    concurrent debits can never overdraw the account.

    Raises:
        InsufficientFundsError: If the balance is lower than amount
    """
    result = await session.execute(
        update(User)
        .where(User.id == user_id, User.token_balance >= amount)
        .values(token_balance=User.token_balance - amount, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InsufficientFundsError()


async def credit_tokens(session: AsyncSession, user_id: int, amount: int) -> None:
    """Atomically add tokens to a user's balance."""
    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(token_balance=User.token_balance + amount, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(ErrorKind.USER_NOT_FOUND, f"User {user_id} not found")


async def record_win(session: AsyncSession, user_id: int) -> None:
    """Increment total_wins by one."""
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(total_wins=User.total_wins + 1, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )


async def record_losses(session: AsyncSession, user_ids: List[int]) -> None:
    """Increment total_losses by one for every user in user_ids."""
    if not user_ids:
        return
    await session.execute(
        update(User)
        .where(User.id.in_(user_ids))
        .values(total_losses=User.total_losses + 1, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )


def _user_to_dict(user: User) -> Dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "avatar_url": user.avatar_url,
        "token_balance": user.token_balance,
        "total_wins": user.total_wins,
        "total_losses": user.total_losses,
        "created_at": isoformat_or_none(user.created_at),
    }
