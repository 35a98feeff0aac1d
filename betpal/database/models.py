"""
SQLAlchemy ORM models for the BetPal wagering system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.sql.expression import FunctionElement
from betpal.database.db import Base
from betpal.utils.constants import STARTING_TOKEN_BALANCE


class BetStatus(str, enum.Enum):
    """Bet lifecycle status enum."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class ResolutionType(str, enum.Enum):
    """How the winner of a bet is decided."""

    SELF = "self"
    JUDGE = "judge"


class ParticipantStatus(str, enum.Enum):
    """Bet participant status enum."""

    INVITED = "invited"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class FriendshipStatus(str, enum.Enum):
    """Friendship status enum."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class NotificationType(str, enum.Enum):
    """Notification type enum."""

    BET_INVITE = "bet_invite"
    BET_ACCEPTED = "bet_accepted"
    BET_COMPLETED = "bet_completed"
    BET_REJECTED = "bet_rejected"
    TOKENS_RECEIVED = "tokens_received"
    FRIEND_REQUEST = "friend_request"
    FRIEND_ACCEPTED = "friend_accepted"


class User(Base):
    """User profiles. Identity itself lives with the external auth provider."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), nullable=False, unique=True)
    email = Column(String, nullable=True, unique=True)
    avatar_url = Column(String, nullable=True)
    token_balance = Column(Integer, default=STARTING_TOKEN_BALANCE, nullable=False)
    total_wins = Column(Integer, default=0, nullable=False)
    total_losses = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    created_bets = relationship("Bet", foreign_keys="Bet.created_by", back_populates="creator")
    participations = relationship("BetParticipant", back_populates="participant")

    __table_args__ = (
        Index("idx_users_username", "username"),
    )


class Bet(Base):
    """A wager between a creator and invited participants."""

    __tablename__ = "bets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    stake = Column(Integer, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), default=BetStatus.PENDING.value, nullable=False)
    resolution_type = Column(String(20), default=ResolutionType.SELF.value, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    judge_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    winner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    creator = relationship("User", foreign_keys=[created_by], back_populates="created_bets")
    judge = relationship("User", foreign_keys=[judge_id])
    winner = relationship("User", foreign_keys=[winner_id])
    participants = relationship(
        "BetParticipant", back_populates="bet", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("stake > 0", name="ck_bets_stake_positive"),
        Index("idx_bets_created_by", "created_by"),
        Index("idx_bets_judge", "judge_id"),
        Index("idx_bets_status", "status"),
    )


class BetParticipant(Base):
    """Join table (Bet ↔ User) carrying the invitation status."""

    __tablename__ = "bet_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bet_id = Column(Integer, ForeignKey("bets.id", ondelete="CASCADE"), nullable=False)
    participant_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), default=ParticipantStatus.INVITED.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    bet = relationship("Bet", back_populates="participants")
    participant = relationship("User", back_populates="participations")

    __table_args__ = (
        UniqueConstraint("bet_id", "participant_id", name="uq_bet_participant"),
        Index("idx_bet_participants_participant_status", "participant_id", "status"),
    )


class pair_low(FunctionElement):
    """Smaller of two user ids, for indexing an unordered pair."""

    type = Integer()
    inherit_cache = True


class pair_high(FunctionElement):
    """Larger of two user ids, for indexing an unordered pair."""

    type = Integer()
    inherit_cache = True


@compiles(pair_low)
def _compile_pair_low(element, compiler, **kw):
    return f"least({compiler.process(element.clauses, **kw)})"


@compiles(pair_high)
def _compile_pair_high(element, compiler, **kw):
    return f"greatest({compiler.process(element.clauses, **kw)})"


# SQLite has no least/greatest; multi-argument min/max are the scalar equivalents
@compiles(pair_low, "sqlite")
def _compile_pair_low_sqlite(element, compiler, **kw):
    return f"min({compiler.process(element.clauses, **kw)})"


@compiles(pair_high, "sqlite")
def _compile_pair_high_sqlite(element, compiler, **kw):
    return f"max({compiler.process(element.clauses, **kw)})"


class Friendship(Base):
    """Directional friendship edge (user_id is the requester)."""

    __tablename__ = "friendships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    friend_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), default=FriendshipStatus.PENDING.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    requester = relationship("User", foreign_keys=[user_id])
    addressee = relationship("User", foreign_keys=[friend_id])

    __table_args__ = (
        CheckConstraint("user_id <> friend_id", name="ck_friendships_not_self"),
        # One row per unordered pair, whichever side sent the request
        Index(
            "uq_friendships_pair",
            pair_low(user_id, friend_id),
            pair_high(user_id, friend_id),
            unique=True,
        ),
        Index("idx_friendships_user_status", "user_id", "status"),
        Index("idx_friendships_friend_status", "friend_id", "status"),
    )


class Notification(Base):
    """Append-only user notifications produced by bet and friend transitions."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(30), nullable=False)  # NotificationType enum value
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    bet_id = Column(Integer, ForeignKey("bets.id", ondelete="SET NULL"), nullable=True)
    friendship_id = Column(Integer, ForeignKey("friendships.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", backref="notifications")

    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "is_read", "created_at"),
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )
