"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


# User schemas
class UserResponse(BaseModel):
    """User profile with token balance and record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    token_balance: int
    total_wins: int
    total_losses: int
    created_at: Optional[str] = None


class BettingSummaryResponse(BaseModel):
    """Aggregated betting statistics for a user."""

    user_id: int
    total_bets: int
    created_count: int
    participated_count: int
    won_count: int
    total_wins: int
    total_losses: int
    win_rate: int
    tokens_won: int
    token_balance: int


# Bet schemas
class BetCreate(BaseModel):
    """Request to create a bet."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    stake: int
    deadline: datetime
    resolution_type: str = "self"
    judge_id: Optional[int] = None
    participant_usernames: List[str] = Field(default_factory=list)


class BetRespond(BaseModel):
    """Accept or reject a bet invitation."""

    accept: bool


class BetResolve(BaseModel):
    """Pick the winner of an active bet."""

    winner_id: int


class BetInvite(BaseModel):
    """Invite another user to an existing bet."""

    username: str = Field(..., min_length=1)


class BetParticipantResponse(BaseModel):
    """Participant entry on a bet."""

    user_id: int
    username: str
    status: str


class BetResponse(BaseModel):
    """Bet with participants and resolved usernames."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    stake: int
    deadline: Optional[str] = None
    status: str
    resolution_type: str
    created_by: int
    creator_username: Optional[str] = None
    judge_id: Optional[int] = None
    judge_username: Optional[str] = None
    winner_id: Optional[int] = None
    winner_username: Optional[str] = None
    participants: List[BetParticipantResponse] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Friend schemas
class FriendRequestCreate(BaseModel):
    """Request to add a friend by username or email."""

    username_or_email: str = Field(..., min_length=1)


class FriendshipResponse(BaseModel):
    """Friendship row (a request or an accepted friendship)."""

    id: int
    user_id: int
    username: str
    friend_id: int
    friend_username: str
    status: str
    created_at: Optional[str] = None


class FriendEntry(BaseModel):
    """Accepted friend as seen from the current user."""

    friendship_id: int
    user_id: int
    username: str
    since: Optional[str] = None


class FriendListResponse(BaseModel):
    """Friends plus incoming and outgoing pending requests."""

    friends: List[FriendEntry]
    pending_requests: List[FriendshipResponse]
    sent_requests: List[FriendshipResponse]


# Notification schemas
class NotificationResponse(BaseModel):
    """Notification response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    type: str
    message: str
    is_read: bool
    read_at: Optional[str] = None
    bet_id: Optional[int] = None
    friendship_id: Optional[int] = None
    created_at: Optional[str] = None


class NotificationListResponse(BaseModel):
    """Paginated notification list."""

    notifications: List[NotificationResponse]
    total_count: int
    has_more: bool


class UnreadCountResponse(BaseModel):
    """Unread notification count."""

    count: int
