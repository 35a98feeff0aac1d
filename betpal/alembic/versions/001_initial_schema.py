"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Initial BetPal schema:
- users (profile, token balance, win/loss record)
- bets, bet_participants (lifecycle and escrow membership)
- friendships
- notifications
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True),
        sa.Column("email", sa.String(), nullable=True, unique=True),
        sa.Column("avatar_url", sa.String(), nullable=True),
        sa.Column("token_balance", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("total_wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_losses", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("idx_users_username", "users", ["username"])

    op.create_table(
        "bets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("stake", sa.Integer(), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("resolution_type", sa.String(20), nullable=False, server_default="self"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("judge_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("winner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("stake > 0", name="ck_bets_stake_positive"),
    )
    op.create_index("idx_bets_created_by", "bets", ["created_by"])
    op.create_index("idx_bets_judge", "bets", ["judge_id"])
    op.create_index("idx_bets_status", "bets", ["status"])

    op.create_table(
        "bet_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "bet_id", sa.Integer(), sa.ForeignKey("bets.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("participant_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="invited"),
        *_timestamps(),
        sa.UniqueConstraint("bet_id", "participant_id", name="uq_bet_participant"),
    )
    op.create_index(
        "idx_bet_participants_participant_status",
        "bet_participants",
        ["participant_id", "status"],
    )

    op.create_table(
        "friendships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("friend_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        *_timestamps(),
        sa.CheckConstraint("user_id <> friend_id", name="ck_friendships_not_self"),
    )
    low, high = ("least", "greatest") if op.get_bind().dialect.name == "postgresql" else ("min", "max")
    op.create_index(
        "uq_friendships_pair",
        "friendships",
        [sa.text(f"{low}(user_id, friend_id)"), sa.text(f"{high}(user_id, friend_id)")],
        unique=True,
    )
    op.create_index("idx_friendships_user_status", "friendships", ["user_id", "status"])
    op.create_index("idx_friendships_friend_status", "friendships", ["friend_id", "status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "bet_id", sa.Integer(), sa.ForeignKey("bets.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column(
            "friendship_id",
            sa.Integer(),
            sa.ForeignKey("friendships.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "idx_notifications_user_unread", "notifications", ["user_id", "is_read", "created_at"]
    )
    op.create_index("idx_notifications_user_created", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("notifications")
    op.drop_table("friendships")
    op.drop_table("bet_participants")
    op.drop_table("bets")
    op.drop_table("users")
