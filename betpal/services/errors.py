"""
Error taxonomy shared by the bet, friend and notification services.

Every error carries a stable ``kind`` (machine readable) and a human-readable
message. The category class decides how callers react: only
TransientStoreError is safe to retry.
"""

import enum


class ErrorKind(str, enum.Enum):
    """Stable error codes surfaced to API clients."""

    INVALID_STAKE = "InvalidStake"
    INVALID_DEADLINE = "InvalidDeadline"
    INVALID_INPUT = "InvalidInput"
    INVALID_WINNER = "InvalidWinner"
    PARTIAL_JUDGE = "PartialJudge"
    SELF_FRIENDSHIP = "SelfFriendship"
    NOT_AUTHORIZED_PARTICIPANT = "NotAuthorizedParticipant"
    NOT_AUTHORIZED_JUDGE = "NotAuthorizedJudge"
    NOT_FRIENDS = "NotFriends"
    NOT_AUTHORIZED = "NotAuthorized"
    NOT_INVITED = "NotInvited"
    ALREADY_JOINED = "AlreadyJoined"
    ALREADY_INVITED = "AlreadyInvited"
    BET_NOT_ACCEPTING_PARTICIPANTS = "BetNotAcceptingParticipants"
    BET_NOT_RESOLVABLE = "BetNotResolvable"
    DUPLICATE_REQUEST = "DuplicateRequest"
    REQUEST_NOT_PENDING = "RequestNotPending"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    USER_NOT_FOUND = "UserNotFound"
    BET_NOT_FOUND = "BetNotFound"
    FRIENDSHIP_NOT_FOUND = "FriendshipNotFound"
    NOTIFICATION_NOT_FOUND = "NotificationNotFound"
    TRANSIENT_STORE_ERROR = "TransientStoreError"


class BetPalError(Exception):
    """Base class for domain errors."""

    status_code = 500

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class ValidationError(BetPalError):
    """Bad input shape. Rejected before any store access."""

    status_code = 400


class AuthorizationError(BetPalError):
    """The acting user may not perform this action."""

    status_code = 403


class StateConflictError(BetPalError):
    """A state precondition does not hold (already joined, not active, ...)."""

    status_code = 409


class InsufficientFundsError(BetPalError):
    """Token balance is lower than the required stake."""

    status_code = 402

    def __init__(self, message: str = "Insufficient tokens"):
        super().__init__(ErrorKind.INSUFFICIENT_FUNDS, message)


class NotFoundError(BetPalError):
    """A bet, user, participant, friendship or notification is missing."""

    status_code = 404


class TransientStoreError(BetPalError):
    """Connection loss, timeout or lock contention. Safe to retry."""

    status_code = 503

    def __init__(self, message: str = "Temporary storage failure, please retry"):
        super().__init__(ErrorKind.TRANSIENT_STORE_ERROR, message)
