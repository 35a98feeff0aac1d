"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error translation) lives here; every
sub-router imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from betpal.services.errors import BetPalError

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)


# ---------------------------------------------------------------------------
# Shared error translation
# ---------------------------------------------------------------------------
def to_http_exception(error: BetPalError) -> HTTPException:
    """Map a domain error to an HTTPException carrying its kind and message."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from betpal.api.routes.bets import router as bets_router  # noqa: E402
from betpal.api.routes.friends import router as friends_router  # noqa: E402
from betpal.api.routes.notifications import router as notifications_router  # noqa: E402
from betpal.api.routes.users import router as users_router  # noqa: E402

router = APIRouter()
router.include_router(bets_router)
router.include_router(friends_router)
router.include_router(notifications_router)
router.include_router(users_router)
