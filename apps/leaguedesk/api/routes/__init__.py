"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os
import logging

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from leaguedesk.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

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

WRITE_RATE_LIMIT = os.getenv("WRITE_RATE_LIMIT", "30/minute")


# ---------------------------------------------------------------------------
# Service error -> HTTP mapping
# ---------------------------------------------------------------------------
def http_error(e: Exception, action: str) -> HTTPException:
    """
    Map a service-layer exception to the HTTPException a route should raise.

    Args:
        e: Exception raised by a service call
        action: Short description for the log line, e.g. "approving contract"
    """
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ForbiddenError, PermissionError)):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (InvalidArgumentError, InvalidStateError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Error {action}")


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from leaguedesk.api.routes.entities import router as entities_router  # noqa: E402
from leaguedesk.api.routes.contracts import router as contracts_router  # noqa: E402
from leaguedesk.api.routes.edit_requests import router as edit_requests_router  # noqa: E402
from leaguedesk.api.routes.users import router as users_router  # noqa: E402

router = APIRouter()
router.include_router(entities_router)
router.include_router(contracts_router)
router.include_router(edit_requests_router)
router.include_router(users_router)
