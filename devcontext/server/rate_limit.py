"""Per-user rate limiting for the sync endpoints."""

import math
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

PUSH_RATE_LIMIT = "30/minute"
PULL_RATE_LIMIT = "60/minute"


def user_key(request: Request) -> str:
    """Rate-limit key: the authenticated user, else the client address."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=user_key)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with the number of seconds until the window resets."""
    retry_after = exc.limit.limit.get_expiry()
    current_limit = getattr(request.state, "view_rate_limit", None)
    if current_limit is not None:
        reset_at, _ = limiter.limiter.get_window_stats(current_limit[0], *current_limit[1])
        retry_after = max(1, math.ceil(reset_at - time.time()))

    logger.warning(f"Rate limit exceeded for {user_key(request)} on {request.url.path}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many sync requests. Please wait before syncing again.",
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
