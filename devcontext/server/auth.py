"""Bearer-token authentication for the sync API."""

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from devcontext.server.config import ServerSettings
from devcontext.utils import now_ms

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, settings: ServerSettings, ttl_days: int | None = None) -> str:
    """Issue a signed access token for a user.

    Args:
        user_id: User the token identifies (stored in the ``sub`` claim).
        settings: Server settings holding the signing secret.
        ttl_days: Token lifetime (defaults to settings.token_ttl_days).

    Returns:
        Encoded JWT.
    """
    issued = datetime.now(timezone.utc)
    ttl = settings.token_ttl_days if ttl_days is None else ttl_days
    payload = {"sub": user_id, "iat": issued, "exp": issued + timedelta(days=ttl)}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: ServerSettings) -> str | None:
    """Validate a token and return its user ID, or None if invalid."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.warning("Token validation failed: signature has expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token validation failed: {e}")
        return None
    return payload.get("sub")


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    """Resolve the authenticated user for a request.

    The user ID is also stored on ``request.state.user_id`` so rate limits
    can be keyed per user.

    Raises:
        HTTPException: 401 if the token is missing, invalid, or the
            account is inactive or expired.
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required for sync")

    settings: ServerSettings = request.app.state.settings
    user_id = decode_access_token(credentials.credentials, settings)
    if not user_id:
        raise _unauthorized("Invalid or expired token")

    user = request.app.state.store.get_user(user_id)
    if user is None or not user["is_active"]:
        raise _unauthorized("Account not found or inactive")
    if user["expires_at"] is not None and user["expires_at"] < now_ms():
        raise _unauthorized("Account has expired")

    request.state.user_id = user_id
    return user
