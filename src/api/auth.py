"""
Identity resolution: maps an opaque user identifier to a User.

Used on WebSocket connect (query parameter ``id``) and as a dependency for
the REST routes (query parameter ``user_id``).
"""

import structlog
from fastapi import HTTPException, Query, Request

from src.core import User

logger = structlog.get_logger()


class UserNotFoundError(Exception):
    """Raised when an identifier cannot be resolved to a user."""

    pass


async def resolve_user(identifier: str | None, store, *, auto_provision: bool = False) -> User:
    """Resolve an opaque identifier to a User.

    Returns:
        The stored user. With ``auto_provision`` (dev mode),
        unknown identifiers get a fresh user row instead of failing.

    Raises:
        UserNotFoundError: identifier missing or unknown
    """
    user_id = (identifier or "").strip()
    if not user_id:
        raise UserNotFoundError("User ID not found")

    user = await store.get_user(user_id)
    if user is None and auto_provision:
        user = await store.create_user(user_id)
        logger.info("user_provisioned", user_id=user_id)

    if user is None:
        raise UserNotFoundError("User not found")
    return user


async def require_user(request: Request, user_id: str = Query(default="")) -> User:
    """FastAPI dependency: resolve ``?user_id=`` or reject with 401."""
    try:
        return await resolve_user(
            user_id,
            request.app.state.store,
            auto_provision=request.app.state.settings.auto_provision_users,
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=401, detail=str(e))
