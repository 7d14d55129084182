from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from mundapdari.core.security import ACCESS, decode_token
from mundapdari.database import get_db
from mundapdari.models.pair import Pair
from mundapdari.models.user import User
from mundapdari.services import user_service

bearer_scheme = HTTPBearer(auto_error=False)


async def _user_from_credentials(
    credentials: HTTPAuthorizationCredentials | None,
    db: AsyncSession,
) -> User:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Access token required")

    try:
        payload = decode_token(credentials.credentials, ACCESS)
        user_id = UUID(payload["sub"])
    except ExpiredSignatureError:
        raise UnauthorizedError("Access token expired")
    except (JWTError, KeyError, ValueError):
        raise UnauthorizedError("Invalid access token")

    user = await user_service.get_user(db, user_id)
    if user is None:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise UnauthorizedError("User account is deactivated")

    await user_service.touch_last_active(db, user)
    return user


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Extract and validate the bearer token.

    Returns the active User for the token and bumps ``last_active``.

    Raises:
        UnauthorizedError: If the token is missing, invalid or expired, or
            the user does not exist or is deactivated.
    """
    return await _user_from_credentials(credentials, db)


async def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User | None:
    """Like :func:`get_current_user` but anonymous requests yield None."""
    if credentials is None:
        return None
    return await _user_from_credentials(credentials, db)


def require_role(*roles: str):
    """Factory that returns a dependency allowing only the given roles."""

    async def _check_role(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise ForbiddenError("Insufficient permissions")
        return current_user

    return _check_role


async def require_pair_membership(
    pair_id: UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Pair:
    """Resolve the ``pair_id`` path parameter to an active pair of the user.

    Raises:
        NotFoundError: If the pair does not exist.
        ForbiddenError: If the user is not a member or the pair is inactive.
    """
    pair = await db.get(Pair, pair_id)
    if pair is None:
        raise NotFoundError("Pair not found")
    if not pair.has_member(current_user.id):
        raise ForbiddenError("You are not a member of this pair")
    if pair.status != "active":
        raise ForbiddenError("Pair is not active")
    return pair


def get_notifications(request: Request):
    """The app's NotificationService instance."""
    return request.app.state.notifications


def get_scheduler(request: Request):
    return getattr(request.app.state, "scheduler", None)
