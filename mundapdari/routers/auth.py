"""Authentication router.

Phone-number based registration and login, pair invitations, token
refresh (with rotation), profile and account management.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.config import settings
from mundapdari.core.dependencies import bearer_scheme, get_current_user, get_notifications, get_optional_user
from mundapdari.core.encryption import PhoneCipher, get_phone_cipher
from mundapdari.core.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from mundapdari.core.rate_limit import limiter
from mundapdari.core.responses import api_response
from mundapdari.core.security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_token,
    token_expiry,
)
from mundapdari.database import get_db
from mundapdari.models.user import RefreshToken, User
from mundapdari.schemas.auth import (
    AcceptInvitationRequest,
    InviteRequest,
    LoginRequest,
    LogoutRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    TokenPair,
)
from mundapdari.services import pair_service, user_service
from mundapdari.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

DbSession = Annotated[AsyncSession, Depends(get_db)]
Cipher = Annotated[PhoneCipher, Depends(get_phone_cipher)]
CurrentUser = Annotated[User, Depends(get_current_user)]


async def _create_tokens_for_user(db: AsyncSession, user: User) -> TokenPair:
    """Create an access + refresh token pair and persist the refresh token."""
    access_token = create_access_token(data={"sub": str(user.id), "role": user.role})
    raw_refresh = create_refresh_token(data={"sub": str(user.id)})

    db.add(RefreshToken(
        user_id=user.id,
        token_hash=hash_token(raw_refresh),
        expires_at=datetime.now(timezone.utc)
        + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    ))
    await db.flush()

    return TokenPair(access_token=access_token, refresh_token=raw_refresh)


async def _pairs_with_stats(db: AsyncSession, user: User) -> list[dict]:
    pairs = await pair_service.find_active_pairs_for_user(db, user.id)
    for pair in pairs:
        pair["stats"] = await pair_service.get_pair_stats(db, pair["id"])
    return pairs


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def register(request: Request, body: RegisterRequest, db: DbSession, cipher: Cipher):
    """Register a user by phone, optionally joining a pair via invite code."""
    user = await user_service.create_user(
        db, cipher, name=body.name, phone=body.phone, role=body.role,
    )

    if body.invite_code:
        pair = await pair_service.find_by_invitation_token(db, body.invite_code)
        if pair is None:
            logger.warning("Registration with unknown or expired invite code for user %s", user.id)
        else:
            try:
                await pair_service.accept_invitation(db, pair, user)
            except AppError as exc:
                logger.warning("Could not join pair %s during registration: %s", pair.id, exc.message)

    tokens = await _create_tokens_for_user(db, user)
    await db.commit()

    return api_response(
        {
            "user": user_service.safe_user_data(cipher, user),
            "token": tokens.access_token,
            "tokens": tokens,
        },
        "User registered successfully",
    )


@router.post("/login")
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def login(request: Request, body: LoginRequest, db: DbSession, cipher: Cipher):
    """Log in with a registered phone number."""
    user = await user_service.find_by_phone(db, cipher, body.phone)
    if user is None:
        raise UnauthorizedError("Invalid phone number")
    if not user.is_active:
        raise UnauthorizedError("User account is deactivated")

    await user_service.touch_last_active(db, user)
    tokens = await _create_tokens_for_user(db, user)
    await db.commit()

    return api_response(
        {
            "user": user_service.safe_user_data(cipher, user),
            "token": tokens.access_token,
            "tokens": tokens,
        },
        "Login successful",
    )


@router.post("/invite", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def invite(
    request: Request,
    db: DbSession,
    cipher: Cipher,
    notifications: Annotated[NotificationService, Depends(get_notifications)],
    current_user: Annotated[User | None, Depends(get_optional_user)],
    body: InviteRequest | None = None,
):
    """Create a pair invitation.

    Authenticated callers invite as themselves. Anonymous callers supply
    their phone, name and role and are registered on the fly.
    """
    body = body or InviteRequest()
    if current_user is not None:
        inviter = current_user
    else:
        if not (body.inviter_phone and body.inviter_name and body.inviter_role):
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "inviter_phone", "message": "Inviter details are required", "value": None}],
            )
        inviter, _ = await user_service.find_or_create_user(
            db, cipher, name=body.inviter_name, phone=body.inviter_phone, role=body.inviter_role,
        )
        if not inviter.is_active:
            raise ForbiddenError("User account is deactivated")

    if inviter.role not in ("parent", "child"):
        raise ForbiddenError("Only parents and children can create invitations")
    if await pair_service.find_primary_pair(db, inviter.id) is not None:
        raise ConflictError("You already have an active pair")
    if await pair_service.has_open_invitation(db, inviter.id):
        raise ConflictError("You already have a pending invitation")

    pair = await pair_service.create_invitation(db, inviter)
    await db.commit()

    invitation_url = f"{settings.FRONTEND_URL.rstrip('/')}/invite/{pair.invitation_token}"
    if body.invitee_phone:
        await notifications.schedule_invitation(body.invitee_phone, inviter.name, invitation_url)

    return api_response(
        {
            "invitation_url": invitation_url,
            "invitation_token": pair.invitation_token,
            "expires_at": pair.invitation_expires_at,
            "inviter": user_service.safe_user_data(cipher, inviter),
        },
        "Invitation created successfully",
    )


@router.post("/accept", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def accept_invitation(
    request: Request,
    body: AcceptInvitationRequest,
    db: DbSession,
    cipher: Cipher,
):
    """Join a pending pair with an invitation token."""
    pair = await pair_service.find_by_invitation_token(db, body.invitation_token)
    if pair is None:
        raise AppError("Invalid or expired invitation", status.HTTP_400_BAD_REQUEST)

    needed = pair_service.open_role(pair)
    if needed is not None and body.invitee_role != needed:
        raise ConflictError(f"This invitation requires a {needed} account")

    user, _ = await user_service.find_or_create_user(
        db, cipher, name=body.invitee_name, phone=body.invitee_phone, role=body.invitee_role,
    )
    if not user.is_active:
        raise ForbiddenError("User account is deactivated")

    await pair_service.accept_invitation(db, pair, user)
    partner = await pair_service.get_pair_partner(db, pair, user.id)
    tokens = await _create_tokens_for_user(db, user)
    await db.commit()

    return api_response(
        {
            "user": user_service.safe_user_data(cipher, user),
            "pair": {
                "id": pair.id,
                "status": pair.status,
                "partner": partner,
                "created_at": pair.created_at,
            },
            "tokens": tokens,
        },
        "Invitation accepted successfully",
    )


@router.get("/verify")
async def verify(
    current_user: CurrentUser,
    cipher: Cipher,
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
):
    """Confirm that the bearer token is valid."""
    return api_response(
        {
            "user": user_service.safe_user_data(cipher, current_user),
            "token_valid": True,
            "expires_at": token_expiry(credentials.credentials),
        },
        "Token is valid",
    )


@router.post("/refresh")
async def refresh(body: RefreshRequest, db: DbSession, cipher: Cipher):
    """Exchange a valid refresh token for a new token pair (rotation)."""
    try:
        payload = decode_token(body.refresh_token, REFRESH)
        user_id = uuid.UUID(payload["sub"])
    except (JWTError, KeyError, ValueError):
        raise UnauthorizedError("Invalid refresh token")

    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(body.refresh_token),
            RefreshToken.revoked == False,  # noqa: E712
        )
    )
    stored_token = result.scalar_one_or_none()
    if stored_token is None:
        raise UnauthorizedError("Refresh token not found or already revoked")
    if stored_token.expires_at < datetime.now(timezone.utc):
        raise UnauthorizedError("Refresh token expired")

    user = await user_service.get_user(db, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("Invalid refresh token")

    stored_token.revoked = True
    tokens = await _create_tokens_for_user(db, user)
    await db.commit()

    return api_response(
        {"user": user_service.safe_user_data(cipher, user), "tokens": tokens},
        "Token refreshed successfully",
    )


@router.get("/profile")
async def get_profile(current_user: CurrentUser, db: DbSession, cipher: Cipher):
    return api_response(
        {
            "user": user_service.safe_user_data(cipher, current_user),
            "pairs": await pair_service.find_active_pairs_for_user(db, current_user.id),
            "stats": await user_service.get_user_stats(db, current_user.id),
        },
        "Profile retrieved successfully",
    )


@router.put("/profile")
async def update_profile(body: ProfileUpdate, current_user: CurrentUser, db: DbSession, cipher: Cipher):
    user = await user_service.update_name(db, current_user, body.name)
    await db.commit()
    return api_response(
        {"user": user_service.safe_user_data(cipher, user)},
        "Profile updated successfully",
    )


@router.post("/logout")
async def logout(
    current_user: CurrentUser,
    db: DbSession,
    body: LogoutRequest | None = None,
):
    """Revoke the given refresh token, or every refresh token of the user."""
    body = body or LogoutRequest()
    query = update(RefreshToken).where(
        RefreshToken.user_id == current_user.id,
        RefreshToken.revoked == False,  # noqa: E712
    )
    if body.refresh_token:
        query = query.where(RefreshToken.token_hash == hash_token(body.refresh_token))
    await db.execute(query.values(revoked=True))
    await db.commit()

    logger.info("User logged out: %s", current_user.id)
    return api_response(message="Logged out successfully")


@router.get("/pairs")
async def list_pairs(current_user: CurrentUser, db: DbSession):
    return api_response(
        {"pairs": await _pairs_with_stats(db, current_user)},
        "Pairs retrieved successfully",
    )


@router.delete("/pairs/{pair_id}")
async def leave_pair(pair_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    """Deactivate one of the user's pairs."""
    pair = await pair_service.get_pair(db, pair_id)
    if pair is None:
        raise NotFoundError("Pair not found")
    if not pair.has_member(current_user.id):
        raise ForbiddenError("You are not a member of this pair")
    if pair.status == "inactive":
        raise ConflictError("Pair is already inactive")

    await pair_service.deactivate(db, pair, "user_requested")
    await db.commit()
    return api_response(message="Pair deactivated successfully")


@router.delete("/account")
async def deactivate_account(current_user: CurrentUser, db: DbSession):
    """Deactivate the user and close all of their pairs."""
    count = await pair_service.deactivate_all_for_user(db, current_user.id, "account_deactivated")
    await user_service.deactivate(db, current_user)
    await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == current_user.id)
        .values(revoked=True)
    )
    await db.commit()

    logger.info("Account deactivated: %s (%d pairs closed)", current_user.id, count)
    return api_response(message="Account deactivated successfully")
