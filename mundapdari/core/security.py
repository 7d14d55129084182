"""JWT helpers.

Access and refresh tokens are signed with separate secrets and carry a
``type`` claim so one can never be used in place of the other.
"""

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from mundapdari.config import settings
from mundapdari.core.encryption import hash_value

ACCESS = "access"
REFRESH = "refresh"


def _secret_for(token_type: str) -> str:
    return settings.JWT_REFRESH_SECRET if token_type == REFRESH else settings.JWT_SECRET


def _encode(data: dict, token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update({
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "jti": uuid.uuid4().hex,
    })
    return jwt.encode(to_encode, _secret_for(token_type), algorithm=settings.JWT_ALGORITHM)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a signed access token. *data* is not mutated."""
    return _encode(
        data,
        ACCESS,
        expires_delta or timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS),
    )


def create_refresh_token(data: dict, expires_delta: timedelta | None = None) -> str:
    return _encode(
        data,
        REFRESH,
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str, token_type: str = ACCESS) -> dict:
    """Verify signature, audience, issuer and type.

    Raises:
        jose.ExpiredSignatureError: If the token has expired.
        jose.JWTError: For any other invalid token.
    """
    payload = jwt.decode(
        token,
        _secret_for(token_type),
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )
    if payload.get("type") != token_type:
        raise JWTError(f"Expected {token_type} token")
    return payload


def token_expiry(token: str) -> datetime | None:
    """Read the ``exp`` claim without verifying the signature."""
    claims = jwt.get_unverified_claims(token)
    exp = claims.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest of a raw token string."""
    return hash_value(token)
