"""Tests for JWT token creation and verification."""

from datetime import timedelta

import pytest
from jose import ExpiredSignatureError, JWTError, jwt

from mundapdari.config import settings
from mundapdari.core.security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_token,
    token_expiry,
)


class TestTokens:
    def test_access_token_claims(self):
        token = create_access_token({"sub": "user-1", "role": "parent"})
        payload = decode_token(token)
        assert payload["sub"] == "user-1"
        assert payload["role"] == "parent"
        assert payload["type"] == "access"
        assert payload["iss"] == settings.JWT_ISSUER
        assert payload["aud"] == settings.JWT_AUDIENCE
        assert payload["jti"]

    def test_input_not_mutated(self):
        data = {"sub": "user-1"}
        create_access_token(data)
        assert data == {"sub": "user-1"}

    def test_refresh_token_round_trip(self):
        token = create_refresh_token({"sub": "user-1"})
        assert decode_token(token, REFRESH)["type"] == "refresh"

    def test_tokens_are_unique(self):
        assert create_access_token({"sub": "u"}) != create_access_token({"sub": "u"})

    def test_refresh_not_accepted_as_access(self):
        token = create_refresh_token({"sub": "user-1"})
        with pytest.raises(JWTError):
            decode_token(token)

    def test_access_not_accepted_as_refresh(self):
        token = create_access_token({"sub": "user-1"})
        with pytest.raises(JWTError):
            decode_token(token, REFRESH)

    def test_expired(self):
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-1))
        with pytest.raises(ExpiredSignatureError):
            decode_token(token)

    def test_wrong_audience(self):
        token = jwt.encode(
            {"sub": "user-1", "type": "access", "aud": "someone-else", "iss": settings.JWT_ISSUER},
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        with pytest.raises(JWTError):
            decode_token(token)

    def test_token_expiry(self):
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(hours=1))
        expiry = token_expiry(token)
        assert expiry is not None
        assert expiry.tzinfo is not None

    def test_hash_token(self):
        assert hash_token("abc") == hash_token("abc")
        assert len(hash_token("abc")) == 64
