"""Tests for bearer token encoding and decoding."""

from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from certchain.core.security import create_access_token, decode_access_token
from certchain.models.auth import Principal, Role


class TestAccessTokens:
    """Tests for create_access_token and decode_access_token."""

    def test_round_trip(self, admin, settings):
        principal = decode_access_token(create_access_token(admin, settings), settings)
        assert principal == admin

    def test_principal_without_college(self, settings):
        verifier = Principal(user_id="v1", role=Role.VERIFIER)
        assert decode_access_token(create_access_token(verifier, settings), settings).college_id is None

    def test_expired(self, admin, settings):
        token = create_access_token(admin, settings, expires_delta=timedelta(seconds=-1))
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token, settings)
        assert exc_info.value.status_code == 401

    def test_wrong_secret(self, admin, settings):
        token = create_access_token(admin, settings)
        other = settings.model_copy(update={"secret_key": "another-secret"})
        with pytest.raises(HTTPException):
            decode_access_token(token, other)

    def test_refresh_token_rejected(self, admin, settings):
        token = jwt.encode(
            {"sub": admin.user_id, "role": "ADMIN", "type": "refresh"},
            settings.secret_key, algorithm=settings.algorithm,
        )
        with pytest.raises(HTTPException):
            decode_access_token(token, settings)

    def test_unknown_role_rejected(self, settings):
        token = jwt.encode({"sub": "u1", "role": "SUPERUSER"}, settings.secret_key, algorithm=settings.algorithm)
        with pytest.raises(HTTPException):
            decode_access_token(token, settings)
