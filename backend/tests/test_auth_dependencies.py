import pathlib
import sys
from datetime import timedelta

import pytest
from fastapi import HTTPException


ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import backend.main as backend_main


def test_get_current_user_missing_credentials_is_unauthorized():
    with pytest.raises(HTTPException) as exc:
        backend_main.get_current_user(authorization=None, session_token=None)

    assert exc.value.status_code == 401
    assert exc.value.detail == "Please login first"


def test_get_current_user_invalid_token_is_unauthorized():
    with pytest.raises(HTTPException) as exc:
        backend_main.get_current_user(authorization="Bearer not-a-valid-token", session_token=None)

    assert exc.value.status_code == 401


def test_get_current_user_expired_token_is_unauthorized():
    expired_token = backend_main.create_access_token(subject="42", expires_delta=timedelta(minutes=-5))

    with pytest.raises(HTTPException):
        backend_main.get_current_user(authorization=None, session_token=expired_token)


def test_get_current_user_reads_bearer_header():
    token = backend_main.create_access_token(subject="user-123", email="ana@example.com")

    user = backend_main.get_current_user(authorization=f"Bearer {token}", session_token=None)

    assert user.id == "user-123"
    assert user.email == "ana@example.com"


def test_get_current_user_falls_back_to_session_cookie():
    token = backend_main.create_access_token(subject="user-456")

    user = backend_main.get_current_user(authorization="Basic abc", session_token=token)

    assert user.id == "user-456"


def test_resolve_user_from_token_requires_subject():
    token = backend_main.jwt.encode({"email": "x@example.com"}, backend_main.JWT_SECRET_KEY, algorithm="HS256")

    assert backend_main.resolve_user_from_token(token) is None
