"""Unit tests for auth/dependencies.py -- AuthGate.

The gate is called directly with a bare starlette Request, so each case
controls exactly which Authorization header is present and which
entitlement lookup result comes back.

Covers:
- Missing / non-Bearer header -> 401 missing_token
- Expired, malformed, refresh-signed token -> 401 invalid_token
- Entitlement lookup failure -> 500, handler never reached
- Success attaches user_id and entitlement to request.state
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from jose import jwt
from sqlalchemy.exc import OperationalError
from starlette.requests import Request

from auth.dependencies import AuthContext, AuthGate
from auth.errors import EntitlementNotFoundError
from auth.models import Entitlement, Plan, SubscriptionStatus
from auth.tokens import TokenService
from helpers import ACCESS_SECRET


class _FakeEntitlements:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result or Entitlement(plan=Plan.pro, status=SubscriptionStatus.active)
        self.error = error
        self.calls: list[str] = []

    def get_entitlement(self, user_id: str) -> Entitlement:
        self.calls.append(user_id)
        if self.error is not None:
            raise self.error
        return self.result


def _request(authorization: str | None = None) -> Request:
    headers = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


@pytest.fixture
def gate() -> AuthGate:
    return AuthGate()


def _assert_untouched(request: Request) -> None:
    assert not hasattr(request.state, "user_id")
    assert not hasattr(request.state, "entitlement")


class TestBearerToken:
    @pytest.mark.parametrize("header", [None, "", "Bearer ", "Basic dXNlcjpwYXNz", "bearer-ish token"])
    def test_missing_token(self, gate: AuthGate, tokens: TokenService, header) -> None:
        request = _request(header)
        ents = _FakeEntitlements()
        with pytest.raises(HTTPException) as excinfo:
            gate(request, tokens, ents)
        assert excinfo.value.status_code == 401
        assert excinfo.value.detail["code"] == "missing_token"
        assert ents.calls == []
        _assert_untouched(request)

    def test_refresh_signed_token_rejected(self, gate: AuthGate, tokens: TokenService) -> None:
        request = _request(f"Bearer {tokens.issue_refresh('user-1')}")
        with pytest.raises(HTTPException) as excinfo:
            gate(request, tokens, _FakeEntitlements())
        assert excinfo.value.status_code == 401
        assert excinfo.value.detail == {"code": "invalid_token", "message": "Invalid or expired token"}
        _assert_untouched(request)

    def test_expired_token_rejected(self, gate: AuthGate, tokens: TokenService) -> None:
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        token = jwt.encode(
            {"sub": "user-1", "iat": int(past.timestamp()) - 900, "exp": int(past.timestamp()), "jti": "x"},
            ACCESS_SECRET,
            algorithm="HS256",
        )
        request = _request(f"Bearer {token}")
        with pytest.raises(HTTPException) as excinfo:
            gate(request, tokens, _FakeEntitlements())
        assert excinfo.value.status_code == 401
        assert excinfo.value.detail["code"] == "invalid_token"
        _assert_untouched(request)

    def test_garbage_token_rejected(self, gate: AuthGate, tokens: TokenService) -> None:
        with pytest.raises(HTTPException) as excinfo:
            gate(_request("Bearer not.a.jwt"), tokens, _FakeEntitlements())
        assert excinfo.value.status_code == 401
        assert excinfo.value.detail["code"] == "invalid_token"


class TestEntitlement:
    @pytest.mark.parametrize(
        "error",
        [EntitlementNotFoundError(), OperationalError("SELECT", {}, Exception("db down"))],
    )
    def test_lookup_failure_is_internal_error(self, gate: AuthGate, tokens: TokenService, error) -> None:
        request = _request(f"Bearer {tokens.issue_access('user-1')}")
        with pytest.raises(HTTPException) as excinfo:
            gate(request, tokens, _FakeEntitlements(error=error))
        assert excinfo.value.status_code == 500
        assert excinfo.value.detail["code"] == "internal_error"
        assert "db down" not in excinfo.value.detail["message"]
        _assert_untouched(request)

    def test_success_attaches_identity(self, gate: AuthGate, tokens: TokenService) -> None:
        request = _request(f"Bearer {tokens.issue_access('user-1')}")
        ents = _FakeEntitlements()
        ctx = gate(request, tokens, ents)

        assert isinstance(ctx, AuthContext)
        assert ctx.user_id == "user-1"
        assert ctx.entitlement.plan is Plan.pro
        assert ents.calls == ["user-1"]
        assert request.state.user_id == "user-1"
        assert request.state.entitlement is ctx.entitlement
