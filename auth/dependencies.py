"""
auth/dependencies.py -- The request gate for protected routes.

A protected request passes two steps, in order, and either step can end it:

  1. Bearer token: Authorization: Bearer <access token>, verified against the
     access secret only. Missing -> 401 missing_token. Anything else wrong
     (expired, malformed, signed with the refresh secret) -> 401
     invalid_token. No cookie or API-key fallback -- fail closed.
  2. Entitlement: the user's plan/status is loaded before the handler runs.
     A lookup failure is a 500; the handler never sees a request with an
     identity but no entitlement.

Only after both succeed are request.state.user_id and
request.state.entitlement set. The gate reads the token service and the
entitlement store from app.state and keeps nothing between requests.

Usage:
    router = APIRouter(dependencies=[Depends(require_auth)])   # guard a group

    @router.get("/protected")
    def route(ctx: AuthContext = Depends(require_auth)): ...   # or one route

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import EntitlementNotFoundError, InvalidTokenError
from auth.models import Entitlement
from auth.store import EntitlementStore
from auth.tokens import TokenService

logger = logging.getLogger("authgate.auth")


@dataclass(frozen=True)
class AuthContext:
    """Verified identity and entitlement for the current request."""

    user_id: str
    entitlement: Entitlement


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


class AuthGate:
    """Verify the bearer token, then resolve entitlement, or stop the request.

    Stateless: the collaborators are handed in per call so one gate serves
    every app instance and tests can substitute fakes.
    """

    def __call__(self, request: Request, tokens: TokenService, entitlements: EntitlementStore) -> AuthContext:
        token = _bearer_token(request)
        if token is None:
            raise HTTPException(
                status_code=401,
                detail={"code": "missing_token", "message": "Missing bearer token"},
            )

        try:
            claims = tokens.verify_access(token)
        except InvalidTokenError as exc:
            logger.info("Gate rejected token: %s", type(exc).__name__)
            raise HTTPException(
                status_code=401,
                detail={"code": "invalid_token", "message": "Invalid or expired token"},
            ) from None

        try:
            entitlement = entitlements.get_entitlement(claims.user_id)
        except (EntitlementNotFoundError, SQLAlchemyError):
            logger.exception("Gate failed to resolve entitlement user_id=%s", claims.user_id)
            raise HTTPException(
                status_code=500,
                detail={"code": "internal_error", "message": "An unexpected error occurred."},
            ) from None

        request.state.user_id = claims.user_id
        request.state.entitlement = entitlement
        return AuthContext(user_id=claims.user_id, entitlement=entitlement)


auth_gate = AuthGate()


def require_auth(request: Request) -> AuthContext:
    """Require a valid access token. Raises HTTP 401 / 500 as described above.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ctx: AuthContext = Depends(require_auth)): ...
    """
    return auth_gate(request, request.app.state.tokens, request.app.state.entitlements)
