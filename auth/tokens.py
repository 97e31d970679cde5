"""
auth/tokens.py -- Access and refresh token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Each token carries the user id (sub), an
       absolute expiry (exp), the issue time (iat) and a random token id (jti)
       so two tokens minted for the same user in the same second still differ.

  Key separation: access tokens are signed with JWT_ACCESS_SECRET and refresh
       tokens with JWT_REFRESH_SECRET. Verification picks the key by kind, so a
       refresh token presented as an access token fails the signature check
       (and vice versa) -- no claim inside the token is trusted to say which
       kind it is.

  Leeway: none beyond python-jose's default. Expired means expired.

  Verification raises rather than returning None: the request gate and the
       refresh/logout flows answer with different status codes, and the logs
       want to know whether a token was expired, malformed, or forged.

Layer rule: no imports from api/. Settings is injected, never read globally.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import BadSignatureError, ExpiredTokenError, MalformedTokenError, TokenSigningError
from auth.models import TokenClaims, TokenKind
from core.config import Settings

_ALGORITHM = "HS256"


class TokenService:
    """Issue and verify signed, time-bound identity tokens.

    Usage:
        tokens = TokenService(get_settings())
        access = tokens.issue_access(user_id)
        claims = tokens.verify_access(access)      # TokenClaims
        tokens.verify_refresh(access)              # raises BadSignatureError
    """

    def __init__(self, settings: Settings) -> None:
        self._secrets = {
            TokenKind.access: settings.jwt_access_secret,
            TokenKind.refresh: settings.jwt_refresh_secret,
        }
        self._lifetimes = {
            TokenKind.access: timedelta(minutes=settings.access_token_expire_minutes),
            TokenKind.refresh: timedelta(hours=settings.refresh_token_expire_hours),
        }

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, user_id: str) -> str:
        return self.issue(user_id, TokenKind.access)

    def issue_refresh(self, user_id: str) -> str:
        return self.issue(user_id, TokenKind.refresh)

    def issue(self, user_id: str, kind: TokenKind) -> str:
        """Encode a token for user_id that expires one lifetime of `kind` from now."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int((now + self._lifetimes[kind]).timestamp()),
            "jti": secrets.token_hex(16),
        }
        try:
            return jwt.encode(payload, self._secrets[kind], algorithm=_ALGORITHM)
        except JWTError:
            raise TokenSigningError() from None

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> TokenClaims:
        return self.verify(token, TokenKind.access)

    def verify_refresh(self, token: str) -> TokenClaims:
        return self.verify(token, TokenKind.refresh)

    def verify(self, token: str, kind: TokenKind) -> TokenClaims:
        """Verify token against the secret for `kind` and return its claims.

        Raises:
            MalformedTokenError: not a decodable JWT, or required claims missing.
            BadSignatureError:   signed with another key or algorithm.
            ExpiredTokenError:   signature valid but exp is in the past.
        """
        # Structural check first so "garbage" and "forged" stay distinguishable.
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            raise MalformedTokenError() from None

        try:
            payload = jwt.decode(token, self._secrets[kind], algorithms=[_ALGORITHM])
        except ExpiredSignatureError:
            raise ExpiredTokenError() from None
        except JWTError:
            raise BadSignatureError() from None

        return _claims_from_payload(payload)


def _claims_from_payload(payload: dict) -> TokenClaims:
    sub = payload.get("sub")
    exp = payload.get("exp")
    iat = payload.get("iat")
    jti = payload.get("jti")
    if not isinstance(sub, str) or not sub or not isinstance(jti, str):
        raise MalformedTokenError()
    if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
        raise MalformedTokenError()
    return TokenClaims(
        user_id=sub,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        token_id=jti,
    )
