"""
auth/flow.py -- Register / login / refresh / logout orchestration.

Per (user, device) the flows drive one small state machine:

    NoSession --login--> Active --logout--> Revoked
                         Active --login---> Active   (refresh token rotated)
                        Revoked --login---> Active   (new row)

refresh never changes state; it checks that the presented refresh token is
still the active one for the device and mints a new access token.

Error policy:
  Every failure leaves this module as an AuthServiceError subclass. Store and
  library exceptions are logged here with full detail and re-raised as
  InternalError carrying only a generic message, so the transport layer can
  render anything it receives without leaking internals.

  Unknown email and wrong password are the same InvalidCredentialsError, and
  the unknown-email path still runs a bcrypt verify so response time does not
  tell them apart either.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import (
    ConflictError,
    DuplicateUserError,
    InternalError,
    InvalidCredentialsError,
    InvalidTokenError,
    MalformedDigestError,
    MissingCookieError,
    RevokedOrUnknownSessionError,
    WeakPasswordError,
)
from auth.models import User, UserProfile
from auth.passwords import PasswordHasher, check_password_policy
from auth.store import EntitlementStore, SessionStore, UserStore
from auth.tokens import TokenService
from core.config import Settings

logger = logging.getLogger("authgate.auth")

_CONFLICT_MESSAGES = {
    "email": "Email already registered",
    "username": "Username taken",
}


@dataclass
class RegistrationData:
    email: str
    username: str
    password: str
    first_name: str | None = None
    last_name: str | None = None


@dataclass
class LoginResult:
    user_id: str
    access_token: str
    refresh_token: str
    device_id: str


@dataclass
class RefreshResult:
    user_id: str
    access_token: str
    profile: UserProfile


class AuthFlow:
    """Orchestrates the session lifecycle over the hasher, token service and stores.

    Holds no mutable state of its own; one instance serves every request.

    Usage:
        flow = AuthFlow(settings, users, sessions, entitlements)
        flow.register(RegistrationData(email=..., username=..., password=...))
        result = flow.login(email, password, device_id=None, user_agent=ua, ip_address=ip)
        flow.refresh(result.refresh_token, result.device_id)
        flow.logout(result.refresh_token, result.device_id)
    """

    def __init__(
        self,
        settings: Settings,
        users: UserStore,
        sessions: SessionStore,
        entitlements: EntitlementStore,
        hasher: PasswordHasher | None = None,
        tokens: TokenService | None = None,
    ) -> None:
        self.settings = settings
        self.users = users
        self.sessions = sessions
        self.entitlements = entitlements
        self.hasher = hasher or PasswordHasher(rounds=settings.bcrypt_rounds)
        self.tokens = tokens or TokenService(settings)

    # ------------------------------------------------------------------
    # register
    # ------------------------------------------------------------------

    def register(self, data: RegistrationData) -> User:
        """Create an account. Does not log the user in.

        Raises WeakPasswordError with the specific policy reason, or
        ConflictError naming the field that is already taken.
        """
        reason = check_password_policy(data.password)
        if reason is not None:
            raise WeakPasswordError(reason)

        password_hash = self.hasher.hash(data.password)
        user = User(
            email=data.email,
            username=data.username,
            password_hash=password_hash,
            first_name=data.first_name,
            last_name=data.last_name,
        )
        try:
            user.id = self.users.create_user(user)
        except DuplicateUserError as exc:
            logger.info("Registration rejected: duplicate %s", exc.field)
            raise ConflictError(exc.field, _CONFLICT_MESSAGES[exc.field]) from None
        except SQLAlchemyError:
            logger.exception("Registration failed: user insert error")
            raise InternalError() from None

        logger.info("User registered user_id=%s", user.id)
        return user

    # ------------------------------------------------------------------
    # login
    # ------------------------------------------------------------------

    def login(
        self,
        email: str,
        password: str,
        device_id: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> LoginResult:
        """Verify credentials, issue both tokens, and make the device's session active.

        device_id is reused when the client already has one, otherwise a new
        opaque id is minted and returned for the caller to set as a cookie.
        """
        try:
            user = self.users.get_by_email(email)
        except SQLAlchemyError:
            logger.exception("Login failed: user lookup error")
            raise InternalError() from None

        if user is None:
            self.hasher.burn(password)
            logger.info("Login rejected: bad credentials")
            raise InvalidCredentialsError()
        try:
            matched = self.hasher.verify(password, user.password_hash)
        except MalformedDigestError:
            logger.error("Login failed: stored password digest is malformed user_id=%s", user.id)
            raise
        if not matched:
            logger.info("Login rejected: bad credentials")
            raise InvalidCredentialsError()

        access_token = self.tokens.issue_access(user.id)
        refresh_token = self.tokens.issue_refresh(user.id)
        device_id = device_id or str(uuid.uuid4())

        try:
            self.sessions.upsert_active_session(user.id, device_id, refresh_token, user_agent, ip_address)
        except SQLAlchemyError:
            logger.exception("Login failed: session upsert error user_id=%s", user.id)
            raise InternalError() from None

        logger.info("Login succeeded user_id=%s device_id=%s", user.id, device_id)
        return LoginResult(
            user_id=user.id,
            access_token=access_token,
            refresh_token=refresh_token,
            device_id=device_id,
        )

    # ------------------------------------------------------------------
    # refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None, device_id: str | None) -> RefreshResult:
        """Mint a new access token for a device whose session is still active.

        The refresh token itself is not rotated here; it stays valid until it
        expires, the device logs in again, or the device logs out.

        Raises:
            MissingCookieError:            either cookie absent (401).
            InvalidTokenError:             refresh token fails verification (403).
            RevokedOrUnknownSessionError:  no active session holds this token (401).
        """
        if not refresh_token or not device_id:
            raise MissingCookieError()

        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except InvalidTokenError as exc:
            logger.warning("Refresh rejected: %s", type(exc).__name__)
            raise InvalidTokenError("Invalid refresh token", status_code=403) from None

        try:
            session = self.sessions.find_active_session(claims.user_id, device_id, refresh_token)
            if session is None:
                logger.warning(
                    "Refresh rejected: no active session user_id=%s device_id=%s", claims.user_id, device_id
                )
                raise RevokedOrUnknownSessionError()
            profile = self.users.get_profile(claims.user_id)
            if profile is None:
                logger.error("Refresh failed: session without user user_id=%s", claims.user_id)
                raise InternalError()
            self.sessions.touch(session.id)
        except SQLAlchemyError:
            logger.exception("Refresh failed: store error user_id=%s", claims.user_id)
            raise InternalError() from None

        access_token = self.tokens.issue_access(claims.user_id)
        return RefreshResult(user_id=claims.user_id, access_token=access_token, profile=profile)

    # ------------------------------------------------------------------
    # logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str | None, device_id: str | None) -> bool:
        """Revoke the device's session.

        Returns False without touching the store when either cookie is absent
        -- there is nothing to revoke. Returns True once the revoke has been
        written, whether or not a matching active row existed.

        Raises InvalidTokenError (403) when the refresh token fails verification.
        """
        if not refresh_token:
            return False

        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except InvalidTokenError as exc:
            logger.warning("Logout rejected: %s", type(exc).__name__)
            raise InvalidTokenError("Invalid refresh token", status_code=403) from None

        if not device_id:
            return False

        try:
            revoked = self.sessions.revoke(claims.user_id, device_id)
        except SQLAlchemyError:
            logger.exception("Logout failed: revoke error user_id=%s", claims.user_id)
            raise InternalError("Failed to revoke session") from None

        logger.info("Logout user_id=%s device_id=%s revoked=%s", claims.user_id, device_id, revoked)
        return True
