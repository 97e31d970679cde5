"""
api/routes/v1/auth.py -- Authentication and device-session REST endpoints.

Routes:
  POST   /api/v1/auth/register              -- create an account; 201
  POST   /api/v1/auth/login                 -- password login; access token in body,
                                               refresh token + device id as cookies
  POST   /api/v1/auth/refresh               -- new access token from the cookies
  POST   /api/v1/auth/logout                -- revoke this device's session; clear cookies
  GET    /api/v1/auth/me                    -- identity + entitlement (requires auth)
  GET    /api/v1/auth/sessions              -- caller's active devices (requires auth)
  DELETE /api/v1/auth/sessions/{device_id}  -- sign out one device (requires auth)

Cookies:
  jwt        refresh token. httpOnly, SameSite=None (the SPA may live on
             another origin), Secure, 24h -- same lifetime as the token.
  device_id  opaque device id. httpOnly, SameSite=Lax, Secure, 365 days. It
             outlives any one session so a re-login on the same browser
             rotates that device's session instead of adding a row.

Security:
  Login and refresh are rate-limited per IP (LOGIN_RATE_LIMIT / REFRESH_RATE_LIMIT).
  Unknown email and wrong password both answer 401 "Invalid credentials".
  Cache-Control: no-store on every response that carries a token.
  IDOR guard: DELETE /sessions/{device_id} revokes only within the caller's
  own user id; another user's device id simply matches nothing.

Errors raised by AuthFlow are AuthServiceError subclasses; api/main.py renders
them into the standard error envelope, so handlers here only cover success.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, refresh_limit
from api.models import (
    EntitlementResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    RefreshResponse,
    RegisterRequest,
    SessionResponse,
    StatusResponse,
    UserSummary,
)
from auth.dependencies import AuthContext, require_auth
from auth.flow import AuthFlow, RegistrationData
from auth.store import SessionStore
from core.config import Settings

REFRESH_COOKIE = "jwt"
DEVICE_COOKIE = "device_id"

# Auth policy:
# - POST   /register, /login, /refresh, /logout: public -- they establish or end
#          a session, so they authenticate with cookies or credentials instead
# - GET    /me, /sessions; DELETE /sessions/{id}: bearer access token (require_auth)
router = APIRouter()
protected_router = APIRouter(dependencies=[Depends(require_auth)])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flow(request: Request) -> AuthFlow:
    return request.app.state.auth_flow


def _client_ip(request: Request) -> str | None:
    """Best-effort client address for the session record. Diagnostic only."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def _set_session_cookies(response: Response, settings: Settings, refresh_token: str, device_id: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        samesite="none",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_ttl_seconds,
        path="/",
    )
    response.set_cookie(
        DEVICE_COOKIE,
        value=device_id,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.device_cookie_max_age_seconds,
        path="/",
    )


def _clear_session_cookies(response: Response, settings: Settings) -> None:
    # Attributes must match the ones the cookies were set with, or browsers
    # keep the original (SameSite=None cookies in particular need Secure).
    response.delete_cookie(REFRESH_COOKIE, path="/", secure=settings.secure_cookies, httponly=True, samesite="none")
    response.delete_cookie(DEVICE_COOKIE, path="/", secure=settings.secure_cookies, httponly=True, samesite="lax")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=StatusResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account. Does not log in -- the client calls /login next.

    400 with the specific reason when the password fails the policy; 409 with
    "Email already registered" or "Username taken" on a duplicate.
    """
    _flow(request).register(
        RegistrationData(
            email=body.email,
            username=body.username,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
        )
    )
    return JSONResponse(status_code=201, content=StatusResponse().model_dump())


@limiter.limit(login_limit)  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; start or rotate this device's session.

    Reuses the device_id cookie when the browser has one, so logging in again
    on the same device replaces that device's refresh token rather than
    creating a second session.
    """
    flow = _flow(request)
    result = flow.login(
        body.email,
        body.password,
        device_id=request.cookies.get(DEVICE_COOKIE),
        user_agent=request.headers.get("User-Agent"),
        ip_address=_client_ip(request),
    )
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(access_token=result.access_token).model_dump(by_alias=True),
    )
    _set_session_cookies(resp, flow.settings, result.refresh_token, result.device_id)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(refresh_limit)
@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request) -> JSONResponse:
    """Mint a new access token from the jwt + device_id cookies.

    401 when a cookie is missing or the session was revoked/rotated; 403 when
    the refresh token itself does not verify.
    """
    result = _flow(request).refresh(request.cookies.get(REFRESH_COOKIE), request.cookies.get(DEVICE_COOKIE))
    resp = JSONResponse(
        status_code=200,
        content=RefreshResponse(
            access_token=result.access_token,
            user=UserSummary.from_profile(result.profile),
        ).model_dump(by_alias=True),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=StatusResponse, responses={204: {"description": "No session cookies"}})
def logout(request: Request) -> Response:
    """Revoke this device's session and clear both cookies.

    Without a refresh cookie (or without a device cookie) there is nothing to
    revoke and the answer is an empty 204.
    """
    flow = _flow(request)
    revoked = flow.logout(request.cookies.get(REFRESH_COOKIE), request.cookies.get(DEVICE_COOKIE))
    if not revoked:
        return Response(status_code=204)
    resp = JSONResponse(status_code=200, content=StatusResponse().model_dump())
    _clear_session_cookies(resp, flow.settings)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@protected_router.get("/auth/me", response_model=MeResponse, response_model_by_alias=True)
def me(ctx: AuthContext = Depends(require_auth)) -> MeResponse:
    """Return the identity and entitlement the gate attached to this request."""
    return MeResponse(user_id=ctx.user_id, entitlement=EntitlementResponse.from_entitlement(ctx.entitlement))


@protected_router.get("/auth/sessions", response_model=list[SessionResponse], response_model_by_alias=True)
def list_sessions(request: Request, ctx: AuthContext = Depends(require_auth)) -> list[SessionResponse]:
    """List the caller's active device sessions. Refresh tokens are never returned."""
    sessions: SessionStore = request.app.state.sessions
    current = request.cookies.get(DEVICE_COOKIE)
    return [SessionResponse.from_session(s, current) for s in sessions.list_active_sessions(ctx.user_id)]


@protected_router.delete("/auth/sessions/{device_id}", status_code=204)
def revoke_session(request: Request, device_id: str, ctx: AuthContext = Depends(require_auth)) -> Response:
    """Sign out one of the caller's devices. 404 if that device has no active session."""
    sessions: SessionStore = request.app.state.sessions
    if not sessions.revoke(ctx.user_id, device_id):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "No active session for that device."},
        )
    return Response(status_code=204)
