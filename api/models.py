"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Response bodies use camelCase keys (accessToken, profilePicture, ...) because
that is what browser clients already consume; the Python side stays
snake_case via an alias generator. Always dump with by_alias=True.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Entitlement, Session, UserProfile

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@" with something on both sides and a dot in the
# domain. Deliverability is not this service's problem.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    password has no strength constraints here on purpose: the password policy
    lives in auth/passwords.py so the client gets the specific reason
    ("Password must include at least one number") rather than a generic
    schema error.

    Only email and username are trimmed. The password is hashed exactly as
    sent, since /login compares it exactly as sent.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    first_name: Optional[str] = Field(default=None, max_length=100, alias="firstName")
    last_name: Optional[str] = Field(default=None, max_length=100, alias="lastName")
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", "username", "first_name", "last_name", mode="before")
    @classmethod
    def strip_identity(cls, v):
        return v.strip() if isinstance(v, str) else v


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v):
        return v.strip() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class StatusResponse(BaseModel):
    """Body of register/logout success: just the null error slot."""

    error: None = None


class LoginResponse(_CamelModel):
    access_token: str
    error: None = None


class UserSummary(_CamelModel):
    """Minimal profile for client hydration after a refresh."""

    email: str
    username: str
    profile_picture: Optional[str]
    subscription_plan: str

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserSummary":
        return cls(
            email=profile.email,
            username=profile.username,
            profile_picture=profile.profile_picture_url,
            subscription_plan=profile.subscription_plan.value,
        )


class RefreshResponse(_CamelModel):
    access_token: str
    user: UserSummary
    error: None = None


class EntitlementResponse(_CamelModel):
    plan: str
    status: str
    ends_at: Optional[str] = None

    @classmethod
    def from_entitlement(cls, entitlement: Entitlement) -> "EntitlementResponse":
        return cls(
            plan=entitlement.plan.value,
            status=entitlement.status.value,
            ends_at=entitlement.ends_at,
        )


class MeResponse(_CamelModel):
    """Response for GET /api/v1/auth/me -- the identity the gate attached."""

    user_id: str
    entitlement: EntitlementResponse


class SessionResponse(_CamelModel):
    """One active device session. The refresh token is never returned."""

    device_id: str
    user_agent: Optional[str]
    ip_address: Optional[str]
    created_at: str
    last_used_at: str
    current: bool = False

    @classmethod
    def from_session(cls, session: Session, current_device_id: Optional[str]) -> "SessionResponse":
        return cls(
            device_id=session.device_id,
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            created_at=session.created_at or "",
            last_used_at=session.last_used_at or "",
            current=session.device_id == current_device_id,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
