"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the auth
flow do the work; these classes only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Plan(str, Enum):
    free = "free"
    pro = "pro"
    hacker = "hacker"


class SubscriptionStatus(str, Enum):
    active = "active"
    canceled = "canceled"
    incomplete = "incomplete"
    past_due = "past_due"
    unpaid = "unpaid"


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass
class User:
    """A registered identity.

    id is a UUID string assigned by UserStore.create_user(). Only the profile
    fields (names, picture) are meant to change after registration, and this
    package never mutates them.
    """

    email: str
    username: str
    password_hash: str
    id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_picture_url: str | None = None
    email_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Session:
    """One device's login state for one user.

    At most one row per (user_id, device_id) has revoked=False. A second login
    from the same device rotates refresh_token in place; logout flips revoked
    to True and nothing ever flips it back.

    user_agent and ip_address are diagnostic only -- nothing authorizes on them.
    """

    user_id: str
    device_id: str
    refresh_token: str
    id: int | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    revoked: bool = False
    created_at: str | None = None
    last_used_at: str | None = None


@dataclass
class Entitlement:
    """A user's current plan and subscription status, resolved per request."""

    plan: Plan
    status: SubscriptionStatus
    ends_at: str | None = None


@dataclass
class UserProfile:
    """Minimal profile returned by /refresh so clients can hydrate without a second call."""

    email: str
    username: str
    profile_picture_url: str | None
    subscription_plan: Plan


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of an access or refresh token."""

    user_id: str
    expires_at: datetime
    issued_at: datetime
    token_id: str
