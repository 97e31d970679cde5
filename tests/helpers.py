"""
tests/helpers.py -- Helpers shared by the unit and integration tests.

Kept out of conftest.py so test modules can import them by name.

session_rows() and set_plan() reach the tables directly: the service never
lists revoked rows or changes plans itself (billing owns subscriptions), but
the tests need to inspect the one and arrange the other.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.engine import Engine

from auth.models import Plan, Session, SubscriptionStatus
from auth.store import _row_to_session, _sessions, _subscriptions

ACCESS_SECRET = "a" * 16 + "access-secret-for-tests"
REFRESH_SECRET = "r" * 16 + "refresh-secret-for-tests"
PASSWORD = "Sup3rSecret"


def expired_token(secret: str, user_id: str = "user-1") -> str:
    """A well-formed HS256 token signed with secret that expired five minutes ago."""
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    payload = {
        "sub": user_id,
        "iat": int((past - timedelta(minutes=15)).timestamp()),
        "exp": int(past.timestamp()),
        "jti": "deadbeef",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def session_rows(engine: Engine, user_id: str, device_id: str) -> list[Session]:
    """Every session row for (user_id, device_id), revoked ones included, oldest first."""
    with engine.connect() as conn:
        rows = conn.execute(
            _sessions.select()
            .where((_sessions.c.user_id == user_id) & (_sessions.c.device_id == device_id))
            .order_by(_sessions.c.id)
        ).fetchall()
    return [_row_to_session(r) for r in rows]


def set_plan(
    engine: Engine,
    user_id: str,
    plan: Plan,
    status: SubscriptionStatus = SubscriptionStatus.active,
    ends_at: str | None = None,
) -> bool:
    """Overwrite the user's subscription row. False if the user has none."""
    with engine.begin() as conn:
        result = conn.execute(
            _subscriptions.update()
            .where(_subscriptions.c.user_id == user_id)
            .values(plan=plan.value, status=status.value, ends_at=ends_at)
        )
    return result.rowcount > 0


def cookie_header(**cookies: str | None) -> dict[str, str]:
    """Build a Cookie request header from name=value pairs, skipping None values."""
    pairs = [f"{name}={value}" for name, value in cookies.items() if value is not None]
    return {"Cookie": "; ".join(pairs)} if pairs else {}


def parse_set_cookies(resp) -> dict[str, dict[str, str]]:
    """Map cookie name -> {"value": ..., lowercased attribute: value} from Set-Cookie headers."""
    parsed: dict[str, dict[str, str]] = {}
    for header in resp.headers.get_list("set-cookie"):
        first, *attrs = [part.strip() for part in header.split(";")]
        name, _, value = first.partition("=")
        entry = {"value": value.strip('"')}
        for attr in attrs:
            key, _, val = attr.partition("=")
            entry[key.strip().lower()] = val.strip()
        parsed[name] = entry
    return parsed


def register(client: TestClient, email: str, username: str, password: str = PASSWORD):
    return client.post(
        "/api/v1/auth/register",
        json={"email": email, "username": username, "password": password, "firstName": "Test", "lastName": "User"},
    )


def login(client: TestClient, email: str, password: str = PASSWORD, device_id: str | None = None):
    """POST /login; return (response, refresh_token, device_id) read from Set-Cookie."""
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers=cookie_header(device_id=device_id),
    )
    cookies = parse_set_cookies(resp)
    refresh_token = cookies.get("jwt", {}).get("value")
    device = cookies.get("device_id", {}).get("value")
    return resp, refresh_token, device


def session_cookies(refresh_token: str | None, device_id: str | None) -> dict[str, str]:
    return cookie_header(jwt=refresh_token, device_id=device_id)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
