"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore, SessionStore and
EntitlementStore are the repositories; the _row_to_* functions are the
mappers. Flow and dependency code never touches SQL directly.

All three repositories share one Engine built by create_auth_engine(), which
also creates the schema. SQLite is the default; PostgreSQL is a URL change.

Security:
  All queries use bound parameters. No f-strings in SQL.

Session invariant:
  At most one non-revoked row per (user_id, device_id). The partial unique
  index uq_user_sessions_active enforces it in the database, and
  upsert_active_session() writes through it with a single
  INSERT ... ON CONFLICT ... DO UPDATE statement. There is no read-then-write
  in Python, so two concurrent logins from the same device either insert once
  and update once, or update twice -- never two active rows, never a lost
  update.

Errors:
  SQLAlchemy exceptions propagate. AuthFlow translates them into the domain
  error taxonomy at the flow boundary. The one exception is a unique-key
  collision on users, which create_user() reports as DuplicateUserError so the
  caller can say which field collided.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateUserError, EntitlementNotFoundError
from auth.models import Entitlement, Plan, Session, SubscriptionStatus, User, UserProfile

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("username", String(50), nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("profile_picture_url", Text),
    Column("password_hash", Text, nullable=False),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    # Named so a collision can be attributed to the right field on PostgreSQL,
    # whose error text carries the constraint name rather than the column.
    UniqueConstraint("email", name="uq_users_email"),
    UniqueConstraint("username", name="uq_users_username"),
)

_subscriptions = Table(
    "subscriptions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, unique=True),
    Column("plan", String(20), nullable=False, server_default=Plan.free.value),
    Column("status", String(20), nullable=False, server_default=SubscriptionStatus.active.value),
    Column("starts_at", String(32), nullable=False),
    Column("ends_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# The partial-index predicate is spelled identically in the DDL and in the
# upsert's conflict target; SQLite only picks the index when they match.
_ACTIVE_PREDICATE = "revoked = 0"

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False),
    Column("device_id", String(64), nullable=False),
    Column("refresh_token", Text, nullable=False),
    Column("user_agent", Text),
    Column("ip_address", String(64)),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32), nullable=False),
)

Index(
    "uq_user_sessions_active",
    _sessions.c.user_id,
    _sessions.c.device_id,
    unique=True,
    sqlite_where=text(_ACTIVE_PREDICATE),
    postgresql_where=text(_ACTIVE_PREDICATE),
)
Index("ix_user_sessions_user", _sessions.c.user_id, _sessions.c.revoked)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new SQLite connection.

    WAL lets readers proceed while a login writes. The busy timeout makes a
    second concurrent writer wait for the lock instead of failing at once.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA busy_timeout=5000")


def create_auth_engine(db_url: str) -> Engine:
    """Build the shared Engine for all auth repositories and create the schema.

    Usage:
        engine = create_auth_engine("sqlite:///authgate.db")
        users = UserStore(engine)
        sessions = SessionStore(engine)
        ...
        engine.dispose()
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _duplicate_field(exc: IntegrityError) -> str | None:
    """Work out which unique column an IntegrityError on users refers to.

    SQLite reports "UNIQUE constraint failed: users.email"; PostgreSQL reports
    the constraint name. Both spellings are checked.
    """
    message = str(exc.orig)
    for field in ("email", "username"):
        if f"uq_users_{field}" in message or f"users.{field}" in message:
            return field
    return None


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records -- the credential store.

    Usage:
        store = UserStore(engine)
        user_id = store.create_user(User(email="a@b.c", username="ab", password_hash=digest))
        user = store.get_by_email("a@b.c")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> str:
        """Insert a new user plus its default free subscription; return the new id.

        Both rows are written in one transaction, so a user never exists
        without an entitlement row.

        Raises DuplicateUserError("email" | "username") on a unique collision.
        Any other IntegrityError propagates unchanged.
        """
        user_id = str(uuid.uuid4())
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=user.email,
                        username=user.username,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        profile_picture_url=user.profile_picture_url,
                        password_hash=user.password_hash,
                        email_verified=1 if user.email_verified else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.execute(
                    _subscriptions.insert().values(
                        user_id=user_id,
                        plan=Plan.free.value,
                        status=SubscriptionStatus.active.value,
                        starts_at=now,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            field = _duplicate_field(exc)
            if field is None:
                raise
            raise DuplicateUserError(field) from exc
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_profile(self, user_id: str) -> UserProfile | None:
        """Return the hydration profile for user_id, or None if the user does not exist.

        The plan falls back to free when the user has no subscription row.
        """
        stmt = (
            select(
                _users.c.email,
                _users.c.username,
                _users.c.profile_picture_url,
                func.coalesce(_subscriptions.c.plan, Plan.free.value).label("plan"),
            )
            .select_from(_users.outerjoin(_subscriptions, _subscriptions.c.user_id == _users.c.id))
            .where(_users.c.id == user_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        if row is None:
            return None
        return UserProfile(
            email=row.email,
            username=row.username,
            profile_picture_url=row.profile_picture_url,
            subscription_plan=Plan(row.plan),
        )


class SessionStore:
    """Repository for per-(user, device) sessions.

    Usage:
        sessions = SessionStore(engine)
        sessions.upsert_active_session(user_id, device_id, refresh_token, ua, ip)
        s = sessions.find_active_session(user_id, device_id, refresh_token)
        sessions.revoke(user_id, device_id)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def upsert_active_session(
        self,
        user_id: str,
        device_id: str,
        refresh_token: str,
        user_agent: str | None,
        ip_address: str | None,
    ) -> Session:
        """Rotate the active session for (user_id, device_id), or create one.

        One statement: INSERT, and if the partial unique index on active rows
        already holds this key, UPDATE that row instead. The row's id and
        created_at survive a rotation; refresh_token, user_agent, ip_address
        and last_used_at are replaced. Revoked rows are never touched -- a
        login after logout gets a fresh row.
        """
        now = _now_iso()
        insert = pg_insert if self.engine.dialect.name == "postgresql" else sqlite_insert
        stmt = insert(_sessions).values(
            user_id=user_id,
            device_id=device_id,
            refresh_token=refresh_token,
            user_agent=user_agent,
            ip_address=ip_address,
            revoked=0,
            created_at=now,
            last_used_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_sessions.c.user_id, _sessions.c.device_id],
            index_where=text(_ACTIVE_PREDICATE),
            set_={
                "refresh_token": stmt.excluded.refresh_token,
                "user_agent": stmt.excluded.user_agent,
                "ip_address": stmt.excluded.ip_address,
                "last_used_at": stmt.excluded.last_used_at,
            },
        ).returning(*_sessions.c)
        with self.engine.begin() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_session(row)

    def find_active_session(self, user_id: str, device_id: str, refresh_token: str) -> Session | None:
        """Return the active session only if refresh_token is the one currently stored.

        A rotated-away or revoked token never matches, so a stale refresh
        token is unusable for good.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.device_id == device_id)
                    & (_sessions.c.refresh_token == refresh_token)
                    & (_sessions.c.revoked == 0)
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch(self, session_id: int) -> None:
        """Stamp last_used_at on an active session after a successful refresh."""
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.revoked == 0))
                .values(last_used_at=_now_iso())
            )

    def revoke(self, user_id: str, device_id: str) -> bool:
        """Mark the active session for (user_id, device_id) revoked.

        Idempotent: returns False (and does not raise) when there is nothing
        active to revoke. Already-revoked rows are left as they are.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.device_id == device_id)
                    & (_sessions.c.revoked == 0)
                )
                .values(revoked=1, last_used_at=_now_iso())
            )
        return result.rowcount > 0

    def list_active_sessions(self, user_id: str) -> list[Session]:
        """Return the user's active sessions, most recently used first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked == 0))
                .order_by(_sessions.c.last_used_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]


class EntitlementStore:
    """Read-only lookup of a user's plan and subscription status. No caching."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_entitlement(self, user_id: str) -> Entitlement:
        """Return the user's entitlement.

        Raises EntitlementNotFoundError when the user has no subscription row.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_subscriptions.c.plan, _subscriptions.c.status, _subscriptions.c.ends_at).where(
                    _subscriptions.c.user_id == user_id
                )
            ).fetchone()
        if row is None:
            raise EntitlementNotFoundError()
        return Entitlement(
            plan=Plan(row.plan),
            status=SubscriptionStatus(row.status),
            ends_at=row.ends_at,
        )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        profile_picture_url=row.profile_picture_url,
        password_hash=row.password_hash,
        email_verified=bool(row.email_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        device_id=row.device_id,
        refresh_token=row.refresh_token,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        revoked=bool(row.revoked),
        created_at=row.created_at,
        last_used_at=row.last_used_at,
    )
