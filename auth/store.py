"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore (the credential store),
SessionStore and AuditStore are repositories over one shared Engine;
_row_to_* functions are the mappers. Service code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.
  sessions.refresh_token_hash is UNIQUE: one row per raw refresh token.

Atomicity:
  Every mutation is a single-row UPDATE or a short transaction opened with
  engine.begin(). The failed-login counter is incremented in SQL
  (n = n + 1) so concurrent failures never lose an increment to a
  read-modify-write race.

Errors:
  SQLAlchemyError (including lock and pool timeouts) becomes StoreError;
  IntegrityError on user insert becomes ConflictError. Absence is None.

Timestamps are stored as fixed-width ISO-8601 UTC text
(YYYY-MM-DDTHH:MM:SS.ffffff+00:00) so string comparison in SQL orders
exactly like datetime comparison.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import ConflictError, NotFoundError, StoreError
from auth.models import AuditLogEntry, Role, Session, User

logger = logging.getLogger("novasanctum.store")

Clock = Callable[[], datetime]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("username", String(100), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_locked", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    _metadata,
    Column("name", String(50), primary_key=True),
    Column("description", Text, nullable=False, server_default=""),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("name", String(100), primary_key=True),  # resource:action[:scope]
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("role_name", String(50), ForeignKey("roles.name"), primary_key=True),
    Column("permission_name", String(100), ForeignKey("permissions.name"), primary_key=True),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role_name", String(50), ForeignKey("roles.name"), primary_key=True),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("refresh_token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("ip_address", String(45), nullable=False),
    Column("user_agent", Text, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, index=True),  # NULL for anonymous events
    Column("action", String(50), nullable=False, index=True),
    Column("resource", String(50), nullable=False),
    Column("ip_address", String(45), nullable=False),
    Column("user_agent", Text, nullable=False),
    Column("details", Text, nullable=False),  # JSON object
    Column("timestamp", String(32), nullable=False, index=True),
)

# Static reference data, seeded idempotently on every start-up.
DEFAULT_ROLES: tuple[Role, ...] = (
    Role(
        name="admin",
        description="Full administrative access",
        permissions=[
            "user:read:all",
            "user:update:all",
            "user:delete:all",
            "post:delete:all",
            "admin:stats:read",
            "admin:users:unlock",
        ],
    ),
    Role(
        name="user",
        description="Standard account",
        permissions=["user:read:own", "user:update:own", "post:delete:own"],
    ),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection, so they are applied on connect rather
    than once at start-up.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def create_store_engine(db_url: str, timeout: float = 5.0) -> Engine:
    """Create the shared Engine with a bounded wait on every store call.

    SQLite: `timeout` is the busy timeout -- a call waiting on a write lock
    fails with OperationalError after this many seconds instead of hanging.
    Other backends: `pool_timeout` bounds the wait for a pooled connection.
    """
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": timeout})
        event.listen(engine, "connect", _set_sqlite_pragmas)
    else:
        engine = create_engine(db_url, pool_timeout=timeout, pool_pre_ping=True)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Convert driver exceptions into StoreError so they never leak upward."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, exc.__class__.__name__)
        raise StoreError(f"{operation} failed") from exc


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Role and Permission entities.

    Usage:
        engine = create_store_engine("sqlite:///novasanctum.db")
        users = UserStore(engine)
        uid = users.create_user(User(email="a@x.com", username="a", password_hash=h), roles=["user"])
        user = users.get_by_email("a@x.com")
    """

    # Columns update_user() may touch. Validated before any SQL is built.
    _UPDATABLE: frozenset = frozenset(
        {
            "username",
            "password_hash",
            "is_active",
            "is_locked",
            "locked_until",
            "failed_login_attempts",
            "last_login_at",
        }
    )
    _BOOL_FIELDS: frozenset = frozenset({"is_active", "is_locked"})
    _DATETIME_FIELDS: frozenset = frozenset({"locked_until", "last_login_at"})

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock
        with _translate_errors("schema init"):
            _metadata.create_all(self.engine)
            for role in DEFAULT_ROLES:
                self.ensure_role(role)

    # ------------------------------------------------------------------
    # Roles and permissions
    # ------------------------------------------------------------------

    def ensure_role(self, role: Role) -> None:
        """Insert a role and its permissions if missing. Idempotent."""
        with _translate_errors("ensure_role"), self.engine.begin() as conn:
            if conn.execute(select(_roles.c.name).where(_roles.c.name == role.name)).first() is None:
                conn.execute(_roles.insert().values(name=role.name, description=role.description))
            for perm in role.permissions:
                if conn.execute(select(_permissions.c.name).where(_permissions.c.name == perm)).first() is None:
                    conn.execute(_permissions.insert().values(name=perm))
                linked = conn.execute(
                    select(_role_permissions.c.role_name).where(
                        (_role_permissions.c.role_name == role.name) & (_role_permissions.c.permission_name == perm)
                    )
                ).first()
                if linked is None:
                    conn.execute(_role_permissions.insert().values(role_name=role.name, permission_name=perm))

    def get_role(self, name: str) -> Role | None:
        with _translate_errors("get_role"), self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
            if row is None:
                return None
            perms = conn.execute(
                select(_role_permissions.c.permission_name)
                .where(_role_permissions.c.role_name == name)
                .order_by(_role_permissions.c.permission_name)
            ).scalars()
            return Role(name=row.name, description=row.description, permissions=list(perms))

    def grant_permission(self, role_name: str, permission: str) -> None:
        """Add one permission to an existing role."""
        role = self.get_role(role_name)
        if role is None:
            raise NotFoundError(f"Role {role_name!r} not found")
        role.permissions.append(permission)
        self.ensure_role(role)

    def get_permissions(self, role_names: list[str]) -> list[str]:
        """Return the sorted union of permissions granted by the given roles."""
        if not role_names:
            return []
        with _translate_errors("get_permissions"), self.engine.connect() as conn:
            rows = conn.execute(
                select(_role_permissions.c.permission_name)
                .where(_role_permissions.c.role_name.in_(role_names))
                .distinct()
                .order_by(_role_permissions.c.permission_name)
            ).scalars()
            return list(rows)

    def set_roles(self, user_id: int, roles: list[str]) -> None:
        """Replace a user's role assignments in one transaction."""
        with _translate_errors("set_roles"), self.engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            for name in dict.fromkeys(roles):
                conn.execute(_user_roles.insert().values(user_id=user_id, role_name=name))
            conn.execute(_users.update().where(_users.c.id == user_id).values(updated_at=_to_iso(self._clock())))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, roles: list[str] | None = None) -> int:
        """Insert a user plus role links and return the new id.

        Raises ConflictError if the email is already registered.
        """
        now = _to_iso(self._clock())
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=user.email.strip().lower(),
                        username=user.username,
                        password_hash=user.password_hash,
                        is_active=1 if user.is_active else 0,
                        is_locked=0,
                        failed_login_attempts=0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
                for name in dict.fromkeys(roles if roles is not None else user.roles):
                    conn.execute(_user_roles.insert().values(user_id=user_id, role_name=name))
        except IntegrityError as exc:
            raise ConflictError("A user with that email already exists.") from exc
        except SQLAlchemyError as exc:
            logger.error("Store operation create_user failed: %s", exc.__class__.__name__)
            raise StoreError("create_user failed") from exc
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with _translate_errors("get_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
            return self._load(conn, row)

    def get_by_id(self, user_id: int) -> User | None:
        with _translate_errors("get_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            return self._load(conn, row)

    def list_users(self) -> list[User]:
        """Return all users ordered by id. Admin-only operation."""
        with _translate_errors("list_users"), self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
            return [self._load(conn, r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Apply a partial update. Returns False if user_id was not found.

        Unknown field names raise ValueError before any SQL is built.
        """
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = {}
        for key, value in fields.items():
            if key in self._BOOL_FIELDS:
                value = 1 if value else 0
            elif key in self._DATETIME_FIELDS:
                value = _to_iso(value)
            values[key] = value
        values["updated_at"] = _to_iso(self._clock())
        with _translate_errors("update_user"), self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        return result.rowcount > 0

    def increment_failed_logins(self, user_id: int) -> int:
        """Atomically add one to failed_login_attempts and return the new value."""
        with _translate_errors("increment_failed_logins"), self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    failed_login_attempts=_users.c.failed_login_attempts + 1,
                    updated_at=_to_iso(self._clock()),
                )
            )
            count = conn.execute(
                select(_users.c.failed_login_attempts).where(_users.c.id == user_id)
            ).scalar_one_or_none()
        return count or 0

    def count_users(self) -> int:
        with _translate_errors("count_users"), self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    def count_locked_users(self, now: datetime) -> int:
        """Count accounts whose lock cooldown has not yet elapsed."""
        with _translate_errors("count_locked_users"), self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count())
                    .select_from(_users)
                    .where((_users.c.is_locked == 1) & (_users.c.locked_until > _to_iso(now)))
                ).scalar()
                or 0
            )

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            return False
        return True

    def _load(self, conn, row) -> User | None:
        if row is None:
            return None
        roles = conn.execute(
            select(_user_roles.c.role_name).where(_user_roles.c.user_id == row.id).order_by(_user_roles.c.role_name)
        ).scalars()
        return _row_to_user(row, list(roles))


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for refresh-token sessions. Lookup is by token hash only."""

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock
        with _translate_errors("schema init"):
            _metadata.create_all(self.engine)

    def create_session(self, session: Session) -> Session:
        now = self._clock()
        with _translate_errors("create_session"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    refresh_token_hash=session.refresh_token_hash,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    is_active=1 if session.is_active else 0,
                    expires_at=_to_iso(session.expires_at),
                    created_at=_to_iso(now),
                    updated_at=_to_iso(now),
                )
            )
            session_id = result.inserted_primary_key[0]
        session.id = session_id
        session.created_at = now
        session.updated_at = now
        return session

    def get_session(self, session_id: int) -> Session | None:
        with _translate_errors("get_session"), self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_active_session_by_hash(self, token_hash: str, now: datetime) -> Session | None:
        """Return the session for this hash if active and expires_at > now (exclusive)."""
        with _translate_errors("get_active_session_by_hash"), self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.refresh_token_hash == token_hash)
                    & (_sessions.c.is_active == 1)
                    & (_sessions.c.expires_at > _to_iso(now))
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def rotate_session(
        self,
        session_id: int,
        new_hash: str,
        expires_at: datetime,
        expected_hash: str | None = None,
    ) -> bool:
        """Swap the stored hash and extend expiry in a single UPDATE.

        Only an active session can be rotated. With expected_hash the UPDATE is
        a compare-and-swap: of two refreshes racing on the same token, only the
        first matches. Returns False when no row was updated.
        """
        condition = (_sessions.c.id == session_id) & (_sessions.c.is_active == 1)
        if expected_hash is not None:
            condition = condition & (_sessions.c.refresh_token_hash == expected_hash)
        with _translate_errors("rotate_session"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(condition)
                .values(
                    refresh_token_hash=new_hash,
                    expires_at=_to_iso(expires_at),
                    updated_at=_to_iso(self._clock()),
                )
            )
        return result.rowcount > 0

    def deactivate_session(self, session_id: int) -> bool:
        with _translate_errors("deactivate_session"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.is_active == 1))
                .values(is_active=0, updated_at=_to_iso(self._clock()))
            )
        return result.rowcount > 0

    def deactivate_user_sessions(self, user_id: int) -> int:
        with _translate_errors("deactivate_user_sessions"), self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.is_active == 1))
                .values(is_active=0, updated_at=_to_iso(self._clock()))
            )
        return result.rowcount

    def delete_expired_sessions(self, now: datetime) -> int:
        with _translate_errors("delete_expired_sessions"), self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < _to_iso(now)))
        return result.rowcount

    def count_active_sessions(self, now: datetime) -> int:
        with _translate_errors("count_active_sessions"), self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count())
                    .select_from(_sessions)
                    .where((_sessions.c.is_active == 1) & (_sessions.c.expires_at > _to_iso(now)))
                ).scalar()
                or 0
            )


# ---------------------------------------------------------------------------
# Audit sink
# ---------------------------------------------------------------------------


class AuditStore:
    """Append-only audit table. There is deliberately no update or delete method."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        with _translate_errors("schema init"):
            _metadata.create_all(self.engine)

    def append(self, entry: AuditLogEntry) -> int:
        with _translate_errors("audit append"), self.engine.begin() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    user_id=entry.user_id,
                    action=entry.action,
                    resource=entry.resource,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    details=json.dumps(entry.details, default=str),
                    timestamp=_to_iso(entry.timestamp),
                )
            )
        entry.id = result.inserted_primary_key[0]
        return entry.id

    def list_entries(
        self,
        action: str | None = None,
        user_id: int | None = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Return newest-first entries, optionally filtered by action and/or user."""
        query = _audit_logs.select()
        if action is not None:
            query = query.where(_audit_logs.c.action == action)
        if user_id is not None:
            query = query.where(_audit_logs.c.user_id == user_id)
        query = query.order_by(_audit_logs.c.id.desc()).limit(limit)
        with _translate_errors("list_entries"), self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in rows]

    def count_since(self, action: str, since: datetime) -> int:
        with _translate_errors("count_since"), self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count())
                    .select_from(_audit_logs)
                    .where((_audit_logs.c.action == action) & (_audit_logs.c.timestamp >= _to_iso(since)))
                ).scalar()
                or 0
            )


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


@dataclass
class AuthStores:
    """The three repositories over one Engine, opened and closed together."""

    engine: Engine
    users: UserStore
    sessions: SessionStore
    audit: AuditStore

    def close(self) -> None:
        self.engine.dispose()


def open_stores(db_url: str, timeout: float = 5.0, clock: Clock = utcnow) -> AuthStores:
    engine = create_store_engine(db_url, timeout)
    return AuthStores(
        engine=engine,
        users=UserStore(engine, clock),
        sessions=SessionStore(engine, clock),
        audit=AuditStore(engine),
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, roles: list[str]) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        roles=roles,
        is_active=bool(row.is_active),
        is_locked=bool(row.is_locked),
        locked_until=_from_iso(row.locked_until),
        failed_login_attempts=row.failed_login_attempts,
        last_login_at=_from_iso(row.last_login_at),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token_hash=row.refresh_token_hash,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        is_active=bool(row.is_active),
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_audit(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        resource=row.resource,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        details=json.loads(row.details),
        timestamp=_from_iso(row.timestamp),
    )
