"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. UserStore is the repository for both users
and sessions; _row_to_user / _row_to_session are the mappers. The registry,
directory and route code never touch SQL directly.

Uniqueness:
  email, dni, cvu and alias on users and token_hash on sessions are UNIQUE at
  the database level. The core checks before writing to produce precise
  errors, but correctness under concurrency (several workers, several
  service instances) rests on these constraints, not on in-process locks.
  Writes that break one raise sqlalchemy.exc.IntegrityError to the caller.

Timestamps:
  created_at is written only by the INSERT statements below. updated_at is
  written by create_user() and by every user UPDATE through update_user().
  Datetimes are stored as naive UTC and handed back timezone-aware.

Failures:
  Any SQLAlchemy error other than an integrity violation is re-raised as
  auth.errors.StorageUnavailable (original chained). Nothing is retried here.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import StorageUnavailable
from auth.models import Session, User
from core.config import get_settings

logger = logging.getLogger("userservice.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("nombre", String(100), nullable=False),
    Column("apellido", String(100), nullable=False),
    Column("dni", String(8), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("telefono", String(20)),
    Column("hashed_password", String(255), nullable=False),
    Column("cvu", String(22), nullable=False, unique=True),
    Column("alias", String(50), nullable=False, unique=True),
    Column("activo", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    # High-water mark of bulk session invalidation; see deactivate_sessions_for_user().
    Column("sessions_revoked_up_to", DateTime),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("created_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("ip_address", String(45)),
    Column("user_agent", String(500)),
    Index("ix_sessions_user_id", "user_id"),
    Index("ix_sessions_expires_at", "expires_at"),
    Index("ix_sessions_is_active", "is_active"),
)

# Columns update_user() accepts. created_at is deliberately absent.
_USER_MUTABLE_FIELDS: frozenset[str] = frozenset(
    {"nombre", "apellido", "telefono", "hashed_password", "activo"}
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> datetime:
    """Normalize to naive UTC for storage. Naive input is taken as UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Session entities.

    Usage:
        store = UserStore()                                 # settings.database_url
        store = UserStore("postgresql://user:pw@host/db")
        user_id = store.create_user(user)
        session_id = store.create_session(session)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection, translating infrastructure errors.

        IntegrityError passes through untouched: it is a uniqueness signal the
        caller turns into a domain conflict, not a storage outage.
        """
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Storage operation failed: %s", exc.__class__.__name__)
            raise StorageUnavailable() from exc

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._connect() as conn:
                conn.execute(text("SELECT 1"))
        except StorageUnavailable:
            return False
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        A single INSERT, committed on its own: either the whole record exists
        afterwards or nothing does. Raises IntegrityError if email, dni, cvu
        or alias is already taken.
        """
        now = _to_db(_utcnow())
        with self._connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    nombre=user.nombre,
                    apellido=user.apellido,
                    dni=user.dni,
                    email=user.email,
                    telefono=user.telefono,
                    hashed_password=user.hashed_password,
                    cvu=user.cvu,
                    alias=user.alias,
                    activo=user.activo,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_user_by_id(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_active_user_by_email(self, email: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == email) & (_users.c.activo.is_(True)))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        return self._user_value_exists(_users.c.email, email)

    def dni_exists(self, dni: str) -> bool:
        return self._user_value_exists(_users.c.dni, dni)

    def cvu_exists(self, cvu: str) -> bool:
        return self._user_value_exists(_users.c.cvu, cvu)

    def alias_exists(self, alias: str) -> bool:
        return self._user_value_exists(_users.c.alias, alias)

    def _user_value_exists(self, column, value: str) -> bool:
        with self._connect() as conn:
            found = conn.execute(select(_users.c.id).where(column == value).limit(1)).first()
        return found is not None

    def count_users(self) -> int:
        with self._connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def update_user(self, user_id: int, **fields) -> datetime | None:
        """Update mutable fields and stamp updated_at.

        Accepted fields: nombre, apellido, telefono, hashed_password, activo.
        Unknown fields raise ValueError rather than being silently ignored.

        Returns the new updated_at, or None if user_id was not found.
        """
        unknown = set(fields) - _USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        stamped = _utcnow()
        with self._connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_to_db(stamped), **fields)
            )
            conn.commit()
        return stamped if result.rowcount > 0 else None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        """Insert a new session row and return its ID.

        created_at is taken from the session when set (the registry stamps it
        with its own clock), otherwise now. Raises IntegrityError if the
        token_hash already exists.
        """
        created_at = session.created_at or _utcnow()
        with self._connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    created_at=_to_db(created_at),
                    expires_at=_to_db(session.expires_at),
                    is_active=True,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_session_by_id(self, session_id: int) -> Session | None:
        with self._connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_session_by_hash(self, token_hash: str) -> Session | None:
        """Look up a session by token fingerprint, active or not. O(1) via UNIQUE index."""
        with self._connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_valid_session_by_hash(self, token_hash: str, now: datetime) -> Session | None:
        """Look up a session that is active and expires strictly after now."""
        with self._connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.token_hash == token_hash)
                    & (_sessions.c.is_active.is_(True))
                    & (_sessions.c.expires_at > _to_db(now))
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def token_hash_exists(self, token_hash: str) -> bool:
        with self._connect() as conn:
            found = conn.execute(
                select(_sessions.c.id).where(_sessions.c.token_hash == token_hash).limit(1)
            ).first()
        return found is not None

    def get_sessions_for_user(self, user_id: int, valid_at: datetime | None = None) -> list[Session]:
        """Return a user's sessions, newest first.

        With valid_at, only sessions that are active and unexpired at that
        instant are returned.
        """
        query = _sessions.select().where(_sessions.c.user_id == user_id)
        if valid_at is not None:
            query = query.where((_sessions.c.is_active.is_(True)) & (_sessions.c.expires_at > _to_db(valid_at)))
        with self._connect() as conn:
            rows = conn.execute(query.order_by(_sessions.c.created_at.desc(), _sessions.c.id.desc())).fetchall()
        return [_row_to_session(r) for r in rows]

    def deactivate_session(self, session_id: int) -> bool:
        """Set is_active to false. Returns True only if the row was active before."""
        with self._connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.is_active.is_(True)))
                .values(is_active=False)
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate_sessions_for_user(self, user_id: int, created_up_to: datetime) -> int:
        """Deactivate every active session of user_id created at or before created_up_to.

        Two committed steps, in this order:
          1. raise users.sessions_revoked_up_to to the cutoff (never lowers it);
          2. one UPDATE switching off the matching session rows.

        A session row whose INSERT commits before step 2 starts is caught by
        step 2. One that commits later is caught by the creator, which reads
        the mark back after inserting (see sessions_revoked_up_to()). Either
        way no session created at or before the cutoff stays active.

        Rows created after the cutoff are untouched.
        """
        cutoff = _to_db(created_up_to)
        with self._connect() as conn:
            conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & or_(_users.c.sessions_revoked_up_to.is_(None), _users.c.sessions_revoked_up_to < cutoff)
                )
                .values(sessions_revoked_up_to=cutoff)
            )
            conn.commit()
        with self._connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.is_active.is_(True))
                    & (_sessions.c.created_at <= cutoff)
                )
                .values(is_active=False)
            )
            conn.commit()
        return result.rowcount

    def sessions_revoked_up_to(self, user_id: int) -> datetime | None:
        """Return the latest bulk-invalidation cutoff recorded for user_id, or None."""
        with self._connect() as conn:
            value = conn.execute(
                select(_users.c.sessions_revoked_up_to).where(_users.c.id == user_id)
            ).scalar()
        return _from_db(value)

    def delete_sessions_expired_before(self, cutoff: datetime) -> int:
        """Hard-delete sessions with expires_at < cutoff, active or not. Returns row count."""
        with self._connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < _to_db(cutoff)))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        nombre=row.nombre,
        apellido=row.apellido,
        dni=row.dni,
        email=row.email,
        telefono=row.telefono,
        hashed_password=row.hashed_password,
        cvu=row.cvu,
        alias=row.alias,
        activo=bool(row.activo),
        created_at=_from_db(row.created_at),
        updated_at=_from_db(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        created_at=_from_db(row.created_at),
        expires_at=_from_db(row.expires_at),
        is_active=bool(row.is_active),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )
