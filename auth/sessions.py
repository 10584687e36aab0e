"""
auth/sessions.py -- Server-side session registry for issued JWTs.

A JWT is self-contained and cannot be recalled once issued. The registry makes
tokens revocable: every issued token gets a session row keyed by its SHA-256
fingerprint, and a token is only honoured while that row is valid.

Validity:
  valid  <=>  is_active AND now < expires_at

  This is recomputed from the clock on every call and never cached -- time
  moves and another request may have invalidated the session in between.

Lifecycle:
  create()                  -- at login; row starts active
  invalidate()              -- single logout; active -> inactive, idempotent
  invalidate_all_for_user() -- logout everywhere / password change
  purge_expired()           -- periodic hard delete of rows past expiry;
                               independent of logical invalidation

Bulk invalidation uses a snapshot timestamp: it switches off every session of
the user created at or before the snapshot. A session created strictly after
the snapshot stays active. The store records the snapshot on the user before
the UPDATE, and create() reads it back after its INSERT, so a login that
interleaves with "logout everywhere" cannot leave a pre-snapshot session
active. The outcome is decided by creation time alone.

No in-process lock is held anywhere. Concurrency safety comes from the UNIQUE
index on token_hash and from that write-then-read ordering.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateTokenHash
from auth.models import Session, User
from auth.store import UserStore

logger = logging.getLogger("userservice.sessions")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionRegistry:
    """Single source of truth for whether an issued token is still good.

    Usage:
        registry = SessionRegistry(store)
        session = registry.create(user, hash_token(token), expires_at, ip, ua)
        found = registry.find_by_token_hash(hash_token(token))
        if found is not None and registry.is_valid(found): ...
        registry.invalidate(found)

    clock is injectable so tests can move time without sleeping.
    """

    def __init__(self, store: UserStore, clock: Clock = _utcnow) -> None:
        self._store = store
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Create / look up
    # ------------------------------------------------------------------

    def create(
        self,
        user: User,
        token_hash: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        """Persist a new active session for user.

        expires_at must be the exact instant encoded in the token's exp claim.
        A naive expires_at is taken as UTC.

        Raises DuplicateTokenHash if a session already holds this fingerprint.
        The pre-check gives the common case a clean error; the UNIQUE index
        catches the concurrent case, so an existing session is never
        overwritten.

        If invalidate_all_for_user() ran for this user with a snapshot at or
        after our created_at while we were inserting, the new row is switched
        off before returning and the returned session is inactive.
        """
        if self._store.token_hash_exists(token_hash):
            raise DuplicateTokenHash()
        session = Session(
            user_id=user.id,
            token_hash=token_hash,
            created_at=self._clock(),
            expires_at=_as_utc(expires_at),
            ip_address=ip_address[:45] if ip_address else None,
            user_agent=user_agent[:500] if user_agent else None,
        )
        try:
            session.id = self._store.create_session(session)
        except IntegrityError as exc:
            raise DuplicateTokenHash() from exc

        revoked_up_to = self._store.sessions_revoked_up_to(user.id)
        if revoked_up_to is not None and session.created_at <= revoked_up_to:
            self._store.deactivate_session(session.id)
            session.is_active = False
            logger.info("Session %s created for user id=%s was already revoked", session.id, user.id)
            return session

        logger.info("Session %s created for user id=%s", session.id, user.id)
        return session

    def find_by_token_hash(self, token_hash: str) -> Session | None:
        """Return the session for token_hash whatever its state, or None."""
        return self._store.get_session_by_hash(token_hash)

    def find_valid_by_token_hash(self, token_hash: str) -> Session | None:
        """Return the session for token_hash only if it is valid right now."""
        return self._store.get_valid_session_by_hash(token_hash, self._clock())

    def active_sessions_for(self, user: User) -> list[Session]:
        """Return the user's currently valid sessions, newest first."""
        return self._store.get_sessions_for_user(user.id, valid_at=self._clock())

    # ------------------------------------------------------------------
    # Time-derived state
    # ------------------------------------------------------------------

    def is_valid(self, session: Session) -> bool:
        return session.is_active and self._clock() < session.expires_at

    def remaining_minutes(self, session: Session, now: datetime | None = None) -> int:
        """Whole minutes until expiry; 0 once expired, never negative."""
        now = now or self._clock()
        if session.expires_at <= now:
            return 0
        return int((session.expires_at - now).total_seconds() // 60)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, session: Session) -> None:
        """Mark one session inactive. Invalidating an inactive session is a no-op."""
        changed = self._store.deactivate_session(session.id)
        session.is_active = False
        if changed:
            logger.info("Session %s invalidated", session.id)

    def invalidate_all_for_user(self, user: User, snapshot: datetime | None = None) -> int:
        """Deactivate every session of user created at or before snapshot.

        snapshot defaults to now. Returns the number of sessions switched off.
        """
        cutoff = snapshot or self._clock()
        count = self._store.deactivate_sessions_for_user(user.id, cutoff)
        logger.info("Invalidated %d session(s) for user id=%s", count, user.id)
        return count

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def purge_expired(self, now: datetime | None = None) -> int:
        """Hard-delete every session whose expires_at is before now, active or not.

        Only rows that are already unusable are removed, so this needs no
        coordination with any other operation.
        """
        cutoff = now or self._clock()
        removed = self._store.delete_sessions_expired_before(cutoff)
        if removed:
            logger.info("Purged %d expired session(s)", removed)
        return removed


def describe_device(session: Session) -> str:
    """Best-effort label for the client that opened a session.

    Order matters: Chrome user agents also contain "Safari", and most mobile
    browsers also name their engine.
    """
    ua = session.user_agent
    if not ua:
        return "Unknown device"
    if "Chrome" in ua:
        return "Chrome"
    if "Firefox" in ua:
        return "Firefox"
    if "Safari" in ua:
        return "Safari"
    if "Mobile" in ua:
        return "Mobile device"
    return "Unknown browser"
