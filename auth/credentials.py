"""
auth/credentials.py -- Password hashing and verification (the credential vault).

Passwords: bcrypt used directly (no passlib wrapper). bcrypt is salted per
hash and its cost factor makes brute force expensive, which is what low-entropy
secrets need. Neither the raw password nor the hash is ever returned in an API
response or written to a log line.

The _DUMMY_HASH constant enables timing equalization in authenticate() so
response time does not reveal whether an email is registered [C1].

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.directory import UserDirectory
    from auth.models import User

logger = logging.getLogger("userservice.auth")


_BCRYPT_MAX_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    # bcrypt only reads 72 bytes; recent releases raise instead of truncating.
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Input beyond 72 bytes is ignored, the same way for hashing and
    verification. The API layer caps password length at 128 characters.
    """
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed hash is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("userservice_timing_dummy")


def authenticate(directory: UserDirectory, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization [C1].

    Always runs exactly one bcrypt comparison:
    - Unknown email: against _DUMMY_HASH (same cost as a real check)
    - Known email: against the stored hash

    Returns the User on success, None on any failure, including a correct
    password for a deactivated account.
    """
    user = directory.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not directory.can_login(user):
        logger.info("Login refused for inactive user id=%s", user.id)
        return None
    return user
