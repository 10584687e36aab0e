"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, registry and directory do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A registered identity.

    hashed_password is the bcrypt hash produced by auth.credentials. It never
    leaves the service: API response models are built field by field and do
    not include it.

    cvu and alias are the derived account identifiers assigned at
    registration (auth.identifiers). They are unique across all users, like
    email and dni.

    Users are never hard-deleted. activo=False blocks authentication but keeps
    the record and its session history.
    """

    nombre: str
    apellido: str
    dni: str
    email: str
    hashed_password: str
    cvu: str
    alias: str
    telefono: str | None = None
    id: int | None = None
    activo: bool = True
    created_at: datetime | None = None  # set once by the store on insert
    updated_at: datetime | None = None  # set by the store on every mutation


@dataclass
class Session:
    """One issued authentication token.

    The owning user is referenced by id only. token_hash is the SHA-256 hex
    digest of the raw JWT; the raw token is never persisted. expires_at mirrors
    the token's own exp claim.

    is_active only ever moves from True to False. Whether the session is
    usable is a time-dependent question answered by SessionRegistry.is_valid().
    """

    user_id: int
    token_hash: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None
    is_active: bool = True
    ip_address: str | None = None  # audit only, <= 45 chars (IPv6)
    user_agent: str | None = None  # audit only, <= 500 chars
