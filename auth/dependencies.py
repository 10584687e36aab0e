"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

A request is authenticated when all of the following hold:
  1. A token is present: "access_token" cookie first, then
     Authorization: Bearer <token>.
  2. The JWT signature and exp claim verify (auth.tokens.decode_access_token).
  3. The token's SHA-256 fingerprint maps to a session in the registry, and
     that session is valid right now (active and unexpired).
  4. The session's owner exists, is active, and matches the token's user_id.

Step 3 is what makes logout effective for a token that is otherwise still
cryptographically valid.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.
get_current_user() is a shortcut for routes that only need the user.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from auth.directory import UserDirectory
from auth.models import Session, User
from auth.sessions import SessionRegistry
from auth.tokens import COOKIE_NAME, decode_access_token, hash_token


@dataclass
class AuthContext:
    """The authenticated user together with the session their token maps to."""

    user: User
    session: Session


def _extract_token(request: Request) -> str | None:
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def try_get_current_session(request: Request) -> AuthContext | None:
    """Authenticate the request. Returns None on any failure, never raises 401.

    Storage failures are not swallowed: StorageUnavailable propagates and
    becomes a 500, because "the database is down" must not read as "you are
    logged out".
    """
    token = _extract_token(request)
    if token is None:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None

    registry: SessionRegistry = request.app.state.sessions
    session = registry.find_by_token_hash(hash_token(token))
    if session is None or not registry.is_valid(session):
        return None

    directory: UserDirectory = request.app.state.directory
    user = directory.get_by_id(session.user_id)
    if user is None or user.id != payload["user_id"] or not directory.can_login(user):
        return None
    return AuthContext(user=user, session=session)


def get_current_session(request: Request) -> AuthContext:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(auth: AuthContext = Depends(get_current_session)): ...
    """
    auth = try_get_current_session(request)
    if auth is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return auth


def get_current_user(auth: AuthContext = Depends(get_current_session)) -> User:
    return auth.user
