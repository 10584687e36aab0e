"""
auth/tokens.py -- JWT encode/decode, token fingerprints, and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry user_id, email (sub), a random
       jti, iat and exp. Verification returns None on any failure -- the
       dependency layer turns that into a 401. A valid signature is not enough
       on its own: the token's fingerprint must also map to a valid session in
       auth.sessions.SessionRegistry, which is what makes logout stick.

  Expiry: exp is encoded as whole seconds. create_access_token() truncates the
       issue time to the second before adding the duration, so the datetime it
       returns is exactly the instant the exp claim encodes. The session row is
       created with that datetime.

  Fingerprint: hash_token() is SHA-256 over the raw token. Tokens are long and
       high-entropy, so a deterministic unsalted digest is enough and lets the
       registry do an O(1) lookup through its UNIQUE index. The raw token is
       never persisted.

  SECRET_KEY: sourced from core.config.get_settings() [M6].

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

COOKIE_NAME = "access_token"


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(
    user_id: int,
    email: str,
    expire_seconds: int = 0,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    """Encode a signed JWT and return (token, expires_at).

    Args:
        user_id:        Numeric user ID stored in the DB.
        email:          Stored as the JWT subject claim.
        expire_seconds: Token lifetime. If 0 (default), uses
                        Settings.token_expire_seconds.
        now:            Issue time; defaults to the current UTC time.

    The jti claim makes two tokens issued to the same user in the same second
    distinct, so their fingerprints never collide.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    issued = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    expires_at = issued + timedelta(seconds=duration)
    payload = {
        "sub": email,
        "user_id": user_id,
        "jti": secrets.token_hex(16),
        "iat": int(issued.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM), expires_at


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    python-jose rejects tokens whose exp has passed, so an expired token never
    reaches the session lookup.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "exp" not in payload:
        return None
    return payload


def token_expiry(payload: dict) -> datetime:
    """Return the exp claim of a decoded payload as an aware UTC datetime."""
    return datetime.fromtimestamp(payload["exp"], tz=timezone.utc)


def hash_token(token: str) -> str:
    """Return the SHA-256 hex fingerprint under which a token's session is stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expires_at: datetime) -> None:
    """Write the JWT as an httpOnly cookie that expires together with the token.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    max_age = max(0, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=max_age,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(COOKIE_NAME)
