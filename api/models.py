"""
API request and response models for the user service REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the domain
representation; route handlers map between the two field by field, which is
what keeps hashed_password and token_hash out of every response.

Registration fields are deliberately loose here (plain optional strings):
field rules live in auth.directory.validate_registration so that one response
can list every failing field with a 400.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope for framework-level 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class SimpleErrorResponse(BaseModel):
    """Flat error body returned by the registration endpoint: {"error": message}."""

    model_config = ConfigDict(frozen=True)

    error: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    nombre: Optional[str] = Field(default=None, max_length=200)
    apellido: Optional[str] = Field(default=None, max_length=200)
    dni: Optional[str] = Field(default=None, max_length=20)
    email: Optional[str] = Field(default=None, max_length=320)
    telefono: Optional[str] = Field(default=None, max_length=20)
    password: Optional[str] = Field(default=None, max_length=128)


class RegisterResponse(BaseModel):
    """Response for POST /auth/register. Only non-sensitive identifiers."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    cvu: str
    alias: str


# ---------------------------------------------------------------------------
# Login / sessions
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    expires_in: int


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class LogoutAllResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    invalidated: int


class MeResponse(BaseModel):
    """Profile of the authenticated user. No password hash, ever."""

    model_config = ConfigDict(frozen=True)

    id: int
    nombre: str
    apellido: str
    nombre_completo: str
    dni: str
    email: str
    telefono: Optional[str] = None
    cvu: str
    alias: str
    activo: bool
    created_at: Optional[datetime] = None


class SessionResponse(BaseModel):
    """Audit view of one session. No token hash, ever."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: Optional[datetime] = None
    expires_at: datetime
    remaining_minutes: int
    ip_address: Optional[str] = None
    device: str
    current: bool = False
