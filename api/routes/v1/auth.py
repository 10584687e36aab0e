"""
api/routes/v1/auth.py -- Registration, login, and session management endpoints.

Routes (mounted at / and, hidden from the schema, at /api/v1):
  POST /auth/register    -- create a user; {id, email, cvu, alias}
  POST /auth/login       -- email/password login; issues JWT + session, sets cookie
  POST /auth/logout      -- invalidates the current session (if any); clears cookie
  POST /auth/logout-all  -- invalidates every session of the current user
  GET  /auth/me          -- profile of the current user
  GET  /auth/session     -- the session behind the current token
  GET  /auth/sessions    -- the current user's valid sessions
  POST /auth/password    -- change password; revokes all sessions

Security:
  [H2] /login and /register are rate-limited per IP (Settings).
  [C1] auth.credentials.authenticate() equalizes timing -- use it, never inline.
  [M5] Cache-Control: no-store on responses that carry a token.
  Error bodies never contain passwords, password hashes or token hashes.

Handlers are plain `def`: bcrypt and the store are blocking, so FastAPI runs
them in its threadpool.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_LIMIT, REGISTER_LIMIT, limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    MeResponse,
    MessageResponse,
    PasswordChangeRequest,
    RegisterRequest,
    RegisterResponse,
    SessionResponse,
    SimpleErrorResponse,
)
from auth.credentials import authenticate, verify_password
from auth.dependencies import AuthContext, get_current_session, try_get_current_session
from auth.directory import RegistrationWorkflow, UserDirectory
from auth.errors import ConflictError, StorageUnavailable, ValidationFailed
from auth.models import Session, User
from auth.sessions import SessionRegistry, describe_device
from auth.tokens import clear_auth_cookie, create_access_token, hash_token, set_auth_cookie

logger = logging.getLogger("userservice.api")

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(REGISTER_LIMIT)  # [H2] must be ABOVE @router so FastAPI introspects the undecorated function
@router.post(
    "/auth/register",
    response_model=RegisterResponse,
    responses={400: {"model": SimpleErrorResponse}, 500: {"model": SimpleErrorResponse}},
)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Register a new user.

    Validation, duplicate and identifier-exhaustion errors are client errors
    (400). A storage outage is a 500 with a generic message; the cause is
    logged, not returned.
    """
    workflow: RegistrationWorkflow = request.app.state.registration
    try:
        user = workflow.register(
            body.nombre,
            body.apellido,
            body.dni,
            body.email,
            body.telefono,
            body.password,
        )
    except (ValidationFailed, ConflictError) as exc:
        return JSONResponse(status_code=400, content=SimpleErrorResponse(error=str(exc)).model_dump())
    except StorageUnavailable:
        logger.exception("Registration failed: storage unavailable")
        return JSONResponse(
            status_code=500,
            content=SimpleErrorResponse(error="Internal server error.").model_dump(),
        )

    return JSONResponse(
        status_code=200,
        content=RegisterResponse(id=user.id, email=user.email, cvu=user.cvu, alias=user.alias).model_dump(),
    )


@limiter.limit(LOGIN_LIMIT)  # [H2]
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; issue a JWT backed by a new session.

    The same generic error covers unknown email, wrong password and inactive
    account so the response does not reveal which one it was.
    """
    directory: UserDirectory = request.app.state.directory
    registry: SessionRegistry = request.app.state.sessions

    user = authenticate(directory, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    token, expires_at = create_access_token(user.id, user.email, now=registry.now())
    registry.create(
        user,
        hash_token(token),
        expires_at,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_at=expires_at,
            expires_in=int((expires_at - registry.now()).total_seconds()),
        ).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token, expires_at)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Invalidate the session behind the presented token and clear the cookie.

    Public and idempotent: a missing, expired or already revoked token still
    gets a 200 so clients can always call it on the way out.
    """
    auth = try_get_current_session(request)
    if auth is not None:
        registry: SessionRegistry = request.app.state.sessions
        registry.invalidate(auth.session)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(request: Request, auth: AuthContext = Depends(get_current_session)) -> JSONResponse:
    """Invalidate every session of the current user, including this one."""
    registry: SessionRegistry = request.app.state.sessions
    count = registry.invalidate_all_for_user(auth.user)
    resp = JSONResponse(
        content=LogoutAllResponse(message="Logged out of all sessions.", invalidated=count).model_dump()
    )
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, auth: AuthContext = Depends(get_current_session)) -> MeResponse:
    directory: UserDirectory = request.app.state.directory
    return _user_to_me(auth.user, directory)


@router.get("/auth/session", response_model=SessionResponse)
def current_session(request: Request, auth: AuthContext = Depends(get_current_session)) -> SessionResponse:
    registry: SessionRegistry = request.app.state.sessions
    return _session_to_response(auth.session, registry, current_id=auth.session.id)


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, auth: AuthContext = Depends(get_current_session)) -> list[SessionResponse]:
    """List the current user's valid sessions, newest first. Token hashes are never returned."""
    registry: SessionRegistry = request.app.state.sessions
    return [
        _session_to_response(s, registry, current_id=auth.session.id) for s in registry.active_sessions_for(auth.user)
    ]


@router.post("/auth/password", response_model=LogoutAllResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    auth: AuthContext = Depends(get_current_session),
) -> JSONResponse:
    """Change the current user's password and revoke every existing session.

    The client must log in again with the new password.
    """
    directory: UserDirectory = request.app.state.directory
    registry: SessionRegistry = request.app.state.sessions

    if not verify_password(body.current_password, auth.user.hashed_password):
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_credentials", "message": "Current password is incorrect."},
        )
    try:
        directory.change_password(auth.user, body.new_password)
    except ValidationFailed as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": str(exc)},
        ) from exc

    count = registry.invalidate_all_for_user(auth.user)
    resp = JSONResponse(
        content=LogoutAllResponse(message="Password changed. Please log in again.", invalidated=count).model_dump()
    )
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_me(user: User, directory: UserDirectory) -> MeResponse:
    return MeResponse(
        id=user.id,
        nombre=user.nombre,
        apellido=user.apellido,
        nombre_completo=directory.full_name(user),
        dni=user.dni,
        email=user.email,
        telefono=user.telefono,
        cvu=user.cvu,
        alias=user.alias,
        activo=user.activo,
        created_at=user.created_at,
    )


def _session_to_response(session: Session, registry: SessionRegistry, current_id: int | None) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        created_at=session.created_at,
        expires_at=session.expires_at,
        remaining_minutes=registry.remaining_minutes(session),
        ip_address=session.ip_address,
        device=describe_device(session),
        current=session.id == current_id,
    )
