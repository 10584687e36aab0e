"""
auth/directory.py -- User records, field validation, and the registration workflow.

UserDirectory owns reads and mutations of user identity records (profile and
activation state). RegistrationWorkflow composes the directory, the identifier
generator and the credential vault into one all-or-nothing operation.

Registration order is fixed so the reported error is deterministic:
  1. field validation (every failing field reported, no storage touched)
  2. email uniqueness -> DuplicateEmail
  3. dni uniqueness   -> DuplicateDni
  4. bcrypt hash, CVU, alias
  5. one INSERT

Steps 1-4 write nothing, so a failure anywhere before step 5 leaves storage
untouched. If step 5 loses a race against a concurrent registration, the
UNIQUE indexes reject it and the workflow works out which rule was broken.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace

from sqlalchemy.exc import IntegrityError

from auth.credentials import hash_password
from auth.errors import DuplicateDni, DuplicateEmail, GenerationExhausted, ValidationFailed
from auth.identifiers import IdentifierGenerator
from auth.models import User
from auth.store import UserStore

logger = logging.getLogger("userservice.directory")

# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------

_NAME_RE = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚñÑ\s]+$")
_DNI_RE = re.compile(r"^\d{7,8}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[1-9]\d{8,14}$")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
EMAIL_MAX_LENGTH = 255
PASSWORD_MIN_LENGTH = 8


def _check_name(field: str, value: str | None, errors: list[tuple[str, str]]) -> None:
    if value is None or not value.strip():
        errors.append((field, "is required"))
    elif not NAME_MIN_LENGTH <= len(value) <= NAME_MAX_LENGTH:
        errors.append((field, f"must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"))
    elif not _NAME_RE.match(value):
        errors.append((field, "may only contain letters"))


def _check_password(password: str | None, errors: list[tuple[str, str]]) -> None:
    if not password:
        errors.append(("password", "is required"))
    elif len(password) < PASSWORD_MIN_LENGTH:
        errors.append(("password", f"must be at least {PASSWORD_MIN_LENGTH} characters"))


def validate_registration(
    nombre: str | None,
    apellido: str | None,
    dni: str | None,
    email: str | None,
    telefono: str | None,
    password: str | None,
) -> None:
    """Raise ValidationFailed listing every rule the registration input breaks."""
    errors: list[tuple[str, str]] = []
    _check_name("nombre", nombre, errors)
    _check_name("apellido", apellido, errors)

    if not dni:
        errors.append(("dni", "is required"))
    elif not _DNI_RE.match(dni):
        errors.append(("dni", "must have 7 or 8 digits"))

    if not email or not email.strip():
        errors.append(("email", "is required"))
    elif len(email) > EMAIL_MAX_LENGTH:
        errors.append(("email", f"must not exceed {EMAIL_MAX_LENGTH} characters"))
    elif not _EMAIL_RE.match(email):
        errors.append(("email", "has an invalid format"))

    if telefono and not _PHONE_RE.match(telefono):
        errors.append(("telefono", "has an invalid format"))

    _check_password(password, errors)

    if errors:
        raise ValidationFailed(errors)


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


class UserDirectory:
    """Reads and mutations of user identity records."""

    def __init__(self, store: UserStore) -> None:
        self._store = store

    def get_by_id(self, user_id: int) -> User | None:
        return self._store.get_user_by_id(user_id)

    def get_by_email(self, email: str) -> User | None:
        return self._store.get_user_by_email(email)

    def get_active_by_email(self, email: str) -> User | None:
        return self._store.get_active_user_by_email(email)

    def email_taken(self, email: str) -> bool:
        return self._store.email_exists(email)

    def dni_taken(self, dni: str) -> bool:
        return self._store.dni_exists(dni)

    @staticmethod
    def can_login(user: User) -> bool:
        return user.activo

    @staticmethod
    def full_name(user: User) -> str:
        return f"{user.nombre} {user.apellido}"

    def deactivate(self, user: User) -> None:
        """Soft delete: the user can no longer authenticate, the record stays."""
        self._set_active(user, False)

    def activate(self, user: User) -> None:
        self._set_active(user, True)

    def _set_active(self, user: User, activo: bool) -> None:
        stamped = self._store.update_user(user.id, activo=activo)
        if stamped is None:
            raise LookupError(f"User {user.id} does not exist.")
        user.activo = activo
        user.updated_at = stamped
        logger.info("User id=%s %s", user.id, "activated" if activo else "deactivated")

    def change_password(self, user: User, new_password: str) -> None:
        """Validate, hash and store a new password.

        Revoking the user's existing sessions is the caller's job (see the
        password route), since the directory knows nothing about sessions.
        """
        errors: list[tuple[str, str]] = []
        _check_password(new_password, errors)
        if errors:
            raise ValidationFailed(errors)
        hashed = hash_password(new_password)
        stamped = self._store.update_user(user.id, hashed_password=hashed)
        if stamped is None:
            raise LookupError(f"User {user.id} does not exist.")
        user.hashed_password = hashed
        user.updated_at = stamped
        logger.info("Password changed for user id=%s", user.id)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class RegistrationWorkflow:
    """Creates a new user from raw registration input.

    Usage:
        workflow = RegistrationWorkflow(store)
        user = workflow.register("Ana", "Diaz", "30111222", "ana@x.com", "+5491122223333", "secret123")
    """

    def __init__(
        self,
        store: UserStore,
        directory: UserDirectory | None = None,
        identifiers: IdentifierGenerator | None = None,
        max_insert_attempts: int = 3,
    ) -> None:
        self._store = store
        self.directory = directory or UserDirectory(store)
        self.identifiers = identifiers or IdentifierGenerator(store)
        self._max_insert_attempts = max_insert_attempts

    def register(
        self,
        nombre: str,
        apellido: str,
        dni: str,
        email: str,
        telefono: str | None,
        raw_password: str,
    ) -> User:
        """Validate, check uniqueness, hash, assign identifiers, and persist.

        Raises ValidationFailed, DuplicateEmail, DuplicateDni,
        GenerationExhausted or StorageUnavailable. On any of them no user row
        has been written.
        """
        telefono = telefono or None
        validate_registration(nombre, apellido, dni, email, telefono, raw_password)

        if self.directory.email_taken(email):
            raise DuplicateEmail()
        if self.directory.dni_taken(dni):
            raise DuplicateDni()

        draft = User(
            nombre=nombre.strip(),
            apellido=apellido.strip(),
            dni=dni,
            email=email,
            telefono=telefono,
            hashed_password=hash_password(raw_password),
            cvu="",
            alias="",
        )

        for _ in range(self._max_insert_attempts):
            candidate = replace(
                draft,
                cvu=self.identifiers.generate_cvu(),
                alias=self.identifiers.generate_alias(),
            )
            try:
                user_id = self._store.create_user(candidate)
            except IntegrityError:
                # Lost a race. Report a duplicate if that is what happened,
                # otherwise the identifiers collided: draw new ones.
                if self.directory.email_taken(email):
                    raise DuplicateEmail() from None
                if self.directory.dni_taken(dni):
                    raise DuplicateDni() from None
                logger.warning("Identifier collision on insert, redrawing")
                continue
            created = self._store.get_user_by_id(user_id)
            logger.info("Registered user id=%s", user_id)
            return created
        raise GenerationExhausted("cvu/alias", self._max_insert_attempts)
