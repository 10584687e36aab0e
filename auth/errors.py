"""
auth/errors.py -- Exception taxonomy for the identity core.

Two families reach the HTTP boundary:
  Client-correctable (400): ValidationFailed and the ConflictError subclasses.
  Infrastructure (500): StorageUnavailable, whose message is generic on purpose.

A session lookup miss is not an error -- registry lookups return None.

Messages never include passwords, password hashes or token hashes.
"""

from __future__ import annotations


class UserServiceError(Exception):
    """Base class for every error raised by the identity core."""


class ValidationFailed(UserServiceError):
    """One or more field-level rule violations.

    errors holds every failing (field, reason) pair in field order, not just
    the first one found.
    """

    def __init__(self, errors: list[tuple[str, str]]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(f"{field}: {reason}" for field, reason in self.errors))

    @property
    def fields(self) -> list[str]:
        return [field for field, _ in self.errors]


class ConflictError(UserServiceError):
    """A uniqueness rule would be broken by the requested write."""


class DuplicateEmail(ConflictError):
    def __init__(self) -> None:
        super().__init__("Email is already registered.")


class DuplicateDni(ConflictError):
    def __init__(self) -> None:
        super().__init__("DNI is already registered.")


class DuplicateTokenHash(ConflictError):
    def __init__(self) -> None:
        super().__init__("A session already exists for this token.")


class GenerationExhausted(ConflictError):
    """No unused identifier was found within the attempt cap."""

    def __init__(self, kind: str, attempts: int) -> None:
        self.kind = kind
        self.attempts = attempts
        super().__init__(f"Could not generate a unique {kind} after {attempts} attempts.")


class StorageUnavailable(UserServiceError):
    """The relational store could not complete the operation.

    The original SQLAlchemy error is chained (__cause__) for server-side
    logging; the message itself carries no driver detail.
    """

    def __init__(self, message: str = "Storage is unavailable.") -> None:
        super().__init__(message)
