"""
auth/errors.py -- Closed error taxonomy for the auth core.

AuthCore operations return either a success dataclass (auth/models.py) or one
of the AuthError variants below. They are values, not exceptions: every
failure is classified where it is detected and travels back up the call chain
unchanged. api/errors.py turns a variant into an HTTP response in one place.

Each variant has a fixed shape, a fixed machine-readable code and a fixed
client-facing message. Messages never vary with input, so two failures of the
same kind are textually identical (enumeration resistance [E1]).

TokenExpired / TokenMalformed are TokenService results. AuthCore logs the
difference and maps both to Unauthorized.

DuplicateIdentity and HashingError are the only exceptions here. They are
raised by collaborators (store, hasher) and caught at the AuthCore edge.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Union


@dataclass(frozen=True)
class ValidationFailed:
    """Input shape rejected before any store access. fields maps field -> message."""

    code: ClassVar[str] = "validation_error"
    message: ClassVar[str] = "Validation failed"

    fields: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InvalidCredentials:
    """Unknown email OR wrong password. Deliberately indistinguishable [E1]."""

    code: ClassVar[str] = "invalid_credentials"
    message: ClassVar[str] = "Invalid email or password"


@dataclass(frozen=True)
class Unauthorized:
    """Missing, malformed or expired session token."""

    code: ClassVar[str] = "unauthorized"
    message: ClassVar[str] = "Authentication required"


@dataclass(frozen=True)
class IdentityExists:
    code: ClassVar[str] = "identity_exists"
    message: ClassVar[str] = "User with this email already exists"


@dataclass(frozen=True)
class RateLimited:
    """Attempt rejected by the limiter; the guarded operation did not run."""

    code: ClassVar[str] = "rate_limited"
    message: ClassVar[str] = "Too many attempts. Please try again later."

    retry_after: int = 0


@dataclass(frozen=True)
class InternalError:
    """Unclassified failure. Detail goes to the log only."""

    code: ClassVar[str] = "internal_error"
    message: ClassVar[str] = "An unexpected error occurred"


AuthError = Union[ValidationFailed, InvalidCredentials, Unauthorized, IdentityExists, RateLimited, InternalError]

AUTH_ERROR_TYPES: tuple[type, ...] = (
    ValidationFailed,
    InvalidCredentials,
    Unauthorized,
    IdentityExists,
    RateLimited,
    InternalError,
)


def is_error(result: object) -> bool:
    """Return True if an AuthCore result is one of the AuthError variants."""
    return isinstance(result, AUTH_ERROR_TYPES)


# ---------------------------------------------------------------------------
# Token verification results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenExpired:
    expired_at: int


@dataclass(frozen=True)
class TokenMalformed:
    reason: str


TokenError = Union[TokenExpired, TokenMalformed]


# ---------------------------------------------------------------------------
# Collaborator exceptions
# ---------------------------------------------------------------------------


class DuplicateIdentity(Exception):
    """Raised by CredentialStore.create when the UNIQUE(email) constraint fires."""

    def __init__(self, email: str) -> None:
        super().__init__(f"identity already exists: {email}")
        self.email = email


class HashingError(Exception):
    """Raised by PasswordHasher.hash when the bcrypt backend fails."""
