"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, token service and AuthCore do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Identity:
    """A registered user as persisted by CredentialStore.

    email is stored normalized (stripped, lower-cased) so the UNIQUE constraint
    on the column gives case-insensitive uniqueness.

    password_hash is the bcrypt digest. It never leaves the auth package --
    PublicIdentity is the shape handed to callers.
    """

    email: str
    password_hash: str
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class PublicIdentity:
    """The externally visible view of an identity: {id, email}."""

    id: int
    email: str


@dataclass(frozen=True)
class SessionClaims:
    """Verified claims carried by a session token.

    issued_at / expires_at are epoch seconds taken from the signed payload,
    never from anything the client sent alongside the token.
    """

    id: int
    email: str
    issued_at: int
    expires_at: int

    def identity(self) -> PublicIdentity:
        return PublicIdentity(id=self.id, email=self.email)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    issued_at: int
    expires_at: int


# ---------------------------------------------------------------------------
# Operation results (success side)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Registered:
    identity_id: int


@dataclass(frozen=True)
class LoginSuccess:
    token: str
    expires_at: int
    identity: PublicIdentity


@dataclass(frozen=True)
class LoggedOut:
    """Logout acknowledgement. The token stays valid until expiry (stateless)."""

    identity: PublicIdentity
