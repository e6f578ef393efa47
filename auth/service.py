"""
auth/service.py -- AuthCore: register, login and session verification.

Each operation is a short linear protocol with an early exit on the first
failure. Results are values: a success dataclass from auth/models.py or an
AuthError variant from auth/errors.py. Nothing in here raises to the caller.

Register:  rate gate (register policy, by source) -> validate -> existence
           check -> hash -> create (UNIQUE constraint is authoritative)
Login:     rate gate (login policy, by email, else source) -> lookup ->
           verify (dummy verify for unknown email) -> issue token
Verify:    token signature / structure / expiry -> claims. Pure.

Security:
  [C1] Unknown email and wrong password both cost one bcrypt verification
       and both return the same InvalidCredentials value.
  [R2] The rate gate runs first. A rejected attempt performs no lookup and
       no hash work.
  [E2] Collaborator exceptions are caught at the operation edge, logged with
       full detail and returned as InternalError.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import (
    AuthError,
    DuplicateIdentity,
    IdentityExists,
    InternalError,
    InvalidCredentials,
    RateLimited,
    TokenExpired,
    TokenMalformed,
    Unauthorized,
    ValidationFailed,
)
from auth.models import LoggedOut, LoginSuccess, PublicIdentity, Registered, SessionClaims
from auth.passwords import PasswordHasher
from auth.ratelimit import RateLimiter, RateLimitPolicy, login_key, login_policy, register_key, register_policy
from auth.store import CredentialStore
from auth.tokens import TokenService
from auth.validation import CredentialValidator, is_encodable, normalize_email
from core.config import Settings

logger = logging.getLogger("authgate.auth")


class AuthCore:
    """Compose store, hasher, token service and limiter into the auth operations.

    Built once at startup (api/main.py lifespan) and shared by reference.

    Usage:
        core = AuthCore.from_settings(settings, store)
        result = core.login("a@x.com", "secret1", source="203.0.113.7")
        if is_error(result): ...
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        limiter: RateLimiter,
        validator: CredentialValidator,
        login_policy: RateLimitPolicy,
        register_policy: RateLimitPolicy,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.limiter = limiter
        self.validator = validator
        self.login_policy = login_policy
        self.register_policy = register_policy

    @classmethod
    def from_settings(cls, settings: Settings, store: CredentialStore, limiter: RateLimiter | None = None) -> AuthCore:
        return cls(
            store=store,
            hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
            tokens=TokenService.from_settings(settings),
            limiter=limiter if limiter is not None else RateLimiter(enabled=settings.rate_limit_enabled),
            validator=CredentialValidator.from_settings(settings),
            login_policy=login_policy(settings),
            register_policy=register_policy(settings),
        )

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(
        self, email: str | None, password: str | None, source: str | None = None, now: float | None = None
    ) -> Registered | AuthError:
        """Create an identity. Returns Registered(identity_id), never the hash."""
        decision = self.limiter.hit(self.register_policy, register_key(source), now=now)
        if not decision.allowed:
            return RateLimited(retry_after=decision.retry_after)

        normalized, field_errors = self.validator.validate(email, password)
        if field_errors:
            logger.info("Registration rejected by validation fields=%s", sorted(field_errors))
            return ValidationFailed(fields=field_errors)

        try:
            if self.store.find_by_email(normalized) is not None:
                logger.warning("Registration attempt with existing email email=%s", normalized)
                return IdentityExists()

            password_hash = self.hasher.hash(password)
            try:
                identity_id = self.store.create(normalized, password_hash)
            except DuplicateIdentity:
                # Lost the check-then-insert race to a concurrent registration.
                logger.warning("Concurrent registration for existing email email=%s", normalized)
                return IdentityExists()
        except Exception:
            logger.exception("Registration error email=%s", normalized)
            return InternalError()

        logger.info("User registered successfully user_id=%s email=%s", identity_id, normalized)
        return Registered(identity_id=identity_id)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(
        self, email: str | None, password: str | None, source: str | None = None, now: float | None = None
    ) -> LoginSuccess | AuthError:
        """Check credentials and issue a session token.

        Unlike register, login runs no shape validation. Malformed input falls
        through to InvalidCredentials, so login says nothing about the
        password policy.
        """
        decision = self.limiter.hit(self.login_policy, login_key(email, source), now=now)
        if not decision.allowed:
            return RateLimited(retry_after=decision.retry_after)

        normalized = normalize_email(email or "")
        password = password or ""
        try:
            identity = self.store.find_by_email(normalized) if normalized and is_encodable(normalized) else None
            if identity is None:
                self.hasher.dummy_verify(password)  # [C1]
                logger.warning("Login attempt with non-existent email email=%s source=%s", normalized, source)
                return InvalidCredentials()

            if not self.hasher.verify(password, identity.password_hash):
                logger.warning("Login attempt with wrong password email=%s source=%s", normalized, source)
                return InvalidCredentials()

            issued = self.tokens.issue(identity.id, identity.email, now=now)
        except Exception:
            logger.exception("Login error email=%s", normalized)
            return InternalError()

        logger.info("User logged in successfully user_id=%s email=%s", identity.id, identity.email)
        return LoginSuccess(
            token=issued.token,
            expires_at=issued.expires_at,
            identity=PublicIdentity(id=identity.id, email=identity.email),
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def verify_session(self, token: str | None, now: float | None = None) -> SessionClaims | Unauthorized:
        """Gate for protected operations. No side effects beyond logging."""
        if not token:
            logger.warning("Unauthorized access attempt: no token")
            return Unauthorized()

        result = self.tokens.verify(token, now=now)
        if isinstance(result, TokenExpired):
            logger.warning("Token expired expired_at=%d", result.expired_at)
            return Unauthorized()
        if isinstance(result, TokenMalformed):
            logger.warning("Invalid token: %s", result.reason)
            return Unauthorized()
        return result

    def get_current_identity(self, token: str | None, now: float | None = None) -> PublicIdentity | Unauthorized:
        result = self.verify_session(token, now=now)
        if isinstance(result, Unauthorized):
            return result
        return result.identity()

    def logout(self, token: str | None, now: float | None = None) -> LoggedOut | Unauthorized:
        """Acknowledge a logout for a valid session.

        Tokens are stateless: this does not revoke anything. The HTTP layer
        clears the cookie; a copy of the token held elsewhere stays valid
        until it expires.
        """
        result = self.verify_session(token, now=now)
        if isinstance(result, Unauthorized):
            return result
        logger.info("User logged out user_id=%s email=%s", result.id, result.email)
        return LoggedOut(identity=result.identity())
