"""
auth/tokens.py -- Signed, time-bounded session tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email, issued-at and expiry. The expiry is a signed claim, so
       it cannot be extended by the client.

  Expiry is checked here, not by python-jose. jose treats a token as valid
       up to and including its exp second; the session policy is "valid while
       now < exp". Checking against an explicit `now` also lets tests and the
       orchestrator pin the clock.

  Verification returns a value (SessionClaims, TokenExpired or
       TokenMalformed) instead of raising. AuthCore logs which one it got and
       maps both failures to the same Unauthorized response.

  Tokens are stateless. Nothing is stored server-side, so a token can only
  stop working by expiring -- logout cannot revoke it.

Timestamps are whole epoch seconds (JWT NumericDate).
"""

from __future__ import annotations

import logging
import time

from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenMalformed
from auth.models import IssuedToken, SessionClaims
from core.config import MIN_SECRET_KEY_LENGTH, Settings

logger = logging.getLogger("authgate.auth.tokens")

_ALGORITHM = "HS256"

# Expiry is enforced in verify(); everything else jose checks as usual.
_DECODE_OPTIONS = {"verify_exp": False, "require_iat": True, "require_exp": True, "require_sub": True}


def _epoch(now: int | float | None) -> int:
    return int(time.time() if now is None else now)


class TokenService:
    """Issue and verify session tokens.

    Usage:
        tokens = TokenService(secret_key=settings.secret_key, ttl_seconds=1800)
        issued = tokens.issue(identity_id=1, email="a@x.com")
        claims = tokens.verify(issued.token)
    """

    def __init__(self, secret_key: str, ttl_seconds: int = 1800, algorithm: str = _ALGORITHM) -> None:
        if len(secret_key) < MIN_SECRET_KEY_LENGTH:
            raise ValueError(f"secret key must be at least {MIN_SECRET_KEY_LENGTH} characters")
        if ttl_seconds <= 0:
            raise ValueError("token TTL must be positive")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(secret_key=settings.secret_key, ttl_seconds=settings.token_expire_seconds)

    def issue(self, identity_id: int, email: str, now: int | float | None = None) -> IssuedToken:
        """Sign a token for the identity. expires_at = issued_at + TTL."""
        issued_at = _epoch(now)
        expires_at = issued_at + self.ttl_seconds
        payload = {
            "sub": str(identity_id),
            "user_id": identity_id,
            "email": email,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        return IssuedToken(token=token, issued_at=issued_at, expires_at=expires_at)

    def verify(self, token: str, now: int | float | None = None) -> SessionClaims | TokenExpired | TokenMalformed:
        """Verify signature, structure and expiry.

        Returns SessionClaims when the token is valid at `now`, TokenExpired
        when now >= exp, TokenMalformed for a bad signature or payload.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm], options=_DECODE_OPTIONS)
        except JWTError as exc:
            return TokenMalformed(reason=str(exc) or exc.__class__.__name__)

        user_id = payload.get("user_id")
        email = payload.get("email")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        # bool is an int subclass; a forged {"user_id": true} would still need
        # a valid signature, but reject it anyway.
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            return TokenMalformed(reason="user_id claim missing or not an integer")
        if not isinstance(email, str) or not email:
            return TokenMalformed(reason="email claim missing")
        if not isinstance(issued_at, int) or not isinstance(expires_at, int):
            return TokenMalformed(reason="iat/exp claims must be integers")
        if payload.get("sub") != str(user_id):
            return TokenMalformed(reason="sub claim does not match user_id")

        if _epoch(now) >= expires_at:
            return TokenExpired(expired_at=expires_at)

        return SessionClaims(id=user_id, email=email, issued_at=issued_at, expires_at=expires_at)
