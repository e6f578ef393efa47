"""
tests/support.py -- Builders shared by unit and integration tests.

make_core() assembles an AuthCore from test-sized collaborators: bcrypt at
its minimum cost, a fixed signing secret and explicit rate-limit policies.
Production cost and secret policy are enforced by Settings, not here.
"""

from __future__ import annotations

from auth.passwords import PasswordHasher
from auth.ratelimit import RateLimiter, RateLimitPolicy
from auth.service import AuthCore
from auth.store import CredentialStore
from auth.tokens import TokenService
from auth.validation import CredentialValidator

TEST_SECRET = "t" * 48
TEST_TTL = 30 * 60
TEST_ROUNDS = 4


def make_core(
    store: CredentialStore | None = None,
    limiter: RateLimiter | None = None,
    login_attempts: int = 5,
    login_window: float = 900,
    register_attempts: int = 10,
    register_window: float = 3600,
) -> AuthCore:
    """Build an AuthCore over an in-memory store with rate limiting off unless a limiter is given."""
    return AuthCore(
        store=store if store is not None else CredentialStore("sqlite:///:memory:"),
        hasher=PasswordHasher(rounds=TEST_ROUNDS),
        tokens=TokenService(secret_key=TEST_SECRET, ttl_seconds=TEST_TTL),
        limiter=limiter if limiter is not None else RateLimiter(enabled=False),
        validator=CredentialValidator(),
        login_policy=RateLimitPolicy("login", login_window, login_attempts),
        register_policy=RateLimitPolicy("register", register_window, register_attempts),
    )
