"""
auth/ratelimit.py -- Fixed-window attempt limiter for login and registration.

Each rate-limit key owns an AttemptWindow {count, window_start}. On every
attempt:

    no record, or now - window_start > window  ->  {count: 1, window_start: now}
    otherwise                                   ->  count += 1

The attempt is rejected when count > max_attempts. Every attempt is counted,
whatever its later outcome, and a rejected attempt never reaches the
credential check -- the check's own side effects (timing, logs) cannot be
used as an oracle.

The table is an explicitly owned object: AuthCore receives a RateLimiter at
construction and nothing reads it through a module global. One lock guards
the whole table; increment-or-reset is a handful of dict operations, so
contention is negligible next to a bcrypt verification.

State is in-process only and is lost on restart. Rate limiting is
best-effort, not the last line of defence.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from threading import Lock

from core.config import Settings

logger = logging.getLogger("authgate.auth.ratelimit")

# Loose shape check for choosing a login key. Full validation lives in
# auth/validation.py; this only decides identity-keyed vs source-keyed.
_EMAIL_KEY_RE = re.compile(r"^[^@\s]+@[^@\s]+$")
_MAX_KEY_EMAIL_LENGTH = 255


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_seconds: float
    max_attempts: int


@dataclass
class AttemptWindow:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    remaining: int
    # Seconds until the current window elapses; 0 when allowed.
    retry_after: int


def login_policy(settings: Settings) -> RateLimitPolicy:
    return RateLimitPolicy("login", settings.login_window_seconds, settings.login_max_attempts)


def register_policy(settings: Settings) -> RateLimitPolicy:
    return RateLimitPolicy("register", settings.register_window_seconds, settings.register_max_attempts)


def login_key(email: str | None, source: str | None) -> str:
    """Key login attempts by the submitted email, falling back to the source address.

    Keying by identity punishes a targeted attack on one account even when it
    is spread over many addresses. An absent or malformed email cannot name
    an account, so those attempts are bucketed by source instead.
    """
    candidate = (email or "").strip().lower()
    if candidate and len(candidate) <= _MAX_KEY_EMAIL_LENGTH and _EMAIL_KEY_RE.match(candidate):
        return f"login:email:{candidate}"
    return f"login:ip:{source or 'unknown'}"


def register_key(source: str | None) -> str:
    return f"register:ip:{source or 'unknown'}"


class RateLimiter:
    """Process-wide attempt table shared by every rate-limit policy.

    Usage:
        limiter = RateLimiter()
        decision = limiter.hit(policy, login_key(email, ip))
        if not decision.allowed: ...

    enabled=False makes every hit() return allowed without touching the
    table. It is the switch for test runs and is logged when set.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._windows: dict[str, AttemptWindow] = {}
        self._lock = Lock()
        if not enabled:
            logger.warning("Rate limiting is DISABLED -- login and registration attempts are not limited")

    def hit(self, policy: RateLimitPolicy, key: str, now: float | None = None) -> RateLimitDecision:
        """Record one attempt for key under policy and decide whether it may proceed."""
        if not self.enabled:
            return RateLimitDecision(
                allowed=True, count=0, limit=policy.max_attempts, remaining=policy.max_attempts, retry_after=0
            )

        now = time.time() if now is None else now
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.window_start > policy.window_seconds:
                window = AttemptWindow(count=1, window_start=now)
                self._windows[key] = window
            else:
                window.count += 1
            count = window.count
            window_start = window.window_start

        allowed = count <= policy.max_attempts
        retry_after = 0
        if not allowed:
            retry_after = max(1, int(window_start + policy.window_seconds - now) + 1)
            logger.warning(
                "Rate limit exceeded policy=%s key=%s count=%d limit=%d",
                policy.name,
                key,
                count,
                policy.max_attempts,
            )
        return RateLimitDecision(
            allowed=allowed,
            count=count,
            limit=policy.max_attempts,
            remaining=max(0, policy.max_attempts - count),
            retry_after=retry_after,
        )

    def purge_expired(self, max_window_seconds: float, now: float | None = None) -> int:
        """Evict windows older than max_window_seconds. Returns the number removed.

        Pass the longest configured policy window so no live window is dropped.
        """
        now = time.time() if now is None else now
        with self._lock:
            stale = [k for k, w in self._windows.items() if now - w.window_start > max_window_seconds]
            for key in stale:
                del self._windows[key]
        if stale:
            logger.debug("Purged %d expired rate-limit windows", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Inspection and maintenance helpers for tests and operators. AuthCore
    # only calls hit(); the lifespan calls purge_expired() above.
    # ------------------------------------------------------------------

    def peek(self, key: str) -> AttemptWindow | None:
        """Return a copy of the current window for key, or None."""
        with self._lock:
            window = self._windows.get(key)
            return AttemptWindow(window.count, window.window_start) if window else None

    def reset(self) -> None:
        """Forget every window (operator unlock)."""
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)
