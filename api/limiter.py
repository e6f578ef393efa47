"""
api/limiter.py -- Shared slowapi limiter: per-source request ceiling.

This is the coarse flood guard applied to every route by SlowAPIMiddleware
(default_limits). It is separate from auth/ratelimit.py, which carries the
login and registration policies and runs inside AuthCore.

Using a single shared instance ensures all routes share the same in-memory
counter store. Disabled together with the auth policies when
RATE_LIMIT_ENABLED=false.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.api_rate_limit],
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)
