"""
api/main.py -- FastAPI application entry point for authgate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- CORS headers for the configured browser origins
  3. SlowAPIMiddleware     -- per-source ceiling from api.limiter

Lifespan builds the credential store, the rate-limit table and AuthCore once
at startup and hangs them on app.state. Nothing in the request path reaches
them through a module global. A background task evicts elapsed rate-limit
windows.
"""

from __future__ import annotations

import asyncio
import logging
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.errors import error_body
from api.limiter import limiter
from api.models import HealthResponse, RootResponse
from api.routes.auth import router as auth_router
from auth.ratelimit import RateLimiter
from auth.service import AuthCore
from auth.store import CredentialStore
from core.config import get_settings

__version__ = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

_PURGE_INTERVAL_SECONDS = 5 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Evict elapsed rate-limit windows every few minutes.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    core: AuthCore = app.state.auth_core
    longest = max(core.login_policy.window_seconds, core.register_policy.window_seconds)
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        core.limiter.purge_expired(longest)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create and tear down the application-owned auth state.

    Startup order matters: the store must exist before AuthCore, and
    AuthCore before the purge task that reads its limiter.
    """
    logger.info("authgate API starting up")
    app.state.credential_store = CredentialStore(_settings.database_url)
    app.state.auth_core = AuthCore.from_settings(
        _settings,
        app.state.credential_store,
        limiter=RateLimiter(enabled=_settings.rate_limit_enabled),
    )
    logger.info(
        "Auth initialized (token_ttl=%ds, bcrypt_rounds=%d, rate_limit_enabled=%s)",
        _settings.token_expire_seconds,
        _settings.bcrypt_rounds,
        _settings.rate_limit_enabled,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.credential_store.close()
    logger.info("authgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authgate API",
    description="Identity registration, password login and session token verification.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"error": {...}} envelope as api.errors so
# clients parse every failure the same way.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when the per-source ceiling is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Request ceiling exceeded path=%s limit=%s", request.url.path, exc.detail)
    response = JSONResponse(status_code=429, content=error_body("rate_limited", "Too many requests."))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with field-level detail when the request body cannot be parsed."""
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        fields.setdefault(".".join(loc) or "body", err.get("msg", "Invalid value"))
    return JSONResponse(status_code=400, content=error_body("validation_error", "Validation failed", details=fields))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured body for framework HTTP errors (unknown route, wrong method)."""
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content=error_body("not_found", "Route not found"))
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(f"http_{exc.status_code}", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The full exception and stack go to the log. The client gets a generic
    message; only DEBUG mode adds the exception text and traceback.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = None
    if get_settings().debug:
        detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(
        status_code=500,
        content=error_body("internal_error", "An unexpected error occurred", detail=detail),
    )


# ---------------------------------------------------------------------------
# Liveness endpoints
#
# Defined directly in main.py (not in a router) so they are reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/", tags=["Health"])
def root() -> RootResponse:
    return RootResponse(timestamp=datetime.now(timezone.utc).isoformat())


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database ping."""
    store: CredentialStore = request.app.state.credential_store
    database = "ok" if store.ping() else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
