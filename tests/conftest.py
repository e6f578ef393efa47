"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - core: AuthCore over a fresh in-memory store, rate limiting off
  - _patch_lifespan(): wires test state into app.state, bypassing real startup
  - api_client: TestClient with the auth limiter disabled
  - limited_client: TestClient whose AuthCore enforces small rate limits

Design: integration fixtures use named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG and RATE_LIMIT_ENABLED must be set before any api/auth import so
get_settings() auto-generates SECRET_KEY and the slowapi ceiling is off.
Modules should use either api_client or limited_client, not both: each one
rewires the shared app.state.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.ratelimit import RateLimiter
from auth.service import AuthCore
from auth.store import CredentialStore
from tests.support import make_core

_db_counter = itertools.count()


def _shared_memory_store(name: str) -> CredentialStore:
    return CredentialStore(f"sqlite:///file:test_auth_{name}_{next(_db_counter)}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: CredentialStore, core: AuthCore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.credential_store = store
        app.state.auth_core = core
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def core() -> Generator[AuthCore, None, None]:
    """AuthCore with rate limiting disabled, over a fresh in-memory store."""
    c = make_core()
    yield c
    c.store.close()


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """TestClient against the real app with an isolated store and no auth limiter."""
    store = _shared_memory_store("api")
    app.router.lifespan_context = _patch_lifespan(store, make_core(store=store))

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    store.close()


@pytest.fixture
def limited_client() -> Generator[tuple[TestClient, AuthCore], None, None]:
    """TestClient whose AuthCore enforces login=5/15min and register=3/hour."""
    store = _shared_memory_store("limited")
    core = make_core(store=store, limiter=RateLimiter(enabled=True), login_attempts=5, register_attempts=3)
    app.router.lifespan_context = _patch_lifespan(store, core)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, core

    store.close()
