"""
auth/dependencies.py -- FastAPI helpers for session token transport.

Token lookup order:
  1. "token" cookie -- set by POST /api/auth/login (httpOnly, SameSite=Strict).
  2. Authorization: Bearer <token> header -- API clients.

The cookie wins when both are present.

These helpers only move tokens in and out of requests/responses. Deciding
whether a token is valid is AuthCore.verify_session()'s job.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the request-handling seam.
"""

from __future__ import annotations

from fastapi import Request, Response

from auth.service import AuthCore

COOKIE_NAME = "token"


def get_auth_core(request: Request) -> AuthCore:
    """FastAPI dependency returning the AuthCore built in the app lifespan."""
    return request.app.state.auth_core


def extract_token(request: Request) -> str | None:
    """Return the session token from the cookie or the Bearer header, or None."""
    token: str | None = request.cookies.get(COOKIE_NAME)
    if token:
        return token

    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def client_source(request: Request) -> str | None:
    """Source address used for source-keyed rate limiting."""
    return request.client.host if request.client else None


def set_auth_cookie(response: Response, token: str, max_age: int, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the token TTL so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max_age,
    )


def clear_auth_cookie(response: Response, secure: bool = False) -> None:
    response.delete_cookie(COOKIE_NAME, httponly=True, samesite="strict", secure=secure)
