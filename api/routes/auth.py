"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/auth/register  -- create an identity; 201 {message, userId}
  POST /api/auth/login     -- password login; sets the session cookie
  POST /api/auth/logout    -- requires a session; clears the cookie
  GET  /api/auth/me        -- current identity from the session token

Handlers are plain `def`: FastAPI runs them in its thread pool, so bcrypt
work in register/login never blocks the event loop.

Security:
  [C1] Login failures all go through AuthCore, which equalizes timing and
       returns one InvalidCredentials value for unknown email and wrong
       password.
  [M5] Cache-Control: no-store on every login response.
  Every failure is rendered by api.errors.error_response() -- no handler
  builds its own error body.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import error_response
from api.models import CredentialsRequest, IdentityOut, LoginResponse, MeResponse, MessageResponse, RegisterResponse
from auth.dependencies import clear_auth_cookie, client_source, extract_token, get_auth_core, set_auth_cookie
from auth.errors import is_error
from auth.service import AuthCore
from core.config import get_settings

# Auth policy:
# - POST /api/auth/register: public, register rate policy (by source)
# - POST /api/auth/login:    public, login rate policy (by email, else source)
# - POST /api/auth/logout:   requires a valid session
# - GET  /api/auth/me:       requires a valid session
router = APIRouter()


@router.post("/auth/register", status_code=201, response_model=RegisterResponse)
def register(request: Request, body: CredentialsRequest, core: AuthCore = Depends(get_auth_core)) -> JSONResponse:
    """Register a new identity. Returns the new id, never the hash."""
    result = core.register(body.email, body.password, source=client_source(request))
    if is_error(result):
        return error_response(result)
    return JSONResponse(
        status_code=201,
        content=RegisterResponse(user_id=result.identity_id).model_dump(by_alias=True),
    )


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: CredentialsRequest, core: AuthCore = Depends(get_auth_core)) -> JSONResponse:
    """Authenticate with email and password; return the token and set it as a cookie."""
    result = core.login(body.email, body.password, source=client_source(request))
    if is_error(result):
        resp = error_response(result)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=result.token,
            expires_at=result.expires_at,
            user=IdentityOut(id=result.identity.id, email=result.identity.email),
        ).model_dump(by_alias=True),
    )
    set_auth_cookie(resp, result.token, max_age=core.tokens.ttl_seconds, secure=get_settings().secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, core: AuthCore = Depends(get_auth_core)) -> JSONResponse:
    """Clear the session cookie.

    The token itself is not revoked (stateless sessions); it stops working
    when it expires.
    """
    result = core.logout(extract_token(request))
    if is_error(result):
        return error_response(result)
    resp = JSONResponse(content=MessageResponse(message="Successfully logged out").model_dump())
    clear_auth_cookie(resp, secure=get_settings().secure_cookies)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, core: AuthCore = Depends(get_auth_core)) -> JSONResponse:
    """Return {id, email} for the session token's identity."""
    result = core.get_current_identity(extract_token(request))
    if is_error(result):
        return error_response(result)
    return JSONResponse(content=MeResponse(user=IdentityOut(id=result.id, email=result.email)).model_dump())
