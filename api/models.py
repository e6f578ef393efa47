"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request bodies are loosely typed on purpose: email/password shape rules are
enforced by AuthCore after the rate-limit gate, not by FastAPI before it.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    """Request body for POST /api/auth/register and POST /api/auth/login."""

    email: str = ""
    password: str = ""


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str = "User successfully registered"
    user_id: int = Field(serialization_alias="userId")


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str = "Successfully logged in"
    token: str
    expires_at: int = Field(serialization_alias="expiresAt")
    user: IdentityOut


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: IdentityOut


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    details: Optional[dict[str, str]] = None
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class RootResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = "Auth service is running"
    timestamp: str
