"""
api/errors.py -- The single AuthError -> HTTP response mapping.

Every route that calls AuthCore passes a failure result through
error_response(). Status codes, envelopes and headers for domain failures are
decided here and nowhere else.

  ValidationFailed    400  details = {field: message}
  InvalidCredentials  401  same body for unknown email and wrong password
  Unauthorized        401  same body for missing, malformed and expired tokens
  IdentityExists      409
  RateLimited         429  Retry-After header
  InternalError       500  generic message only

Security note: bodies are built from the variant's fixed code/message. No
input value, exception text or stack trace is ever copied into them.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.errors import (
    AuthError,
    IdentityExists,
    InternalError,
    InvalidCredentials,
    RateLimited,
    Unauthorized,
    ValidationFailed,
)

STATUS_CODES: dict[type, int] = {
    ValidationFailed: 400,
    InvalidCredentials: 401,
    Unauthorized: 401,
    IdentityExists: 409,
    RateLimited: 429,
    InternalError: 500,
}


def error_body(code: str, message: str, details: dict[str, str] | None = None, detail: str | None = None) -> dict:
    return ErrorResponse(error=ErrorDetail(code=code, message=message, details=details, detail=detail)).model_dump(
        exclude_none=True
    )


def error_response(error: AuthError) -> JSONResponse:
    """Build the JSON response for an AuthCore failure."""
    status_code = STATUS_CODES[type(error)]
    details = error.fields if isinstance(error, ValidationFailed) else None
    response = JSONResponse(status_code=status_code, content=error_body(error.code, error.message, details))
    if isinstance(error, RateLimited):
        response.headers["Retry-After"] = str(error.retry_after)
    if isinstance(error, (InvalidCredentials, Unauthorized)):
        response.headers["Cache-Control"] = "no-store"
    return response
