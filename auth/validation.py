"""
auth/validation.py -- Email / password shape validation.

The limits are configuration (Settings.email_max_length, password_min_length,
password_max_length), so the pydantic model reads them from the validation
context instead of hard-coding Field() constraints. Failures come back as a
field -> message mapping, one message per field.

AuthCore runs this AFTER the rate-limit gate and BEFORE any store access.
That is why request bodies at the HTTP layer are only loosely typed: a
shape failure must still be counted against the caller's attempt budget.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from core.config import Settings

# Deliberately permissive: one @, no whitespace, a dot in the domain part.
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(value: str) -> str:
    """Strip surrounding whitespace and lower-case the address."""
    return value.strip().lower()


def is_encodable(value: str) -> bool:
    """True if value is valid UTF-8 text (JSON can smuggle in lone surrogates)."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


class _Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    password: str

    @field_validator("email", "password", mode="before")
    @classmethod
    def check_encoding(cls, value: object, info: ValidationInfo) -> object:
        if isinstance(value, str) and not is_encodable(value):
            raise ValueError(f"{info.field_name.capitalize()} contains invalid characters")
        return value

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str, info: ValidationInfo) -> str:
        limits = info.context or {}
        value = normalize_email(value)
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email address")
        max_length = limits.get("email_max_length", 255)
        if len(value) > max_length:
            raise ValueError(f"Email must not exceed {max_length} characters")
        return value

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str, info: ValidationInfo) -> str:
        limits = info.context or {}
        min_length = limits.get("password_min_length", 6)
        max_length = limits.get("password_max_length", 128)
        if not min_length <= len(value) <= max_length:
            raise ValueError(f"Password must be between {min_length} and {max_length} characters")
        return value


class CredentialValidator:
    """Validate registration input against the configured limits.

    Usage:
        validator = CredentialValidator.from_settings(settings)
        email, errors = validator.validate(" A@X.com ", "secret1")
        # email == "a@x.com", errors == {}
    """

    def __init__(self, email_max_length: int = 255, password_min_length: int = 6, password_max_length: int = 128):
        self._context = {
            "email_max_length": email_max_length,
            "password_min_length": password_min_length,
            "password_max_length": password_max_length,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialValidator:
        return cls(
            email_max_length=settings.email_max_length,
            password_min_length=settings.password_min_length,
            password_max_length=settings.password_max_length,
        )

    def validate(self, email: str | None, password: str | None) -> tuple[str | None, dict[str, str]]:
        """Return (normalized_email, {}) on success or (None, {field: message})."""
        try:
            creds = _Credentials.model_validate(
                {"email": email or "", "password": password or ""},
                context=self._context,
            )
        except ValidationError as exc:
            return None, _field_messages(exc)
        return creds.email, {}


def _field_messages(exc: ValidationError) -> dict[str, str]:
    fields: dict[str, str] = {}
    for err in exc.errors():
        name = str(err["loc"][0]) if err.get("loc") else "body"
        message = err.get("msg", "Invalid value")
        # pydantic prefixes messages raised from validators.
        fields.setdefault(name, message.removeprefix("Value error, "))
    return fields
