from __future__ import annotations

import unicodedata
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from securebank.service.validation import (
    date_of_birth_error,
    email_error,
    is_valid_phone_number,
    is_valid_ssn,
    is_valid_state_code,
    is_valid_zip_code,
    normalize_email,
    password_policy_error,
)
from securebank.storage.models import PublicUser

MAX_PASSWORD_LENGTH = 128


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then NFKC normalize."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    bidi_overrides = {chr(c) for c in range(0x202A, 0x202F)}
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(
        c for c in value if c not in zero_width and c not in bidi_overrides
    )
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "integrity_error",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


def _validate_email(value: str) -> str:
    error = email_error(_normalize_unicode(value))
    if error:
        raise ValueError(error)
    return normalize_email(_normalize_unicode(value))


def _require_text(value: str, label: str, max_length: int = 128) -> str:
    cleaned = _normalize_unicode(value).strip()
    if not cleaned:
        raise ValueError(f"{label} is required")
    if len(cleaned) > max_length:
        raise ValueError(f"{label} must be at most {max_length} characters")
    return cleaned


class SignupRequest(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: str
    ssn: str
    address: str
    city: str
    state: str
    zip_code: str

    @field_validator("email")
    @classmethod
    def _validate_signup_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        if len(value) > MAX_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_LENGTH} characters")
        error = password_policy_error(value)
        if error:
            raise ValueError(error)
        return value

    @field_validator("first_name")
    @classmethod
    def _validate_first_name(cls, value: str) -> str:
        return _require_text(value, "First name")

    @field_validator("last_name")
    @classmethod
    def _validate_last_name(cls, value: str) -> str:
        return _require_text(value, "Last name")

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        return _require_text(value, "Address", max_length=256)

    @field_validator("city")
    @classmethod
    def _validate_city(cls, value: str) -> str:
        return _require_text(value, "City")

    @field_validator("phone_number")
    @classmethod
    def _validate_phone(cls, value: str) -> str:
        if not is_valid_phone_number(value):
            raise ValueError("Invalid phone number format")
        return value.strip()

    @field_validator("date_of_birth")
    @classmethod
    def _validate_date_of_birth(cls, value: str) -> str:
        error = date_of_birth_error(value.strip())
        if error:
            raise ValueError(error)
        return value.strip()

    @field_validator("ssn")
    @classmethod
    def _validate_ssn(cls, value: str) -> str:
        if not is_valid_ssn(value):
            raise ValueError("SSN must be exactly 9 digits")
        return value

    @field_validator("state")
    @classmethod
    def _validate_state(cls, value: str) -> str:
        cleaned = value.strip()
        if len(cleaned) != 2 or not is_valid_state_code(cleaned):
            raise ValueError("Please use a valid two-letter state code")
        return cleaned.upper()

    @field_validator("zip_code")
    @classmethod
    def _validate_zip_code(cls, value: str) -> str:
        if not is_valid_zip_code(value):
            raise ValueError("ZIP code must be 5 digits")
        return value


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("email")
    @classmethod
    def _normalize_login_email(cls, value: str) -> str:
        return normalize_email(_normalize_unicode(value))


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: str
    address: str
    city: str
    state: str
    zip_code: str
    ssn_last4: str
    ssn_masked: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            phone_number=user.phone_number,
            date_of_birth=user.date_of_birth,
            address=user.address,
            city=user.city,
            state=user.state,
            zip_code=user.zip_code,
            ssn_last4=user.ssn_last4,
            ssn_masked=user.ssn_masked,
            created_at=user.created_at,
        )


class AuthResponse(BaseModel):
    user: UserResponse
    token: str


class SessionResponse(BaseModel):
    user: UserResponse


class LogoutResponse(BaseModel):
    success: bool
    message: str
