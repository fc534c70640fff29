"""Input validation for the Telegram login flow."""

from __future__ import annotations

import re
from dataclasses import dataclass

_WHITESPACE_PATTERN = re.compile(r"\s+")
_E164_LIKE_PATTERN = re.compile(r"\+[0-9]+")
_DIGITS_PATTERN = re.compile(r"[0-9]+")


class AuthInputError(ValueError):
    """Raised when caller input is rejected before any network call."""

    code_invalid: bool

    def __init__(self, message: str, *, code_invalid: bool = False) -> None:
        """Store whether the rejection concerns the login code itself."""
        super().__init__(message)
        self.code_invalid = code_invalid

    @classmethod
    def missing_phone_number(cls) -> AuthInputError:
        """Build deterministic error for an absent phone number."""
        return cls("Phone number is required")

    @classmethod
    def malformed_phone_number(cls) -> AuthInputError:
        """Build deterministic error for non E.164-like phone numbers."""
        return cls(
            "Phone number must start with country code (e.g. +1) "
            "and contain only digits",
        )

    @classmethod
    def missing_verification_fields(cls) -> AuthInputError:
        """Build deterministic error for incomplete verify-code payloads."""
        return cls("Phone number, code hash, and verification code are required")

    @classmethod
    def non_digit_code(cls) -> AuthInputError:
        """Build deterministic error for codes containing non-digits."""
        return cls("Verification code should contain only digits", code_invalid=True)


@dataclass(frozen=True, slots=True)
class AuthAttempt:
    """One verify-code submission; lives only for the duration of the call."""

    phone_number: str
    phone_code_hash: str
    phone_code: str
    password: str | None = None


def normalize_phone_number(phone_number: str) -> str:
    """Trim and drop all embedded whitespace."""
    return _WHITESPACE_PATTERN.sub("", phone_number.strip())


def validate_phone_number(phone_number: str | None) -> str:
    """Return the normalized phone number or raise `AuthInputError`."""
    if not phone_number:
        raise AuthInputError.missing_phone_number()
    normalized = normalize_phone_number(phone_number)
    if not _E164_LIKE_PATTERN.fullmatch(normalized):
        raise AuthInputError.malformed_phone_number()
    return normalized


def validate_auth_attempt(
    *,
    phone_number: str | None,
    phone_code_hash: str | None,
    phone_code: str | None,
    password: str | None = None,
) -> AuthAttempt:
    """Validate verify-code fields and build the transient attempt."""
    if not phone_number or not phone_code_hash or not phone_code:
        raise AuthInputError.missing_verification_fields()
    code = phone_code.strip()
    if not _DIGITS_PATTERN.fullmatch(code):
        raise AuthInputError.non_digit_code()
    return AuthAttempt(
        phone_number=normalize_phone_number(phone_number),
        phone_code_hash=phone_code_hash,
        phone_code=code,
        password=password or None,
    )
