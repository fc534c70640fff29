"""Closed classification of Telegram provider failures.

Telethon surfaces provider conditions as a wide hierarchy of RPC error
classes, and some transports only expose them as free text. Every failure
raised by the protocol client adapter is classified exactly once into a
`ProviderFailure` so callers branch on `ProviderFailureKind` instead of
re-inspecting error shapes.
"""

from __future__ import annotations

import re
from enum import StrEnum

from telethon.errors import (  # pyright: ignore[reportMissingTypeStubs]
    AuthRestartError,
    FloodError,
    PhoneCodeExpiredError,
    PhoneCodeInvalidError,
    SessionPasswordNeededError,
)

_FLOOD_WAIT_PATTERN = re.compile(r"FLOOD_WAIT_(\d+)")
_RATE_LIMITED_RPC_CODE = 420


class ProviderFailureKind(StrEnum):
    """Provider conditions the auth flow knows how to handle."""

    RESTART_REQUIRED = "restart_required"
    RATE_LIMITED = "rate_limited"
    CODE_EXPIRED = "code_expired"
    CODE_INVALID = "code_invalid"
    PASSWORD_REQUIRED = "password_required"  # noqa: S105
    OTHER = "other"


class ProviderFailure(RuntimeError):
    """Classified failure raised by the protocol client boundary."""

    kind: ProviderFailureKind
    wait_seconds: int | None

    def __init__(
        self,
        message: str,
        *,
        kind: ProviderFailureKind,
        wait_seconds: int | None = None,
    ) -> None:
        """Store the classified kind and optional wait duration."""
        super().__init__(message)
        self.kind = kind
        self.wait_seconds = wait_seconds

    @property
    def message(self) -> str:
        """Return the provider message carried by this failure."""
        return str(self)

    @classmethod
    def missing_phone_code_hash(cls) -> ProviderFailure:
        """Build deterministic failure for send-code replies without a hash."""
        return cls(
            "Failed to get phone code hash from Telegram",
            kind=ProviderFailureKind.OTHER,
        )


def classify_provider_error(error: BaseException) -> ProviderFailure:
    """Map a Telethon (or transport) error onto the closed failure taxonomy."""
    if isinstance(error, ProviderFailure):
        return error

    message = _error_message(error)
    kind = _classify_by_type(error)
    if kind is None:
        kind = _classify_by_text(error=error, message=message)

    wait_seconds = None
    if kind is ProviderFailureKind.RATE_LIMITED:
        wait_seconds = extract_wait_seconds(error=error, message=message)
    return ProviderFailure(message, kind=kind, wait_seconds=wait_seconds)


def extract_wait_seconds(*, error: BaseException, message: str) -> int | None:
    """Prefer the explicit seconds attribute, then parse FLOOD_WAIT_<n> text."""
    wait_seconds = getattr(error, "seconds", None)
    if isinstance(wait_seconds, int) and wait_seconds > 0:
        return wait_seconds
    match = _FLOOD_WAIT_PATTERN.search(message)
    if match is not None:
        return int(match.group(1))
    return None


def _classify_by_type(error: BaseException) -> ProviderFailureKind | None:
    if isinstance(error, SessionPasswordNeededError):
        return ProviderFailureKind.PASSWORD_REQUIRED
    if isinstance(error, AuthRestartError):
        return ProviderFailureKind.RESTART_REQUIRED
    if isinstance(error, PhoneCodeExpiredError):
        return ProviderFailureKind.CODE_EXPIRED
    if isinstance(error, PhoneCodeInvalidError):
        return ProviderFailureKind.CODE_INVALID
    if isinstance(error, FloodError):
        return ProviderFailureKind.RATE_LIMITED
    return None


def _classify_by_text(*, error: BaseException, message: str) -> ProviderFailureKind:
    rpc_message = getattr(error, "message", None)
    haystack = f"{rpc_message} {message}" if isinstance(rpc_message, str) else message
    if "AUTH_RESTART" in haystack:
        return ProviderFailureKind.RESTART_REQUIRED
    if (
        getattr(error, "code", None) == _RATE_LIMITED_RPC_CODE
        or isinstance(getattr(error, "seconds", None), int)
        or "FLOOD_WAIT" in haystack
    ):
        return ProviderFailureKind.RATE_LIMITED
    if "PHONE_CODE_EXPIRED" in haystack:
        return ProviderFailureKind.CODE_EXPIRED
    if "PHONE_CODE_INVALID" in haystack:
        return ProviderFailureKind.CODE_INVALID
    if "SESSION_PASSWORD_NEEDED" in haystack or "PASSWORD_REQUIRED" in haystack:
        return ProviderFailureKind.PASSWORD_REQUIRED
    return ProviderFailureKind.OTHER


def _error_message(error: BaseException) -> str:
    text = str(error)
    if text:
        return text
    return error.__class__.__name__
