"""Authentication module for TSG."""

from .orchestrator import AuthOutcome, AuthState, TelegramAuthOrchestrator
from .validation import (
    AuthAttempt,
    AuthInputError,
    normalize_phone_number,
    validate_auth_attempt,
    validate_phone_number,
)

__all__ = [
    "AuthAttempt",
    "AuthInputError",
    "AuthOutcome",
    "AuthState",
    "TelegramAuthOrchestrator",
    "normalize_phone_number",
    "validate_auth_attempt",
    "validate_phone_number",
]
