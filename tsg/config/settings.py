"""Typed application settings loaded from static environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

LogLevel = str

ENV_BIND = "TSG_BIND"
ENV_LOG_LEVEL = "TSG_LOG_LEVEL"
ENV_CORS_ALLOW_ORIGINS = "TSG_CORS_ALLOW_ORIGINS"
ENV_PORT = "TSG_PORT"
ENV_POOL_FRESHNESS_SECONDS = "TSG_POOL_FRESHNESS_SECONDS"
ENV_TELEGRAM_API_ID = "TELEGRAM_API_ID"
ENV_TELEGRAM_API_HASH = "TELEGRAM_API_HASH"

DEFAULT_BIND = "127.0.0.1"
DEFAULT_PORT = 8000
DEFAULT_LOG_LEVEL: LogLevel = "INFO"
DEFAULT_CORS_ALLOW_ORIGINS: tuple[str, ...] = ()
DEFAULT_POOL_FRESHNESS_SECONDS = 300

VALID_LOG_LEVELS: frozenset[LogLevel] = frozenset(
    {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"},
)


class SettingsValidationError(ValueError):
    """Raised when static settings env vars contain invalid values."""

    @classmethod
    def for_empty_value(cls, env_var: str) -> SettingsValidationError:
        """Build error for empty non-optional env var values."""
        message = f"Invalid {env_var}: value cannot be empty."
        return cls(message)

    @classmethod
    def for_invalid_choice(
        cls,
        env_var: str,
        value: str,
        allowed_values: str,
    ) -> SettingsValidationError:
        """Build error for enum-like env vars with fixed allowlists."""
        message = f"Invalid {env_var}: {value!r}. Allowed values: {allowed_values}."
        return cls(message)

    @classmethod
    def for_non_positive_int(cls, env_var: str, value: str) -> SettingsValidationError:
        """Build error for env vars that must hold a positive integer."""
        message = f"Invalid {env_var}: {value!r}. Expected a positive integer."
        return cls(message)


class MissingTelegramCredentialsError(RuntimeError):
    """Raised when Telegram application credentials are absent or malformed."""

    @classmethod
    def missing(cls) -> MissingTelegramCredentialsError:
        """Build deterministic error for unset credential env vars."""
        message = (
            "API credentials not found. Please set "
            f"{ENV_TELEGRAM_API_ID} and {ENV_TELEGRAM_API_HASH} environment variables."
        )
        return cls(message)

    @classmethod
    def invalid_api_id(cls, value: str) -> MissingTelegramCredentialsError:
        """Build deterministic error for a non-numeric application id."""
        message = (
            f"Invalid {ENV_TELEGRAM_API_ID}: {value!r}. "
            "Expected a positive integer."
        )
        return cls(message)


@dataclass(frozen=True, slots=True)
class AppSettings:
    """Resolved static configuration values for process startup."""

    bind: str
    port: int
    log_level: LogLevel
    cors_allow_origins: tuple[str, ...]
    pool_freshness_seconds: int


@dataclass(frozen=True, slots=True)
class TelegramCredentials:
    """Telegram application id/hash pair used for every client and RPC."""

    api_id: int
    api_hash: str


def load_settings(environ: Mapping[str, str] | None = None) -> AppSettings:
    """Load and validate static settings from process environment."""
    env = os.environ if environ is None else environ

    return AppSettings(
        bind=_read_bind(env),
        port=_read_positive_int(env, ENV_PORT, DEFAULT_PORT),
        log_level=_read_log_level(env),
        cors_allow_origins=_read_cors_allow_origins(env),
        pool_freshness_seconds=_read_positive_int(
            env,
            ENV_POOL_FRESHNESS_SECONDS,
            DEFAULT_POOL_FRESHNESS_SECONDS,
        ),
    )


def load_telegram_credentials(
    environ: Mapping[str, str] | None = None,
) -> TelegramCredentials:
    """Load Telegram credentials, failing hard when they are not configured."""
    env = os.environ if environ is None else environ

    raw_api_id = env.get(ENV_TELEGRAM_API_ID, "").strip()
    api_hash = env.get(ENV_TELEGRAM_API_HASH, "").strip()
    if not raw_api_id or not api_hash:
        raise MissingTelegramCredentialsError.missing()
    if not raw_api_id.isdigit() or int(raw_api_id) <= 0:
        raise MissingTelegramCredentialsError.invalid_api_id(raw_api_id)
    return TelegramCredentials(api_id=int(raw_api_id), api_hash=api_hash)


def _read_bind(environ: Mapping[str, str]) -> str:
    raw = environ.get(ENV_BIND)
    if raw is None:
        return DEFAULT_BIND
    value = raw.strip()
    if not value:
        raise SettingsValidationError.for_empty_value(ENV_BIND)
    return value


def _read_log_level(environ: Mapping[str, str]) -> LogLevel:
    raw = environ.get(ENV_LOG_LEVEL)
    if raw is None:
        return DEFAULT_LOG_LEVEL
    value = raw.strip().upper()
    if value in VALID_LOG_LEVELS:
        return value
    allowed = ", ".join(sorted(VALID_LOG_LEVELS))
    raise SettingsValidationError.for_invalid_choice(ENV_LOG_LEVEL, raw, allowed)


def _read_cors_allow_origins(environ: Mapping[str, str]) -> tuple[str, ...]:
    raw = environ.get(ENV_CORS_ALLOW_ORIGINS)
    if raw is None:
        return DEFAULT_CORS_ALLOW_ORIGINS
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


def _read_positive_int(environ: Mapping[str, str], env_var: str, default: int) -> int:
    raw = environ.get(env_var)
    if raw is None:
        return default
    value = raw.strip()
    if not value.isdigit() or int(value) <= 0:
        raise SettingsValidationError.for_non_positive_int(env_var, raw)
    return int(value)
