"""Configuration module for TSG."""

from .settings import (
    AppSettings,
    MissingTelegramCredentialsError,
    SettingsValidationError,
    TelegramCredentials,
    load_settings,
    load_telegram_credentials,
)

__all__ = [
    "AppSettings",
    "MissingTelegramCredentialsError",
    "SettingsValidationError",
    "TelegramCredentials",
    "load_settings",
    "load_telegram_credentials",
]
