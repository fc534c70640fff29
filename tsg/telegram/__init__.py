"""Telegram client management module."""

from .client_pool import (
    ANONYMOUS_POOL_KEY,
    CredentialsProvider,
    PooledClient,
    TelegramClientPool,
    derive_pool_key,
)
from .errors import (
    ProviderFailure,
    ProviderFailureKind,
    classify_provider_error,
    extract_wait_seconds,
)
from .protocol_client import (
    ProtocolClient,
    ProtocolClientFactory,
    TelethonClientLike,
    TelethonProtocolClient,
    build_telethon_client,
)

__all__ = [
    "ANONYMOUS_POOL_KEY",
    "CredentialsProvider",
    "PooledClient",
    "ProtocolClient",
    "ProtocolClientFactory",
    "ProviderFailure",
    "ProviderFailureKind",
    "TelegramClientPool",
    "TelethonClientLike",
    "TelethonProtocolClient",
    "build_telethon_client",
    "classify_provider_error",
    "derive_pool_key",
    "extract_wait_seconds",
]
