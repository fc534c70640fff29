"""Consumer-side session persistence and endpoint wrapper."""

from .api_client import ApiResponse, TelegramAuthApiClient
from .session_store import (
    BACKUP_SLOT,
    DEVICE_ID_SLOT,
    PRIMARY_SLOT,
    SessionDiagnostics,
    SessionStore,
    StoredSessionDecodeError,
    StoredSessionRecord,
)
from .slot_storage import MemorySlotStorage, SlotStorage, SqliteSlotStorage

__all__ = [
    "BACKUP_SLOT",
    "DEVICE_ID_SLOT",
    "PRIMARY_SLOT",
    "ApiResponse",
    "MemorySlotStorage",
    "SessionDiagnostics",
    "SessionStore",
    "SlotStorage",
    "SqliteSlotStorage",
    "StoredSessionDecodeError",
    "StoredSessionRecord",
    "TelegramAuthApiClient",
]
