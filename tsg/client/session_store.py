"""Client-side session persistence with mirrored primary and backup slots.

Every saved record is written identically to two slots so a consumer can
survive losing one of them. Reads prefer the primary slot, fall back to the
backup, and repair the primary from the backup when the fallback wins.
Records older than the retention window are treated as absent on load but
are still reported by diagnostics, which never deletes anything.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from json import JSONDecodeError
from typing import TYPE_CHECKING, cast

from tsg.config.logging import describe_session_token, mask_phone_number

if TYPE_CHECKING:
    from collections.abc import Callable

    from tsg.client.slot_storage import SlotStorage

PRIMARY_SLOT = "telegram_session_data"
BACKUP_SLOT = "telegram_session_backup"
DEVICE_ID_SLOT = "telegram_device_id"
DEVICE_ID_PREFIX = "web_"
DEVICE_ID_RANDOM_BYTES = 13
SESSION_RETENTION = timedelta(days=30)

logger = logging.getLogger(__name__)


class StoredSessionDecodeError(ValueError):
    """Raised when a slot payload is not a valid stored session record."""

    @classmethod
    def for_slot(cls, slot: str, *, details: str) -> StoredSessionDecodeError:
        """Build decode error with slot-localized context."""
        message = f"Stored session in slot '{slot}' is invalid: {details}"
        return cls(message)


@dataclass(slots=True, frozen=True)
class StoredSessionRecord:
    """Persisted session payload; serialized with camelCase keys."""

    session_string: str
    timestamp_ms: int
    device_id: str
    user_id: str | None = None
    phone_number: str | None = None

    def to_json(self) -> str:
        """Serialize to the compact JSON layout shared by both slots."""
        payload: dict[str, object] = {
            "sessionString": self.session_string,
            "timestamp": self.timestamp_ms,
            "deviceId": self.device_id,
        }
        if self.user_id is not None:
            payload["userId"] = self.user_id
        if self.phone_number is not None:
            payload["phoneNumber"] = self.phone_number
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str, *, slot: str) -> StoredSessionRecord:
        """Decode one slot payload, rejecting anything without a usable token."""
        try:
            decoded = cast("object", json.loads(raw))
        except JSONDecodeError as exc:
            raise StoredSessionDecodeError.for_slot(slot, details=str(exc)) from exc
        if not isinstance(decoded, dict):
            raise StoredSessionDecodeError.for_slot(slot, details="not an object")
        payload = cast("dict[str, object]", decoded)

        session_string = payload.get("sessionString")
        if not isinstance(session_string, str) or not session_string:
            raise StoredSessionDecodeError.for_slot(
                slot,
                details="missing `sessionString`",
            )
        timestamp = payload.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, int | float):
            raise StoredSessionDecodeError.for_slot(slot, details="missing `timestamp`")
        device_id = payload.get("deviceId")
        return cls(
            session_string=session_string,
            timestamp_ms=int(timestamp),
            device_id=device_id if isinstance(device_id, str) else "",
            user_id=_optional_text(payload.get("userId")),
            phone_number=_optional_text(payload.get("phoneNumber")),
        )


@dataclass(slots=True, frozen=True)
class SessionDiagnostics:
    """Read-only summary of both slots for recovery prompts."""

    has_primary: bool
    has_backup: bool
    primary_age: float | None
    backup_age: float | None
    device_id: str | None
    phone_number: str | None
    user_id: str | None

    @property
    def masked_phone_number(self) -> str | None:
        """Phone number suitable for display in a recovery prompt."""
        return mask_phone_number(self.phone_number)


class SessionStore:
    """Persist the opaque session token across reloads on the consumer side."""

    _storage: SlotStorage
    _now_provider: Callable[[], datetime]
    _retention: timedelta

    def __init__(
        self,
        storage: SlotStorage,
        *,
        now_provider: Callable[[], datetime] | None = None,
        retention: timedelta = SESSION_RETENTION,
    ) -> None:
        """Bind the store to a slot backend and an injectable UTC clock."""
        self._storage = storage
        self._now_provider = now_provider or _utc_now
        self._retention = retention

    async def save(
        self,
        session_token: str,
        *,
        user_id: str | None = None,
        phone_number: str | None = None,
    ) -> None:
        """Write one record to primary and mirror it byte-for-byte to backup."""
        if not session_token:
            logger.warning("Refusing to save empty session string")
            return
        record = StoredSessionRecord(
            session_string=session_token,
            timestamp_ms=self._now_ms(),
            device_id=await self.device_id(),
            user_id=user_id,
            phone_number=phone_number,
        )
        payload = record.to_json()
        await self._storage.set_item(PRIMARY_SLOT, payload)
        await self._storage.set_item(BACKUP_SLOT, payload)
        logger.info(
            "Saved session %s (phone=%s)",
            describe_session_token(session_token),
            mask_phone_number(phone_number),
        )

    async def load(self) -> str | None:
        """Return the freshest usable token, self-healing primary from backup."""
        primary = await self._read_fresh(PRIMARY_SLOT)
        if primary is not None:
            return primary.session_string

        raw_backup = await self._storage.get_item(BACKUP_SLOT)
        backup = self._decode_fresh(raw_backup, slot=BACKUP_SLOT)
        if backup is not None and raw_backup is not None:
            logger.info("Restoring primary session slot from backup")
            await self._storage.set_item(PRIMARY_SLOT, raw_backup)
            return backup.session_string

        logger.info("No usable stored session; clearing both slots")
        await self.clear()
        return None

    async def clear(self) -> None:
        """Remove both session slots; the device id survives."""
        await self._storage.remove_item(PRIMARY_SLOT)
        await self._storage.remove_item(BACKUP_SLOT)

    async def has_session(self) -> bool:
        """Return whether a usable token can be loaded."""
        return (await self.load()) is not None

    async def refresh_timestamp(self) -> None:
        """Re-save the current token so the retention window restarts now."""
        primary = await self._read_fresh(PRIMARY_SLOT)
        if primary is None:
            return
        await self.save(
            primary.session_string,
            user_id=primary.user_id,
            phone_number=primary.phone_number,
        )

    async def diagnostics(self) -> SessionDiagnostics:
        """Describe both slots without applying retention or deleting."""
        primary = await self._read_any(PRIMARY_SLOT)
        backup = await self._read_any(BACKUP_SLOT)
        newest = primary or backup
        now_ms = self._now_ms()
        return SessionDiagnostics(
            has_primary=primary is not None,
            has_backup=backup is not None,
            primary_age=_age_seconds(primary, now_ms=now_ms),
            backup_age=_age_seconds(backup, now_ms=now_ms),
            device_id=await self._storage.get_item(DEVICE_ID_SLOT),
            phone_number=newest.phone_number if newest else None,
            user_id=newest.user_id if newest else None,
        )

    async def restore_from_backup(self) -> bool:
        """Copy the backup payload into primary regardless of its age."""
        raw_backup = await self._storage.get_item(BACKUP_SLOT)
        if raw_backup is None:
            return False
        await self._storage.set_item(PRIMARY_SLOT, raw_backup)
        logger.info("Restored primary session slot from backup on request")
        return True

    async def device_id(self) -> str:
        """Return the persisted device id, generating it on first use."""
        existing = await self._storage.get_item(DEVICE_ID_SLOT)
        if existing:
            return existing
        generated = f"{DEVICE_ID_PREFIX}{secrets.token_hex(DEVICE_ID_RANDOM_BYTES)}"
        await self._storage.set_item(DEVICE_ID_SLOT, generated)
        return generated

    async def _read_fresh(self, slot: str) -> StoredSessionRecord | None:
        raw = await self._storage.get_item(slot)
        return self._decode_fresh(raw, slot=slot)

    async def _read_any(self, slot: str) -> StoredSessionRecord | None:
        raw = await self._storage.get_item(slot)
        if raw is None:
            return None
        try:
            return StoredSessionRecord.from_json(raw, slot=slot)
        except StoredSessionDecodeError:
            return None

    def _decode_fresh(
        self,
        raw: str | None,
        *,
        slot: str,
    ) -> StoredSessionRecord | None:
        if raw is None:
            return None
        try:
            record = StoredSessionRecord.from_json(raw, slot=slot)
        except StoredSessionDecodeError as exc:
            logger.warning("Ignoring corrupt session slot: %s", exc)
            return None
        age_ms = self._now_ms() - record.timestamp_ms
        if age_ms > self._retention / timedelta(milliseconds=1):
            logger.info("Session in slot '%s' expired", slot)
            return None
        return record

    def _now_ms(self) -> int:
        return int(self._now_provider().timestamp() * 1000)


def _age_seconds(record: StoredSessionRecord | None, *, now_ms: int) -> float | None:
    if record is None:
        return None
    return (now_ms - record.timestamp_ms) / 1000


def _optional_text(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)
