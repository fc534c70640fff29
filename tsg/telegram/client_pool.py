"""Pool of live Telegram protocol clients keyed by session token prefix."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from tsg.config.logging import describe_session_token
from tsg.config.settings import (
    DEFAULT_POOL_FRESHNESS_SECONDS,
    load_telegram_credentials,
)

from .protocol_client import build_telethon_client

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from tsg.config.settings import TelegramCredentials

    from .protocol_client import ProtocolClient, ProtocolClientFactory

ANONYMOUS_POOL_KEY = "anonymous"
SESSION_POOL_KEY_PREFIX = "session_"
SESSION_KEY_MATERIAL_CHARS = 32

logger = logging.getLogger(__name__)


class CredentialsProvider(Protocol):
    """Resolve the Telegram application credentials used for new clients."""

    def __call__(self) -> TelegramCredentials:
        """Return credentials or raise when they are not configured."""
        ...


def derive_pool_key(session_key_material: str | None) -> str:
    """Derive the bounded pool key for a session token (or the anonymous key)."""
    if not session_key_material:
        return ANONYMOUS_POOL_KEY
    material = session_key_material[:SESSION_KEY_MATERIAL_CHARS]
    return f"{SESSION_POOL_KEY_PREFIX}{material}"


@dataclass(slots=True)
class PooledClient:
    """Pool entry with freshness metadata for one live client."""

    key: str
    client: ProtocolClient
    last_used_at: float
    validated: bool


@dataclass(slots=True)
class _KeyLock:
    """Per-key lock plus the number of coroutines currently using it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _new_entry_map() -> dict[str, PooledClient]:
    return {}


def _new_lock_map() -> dict[str, _KeyLock]:
    return {}


def _default_credentials_provider() -> TelegramCredentials:
    return load_telegram_credentials()


@dataclass(slots=True)
class TelegramClientPool:
    """Reuse, revalidate, evict and replace pooled protocol clients.

    All read-check-then-act sequences for one key run under that key's lock;
    distinct keys never wait on each other. Connecting a brand-new client
    happens outside the lock and the result is published under it.
    """

    client_factory: ProtocolClientFactory = field(default=build_telethon_client)
    credentials_provider: CredentialsProvider = field(
        default=_default_credentials_provider,
    )
    freshness_seconds: float = DEFAULT_POOL_FRESHNESS_SECONDS
    clock: Callable[[], float] = field(default=time.monotonic)
    entries: dict[str, PooledClient] = field(default_factory=_new_entry_map)
    _locks: dict[str, _KeyLock] = field(default_factory=_new_lock_map)

    async def startup(self) -> None:
        """Pool entries are created lazily; nothing to warm up."""
        logger.debug("Telegram client pool ready")

    async def shutdown(self) -> None:
        """Disconnect and drop every pooled client."""
        evicted = await self.evict_all()
        logger.info("Telegram client pool shut down (evicted=%s)", evicted)

    async def acquire(
        self,
        session_key_material: str | None,
        *,
        force_new: bool = False,
    ) -> ProtocolClient:
        """Return a pooled client for the session, creating one when needed."""
        key = derive_pool_key(session_key_material)
        logger.debug(
            "Acquiring Telegram client (key=%s, session=%s, force_new=%s)",
            _describe_key(key),
            describe_session_token(session_key_material),
            force_new,
        )
        async with self._guard(key):
            if force_new:
                if key in self.entries:
                    logger.info("Force new client requested, evicting existing entry")
                await self._evict_locked(key)
            else:
                reused = await self._reuse_locked(key)
                if reused is not None:
                    return reused

        client, authorized = await self._create(session_key_material)
        if client.is_connected() and (authorized or not session_key_material):
            return await self._publish(
                key=key,
                client=client,
                authorized=authorized,
                force_new=force_new,
            )
        return client

    @asynccontextmanager
    async def lease(
        self,
        session_key_material: str | None,
        *,
        force_new: bool = False,
    ) -> AsyncIterator[ProtocolClient]:
        """Acquire a client for one request; disconnect it afterwards if unpooled."""
        client = await self.acquire(session_key_material, force_new=force_new)
        try:
            yield client
        finally:
            if not self.holds(client):
                await _disconnect_quietly(client)

    async def adopt(
        self,
        session_key_material: str | None,
        client: ProtocolClient,
    ) -> None:
        """Pool a client that became authorized after it was acquired."""
        if not client.is_connected():
            return
        _ = await self._publish(
            key=derive_pool_key(session_key_material),
            client=client,
            authorized=True,
            force_new=False,
        )

    def holds(self, client: ProtocolClient) -> bool:
        """Return True when `client` is currently a pool entry."""
        return any(entry.client is client for entry in self.entries.values())

    async def evict(self, key: str) -> bool:
        """Disconnect (best-effort) and remove the entry for `key`."""
        async with self._guard(key):
            return await self._evict_locked(key)

    async def evict_token(self, session_key_material: str | None) -> bool:
        """Evict the entry that a session token maps to."""
        return await self.evict(derive_pool_key(session_key_material))

    async def evict_all(self) -> int:
        """Evict every pooled client, tolerating individual disconnect failures."""
        keys = list(self.entries)
        evicted = 0
        for key in keys:
            if await self.evict(key):
                evicted += 1
        if evicted:
            logger.info("Cleared %s clients from pool", evicted)
        return evicted

    def get_entry(self, session_key_material: str | None) -> PooledClient | None:
        """Return the pool entry for a session token without touching it."""
        return self.entries.get(derive_pool_key(session_key_material))

    async def _reuse_locked(self, key: str) -> ProtocolClient | None:
        entry = self.entries.get(key)
        if entry is None:
            return None

        now = self.clock()
        if entry.validated and now - entry.last_used_at < self.freshness_seconds:
            logger.debug(
                "Reusing recently validated client (key=%s)",
                _describe_key(key),
            )
            entry.last_used_at = now
            return entry.client

        try:
            if entry.client.is_connected():
                authorized = await entry.client.is_user_authorized()
                # Pre-auth clients are expected to be unauthorized.
                if authorized or key == ANONYMOUS_POOL_KEY:
                    entry.last_used_at = self.clock()
                    entry.validated = authorized
                    return entry.client
                logger.info("Pooled client no longer authorized, replacing it")
            else:
                logger.info("Pooled client disconnected, replacing it")
        except Exception:
            logger.warning(
                "Error checking pooled client, replacing it (key=%s)",
                _describe_key(key),
                exc_info=True,
            )

        _ = await self._evict_locked(key)
        return None

    async def _create(
        self,
        session_key_material: str | None,
    ) -> tuple[ProtocolClient, bool]:
        credentials = self.credentials_provider()
        client = self.client_factory(session_key_material, credentials)
        started_at = self.clock()
        await client.connect()
        try:
            authorized = await client.is_user_authorized()
        except Exception:
            await _disconnect_quietly(client)
            raise
        logger.info(
            "Connected new Telegram client (authorized=%s, elapsed=%.3fs)",
            authorized,
            self.clock() - started_at,
        )
        return client, authorized

    async def _publish(
        self,
        *,
        key: str,
        client: ProtocolClient,
        authorized: bool,
        force_new: bool,
    ) -> ProtocolClient:
        displaced: ProtocolClient | None = None
        async with self._guard(key):
            existing = self.entries.get(key)
            if existing is not None and existing.client is not client:
                if not force_new and existing.client.is_connected():
                    logger.info(
                        "Adopting concurrently pooled client (key=%s)",
                        _describe_key(key),
                    )
                    existing.last_used_at = self.clock()
                    await _disconnect_quietly(client)
                    return existing.client
                displaced = existing.client
            self.entries[key] = PooledClient(
                key=key,
                client=client,
                last_used_at=self.clock(),
                validated=authorized,
            )
            logger.debug("Stored client in pool (key=%s)", _describe_key(key))
        if displaced is not None:
            await _disconnect_quietly(displaced)
        return client

    async def _evict_locked(self, key: str) -> bool:
        entry = self.entries.pop(key, None)
        if entry is None:
            return False
        await _disconnect_quietly(entry.client)
        logger.debug("Removed client from pool (key=%s)", _describe_key(key))
        return True

    @asynccontextmanager
    async def _guard(self, key: str) -> AsyncIterator[None]:
        slot = self._locks.get(key)
        if slot is None:
            slot = _KeyLock()
            self._locks[key] = slot
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0 and self._locks.get(key) is slot:
                del self._locks[key]


async def _disconnect_quietly(client: ProtocolClient) -> None:
    """Disconnect a client, logging and ignoring any failure."""
    try:
        if client.is_connected():
            await client.disconnect()
    except Exception:
        logger.warning("Error disconnecting Telegram client", exc_info=True)


def _describe_key(key: str) -> str:
    if key == ANONYMOUS_POOL_KEY:
        return key
    return describe_session_token(key)
