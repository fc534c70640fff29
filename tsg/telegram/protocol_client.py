"""Telethon-backed protocol client used by the client pool and auth flow."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, cast

from telethon import TelegramClient  # pyright: ignore[reportMissingTypeStubs]
from telethon.errors import RPCError  # pyright: ignore[reportMissingTypeStubs]
from telethon.sessions import StringSession  # pyright: ignore[reportMissingTypeStubs]
from telethon.tl import functions, types  # pyright: ignore[reportMissingTypeStubs]

from .errors import ProviderFailure, classify_provider_error

if TYPE_CHECKING:
    from tsg.config.settings import TelegramCredentials

logger = logging.getLogger(__name__)

CONNECTION_RETRIES = 5
RETRY_DELAY_SECONDS = 1
CONNECT_TIMEOUT_SECONDS = 30


class ProtocolClient(Protocol):
    """Connection handle surface the pool and orchestrator depend on."""

    async def connect(self) -> None:
        """Connect to Telegram."""
        ...

    async def disconnect(self) -> None:
        """Disconnect from Telegram."""
        ...

    def is_connected(self) -> bool:
        """Return True when the client is currently connected."""
        ...

    async def is_user_authorized(self) -> bool:
        """Return True when the connection is signed in."""
        ...

    def save_session(self) -> str | None:
        """Serialize the connection state, or None when unavailable."""
        ...

    async def send_code(
        self,
        *,
        phone_number: str,
        credentials: TelegramCredentials,
    ) -> str:
        """Request a login code and return the provider phone code hash."""
        ...

    async def sign_in(
        self,
        *,
        phone_number: str,
        phone_code_hash: str,
        phone_code: str,
    ) -> object:
        """Complete sign-in with a login code."""
        ...

    async def log_out(self) -> None:
        """Invalidate the authorization bound to this connection."""
        ...


class ProtocolClientFactory(Protocol):
    """Factory for constructing protocol clients from serialized state."""

    def __call__(
        self,
        session_string: str | None,
        credentials: TelegramCredentials,
    ) -> ProtocolClient:
        """Create an unconnected client restored from `session_string`."""
        ...


class TelethonClientLike(Protocol):
    """Minimal Telethon `TelegramClient` surface wrapped by the adapter."""

    @property
    def session(self) -> object | None:
        """Return the underlying session object, if available."""
        ...

    async def connect(self) -> None:
        """Connect to Telegram."""
        ...

    async def disconnect(self) -> None:
        """Disconnect from Telegram."""
        ...

    def is_connected(self) -> bool:
        """Return True when the client is currently connected."""
        ...

    async def sign_in(
        self,
        phone: str | None = None,
        code: str | int | None = None,
        *,
        password: str | None = None,
        bot_token: str | None = None,
        phone_code_hash: str | None = None,
    ) -> object:
        """Sign in and record the authorized state on the client."""
        ...

    async def __call__(self, request: object) -> object:
        """Invoke a raw TL request."""
        ...


class TelethonProtocolClient:
    """Adapt a Telethon client to `ProtocolClient`, classifying RPC failures."""

    _client: TelethonClientLike

    def __init__(self, client: TelethonClientLike) -> None:
        """Wrap an already constructed Telethon client."""
        self._client = client

    @property
    def telethon_client(self) -> TelethonClientLike:
        """Expose the wrapped Telethon client."""
        return self._client

    async def connect(self) -> None:
        """Connect the wrapped client; failures stay unclassified and fatal."""
        await self._client.connect()

    async def disconnect(self) -> None:
        """Disconnect the wrapped client."""
        await self._client.disconnect()

    def is_connected(self) -> bool:
        """Return True when the wrapped client is connected."""
        return bool(self._client.is_connected())

    async def is_user_authorized(self) -> bool:
        """Ask Telegram whether the wrapped session is signed in.

        Telethon's own `is_user_authorized` caches its first answer, and raw
        `auth.logOut` requests never update that cache, so every call here
        issues a fresh `updates.getState`.
        """
        try:
            _ = await self._client(functions.updates.GetStateRequest())
        except RPCError:
            return False
        return True

    def save_session(self) -> str | None:
        """Extract StringSession data from the Telethon client if available."""
        session_obj = getattr(self._client, "session", None)
        save_obj = getattr(session_obj, "save", None)
        if session_obj is None or not callable(save_obj):
            return None
        try:
            session_string = save_obj()
        except Exception:
            logger.exception("Failed to serialize Telegram session")
            return None
        if isinstance(session_string, str) and session_string:
            return session_string
        return None

    async def send_code(
        self,
        *,
        phone_number: str,
        credentials: TelegramCredentials,
    ) -> str:
        """Invoke auth.sendCode with fixed code delivery settings."""
        request = functions.auth.SendCodeRequest(
            phone_number=phone_number,
            api_id=credentials.api_id,
            api_hash=credentials.api_hash,
            settings=types.CodeSettings(
                allow_flashcall=False,
                current_number=True,
                allow_app_hash=True,
            ),
        )
        result = await self._invoke(request)
        phone_code_hash = getattr(result, "phone_code_hash", None)
        if not isinstance(phone_code_hash, str) or not phone_code_hash:
            raise ProviderFailure.missing_phone_code_hash()
        return phone_code_hash

    async def sign_in(
        self,
        *,
        phone_number: str,
        phone_code_hash: str,
        phone_code: str,
    ) -> object:
        """Sign in through Telethon with the code issued by a prior send-code."""
        try:
            return await self._client.sign_in(
                phone=phone_number,
                code=phone_code,
                phone_code_hash=phone_code_hash,
            )
        except ProviderFailure:
            raise
        except Exception as exc:
            raise classify_provider_error(exc) from exc

    async def log_out(self) -> None:
        """Invoke auth.logOut, leaving the connection and session in place."""
        _ = await self._invoke(functions.auth.LogOutRequest())

    async def _invoke(self, request: object) -> object:
        try:
            return await self._client(request)
        except ProviderFailure:
            raise
        except Exception as exc:
            raise classify_provider_error(exc) from exc


def build_telethon_client(
    session_string: str | None,
    credentials: TelegramCredentials,
) -> ProtocolClient:
    """Create a Telethon-backed protocol client using an in-memory StringSession."""
    session_obj = StringSession(session_string or "")
    client = TelegramClient(
        session_obj,
        credentials.api_id,
        credentials.api_hash,
        connection_retries=CONNECTION_RETRIES,
        retry_delay=RETRY_DELAY_SECONDS,
        timeout=CONNECT_TIMEOUT_SECONDS,
    )
    return TelethonProtocolClient(cast("TelethonClientLike", client))
