"""Session-aware HTTP wrapper for the Telegram auth endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from json import JSONDecodeError
from typing import TYPE_CHECKING, cast

from tsg.api.session_transport import (
    SESSION_HEADER,
    TELEGRAM_AUTH_PATH,
    SessionSignal,
    read_session_signal,
)
from tsg.config.logging import describe_session_token

if TYPE_CHECKING:
    import httpx

    from tsg.client.session_store import SessionStore

PARSE_FAILURE_BODY: dict[str, object] = {
    "success": False,
    "error": "Failed to parse server response",
    "message": "Invalid response format",
}

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ApiResponse:
    """Decoded endpoint response plus the session signal it carried."""

    status_code: int
    data: dict[str, object]
    signal: SessionSignal

    @property
    def success(self) -> bool:
        """Return the body's `success` flag, treating absence as failure."""
        return self.data.get("success") is True


class TelegramAuthApiClient:
    """Attach the stored token to every call and apply returned signals."""

    def __init__(
        self,
        *,
        store: SessionStore,
        http_client: httpx.AsyncClient,
        path: str = TELEGRAM_AUTH_PATH,
    ) -> None:
        """Use a caller-owned httpx client; its base URL locates the gateway."""
        self._store = store
        self._http_client = http_client
        self._path = path

    async def check_session(self) -> ApiResponse:
        """Ask the gateway whether the stored session is signed in."""
        return await self._request("GET")

    async def send_code(self, phone_number: str) -> ApiResponse:
        """Request a login code for `phone_number`."""
        return await self._request(
            "POST",
            body={"action": "send-code", "phoneNumber": phone_number},
        )

    async def verify_code(
        self,
        *,
        phone_number: str,
        phone_code_hash: str,
        phone_code: str,
        password: str | None = None,
    ) -> ApiResponse:
        """Submit the login code; `password` is sent only when given."""
        body: dict[str, object] = {
            "action": "verify-code",
            "phoneNumber": phone_number,
            "phoneCodeHash": phone_code_hash,
            "phoneCode": phone_code,
        }
        if password is not None:
            body["password"] = password
        return await self._request("POST", body=body)

    async def logout(self) -> ApiResponse:
        """Log out; the gateway always answers with the clear signal."""
        return await self._request("POST", body={"action": "logout"})

    async def _request(
        self,
        method: str,
        *,
        body: dict[str, object] | None = None,
    ) -> ApiResponse:
        """Send one request and reconcile the store with the response headers."""
        headers: dict[str, str] = {}
        stored_token = await self._store.load()
        if stored_token:
            headers[SESSION_HEADER] = stored_token

        response = await self._http_client.request(
            method,
            self._path,
            json=body,
            headers=headers,
        )
        data = _decode_body(response)
        signal = read_session_signal(response.headers)
        await self._apply_signal(signal, data=data)
        return ApiResponse(status_code=response.status_code, data=data, signal=signal)

    async def _apply_signal(
        self,
        signal: SessionSignal,
        *,
        data: dict[str, object],
    ) -> None:
        if signal.clear_session:
            logger.info("Server requested session clear")
            await self._store.clear()
            return
        token = signal.effective_token
        if token is None:
            return
        logger.info("Storing rotated session %s", describe_session_token(token))
        await self._store.save(
            token,
            user_id=_extract_user_id(data),
            phone_number=_extract_phone_number(data),
        )


def _decode_body(response: httpx.Response) -> dict[str, object]:
    try:
        decoded = cast("object", response.json())
    except (JSONDecodeError, UnicodeDecodeError):
        logger.warning(
            "Unparseable response body (status=%s)",
            response.status_code,
        )
        return dict(PARSE_FAILURE_BODY)
    if not isinstance(decoded, dict):
        return dict(PARSE_FAILURE_BODY)
    return cast("dict[str, object]", decoded)


def _extract_user_id(data: dict[str, object]) -> str | None:
    direct = data.get("userId")
    if isinstance(direct, str | int) and not isinstance(direct, bool):
        return str(direct)
    user = _nested_user(data)
    nested = user.get("id")
    if isinstance(nested, str | int) and not isinstance(nested, bool):
        return str(nested)
    return None


def _extract_phone_number(data: dict[str, object]) -> str | None:
    direct = data.get("phoneNumber")
    if isinstance(direct, str) and direct:
        return direct
    nested = _nested_user(data).get("phone")
    if isinstance(nested, str) and nested:
        return nested
    return None


def _nested_user(data: dict[str, object]) -> dict[str, object]:
    user_info = data.get("userInfo")
    if not isinstance(user_info, dict):
        return {}
    user = cast("dict[str, object]", user_info).get("user")
    if not isinstance(user, dict):
        return {}
    return cast("dict[str, object]", user)
