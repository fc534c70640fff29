"""Header contract carrying the opaque session token between caller and server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tsg.config.logging import describe_session_token

if TYPE_CHECKING:
    from collections.abc import Mapping

    from starlette.datastructures import Headers
    from starlette.responses import Response

TELEGRAM_AUTH_PATH = "/api/telegram/auth"
SESSION_HEADER = "x-telegram-session"
SESSION_CLEAR_HEADER = "x-telegram-session-clear"
SESSION_CLEAR_VALUE = "true"
EXPOSED_SESSION_HEADERS: tuple[str, ...] = (SESSION_HEADER, SESSION_CLEAR_HEADER)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionSignal:
    """Outbound session instruction decoded from response headers."""

    session_token: str | None
    clear_session: bool

    @property
    def effective_token(self) -> str | None:
        """Token a consumer should store; clear always wins over a new token."""
        if self.clear_session:
            return None
        return self.session_token


def read_session_token(headers: Headers) -> str | None:
    """Return the inbound session token, or None for a fresh anonymous flow."""
    raw = headers.get(SESSION_HEADER)
    if raw is None:
        return None
    token = raw.strip()
    if not token:
        return None
    logger.debug("Session token from header: %s", describe_session_token(token))
    return token


def apply_session_signal(
    response: Response,
    *,
    session_token: str | None,
    clear_session: bool,
) -> None:
    """Emit the clear signal and/or the rotated token on a response."""
    if clear_session:
        response.headers[SESSION_CLEAR_HEADER] = SESSION_CLEAR_VALUE
    if session_token:
        response.headers[SESSION_HEADER] = session_token
    elif session_token is not None:
        logger.warning("Empty session string, not including in response")


def read_session_signal(headers: Mapping[str, str]) -> SessionSignal:
    """Decode the outbound session headers on the consumer side."""
    clear_raw = headers.get(SESSION_CLEAR_HEADER)
    token = headers.get(SESSION_HEADER) or None
    return SessionSignal(
        session_token=token,
        clear_session=(clear_raw or "").strip().lower() == SESSION_CLEAR_VALUE,
    )
