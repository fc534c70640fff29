"""Telegram login state machine over pooled protocol clients.

The orchestrator keeps no state between requests. Each operation takes the
caller's current session token, drives the pooled client one step through
`ANONYMOUS -> CODE_SENT -> AWAITING_PASSWORD -> AUTHORIZED` (or to
`LOGGED_OUT`), and returns an `AuthOutcome` carrying the HTTP status, the JSON
body and the session signal the transport layer must emit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from http import HTTPStatus
from typing import TYPE_CHECKING

from tsg.config.logging import describe_session_token, mask_phone_number
from tsg.telegram import ProviderFailure, ProviderFailureKind

from .validation import AuthInputError, validate_auth_attempt, validate_phone_number

if TYPE_CHECKING:
    from tsg.telegram import CredentialsProvider, ProtocolClient, TelegramClientPool

logger = logging.getLogger(__name__)

_CODE_SENT_MESSAGE = "Code sent successfully"
_CODE_SENT_AFTER_RESTART_MESSAGE = "Code sent successfully (after auth restart)"
_AUTH_RESTART_DETAIL = (
    "Authentication restart required. Please try again in a few moments."
)
_PASSWORD_REQUIRED_MESSAGE = "2FA password required"  # noqa: S105
_PASSWORD_NOT_IMPLEMENTED_DETAIL = (
    "2FA authentication is not fully implemented yet"  # noqa: S105
)
_CODE_EXPIRED_DETAIL = "Verification code has expired. Please request a new code."
_CODE_INVALID_DETAIL = "Invalid verification code. Please check and try again."
_SEND_CODE_FAILED_DETAIL = "Failed to send code"
_VERIFY_CODE_FAILED_DETAIL = "Failed to verify code"
_LOGOUT_FAILED_DETAIL = "Error during logout"
_CHECK_SESSION_FAILED_DETAIL = "Failed to check session"


class AuthState(StrEnum):
    """Position of one logical login session in the state machine."""

    ANONYMOUS = "anonymous"
    CODE_SENT = "code_sent"
    AWAITING_PASSWORD = "awaiting_password"  # noqa: S105
    AUTHORIZED = "authorized"
    LOGGED_OUT = "logged_out"


def _new_body() -> dict[str, object]:
    return {}


@dataclass(frozen=True, slots=True)
class AuthOutcome:
    """Result of one orchestrator operation, ready for the transport layer."""

    status_code: int = HTTPStatus.OK
    body: dict[str, object] = field(default_factory=_new_body)
    session_token: str | None = None
    clear_session: bool = False
    state: AuthState | None = None


class TelegramAuthOrchestrator:
    """Drive send-code, verify-code, logout and session checks."""

    _pool: TelegramClientPool
    _credentials_provider: CredentialsProvider

    def __init__(
        self,
        *,
        pool: TelegramClientPool,
        credentials_provider: CredentialsProvider | None = None,
    ) -> None:
        """Bind the orchestrator to an app-scoped client pool."""
        self._pool = pool
        self._credentials_provider = (
            pool.credentials_provider
            if credentials_provider is None
            else credentials_provider
        )

    async def check_session(self, session_token: str | None) -> AuthOutcome:
        """Report whether the caller's session is connected and signed in."""
        if not session_token:
            return AuthOutcome(
                body={"isConnected": False, "message": "No session found"},
                clear_session=True,
                state=AuthState.ANONYMOUS,
            )

        try:
            async with self._pool.lease(session_token) as client:
                if not client.is_connected():
                    await client.connect()
                if await client.is_user_authorized():
                    return AuthOutcome(
                        body={
                            "isConnected": True,
                            "message": "Session valid and connected",
                        },
                        session_token=client.save_session(),
                        state=AuthState.AUTHORIZED,
                    )
        except Exception as exc:
            logger.exception(
                "Error checking session %s",
                describe_session_token(session_token),
            )
            return AuthOutcome(
                body={
                    "isConnected": False,
                    "error": _error_text(exc, _CHECK_SESSION_FAILED_DETAIL),
                },
            )
        return AuthOutcome(
            body={
                "isConnected": False,
                "message": "Session exists but not authorized",
            },
        )

    async def send_code(
        self,
        session_token: str | None,
        phone_number: str | None,
    ) -> AuthOutcome:
        """Request a login code, recovering once from a provider restart."""
        try:
            normalized = validate_phone_number(phone_number)
        except AuthInputError as exc:
            return _input_rejected(exc)

        logger.info("Sending login code to %s", mask_phone_number(normalized))
        try:
            token, phone_code_hash = await self._send_code_attempt(
                session_token=session_token,
                phone_number=normalized,
                force_new=False,
            )
        except ProviderFailure as failure:
            if failure.kind is ProviderFailureKind.RESTART_REQUIRED:
                return await self._recover_send_code(phone_number=normalized)
            if failure.kind is ProviderFailureKind.RATE_LIMITED:
                return _rate_limited(failure)
            logger.warning("Send code failed: %s", failure.message)
            return _failed(failure.message or _SEND_CODE_FAILED_DETAIL)
        except Exception as exc:
            logger.exception("Send code failed")
            return _failed(_error_text(exc, _SEND_CODE_FAILED_DETAIL))

        return AuthOutcome(
            body={
                "success": True,
                "phoneCodeHash": phone_code_hash,
                "message": _CODE_SENT_MESSAGE,
            },
            session_token=token,
            state=AuthState.CODE_SENT,
        )

    async def verify_code(  # noqa: PLR0911
        self,
        session_token: str | None,
        *,
        phone_number: str | None,
        phone_code_hash: str | None,
        phone_code: str | None,
        password: str | None = None,
    ) -> AuthOutcome:
        """Sign in with a login code; surface the second-factor requirement."""
        try:
            attempt = validate_auth_attempt(
                phone_number=phone_number,
                phone_code_hash=phone_code_hash,
                phone_code=phone_code,
                password=password,
            )
        except AuthInputError as exc:
            return _input_rejected(exc)

        try:
            async with self._pool.lease(session_token) as client:
                if await client.is_user_authorized():
                    return AuthOutcome(
                        body={"success": True, "message": "Already authenticated"},
                        session_token=client.save_session(),
                        state=AuthState.AUTHORIZED,
                    )

                try:
                    _ = await client.sign_in(
                        phone_number=attempt.phone_number,
                        phone_code_hash=attempt.phone_code_hash,
                        phone_code=attempt.phone_code,
                    )
                except ProviderFailure as failure:
                    if failure.kind is not ProviderFailureKind.PASSWORD_REQUIRED:
                        raise
                    if attempt.password is None:
                        logger.info("Second factor required to complete sign-in")
                        return AuthOutcome(
                            body={
                                "success": False,
                                "passwordRequired": True,
                                "message": _PASSWORD_REQUIRED_MESSAGE,
                            },
                            session_token=client.save_session(),
                            state=AuthState.AWAITING_PASSWORD,
                        )
                    # TODO: complete SRP verification via account.getPassword
                    # and auth.checkPassword.
                    return AuthOutcome(
                        status_code=HTTPStatus.NOT_IMPLEMENTED,
                        body={
                            "success": False,
                            "notImplemented": True,
                            "error": _PASSWORD_NOT_IMPLEMENTED_DETAIL,
                        },
                        state=AuthState.AWAITING_PASSWORD,
                    )

                await self._pool.adopt(session_token, client)
                logger.info(
                    "Signed in %s",
                    mask_phone_number(attempt.phone_number),
                )
                return AuthOutcome(
                    body={"success": True, "message": "Authentication successful"},
                    session_token=client.save_session(),
                    state=AuthState.AUTHORIZED,
                )
        except ProviderFailure as failure:
            return _verify_failure(failure)
        except Exception as exc:
            logger.exception("Verify code failed")
            return _failed(_error_text(exc, _VERIFY_CODE_FAILED_DETAIL))

    async def logout(self, session_token: str | None) -> AuthOutcome:
        """Log out, drop the pooled client and always tell the caller to clear."""
        if not session_token:
            return AuthOutcome(
                body={"success": True, "message": "No active session to logout from"},
                clear_session=True,
                state=AuthState.LOGGED_OUT,
            )

        try:
            async with self._pool.lease(session_token) as client:
                if client.is_connected():
                    await _log_out_quietly(client)
        except Exception as exc:
            logger.exception(
                "Error during logout for session %s",
                describe_session_token(session_token),
            )
            _ = await self._pool.evict_token(session_token)
            return AuthOutcome(
                status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
                body={
                    "success": False,
                    "error": _error_text(exc, _LOGOUT_FAILED_DETAIL),
                },
                clear_session=True,
                state=AuthState.LOGGED_OUT,
            )

        _ = await self._pool.evict_token(session_token)
        return AuthOutcome(
            body={"success": True, "message": "Successfully logged out"},
            clear_session=True,
            state=AuthState.LOGGED_OUT,
        )

    async def _send_code_attempt(
        self,
        *,
        session_token: str | None,
        phone_number: str,
        force_new: bool,
    ) -> tuple[str | None, str]:
        key_material = None if force_new else session_token
        async with self._pool.lease(key_material, force_new=force_new) as client:
            if not force_new and await client.is_user_authorized():
                # Preserved behavior: a stale authorized client must not skip
                # the fresh login, even if another session shares it.
                logger.warning(
                    "Client already authorized, logging out to start fresh auth flow",
                )
                await _log_out_quietly(client)
            credentials = self._credentials_provider()
            phone_code_hash = await client.send_code(
                phone_number=phone_number,
                credentials=credentials,
            )
            return client.save_session(), phone_code_hash

    async def _recover_send_code(self, *, phone_number: str) -> AuthOutcome:
        logger.info("AUTH_RESTART detected, retrying with a fresh client")
        try:
            token, phone_code_hash = await self._send_code_attempt(
                session_token=None,
                phone_number=phone_number,
                force_new=True,
            )
        except Exception:
            logger.exception("AUTH_RESTART recovery failed")
            return AuthOutcome(
                status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
                body={
                    "success": False,
                    "authRestart": True,
                    "error": _AUTH_RESTART_DETAIL,
                },
            )
        return AuthOutcome(
            body={
                "success": True,
                "phoneCodeHash": phone_code_hash,
                "message": _CODE_SENT_AFTER_RESTART_MESSAGE,
            },
            session_token=token,
            clear_session=True,
            state=AuthState.CODE_SENT,
        )


async def _log_out_quietly(client: ProtocolClient) -> None:
    """Invoke provider logout, logging and ignoring failures."""
    try:
        await client.log_out()
    except Exception:
        logger.warning("Error during Telegram API logout (continuing)", exc_info=True)


def _input_rejected(error: AuthInputError) -> AuthOutcome:
    body: dict[str, object] = {"success": False, "error": str(error)}
    if error.code_invalid:
        body["codeInvalid"] = True
    return AuthOutcome(status_code=HTTPStatus.BAD_REQUEST, body=body)


def _rate_limited(failure: ProviderFailure) -> AuthOutcome:
    wait_time = failure.wait_seconds
    if wait_time is not None:
        detail = (
            f"Too many attempts. Please wait {wait_time} seconds "
            "before trying again."
        )
    else:
        detail = "Too many attempts. Please wait before trying again."
    logger.warning("Telegram rate limit hit (wait=%s)", wait_time)
    return AuthOutcome(
        status_code=HTTPStatus.TOO_MANY_REQUESTS,
        body={
            "success": False,
            "floodWait": True,
            "waitTime": wait_time,
            "error": detail,
        },
    )


def _verify_failure(failure: ProviderFailure) -> AuthOutcome:
    if failure.kind is ProviderFailureKind.CODE_EXPIRED:
        return AuthOutcome(
            status_code=HTTPStatus.BAD_REQUEST,
            body={"success": False, "codeExpired": True, "error": _CODE_EXPIRED_DETAIL},
        )
    if failure.kind is ProviderFailureKind.CODE_INVALID:
        return AuthOutcome(
            status_code=HTTPStatus.BAD_REQUEST,
            body={"success": False, "codeInvalid": True, "error": _CODE_INVALID_DETAIL},
        )
    if failure.kind is ProviderFailureKind.RATE_LIMITED:
        return _rate_limited(failure)
    logger.warning("Verify code failed: %s", failure.message)
    return _failed(failure.message or _VERIFY_CODE_FAILED_DETAIL)


def _failed(detail: str) -> AuthOutcome:
    return AuthOutcome(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        body={"success": False, "error": detail},
    )


def _error_text(error: BaseException, fallback: str) -> str:
    text = str(error)
    return text or fallback
