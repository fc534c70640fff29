"""Tests for the Telegram login state machine over a mocked client pool."""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING

import pytest
from telethon.errors import (  # pyright: ignore[reportMissingTypeStubs]
    AuthRestartError,
    FloodWaitError,
    PhoneCodeExpiredError,
    PhoneCodeInvalidError,
    PhoneNumberBannedError,
    SessionPasswordNeededError,
)

from tests.mocks.mock_telegram_client import DEFAULT_PHONE_CODE_HASH
from tsg.auth import AuthState, TelegramAuthOrchestrator

if TYPE_CHECKING:
    from tests.mocks.mock_telegram_client import MockClientFactory
    from tsg.telegram import TelegramClientPool

PHONE_NUMBER = "+15551234567"


@pytest.fixture
def orchestrator(client_pool: TelegramClientPool) -> TelegramAuthOrchestrator:
    """Provide an orchestrator bound to the mocked pool."""
    return TelegramAuthOrchestrator(pool=client_pool)


async def _send_code(orchestrator: TelegramAuthOrchestrator) -> str:
    outcome = await orchestrator.send_code(None, PHONE_NUMBER)
    if outcome.session_token is None:
        raise AssertionError
    return outcome.session_token


@pytest.mark.parametrize("phone_number", ["15551234567", "+1555abc4567", "", None])
async def test_send_code_rejects_malformed_phone_without_network(
    orchestrator: TelegramAuthOrchestrator,
    client_pool: TelegramClientPool,
    mock_client_factory: MockClientFactory,
    phone_number: str | None,
) -> None:
    """Ensure validation failures never touch the pool or the provider."""
    outcome = await orchestrator.send_code(None, phone_number)

    if outcome.status_code != HTTPStatus.BAD_REQUEST:
        raise AssertionError
    if outcome.body.get("success") is not False:
        raise AssertionError
    if mock_client_factory.calls != 0 or client_pool.entries:
        raise AssertionError


async def test_send_code_returns_hash_and_rotated_session(
    orchestrator: TelegramAuthOrchestrator,
    client_pool: TelegramClientPool,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure a fresh flow sends a code and emits the new session token."""
    outcome = await orchestrator.send_code(None, " +1 555 123 4567 ")

    if outcome.status_code != HTTPStatus.OK:
        raise AssertionError
    if outcome.body.get("phoneCodeHash") != DEFAULT_PHONE_CODE_HASH:
        raise AssertionError
    if outcome.state is not AuthState.CODE_SENT:
        raise AssertionError
    mock = mock_client_factory.created[0]
    if outcome.session_token != mock.session.value:
        raise AssertionError
    if client_pool.get_entry(None) is None:
        raise AssertionError
    request = mock.requests[-1]
    if getattr(request, "phone_number", None) != PHONE_NUMBER:
        raise AssertionError


async def test_send_code_logs_out_already_authorized_client(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure a stale authorized client is logged out before a new login."""
    mock = mock_client_factory.prepare()
    mock.authorized = True

    outcome = await orchestrator.send_code(None, PHONE_NUMBER)

    if outcome.status_code != HTTPStatus.OK:
        raise AssertionError
    if mock.call_counts.get("LogOutRequest") != 1:
        raise AssertionError
    if mock.call_counts.get("SendCodeRequest") != 1:
        raise AssertionError


async def test_send_code_logs_out_pooled_client_only_once(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure a reused anonymous client is seen as signed out after logout."""
    mock = mock_client_factory.prepare()
    mock.authorized = True

    first = await orchestrator.send_code(None, PHONE_NUMBER)
    second = await orchestrator.send_code(None, PHONE_NUMBER)

    if first.status_code != HTTPStatus.OK or second.status_code != HTTPStatus.OK:
        raise AssertionError
    if mock_client_factory.calls != 1:
        raise AssertionError
    if mock.call_counts.get("LogOutRequest") != 1:
        raise AssertionError
    if mock.call_counts.get("SendCodeRequest") != 2:  # noqa: PLR2004
        raise AssertionError


async def test_send_code_retries_once_after_auth_restart(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure AUTH_RESTART triggers one retry on a forced-new client."""
    first = mock_client_factory.prepare()
    first.responses["SendCodeRequest"] = AuthRestartError(request=None)
    second = mock_client_factory.prepare()

    outcome = await orchestrator.send_code(None, PHONE_NUMBER)

    if outcome.status_code != HTTPStatus.OK:
        raise AssertionError
    if outcome.body.get("message") != "Code sent successfully (after auth restart)":
        raise AssertionError
    if not outcome.clear_session:
        raise AssertionError
    if outcome.session_token != second.session.value:
        raise AssertionError
    if first.is_connected():
        raise AssertionError
    if mock_client_factory.calls != 2:  # noqa: PLR2004
        raise AssertionError


async def test_send_code_surfaces_second_auth_restart(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure a failed retry reports authRestart and emits no token."""
    for _ in range(2):
        mock = mock_client_factory.prepare()
        mock.responses["SendCodeRequest"] = AuthRestartError(request=None)

    outcome = await orchestrator.send_code(None, PHONE_NUMBER)

    if outcome.status_code != HTTPStatus.INTERNAL_SERVER_ERROR:
        raise AssertionError
    if outcome.body.get("authRestart") is not True:
        raise AssertionError
    if outcome.session_token is not None or outcome.clear_session:
        raise AssertionError
    if mock_client_factory.calls != 2:  # noqa: PLR2004
        raise AssertionError


async def test_send_code_reports_flood_wait(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure rate limits surface as 429 with the provider wait time."""
    error = FloodWaitError(None)
    error.seconds = 30
    mock = mock_client_factory.prepare()
    mock.responses["SendCodeRequest"] = error

    outcome = await orchestrator.send_code(None, PHONE_NUMBER)

    if outcome.status_code != HTTPStatus.TOO_MANY_REQUESTS:
        raise AssertionError
    if outcome.body.get("floodWait") is not True:
        raise AssertionError
    if outcome.body.get("waitTime") != 30:  # noqa: PLR2004
        raise AssertionError
    if mock_client_factory.calls != 1:
        raise AssertionError


async def test_send_code_reports_unexpected_provider_error(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure unrecognized provider errors become a 500 with their message."""
    mock = mock_client_factory.prepare()
    mock.responses["SendCodeRequest"] = PhoneNumberBannedError(request=None)

    outcome = await orchestrator.send_code(None, PHONE_NUMBER)

    if outcome.status_code != HTTPStatus.INTERNAL_SERVER_ERROR:
        raise AssertionError
    error_text = outcome.body.get("error")
    if not isinstance(error_text, str) or "banned" not in error_text.lower():
        raise AssertionError


async def test_verify_code_signs_in_and_pools_client(
    orchestrator: TelegramAuthOrchestrator,
    client_pool: TelegramClientPool,
) -> None:
    """Ensure a correct code authorizes the session and pools its client."""
    token = await _send_code(orchestrator)

    outcome = await orchestrator.verify_code(
        token,
        phone_number=PHONE_NUMBER,
        phone_code_hash=DEFAULT_PHONE_CODE_HASH,
        phone_code="12345",
    )

    if outcome.status_code != HTTPStatus.OK:
        raise AssertionError
    if outcome.body != {"success": True, "message": "Authentication successful"}:
        raise AssertionError
    if outcome.state is not AuthState.AUTHORIZED:
        raise AssertionError
    if outcome.session_token != token:
        raise AssertionError
    entry = client_pool.get_entry(token)
    if entry is None or not entry.client.is_connected():
        raise AssertionError


async def test_verify_code_when_already_authorized_skips_sign_in(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure a second verify on a signed-in session is a no-op success."""
    token = await _send_code(orchestrator)
    mock_client_factory.authorized_sessions.add(token)

    outcome = await orchestrator.verify_code(
        token,
        phone_number=PHONE_NUMBER,
        phone_code_hash=DEFAULT_PHONE_CODE_HASH,
        phone_code="12345",
    )

    if outcome.body.get("message") != "Already authenticated":
        raise AssertionError
    if any(m.call_counts.get("SignInRequest") for m in mock_client_factory.created):
        raise AssertionError


async def test_verify_code_requests_second_factor(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure SESSION_PASSWORD_NEEDED without a password is a normal 200 state."""
    token = await _send_code(orchestrator)
    mock = mock_client_factory.prepare()
    mock.responses["SignInRequest"] = SessionPasswordNeededError(request=None)

    outcome = await orchestrator.verify_code(
        token,
        phone_number=PHONE_NUMBER,
        phone_code_hash=DEFAULT_PHONE_CODE_HASH,
        phone_code="12345",
    )

    if outcome.status_code != HTTPStatus.OK:
        raise AssertionError
    if outcome.body.get("passwordRequired") is not True:
        raise AssertionError
    if outcome.state is not AuthState.AWAITING_PASSWORD:
        raise AssertionError
    if outcome.session_token != token:
        raise AssertionError


async def test_verify_code_with_password_is_not_implemented(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure the second-factor completion gap is an explicit 501."""
    token = await _send_code(orchestrator)
    mock = mock_client_factory.prepare()
    mock.responses["SignInRequest"] = SessionPasswordNeededError(request=None)

    outcome = await orchestrator.verify_code(
        token,
        phone_number=PHONE_NUMBER,
        phone_code_hash=DEFAULT_PHONE_CODE_HASH,
        phone_code="12345",
        password="correct horse",  # noqa: S106
    )

    if outcome.status_code != HTTPStatus.NOT_IMPLEMENTED:
        raise AssertionError
    if outcome.body.get("notImplemented") is not True:
        raise AssertionError


@pytest.mark.parametrize(
    ("error", "flag"),
    [
        (PhoneCodeExpiredError(request=None), "codeExpired"),
        (PhoneCodeInvalidError(request=None), "codeInvalid"),
    ],
)
async def test_verify_code_rejects_bad_codes_without_state_change(
    orchestrator: TelegramAuthOrchestrator,
    client_pool: TelegramClientPool,
    mock_client_factory: MockClientFactory,
    error: Exception,
    flag: str,
) -> None:
    """Ensure expired or invalid codes are 400s and nothing gets pooled."""
    token = await _send_code(orchestrator)
    mock = mock_client_factory.prepare()
    mock.responses["SignInRequest"] = error

    outcome = await orchestrator.verify_code(
        token,
        phone_number=PHONE_NUMBER,
        phone_code_hash=DEFAULT_PHONE_CODE_HASH,
        phone_code="12345",
    )

    if outcome.status_code != HTTPStatus.BAD_REQUEST:
        raise AssertionError
    if outcome.body.get(flag) is not True:
        raise AssertionError
    if outcome.session_token is not None or outcome.clear_session:
        raise AssertionError
    if client_pool.get_entry(token) is not None:
        raise AssertionError
    if mock.is_connected():
        raise AssertionError


async def test_verify_code_rejects_non_digit_code_before_network(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure malformed codes are flagged invalid without a provider call."""
    outcome = await orchestrator.verify_code(
        "some-token",
        phone_number=PHONE_NUMBER,
        phone_code_hash="hash",
        phone_code="12ab",
    )

    if outcome.status_code != HTTPStatus.BAD_REQUEST:
        raise AssertionError
    if outcome.body.get("codeInvalid") is not True:
        raise AssertionError
    if mock_client_factory.calls != 0:
        raise AssertionError


async def test_logout_without_session_is_idempotent(
    orchestrator: TelegramAuthOrchestrator,
) -> None:
    """Ensure logout with no session succeeds and still signals clear, twice."""
    for _ in range(2):
        outcome = await orchestrator.logout(None)
        if outcome.body.get("success") is not True:
            raise AssertionError
        if not outcome.clear_session:
            raise AssertionError


async def test_logout_after_sign_in_evicts_pool_entry(
    orchestrator: TelegramAuthOrchestrator,
    client_pool: TelegramClientPool,
) -> None:
    """Ensure logout calls the provider, evicts the entry and clears, repeatably."""
    token = await _send_code(orchestrator)
    _ = await orchestrator.verify_code(
        token,
        phone_number=PHONE_NUMBER,
        phone_code_hash=DEFAULT_PHONE_CODE_HASH,
        phone_code="12345",
    )
    entry = client_pool.get_entry(token)
    if entry is None:
        raise AssertionError

    first = await orchestrator.logout(token)
    second = await orchestrator.logout(token)

    for outcome in (first, second):
        if outcome.status_code != HTTPStatus.OK:
            raise AssertionError
        if not outcome.clear_session:
            raise AssertionError
    if client_pool.get_entry(token) is not None:
        raise AssertionError
    if entry.client.is_connected() or await entry.client.is_user_authorized():
        raise AssertionError


async def test_logout_connect_failure_still_clears(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure a failing logout reports 500 but still tells the caller to clear."""
    mock = mock_client_factory.prepare()
    mock.connect_error = ConnectionError("network unreachable")

    outcome = await orchestrator.logout("stale-token")

    if outcome.status_code != HTTPStatus.INTERNAL_SERVER_ERROR:
        raise AssertionError
    if not outcome.clear_session:
        raise AssertionError


async def test_check_session_without_token_signals_clear(
    orchestrator: TelegramAuthOrchestrator,
) -> None:
    """Ensure a missing token is reported as not connected."""
    outcome = await orchestrator.check_session(None)

    if outcome.body.get("isConnected") is not False:
        raise AssertionError
    if not outcome.clear_session:
        raise AssertionError


async def test_check_session_reports_authorized_session(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure a signed-in token is reported connected and re-emitted."""
    token = await _send_code(orchestrator)
    mock_client_factory.authorized_sessions.add(token)

    outcome = await orchestrator.check_session(token)

    if outcome.body.get("isConnected") is not True:
        raise AssertionError
    if outcome.session_token != token:
        raise AssertionError


async def test_check_session_reports_unauthorized_session(
    orchestrator: TelegramAuthOrchestrator,
) -> None:
    """Ensure a pre-auth token is connected but not authorized."""
    token = await _send_code(orchestrator)

    outcome = await orchestrator.check_session(token)

    if outcome.body.get("message") != "Session exists but not authorized":
        raise AssertionError
    if outcome.session_token is not None:
        raise AssertionError


async def test_check_session_errors_are_reported_not_raised(
    orchestrator: TelegramAuthOrchestrator,
    mock_client_factory: MockClientFactory,
) -> None:
    """Ensure connect failures come back as a well-formed 200 body."""
    mock = mock_client_factory.prepare()
    mock.connect_error = ConnectionError("network unreachable")

    outcome = await orchestrator.check_session("some-token")

    if outcome.status_code != HTTPStatus.OK:
        raise AssertionError
    if outcome.body.get("isConnected") is not False:
        raise AssertionError
    if outcome.body.get("error") != "network unreachable":
        raise AssertionError
