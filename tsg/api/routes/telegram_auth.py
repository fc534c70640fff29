"""Consolidated Telegram auth endpoint: session check, send-code, verify, logout."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, cast

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from tsg.api.session_transport import (
    TELEGRAM_AUTH_PATH,
    apply_session_signal,
    read_session_token,
)
from tsg.auth import TelegramAuthOrchestrator

if TYPE_CHECKING:
    from fastapi.exceptions import RequestValidationError

    from tsg.auth import AuthOutcome

router = APIRouter()

logger = logging.getLogger(__name__)

ACTION_SEND_CODE = "send-code"
ACTION_VERIFY_CODE = "verify-code"
ACTION_LOGOUT = "logout"

_INVALID_ACTION_DETAIL = "Invalid action"
_INVALID_PAYLOAD_DETAIL = "Invalid request payload"


class TelegramAuthActionRequest(BaseModel):
    """Payload for POST actions; per-action fields are validated downstream."""

    model_config = ConfigDict(populate_by_name=True)

    action: str | None = None
    phone_number: str | None = Field(default=None, alias="phoneNumber")
    phone_code_hash: str | None = Field(default=None, alias="phoneCodeHash")
    phone_code: str | None = Field(default=None, alias="phoneCode")
    password: str | None = None


@router.get(TELEGRAM_AUTH_PATH, tags=["auth"])
async def check_telegram_session(request: Request) -> JSONResponse:
    """Report whether the presented session is connected and authorized."""
    orchestrator = _resolve_orchestrator(request)
    outcome = await orchestrator.check_session(read_session_token(request.headers))
    return _render_outcome(outcome)


@router.post(TELEGRAM_AUTH_PATH, tags=["auth"])
async def run_telegram_auth_action(
    payload: TelegramAuthActionRequest,
    request: Request,
) -> JSONResponse:
    """Dispatch one login-flow action against the caller's session."""
    orchestrator = _resolve_orchestrator(request)
    session_token = read_session_token(request.headers)

    if payload.action == ACTION_SEND_CODE:
        outcome = await orchestrator.send_code(session_token, payload.phone_number)
    elif payload.action == ACTION_VERIFY_CODE:
        outcome = await orchestrator.verify_code(
            session_token,
            phone_number=payload.phone_number,
            phone_code_hash=payload.phone_code_hash,
            phone_code=payload.phone_code,
            password=payload.password,
        )
    elif payload.action == ACTION_LOGOUT:
        outcome = await orchestrator.logout(session_token)
    else:
        logger.info("Rejected unknown auth action %r", payload.action)
        return JSONResponse(
            {"success": False, "error": _INVALID_ACTION_DETAIL},
            status_code=HTTPStatus.BAD_REQUEST,
        )
    return _render_outcome(outcome)


async def invalid_auth_payload_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Answer malformed request bodies with the endpoint's 400 JSON shape."""
    errors = cast("RequestValidationError", exc).errors()
    logger.info(
        "Rejected malformed payload for %s (errors=%s)",
        request.url.path,
        len(errors),
    )
    return JSONResponse(
        {"success": False, "error": _INVALID_PAYLOAD_DETAIL},
        status_code=HTTPStatus.BAD_REQUEST,
    )


def _render_outcome(outcome: AuthOutcome) -> JSONResponse:
    """Serialize an orchestrator outcome and emit its session signal."""
    response = JSONResponse(outcome.body, status_code=int(outcome.status_code))
    apply_session_signal(
        response,
        session_token=outcome.session_token,
        clear_session=outcome.clear_session,
    )
    return response


def _resolve_orchestrator(request: Request) -> TelegramAuthOrchestrator:
    """Load the app-scoped orchestrator with explicit failure mode."""
    state_obj = _resolve_app_state(request)
    orchestrator_obj = getattr(state_obj, "auth_orchestrator", None)
    if not isinstance(orchestrator_obj, TelegramAuthOrchestrator):
        message = "Missing auth orchestrator: app.state.auth_orchestrator."
        raise TypeError(message)
    return orchestrator_obj


def _resolve_app_state(request: Request) -> object:
    """Resolve request app state with explicit object typing for static analysis."""
    request_obj = cast("object", request)
    app_obj = cast("object", getattr(request_obj, "app", None))
    return cast("object", getattr(app_obj, "state", None))
