"""FastAPI application factory and lifespan management."""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, cast, runtime_checkable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import PlainTextResponse, Response
from typing_extensions import override

from tsg.api.routes.health import router as health_router
from tsg.api.routes.telegram_auth import invalid_auth_payload_handler
from tsg.api.routes.telegram_auth import router as telegram_auth_router
from tsg.api.session_transport import EXPOSED_SESSION_HEADERS, SESSION_HEADER
from tsg.auth import TelegramAuthOrchestrator
from tsg.config.logging import correlation_id, init_logging
from tsg.config.settings import load_settings
from tsg.telegram import TelegramClientPool

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from starlette.datastructures import Headers
    from starlette.types import Receive, Scope, Send

REQUEST_ID_HEADER = "x-request-id"

logger = logging.getLogger(__name__)


class StartupDependencyError(RuntimeError):
    """Raised when required startup dependencies are missing."""

    @classmethod
    def missing_container(cls) -> StartupDependencyError:
        """Build error for absent dependency container on app state."""
        message = "Missing startup dependency container: app.state.dependencies."
        return cls(message)

    @classmethod
    def missing_named_dependency(cls, name: str) -> StartupDependencyError:
        """Build error for absent named dependency in the container."""
        message = f"Missing startup dependency: {name}."
        return cls(message)


class StartupDependencyTypeError(TypeError):
    """Raised when a dependency lacks startup/shutdown lifecycle hooks."""

    @classmethod
    def invalid_dependency(cls, name: str) -> StartupDependencyTypeError:
        """Build error for dependency objects with wrong runtime type."""
        message = (
            f"Invalid startup dependency '{name}': expected startup/shutdown hooks."
        )
        return cls(message)


@runtime_checkable
class LifecycleDependency(Protocol):
    """Protocol for startup/shutdown-managed app dependencies."""

    async def startup(self) -> None:
        """Run dependency startup actions."""

    async def shutdown(self) -> None:
        """Run dependency shutdown actions."""


class AllowlistCORSMiddleware(CORSMiddleware):
    """CORS middleware that emits no CORS headers for blocked origins."""

    @override
    def preflight_response(self, request_headers: Headers) -> Response:
        """Reject non-allowlisted preflight requests without CORS headers."""
        origin = request_headers.get("origin")
        if origin is not None and not self.is_allowed_origin(origin=origin):
            return PlainTextResponse("Disallowed CORS origin", status_code=400)
        return super().preflight_response(request_headers)

    @override
    async def simple_response(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        request_headers: Headers,
    ) -> None:
        """Pass non-allowlisted simple requests through without CORS headers."""
        origin = request_headers.get("origin")
        if origin is not None and not self.is_allowed_origin(origin=origin):
            await self.app(scope, receive, send)
            return
        await super().simple_response(scope, receive, send, request_headers)


@dataclass(slots=True)
class StartupDependencies:
    """Container for dependency lifecycle hooks managed by app lifespan."""

    client_pool: LifecycleDependency


def _resolve_startup_dependencies(app: FastAPI) -> StartupDependencies:
    """Resolve and validate dependency hooks required for app startup."""
    raw_state = cast("object", app.state)
    raw_dependencies = getattr(raw_state, "dependencies", None)
    if raw_dependencies is None:
        raise StartupDependencyError.missing_container()

    dependency_container = cast("object", raw_dependencies)
    for name in ("client_pool",):
        dependency = getattr(dependency_container, name, None)
        if dependency is None:
            raise StartupDependencyError.missing_named_dependency(name)
        if not isinstance(dependency, LifecycleDependency):
            raise StartupDependencyTypeError.invalid_dependency(name)

    return cast("StartupDependencies", raw_dependencies)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown events."""
    dependencies = _resolve_startup_dependencies(app)
    settings = load_settings()
    started_dependencies: list[LifecycleDependency] = []

    logger.info(
        "Starting TSG (bind=%s, pool_freshness=%ss)",
        settings.bind,
        settings.pool_freshness_seconds,
    )
    try:
        for dependency in (dependencies.client_pool,):
            await dependency.startup()
            started_dependencies.append(dependency)
        yield
    finally:
        for dependency in reversed(started_dependencies):
            await dependency.shutdown()
        logger.info("Shutting down TSG")


def create_app(*, client_pool: TelegramClientPool | None = None) -> FastAPI:
    """Create and configure a new FastAPI application instance.

    The client pool is owned by the app: built once here (or injected by
    tests), shared by every request through `app.state`, and drained by the
    lifespan shutdown hook.
    """
    settings = load_settings()
    init_logging(settings.log_level)

    app = FastAPI(
        title="TSG",
        description="Telegram Session Gateway",
        version="0.1.0",
        lifespan=lifespan,
    )

    pool = (
        TelegramClientPool(freshness_seconds=settings.pool_freshness_seconds)
        if client_pool is None
        else client_pool
    )
    app.state.dependencies = StartupDependencies(client_pool=pool)
    app.state.client_pool = pool
    app.state.auth_orchestrator = TelegramAuthOrchestrator(pool=pool)

    _configure_cors(app=app, allow_origins=settings.cors_allow_origins)
    app.middleware("http")(_bind_correlation_id)
    app.add_exception_handler(RequestValidationError, invalid_auth_payload_handler)
    app.include_router(health_router)
    app.include_router(telegram_auth_router)

    return app


def _configure_cors(*, app: FastAPI, allow_origins: tuple[str, ...]) -> None:
    """Attach default-deny CORS policy exposing the session transport headers."""
    if not allow_origins:
        return

    app.add_middleware(
        AllowlistCORSMiddleware,
        allow_origins=list(allow_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["content-type", SESSION_HEADER, REQUEST_ID_HEADER],
        expose_headers=list(EXPOSED_SESSION_HEADERS),
        allow_credentials=True,
    )


async def _bind_correlation_id(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Tag every log record emitted while serving a request with its id."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or secrets.token_hex(8)
    token = correlation_id.set(request_id)
    try:
        response = await call_next(request)
    finally:
        correlation_id.reset(token)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response
