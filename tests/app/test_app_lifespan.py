"""Tests for the application factory and pool lifespan hooks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING

import pytest
from fastapi.testclient import TestClient

from tsg.api.app import StartupDependencies, create_app
from tsg.auth import TelegramAuthOrchestrator

if TYPE_CHECKING:
    from _pytest.logging import LogCaptureFixture


@dataclass(slots=True)
class RecordingDependency:
    """Lifecycle hook recorder for startup/shutdown call assertions."""

    startup_calls: int = 0
    shutdown_calls: int = 0

    async def startup(self) -> None:
        """Record startup invocation."""
        self.startup_calls += 1

    async def shutdown(self) -> None:
        """Record shutdown invocation."""
        self.shutdown_calls += 1


@dataclass(slots=True)
class MissingHooks:
    """Object lacking lifecycle hooks."""

    name: str = "not-a-pool"


def test_app_lifespan_runs_pool_hooks_once(caplog: LogCaptureFixture) -> None:
    """Ensure startup/shutdown hooks and logs run once per lifecycle."""
    caplog.set_level(logging.INFO)
    app = create_app()
    pool = RecordingDependency()
    app.state.dependencies = StartupDependencies(client_pool=pool)

    with TestClient(app) as client:
        response = client.get("/health")
        if response.status_code != HTTPStatus.OK:
            raise AssertionError

    if pool.startup_calls != 1 or pool.shutdown_calls != 1:
        raise AssertionError
    messages = [record.getMessage() for record in caplog.records]
    if not any("Starting TSG" in message for message in messages):
        raise AssertionError
    if not any("Shutting down TSG" in message for message in messages):
        raise AssertionError


def test_create_app_wires_shared_orchestrator() -> None:
    """Ensure the factory sets metadata and one app-scoped orchestrator."""
    app = create_app()

    if app.title != "TSG" or app.version != "0.1.0":
        raise AssertionError
    if not isinstance(app.state.auth_orchestrator, TelegramAuthOrchestrator):
        raise AssertionError
    if logging.getLogger().level != logging.INFO:
        raise AssertionError


def test_lifespan_fails_fast_on_missing_dependency_container() -> None:
    """Ensure missing app.state.dependencies fails startup with clear error."""
    app = create_app()
    del app.state.dependencies

    with (
        pytest.raises(
            RuntimeError,
            match=r"Missing startup dependency container: app\.state\.dependencies\.",
        ),
        TestClient(app),
    ):
        pass


def test_lifespan_fails_fast_on_missing_pool() -> None:
    """Ensure a container without the pool names it in the error."""
    app = create_app()
    app.state.dependencies = object()

    with (
        pytest.raises(RuntimeError, match=r"Missing startup dependency: client_pool\."),
        TestClient(app),
    ):
        pass


def test_lifespan_rejects_pool_without_hooks() -> None:
    """Ensure a pool lacking startup/shutdown is a type error."""
    app = create_app()
    app.state.dependencies = StartupDependencies(
        client_pool=MissingHooks(),  # type: ignore[arg-type]
    )

    with (
        pytest.raises(TypeError, match=r"Invalid startup dependency 'client_pool'"),
        TestClient(app),
    ):
        pass
