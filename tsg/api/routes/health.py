"""Health check endpoint reporting liveness and client pool occupancy."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal, cast

from fastapi import APIRouter, Request
from pydantic import BaseModel

from tsg.telegram import TelegramClientPool

router = APIRouter()


class HealthResponse(BaseModel):
    """Stable response model for the unauthenticated health endpoint."""

    status: Literal["ok"]
    timestamp: datetime
    pooled_clients: int


@router.get("/health", tags=["monitoring"], response_model=HealthResponse)
async def get_health(request: Request) -> HealthResponse:
    """Return health status, current timestamp and live pooled client count."""
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(tz=UTC),
        pooled_clients=_count_pooled_clients(request),
    )


def _count_pooled_clients(request: Request) -> int:
    request_obj = cast("object", request)
    app_obj = cast("object", getattr(request_obj, "app", None))
    state_obj = cast("object", getattr(app_obj, "state", None))
    pool_obj = getattr(state_obj, "client_pool", None)
    if not isinstance(pool_obj, TelegramClientPool):
        return 0
    return len(pool_obj.entries)
