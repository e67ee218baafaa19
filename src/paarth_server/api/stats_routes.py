"""
Statistics Routes

Read-only snapshots of the knowledge base and live session state.
"""

import time
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from .models import ServerStats, SessionsResponse, StatsResponse
from .dependencies import get_services
from ..container import Services

router = APIRouter(prefix="/api/krishna", tags=["stats"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
) -> StatsResponse:
    started_at = getattr(request.app.state, "started_at", time.monotonic())

    return StatsResponse(
        knowledge_base=services.index.stats(),
        server=ServerStats(
            active_sessions=len(services.registry),
            total_conversations=services.registry.total_turns(),
            active_requests=services.coordinator.active_count(),
            uptime=max(0.0, time.monotonic() - started_at),
        ),
    )


@router.get("/sessions", response_model=SessionsResponse)
async def list_sessions(
    services: Annotated[Services, Depends(get_services)],
) -> SessionsResponse:
    return SessionsResponse(sessions=services.registry.list_sessions())
