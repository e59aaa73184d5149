"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from task_bidder_service.core.state import get_app_state
from task_bidder_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return task and connection counts."""
    state = get_app_state()
    total_tasks = 0
    tasks_by_status: dict[str, int] = {}
    if state.task_lifecycle is not None:
        stats = await state.task_lifecycle.get_stats()
        total_tasks = stats["total_tasks"]
        tasks_by_status = stats["tasks_by_status"]
    connected_clients = 0
    if state.notifier is not None:
        connected_clients = await state.notifier.connected_count()
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_tasks=total_tasks,
        tasks_by_status=tasks_by_status,
        connected_clients=connected_clients,
    )
