"""Task creation, query and lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.core.state import get_app_state
from task_bidder_service.routers.validation import parse_json_body, require_string, require_user
from task_bidder_service.schemas import task_to_response

if TYPE_CHECKING:
    from task_bidder_service.services.task_lifecycle import TaskLifecycleManager

router = APIRouter()


def _task_lifecycle() -> TaskLifecycleManager:
    state = get_app_state()
    if state.task_lifecycle is None:
        msg = "TaskLifecycleManager not initialized"
        raise RuntimeError(msg)
    return state.task_lifecycle


# ---------------------------------------------------------------------------
# POST /api/tasks: create task
# ---------------------------------------------------------------------------


@router.post("/api/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a new open task owned by the caller."""
    user = await require_user(request)
    data = parse_json_body(await request.body())

    task = await _task_lifecycle().create_task(user.user_id, data)
    return JSONResponse(status_code=201, content=task_to_response(task).model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Fixed collection paths (MUST be before GET /api/tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/api/tasks/my")
async def list_my_tasks(request: Request) -> dict[str, Any]:
    """Tasks the caller posted, newest first."""
    user = await require_user(request)
    tasks = await _task_lifecycle().list_customer_tasks(user.user_id)
    return {"tasks": [task_to_response(task).model_dump(mode="json") for task in tasks]}


@router.get("/api/tasks/assigned")
async def list_assigned_tasks(request: Request) -> dict[str, Any]:
    """Tasks assigned to the caller as worker, newest first."""
    user = await require_user(request)
    tasks = await _task_lifecycle().list_worker_tasks(user.user_id)
    return {"tasks": [task_to_response(task).model_dump(mode="json") for task in tasks]}


@router.get("/api/tasks/open")
async def list_open_tasks(request: Request) -> dict[str, Any]:
    """Open tasks, newest first."""
    await require_user(request)

    limit: int | None = None
    limit_raw = request.query_params.get("limit")
    if limit_raw is not None:
        try:
            limit = int(limit_raw)
        except ValueError as exc:
            raise ServiceError(
                "VALIDATION_ERROR",
                "limit must be an integer",
                400,
                {"field": "limit"},
            ) from exc

    tasks = await _task_lifecycle().list_open_tasks(limit)
    return {"tasks": [task_to_response(task).model_dump(mode="json") for task in tasks]}


# ---------------------------------------------------------------------------
# Single task
# ---------------------------------------------------------------------------


@router.get("/api/tasks/{task_id}")
async def get_task(task_id: str, request: Request) -> dict[str, Any]:
    await require_user(request)
    task = await _task_lifecycle().get_task(task_id)
    return task_to_response(task).model_dump(mode="json")


@router.patch("/api/tasks/{task_id}/status")
async def update_task_status(task_id: str, request: Request) -> dict[str, Any]:
    """Move a task to a new status on behalf of its customer or assigned worker."""
    user = await require_user(request)
    data = parse_json_body(await request.body())
    new_status = require_string(data, "status")

    task = await _task_lifecycle().update_status(task_id, new_status, user.user_id)
    return task_to_response(task).model_dump(mode="json")


@router.post("/api/tasks/{task_id}/completion-photos")
async def add_completion_photos(task_id: str, request: Request) -> dict[str, Any]:
    """Attach photos documenting a completed task."""
    user = await require_user(request)
    data = parse_json_body(await request.body())
    if "photos" not in data:
        raise ServiceError(
            "VALIDATION_ERROR",
            "Missing required field: photos",
            400,
            {"field": "photos"},
        )

    task = await _task_lifecycle().add_completion_photos(task_id, data["photos"], user.user_id)
    return task_to_response(task).model_dump(mode="json")
