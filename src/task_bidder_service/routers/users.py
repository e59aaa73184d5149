"""Current user, profile and marketplace statistics endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.core.state import get_app_state
from task_bidder_service.logging import get_logger
from task_bidder_service.routers.validation import (
    optional_bool,
    optional_string,
    parse_json_body,
    require_user,
)
from task_bidder_service.schemas import StatsResponse, user_to_response
from task_bidder_service.services.clock import now_iso

router = APIRouter()

_MAX_DISPLAY_NAME_LENGTH = 100


@router.get("/api/auth/user")
async def get_current_user(request: Request) -> dict[str, Any]:
    """Return the authenticated caller's user record."""
    user = await require_user(request)
    return user_to_response(user).model_dump(mode="json")


@router.patch("/api/users/profile")
async def update_profile(request: Request) -> dict[str, Any]:
    """Update the caller's display name and worker flag."""
    user = await require_user(request)
    data = parse_json_body(await request.body())
    display_name = optional_string(data, "display_name")
    is_worker = optional_bool(data, "is_worker")

    if display_name is not None:
        display_name = display_name.strip()
        if not display_name or len(display_name) > _MAX_DISPLAY_NAME_LENGTH:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"display_name must be 1-{_MAX_DISPLAY_NAME_LENGTH} characters",
                400,
                {"field": "display_name"},
            )
    if display_name is None and is_worker is None:
        raise ServiceError(
            "VALIDATION_ERROR",
            "Provide at least one of: display_name, is_worker",
            400,
            {},
        )

    state = get_app_state()
    if state.store is None:
        msg = "EntityStore not initialized"
        raise RuntimeError(msg)

    updated = await run_in_threadpool(
        state.store.update_user_profile,
        user.user_id,
        display_name=display_name,
        is_worker=is_worker,
        now=now_iso(),
    )
    if updated is None:
        raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})

    get_logger(__name__).info(
        "Profile updated",
        extra={"user_id": user.user_id, "is_worker": updated.is_worker},
    )
    return user_to_response(updated).model_dump(mode="json")


@router.get("/api/stats", response_model=StatsResponse)
async def get_stats(request: Request) -> StatsResponse:
    """Active worker count, completed task count and average worker rating."""
    await require_user(request)

    state = get_app_state()
    if state.store is None:
        msg = "EntityStore not initialized"
        raise RuntimeError(msg)

    stats = await run_in_threadpool(state.store.worker_stats)
    return StatsResponse(
        active_workers=stats.active_workers,
        completed_tasks=stats.completed_tasks,
        average_rating=stats.average_rating,
    )
