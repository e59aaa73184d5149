"""Task creation, queries and guarded status transitions."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from starlette.concurrency import run_in_threadpool

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.logging import get_logger
from task_bidder_service.models import Task
from task_bidder_service.schemas import (
    NewTaskEvent,
    TaskStatusData,
    TaskStatusUpdateEvent,
    task_to_response,
)
from task_bidder_service.services.clock import now_iso
from task_bidder_service.services.entity_store import StaleStateError
from task_bidder_service.services.money import parse_amount
from task_bidder_service.services.settlement import payment_status_for
from task_bidder_service.services.state_machine import (
    WORKER_BOUND_STATUSES,
    TaskCategory,
    TaskStatus,
    Urgency,
    ensure_task_transition,
)

if TYPE_CHECKING:
    from enum import StrEnum

    from task_bidder_service.config import LimitsConfig
    from task_bidder_service.services.entity_store import EntityStore
    from task_bidder_service.services.notifier import ConnectionRegistry


def _require_text(payload: dict[str, Any], field_name: str, max_length: int) -> str:
    value = payload.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} is required and must be a non-empty string",
            400,
            {"field": field_name},
        )
    value = value.strip()
    if len(value) > max_length:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be at most {max_length} characters",
            400,
            {"field": field_name},
        )
    return value


def _require_choice(payload: dict[str, Any], field_name: str, enum_type: type[StrEnum]) -> Any:
    value = payload.get(field_name)
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be one of: {allowed}",
            400,
            {"field": field_name},
        ) from exc


def validate_photo_list(value: object, field_name: str, max_photos: int) -> list[str]:
    """Validate a list of photo URLs."""
    if not isinstance(value, list) or not all(
        isinstance(item, str) and item.strip() for item in value
    ):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be a list of non-empty strings",
            400,
            {"field": field_name},
        )
    if len(value) > max_photos:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} may contain at most {max_photos} entries",
            400,
            {"field": field_name},
        )
    return [item.strip() for item in value]


def _optional_due_date(payload: dict[str, Any]) -> str | None:
    value = payload.get("due_date")
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError(
            "VALIDATION_ERROR",
            "due_date must be an ISO 8601 string",
            400,
            {"field": "due_date"},
        )
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ServiceError(
            "VALIDATION_ERROR",
            "due_date must be an ISO 8601 string",
            400,
            {"field": "due_date"},
        ) from exc
    return value


class TaskLifecycleManager:
    """
    Creates tasks and moves them through their status lifecycle.

    The open -> assigned move belongs to bid acceptance; every other move
    goes through ``update_status`` and the central transition table.
    """

    def __init__(
        self,
        store: EntityStore,
        notifier: ConnectionRegistry,
        limits: LimitsConfig,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._limits = limits
        self._logger = get_logger(__name__)

    async def create_task(self, customer_id: str, payload: dict[str, Any]) -> Task:
        """
        Validate and store a new open task, then announce it.

        Error precedence follows field order: title, description, category,
        location, budget_min, budget_max, budget range, urgency, photos, due_date.
        """
        title = _require_text(payload, "title", self._limits.max_title_length)
        description = _require_text(
            payload, "description", self._limits.max_description_length
        )
        category = _require_choice(payload, "category", TaskCategory)
        location = _require_text(payload, "location", self._limits.max_description_length)
        budget_min = parse_amount(payload.get("budget_min"), "budget_min")
        budget_max = parse_amount(payload.get("budget_max"), "budget_max")
        if budget_min > budget_max:
            raise ServiceError(
                "VALIDATION_ERROR",
                "budget_min must not exceed budget_max",
                400,
                {"field": "budget_min"},
            )
        urgency = _require_choice(payload, "urgency", Urgency)
        photos_raw = payload.get("photos")
        photos = (
            []
            if photos_raw is None
            else validate_photo_list(photos_raw, "photos", self._limits.max_photos)
        )
        due_date = _optional_due_date(payload)

        now = now_iso()
        task = await run_in_threadpool(
            self._store.insert_task,
            Task(
                task_id=f"t-{uuid.uuid4()}",
                customer_id=customer_id,
                worker_id=None,
                title=title,
                description=description,
                category=category,
                location=location,
                budget_min=budget_min,
                budget_max=budget_max,
                final_price=None,
                urgency=urgency,
                status=TaskStatus.OPEN,
                photos=photos,
                completion_photos=[],
                due_date=due_date,
                completed_at=None,
                created_at=now,
                updated_at=now,
            ),
        )

        self._logger.info(
            "Task created",
            extra={
                "task_id": task.task_id,
                "customer_id": customer_id,
                "category": category.value,
                "budget_max": str(budget_max),
            },
        )
        await self._notifier.broadcast(
            NewTaskEvent(data=task_to_response(task)),
            exclude_user_id=customer_id,
        )
        return task

    async def get_task(self, task_id: str) -> Task:
        task = await run_in_threadpool(self._store.get_task, task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return task

    async def list_customer_tasks(self, customer_id: str) -> list[Task]:
        return await run_in_threadpool(self._store.find_tasks_by_customer, customer_id)

    async def list_worker_tasks(self, worker_id: str) -> list[Task]:
        return await run_in_threadpool(self._store.find_tasks_by_worker, worker_id)

    async def list_open_tasks(self, limit: int | None = None) -> list[Task]:
        """Open tasks, newest first, capped at the configured maximum page size."""
        if limit is None:
            limit = self._limits.default_open_tasks_limit
        if limit <= 0:
            raise ServiceError(
                "VALIDATION_ERROR",
                "limit must be >= 1",
                400,
                {"field": "limit"},
            )
        limit = min(limit, self._limits.max_open_tasks_limit)
        return await run_in_threadpool(self._store.find_open_tasks, limit)

    async def update_status(self, task_id: str, new_status: str, caller_id: str) -> Task:
        """
        Move a task to ``new_status`` on behalf of its customer or assigned worker.

        Error precedence:
        1. VALIDATION_ERROR: unknown status value
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is neither the customer nor the assigned worker
        4. INVALID_STATE: transition not allowed, or the task changed concurrently

        Completion releases a held payment and credits the worker; cancellation
        clears the assignment and refunds the payment.
        """
        try:
            target = TaskStatus(new_status)
        except ValueError as exc:
            allowed = ", ".join(status.value for status in TaskStatus)
            raise ServiceError(
                "VALIDATION_ERROR",
                f"status must be one of: {allowed}",
                400,
                {"field": "status"},
            ) from exc

        task = await run_in_threadpool(self._store.get_task, task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

        if caller_id not in (task.customer_id, task.worker_id):
            raise ServiceError(
                "FORBIDDEN",
                "Only the customer or the assigned worker can change task status",
                403,
                {},
            )

        ensure_task_transition(task.status, target)

        now = now_iso()
        try:
            updated = await run_in_threadpool(
                self._store.transition_task,
                task_id,
                expected_status=task.status,
                new_status=target,
                updated_at=now,
                completed_at=now if target == TaskStatus.COMPLETED else None,
                clear_assignment=target not in WORKER_BOUND_STATUSES,
                payment_status=payment_status_for(target),
            )
        except StaleStateError as exc:
            raise ServiceError(
                "INVALID_STATE",
                "Task status changed concurrently",
                409,
                {"current_status": exc.current_status, "requested_status": target.value},
            ) from exc

        self._logger.info(
            "Task status changed",
            extra={
                "task_id": task_id,
                "from_status": task.status.value,
                "to_status": target.value,
                "caller_id": caller_id,
            },
        )
        await self._notifier.broadcast(
            TaskStatusUpdateEvent(
                data=TaskStatusData(
                    task_id=task_id,
                    status=updated.status.value,
                    updated_at=updated.updated_at,
                )
            )
        )
        return updated

    async def add_completion_photos(self, task_id: str, photos: object, caller_id: str) -> Task:
        """
        Attach completion photos to a completed task.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: caller is neither the customer nor the worker
        3. INVALID_STATE: task not completed
        4. VALIDATION_ERROR: photos malformed or over the per-task limit
        """
        task = await run_in_threadpool(self._store.get_task, task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

        if caller_id not in (task.customer_id, task.worker_id):
            raise ServiceError(
                "FORBIDDEN",
                "Only the customer or the worker can add completion photos",
                403,
                {},
            )

        if task.status != TaskStatus.COMPLETED:
            raise ServiceError(
                "INVALID_STATE",
                f"Completion photos require a completed task, task is '{task.status.value}'",
                409,
                {"current_status": task.status.value},
            )

        remaining = self._limits.max_photos - len(task.completion_photos)
        validated = validate_photo_list(photos, "photos", max(remaining, 0))
        if not validated:
            raise ServiceError(
                "VALIDATION_ERROR",
                "photos must not be empty",
                400,
                {"field": "photos"},
            )

        try:
            return await run_in_threadpool(
                self._store.set_completion_photos, task_id, validated, now_iso()
            )
        except StaleStateError as exc:
            raise ServiceError(
                "INVALID_STATE",
                "Task is no longer completed",
                409,
                {"current_status": exc.current_status},
            ) from exc

    async def get_stats(self) -> dict[str, Any]:
        """Task counts for the health endpoint."""
        by_status = await run_in_threadpool(self._store.count_tasks_by_status)
        return {"total_tasks": sum(by_status.values()), "tasks_by_status": by_status}
