"""Per-task messaging between a customer, the worker and bidders."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from starlette.concurrency import run_in_threadpool

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.logging import get_logger
from task_bidder_service.models import Message
from task_bidder_service.schemas import NewMessageEvent, message_to_response
from task_bidder_service.services.clock import now_iso

if TYPE_CHECKING:
    from task_bidder_service.services.entity_store import EntityStore
    from task_bidder_service.services.notifier import ConnectionRegistry


class MessageBoard:
    """Stores task messages and pushes each one to its receiver."""

    def __init__(
        self,
        store: EntityStore,
        notifier: ConnectionRegistry,
        max_message_length: int,
        max_attachments: int,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._max_message_length = max_message_length
        self._max_attachments = max_attachments
        self._logger = get_logger(__name__)

    async def _participants(self, task_id: str) -> set[str]:
        task = await run_in_threadpool(self._store.get_task, task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        bids = await run_in_threadpool(self._store.find_bids_for_task, task_id)
        participants = {task.customer_id, *(entry.bid.worker_id for entry in bids)}
        if task.worker_id is not None:
            participants.add(task.worker_id)
        return participants

    async def post_message(
        self,
        sender_id: str,
        task_id: str,
        receiver_id: str,
        content: str,
        attachments: list[str] | None = None,
    ) -> Message:
        """
        Post a message about a task.

        Error precedence:
        1. VALIDATION_ERROR: empty or oversized content, bad attachments
        2. TASK_NOT_FOUND
        3. FORBIDDEN: sender is not the customer, the worker or a bidder
        4. VALIDATION_ERROR: receiver is the sender or not a participant
        """
        if not content.strip():
            raise ServiceError(
                "VALIDATION_ERROR",
                "content must not be empty",
                400,
                {"field": "content"},
            )
        if len(content) > self._max_message_length:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"content must be at most {self._max_message_length} characters",
                400,
                {"field": "content"},
            )
        attachments = attachments or []
        if len(attachments) > self._max_attachments:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"attachments may contain at most {self._max_attachments} entries",
                400,
                {"field": "attachments"},
            )

        participants = await self._participants(task_id)
        if sender_id not in participants:
            raise ServiceError(
                "FORBIDDEN",
                "Only the task's customer, worker or bidders can post messages",
                403,
                {},
            )
        if receiver_id == sender_id or receiver_id not in participants:
            raise ServiceError(
                "VALIDATION_ERROR",
                "receiver_id must be another participant of the task",
                400,
                {"field": "receiver_id"},
            )

        message = await run_in_threadpool(
            self._store.insert_message,
            Message(
                message_id=f"msg-{uuid.uuid4()}",
                task_id=task_id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                attachments=attachments,
                created_at=now_iso(),
            ),
        )

        self._logger.info(
            "Message posted",
            extra={"message_id": message.message_id, "task_id": task_id, "sender_id": sender_id},
        )
        await self._notifier.send(receiver_id, NewMessageEvent(data=message_to_response(message)))
        return message

    async def list_messages(self, task_id: str, caller_id: str) -> list[Message]:
        """Messages for a task, oldest first. Visible to task participants only."""
        participants = await self._participants(task_id)
        if caller_id not in participants:
            raise ServiceError(
                "FORBIDDEN",
                "Only the task's customer, worker or bidders can read its messages",
                403,
                {},
            )
        return await run_in_threadpool(self._store.find_messages_for_task, task_id)
