"""Task messaging endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_bidder_service.core.state import get_app_state
from task_bidder_service.routers.validation import (
    optional_string_list,
    parse_json_body,
    require_string,
    require_user,
)
from task_bidder_service.schemas import message_to_response

if TYPE_CHECKING:
    from task_bidder_service.services.message_board import MessageBoard

router = APIRouter()


def _message_board() -> MessageBoard:
    state = get_app_state()
    if state.message_board is None:
        msg = "MessageBoard not initialized"
        raise RuntimeError(msg)
    return state.message_board


@router.post("/api/messages", status_code=201)
async def post_message(request: Request) -> JSONResponse:
    """Send a message about a task to another participant."""
    user = await require_user(request)
    data = parse_json_body(await request.body())
    task_id = require_string(data, "task_id")
    receiver_id = require_string(data, "receiver_id")
    content = require_string(data, "content")
    attachments = optional_string_list(data, "attachments")

    message = await _message_board().post_message(
        user.user_id, task_id, receiver_id, content, attachments
    )
    return JSONResponse(
        status_code=201, content=message_to_response(message).model_dump(mode="json")
    )


@router.get("/api/tasks/{task_id}/messages")
async def list_task_messages(task_id: str, request: Request) -> dict[str, Any]:
    user = await require_user(request)
    messages = await _message_board().list_messages(task_id, user.user_id)
    return {
        "task_id": task_id,
        "messages": [message_to_response(message).model_dump(mode="json") for message in messages],
    }
