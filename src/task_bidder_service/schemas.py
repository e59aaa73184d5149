"""Pydantic response models and realtime event types for the API."""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from task_bidder_service.models import (
    Bid,
    BidWithWorker,
    Message,
    Payment,
    Task,
    User,
)


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    connected_clients: int


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class UserResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    user_id: str
    display_name: str | None
    is_worker: bool
    rating: Decimal | None
    completed_tasks: int
    created_at: str


class TaskResponse(BaseModel):
    """Full task model used by every task endpoint and NEW_TASK events."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    customer_id: str
    worker_id: str | None
    title: str
    description: str
    category: str
    location: str
    budget_min: Decimal
    budget_max: Decimal
    final_price: Decimal | None
    urgency: str
    status: str
    photos: list[str]
    completion_photos: list[str]
    due_date: str | None
    bid_count: int
    created_at: str
    updated_at: str
    completed_at: str | None


class BidResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    bid_id: str
    task_id: str
    worker_id: str
    amount: Decimal
    message: str | None
    estimated_duration: int | None
    status: str
    created_at: str
    updated_at: str


class BidWithWorkerResponse(BidResponse):
    """Bid joined with the bidder's public profile."""

    worker: UserResponse | None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    payment_id: str
    task_id: str
    customer_id: str
    worker_id: str
    amount: Decimal
    platform_fee: Decimal
    processor_reference: str | None
    status: str
    created_at: str
    updated_at: str


class AcceptBidResponse(BaseModel):
    """Response model for POST /api/bids/{bid_id}/accept."""

    model_config = ConfigDict(extra="forbid")
    bid: BidResponse
    task: TaskResponse
    payment: PaymentResponse
    rejected_bid_ids: list[str]


class PaymentIntentResponse(BaseModel):
    """Response model for POST /api/create-payment-intent."""

    model_config = ConfigDict(extra="forbid")
    client_secret: str
    payment: PaymentResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    message_id: str
    task_id: str
    sender_id: str
    receiver_id: str
    content: str
    attachments: list[str]
    created_at: str


class StatsResponse(BaseModel):
    """Response model for GET /api/stats."""

    model_config = ConfigDict(extra="forbid")
    active_workers: int
    completed_tasks: int
    average_rating: Decimal | None


# ---------------------------------------------------------------------------
# Realtime events pushed over the WebSocket channel
# ---------------------------------------------------------------------------


class NewTaskEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["NEW_TASK"] = "NEW_TASK"
    data: TaskResponse


class NewBidData(BaseModel):
    model_config = ConfigDict(extra="forbid")
    task_id: str
    bid: BidResponse


class NewBidEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["NEW_BID"] = "NEW_BID"
    data: NewBidData


class BidAcceptedData(BaseModel):
    model_config = ConfigDict(extra="forbid")
    task_id: str
    bid_id: str
    worker_id: str
    final_price: Decimal
    rejected_bid_ids: list[str]


class BidAcceptedEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["BID_ACCEPTED"] = "BID_ACCEPTED"
    data: BidAcceptedData


class TaskStatusData(BaseModel):
    model_config = ConfigDict(extra="forbid")
    task_id: str
    status: str
    updated_at: str


class TaskStatusUpdateEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["TASK_STATUS_UPDATE"] = "TASK_STATUS_UPDATE"
    data: TaskStatusData


class NewMessageEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["NEW_MESSAGE"] = "NEW_MESSAGE"
    data: MessageResponse


RealtimeEvent = Annotated[
    NewTaskEvent | NewBidEvent | BidAcceptedEvent | TaskStatusUpdateEvent | NewMessageEvent,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Converters from store records
# ---------------------------------------------------------------------------


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        user_id=user.user_id,
        display_name=user.display_name,
        is_worker=user.is_worker,
        rating=user.rating,
        completed_tasks=user.completed_tasks,
        created_at=user.created_at,
    )


def task_to_response(task: Task) -> TaskResponse:
    return TaskResponse(
        task_id=task.task_id,
        customer_id=task.customer_id,
        worker_id=task.worker_id,
        title=task.title,
        description=task.description,
        category=task.category.value,
        location=task.location,
        budget_min=task.budget_min,
        budget_max=task.budget_max,
        final_price=task.final_price,
        urgency=task.urgency.value,
        status=task.status.value,
        photos=list(task.photos),
        completion_photos=list(task.completion_photos),
        due_date=task.due_date,
        bid_count=task.bid_count,
        created_at=task.created_at,
        updated_at=task.updated_at,
        completed_at=task.completed_at,
    )


def bid_to_response(bid: Bid) -> BidResponse:
    return BidResponse(
        bid_id=bid.bid_id,
        task_id=bid.task_id,
        worker_id=bid.worker_id,
        amount=bid.amount,
        message=bid.message,
        estimated_duration=bid.estimated_duration,
        status=bid.status.value,
        created_at=bid.created_at,
        updated_at=bid.updated_at,
    )


def bid_with_worker_to_response(entry: BidWithWorker) -> BidWithWorkerResponse:
    return BidWithWorkerResponse(
        **bid_to_response(entry.bid).model_dump(),
        worker=None if entry.worker is None else user_to_response(entry.worker),
    )


def payment_to_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=payment.payment_id,
        task_id=payment.task_id,
        customer_id=payment.customer_id,
        worker_id=payment.worker_id,
        amount=payment.amount,
        platform_fee=payment.platform_fee,
        processor_reference=payment.processor_reference,
        status=payment.status.value,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
    )


def message_to_response(message: Message) -> MessageResponse:
    return MessageResponse(
        message_id=message.message_id,
        task_id=message.task_id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        content=message.content,
        attachments=list(message.attachments),
        created_at=message.created_at,
    )
