"""Typed entity records returned by the entity store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from decimal import Decimal

    from task_bidder_service.services.state_machine import (
        BidStatus,
        PaymentStatus,
        TaskCategory,
        TaskStatus,
        Urgency,
    )


@dataclass(frozen=True)
class User:
    user_id: str
    display_name: str | None
    is_worker: bool
    rating: Decimal | None
    completed_tasks: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Task:
    task_id: str
    customer_id: str
    worker_id: str | None
    title: str
    description: str
    category: TaskCategory
    location: str
    budget_min: Decimal
    budget_max: Decimal
    final_price: Decimal | None
    urgency: Urgency
    status: TaskStatus
    photos: list[str]
    completion_photos: list[str]
    due_date: str | None
    completed_at: str | None
    created_at: str
    updated_at: str
    bid_count: int = 0


@dataclass(frozen=True)
class Bid:
    bid_id: str
    task_id: str
    worker_id: str
    amount: Decimal
    message: str | None
    estimated_duration: int | None
    status: BidStatus
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class BidWithWorker:
    """A bid joined with the bidder's user record."""

    bid: Bid
    worker: User | None


@dataclass(frozen=True)
class Payment:
    payment_id: str
    task_id: str
    customer_id: str
    worker_id: str
    amount: Decimal
    platform_fee: Decimal
    processor_reference: str | None
    status: PaymentStatus
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Message:
    message_id: str
    task_id: str
    sender_id: str
    receiver_id: str
    content: str
    attachments: list[str]
    created_at: str


@dataclass(frozen=True)
class Acceptance:
    """Outcome of a committed bid acceptance."""

    bid: Bid
    task: Task
    payment: Payment
    rejected_bid_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class WorkerStats:
    active_workers: int
    completed_tasks: int
    average_rating: Decimal | None
