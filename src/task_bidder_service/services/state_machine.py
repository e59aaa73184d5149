"""Closed status enumerations and their transition tables."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

from task_bidder_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from collections.abc import Mapping


_S = TypeVar("_S", bound=StrEnum)


class TaskStatus(StrEnum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BidStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class TaskCategory(StrEnum):
    GROCERY_SHOPPING = "grocery_shopping"
    DOCUMENT_PICKUP = "document_pickup"
    QUEUE_STANDING = "queue_standing"
    DELIVERY = "delivery"
    CLEANING = "cleaning"
    OTHER = "other"


class Urgency(StrEnum):
    ASAP = "asap"
    TODAY = "today"
    TOMORROW = "tomorrow"
    THREE_DAYS = "3_days"
    WEEK = "week"
    FLEXIBLE = "flexible"


# open -> assigned is reserved for bid acceptance and never requested directly.
ACCEPTANCE_TRANSITION = (TaskStatus.OPEN, TaskStatus.ASSIGNED)

TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset({TaskStatus.CANCELLED}),
    TaskStatus.ASSIGNED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

BID_TRANSITIONS: dict[BidStatus, frozenset[BidStatus]] = {
    BidStatus.PENDING: frozenset({BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.WITHDRAWN}),
    BidStatus.ACCEPTED: frozenset(),
    BidStatus.REJECTED: frozenset(),
    BidStatus.WITHDRAWN: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.HELD, PaymentStatus.REFUNDED}),
    PaymentStatus.HELD: frozenset({PaymentStatus.RELEASED, PaymentStatus.REFUNDED}),
    PaymentStatus.RELEASED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# Statuses in which a task carries a worker and a final price.
WORKER_BOUND_STATUSES = frozenset(
    {TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}
)


def is_terminal_task_status(status: TaskStatus) -> bool:
    """Return True for completed and cancelled."""
    return len(TASK_TRANSITIONS[status]) == 0


def ensure_task_transition(current: TaskStatus, target: TaskStatus) -> None:
    """
    Validate a requested task status change.

    Raises:
        ServiceError: INVALID_STATE when the change is not in the table,
            including any direct request for ``assigned``.
    """
    if target == TaskStatus.ASSIGNED:
        raise ServiceError(
            "INVALID_STATE",
            "Tasks become 'assigned' only by accepting a bid",
            409,
            {"current_status": current.value, "requested_status": target.value},
        )
    if is_terminal_task_status(current):
        raise ServiceError(
            "INVALID_STATE",
            f"Task is '{current.value}' and can no longer change status",
            409,
            {"current_status": current.value, "requested_status": target.value},
        )
    if target not in TASK_TRANSITIONS[current]:
        raise ServiceError(
            "INVALID_STATE",
            f"Cannot move task from '{current.value}' to '{target.value}'",
            409,
            {"current_status": current.value, "requested_status": target.value},
        )


def can_transition_bid(current: BidStatus, target: BidStatus) -> bool:
    return target in BID_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def source_statuses(transitions: Mapping[_S, frozenset[_S]], target: _S) -> list[str]:
    """Values of every status the table allows to move to ``target``."""
    return [status.value for status, targets in transitions.items() if target in targets]
