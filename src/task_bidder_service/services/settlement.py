"""Payment record creation and payment intent handling for accepted bids."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from starlette.concurrency import run_in_threadpool

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.logging import get_logger
from task_bidder_service.models import Payment
from task_bidder_service.services.clock import now_iso
from task_bidder_service.services.entity_store import StaleStateError
from task_bidder_service.services.money import compute_platform_fee, to_cents
from task_bidder_service.services.state_machine import (
    PaymentStatus,
    TaskStatus,
    can_transition_payment,
)

if TYPE_CHECKING:
    from decimal import Decimal

    from task_bidder_service.clients.payment_processor_client import PaymentProcessorClient
    from task_bidder_service.models import Bid, Task
    from task_bidder_service.services.entity_store import EntityStore


def payment_status_for(new_task_status: TaskStatus) -> PaymentStatus | None:
    """Payment status a task transition drives, if any."""
    if new_task_status == TaskStatus.COMPLETED:
        return PaymentStatus.RELEASED
    if new_task_status == TaskStatus.CANCELLED:
        return PaymentStatus.REFUNDED
    return None


class SettlementInitiator:
    """
    Builds payment records for accepted bids and drives the processor intent.

    The pending payment produced by ``initiate_settlement`` is inserted by
    the store inside the acceptance transaction, so a task is never assigned
    without its payment record.
    """

    def __init__(
        self,
        store: EntityStore,
        payment_processor_client: PaymentProcessorClient,
        platform_fee_rate: Decimal,
    ) -> None:
        self._store = store
        self._payment_processor_client = payment_processor_client
        self._platform_fee_rate = platform_fee_rate
        self._logger = get_logger(__name__)

    def set_payment_processor_client(self, client: PaymentProcessorClient) -> None:
        self._payment_processor_client = client

    @property
    def platform_fee_rate(self) -> Decimal:
        return self._platform_fee_rate

    def initiate_settlement(self, task: Task, accepted_bid: Bid) -> Payment:
        """Build the pending payment record for an accepted bid."""
        now = now_iso()
        return Payment(
            payment_id=f"pay-{uuid.uuid4()}",
            task_id=task.task_id,
            customer_id=task.customer_id,
            worker_id=accepted_bid.worker_id,
            amount=accepted_bid.amount,
            platform_fee=compute_platform_fee(accepted_bid.amount, self._platform_fee_rate),
            processor_reference=None,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    async def get_payment(self, task_id: str, caller_id: str) -> Payment:
        """
        Return the payment for a task.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: caller is neither the customer nor the payee
        3. PAYMENT_NOT_FOUND
        """
        task = await run_in_threadpool(self._store.get_task, task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

        payment = await run_in_threadpool(self._store.get_payment_for_task, task_id)
        if caller_id != task.customer_id and (payment is None or caller_id != payment.worker_id):
            raise ServiceError("FORBIDDEN", "Only the task's parties can view its payment", 403, {})
        if payment is None:
            raise ServiceError("PAYMENT_NOT_FOUND", "No payment exists for this task", 404, {})
        return payment

    async def create_payment_intent(
        self,
        task_id: str,
        amount: Decimal,
        caller_id: str,
    ) -> tuple[str, Payment]:
        """
        Create a processor payment intent for a task's pending payment.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: caller is not the customer
        3. PAYMENT_NOT_FOUND: no bid has been accepted yet
        4. INVALID_STATE: payment is no longer pending
        5. VALIDATION_ERROR: amount differs from the accepted bid amount
        6. PAYMENT_PROCESSOR_UNAVAILABLE

        Returns:
            (client_secret, payment) with the payment moved to ``held``
        """
        task = await run_in_threadpool(self._store.get_task, task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

        if caller_id != task.customer_id:
            raise ServiceError("FORBIDDEN", "Only the customer can pay for a task", 403, {})

        payment = await run_in_threadpool(self._store.get_payment_for_task, task_id)
        if payment is None:
            raise ServiceError("PAYMENT_NOT_FOUND", "No payment exists for this task", 404, {})

        if not can_transition_payment(payment.status, PaymentStatus.HELD):
            raise ServiceError(
                "INVALID_STATE",
                f"Payment is '{payment.status.value}', must be 'pending'",
                409,
                {"current_status": payment.status.value},
            )

        if amount != payment.amount:
            raise ServiceError(
                "VALIDATION_ERROR",
                "amount must equal the accepted bid amount",
                400,
                {"field": "amount", "expected": str(payment.amount)},
            )

        intent = await self._payment_processor_client.create_payment_intent(
            amount_cents=to_cents(payment.amount),
            metadata={
                "task_id": task_id,
                "payment_id": payment.payment_id,
                "customer_id": payment.customer_id,
                "worker_id": payment.worker_id,
            },
        )

        try:
            held = await run_in_threadpool(
                self._store.record_processor_reference,
                payment.payment_id,
                str(intent["id"]),
                now_iso(),
            )
        except StaleStateError as exc:
            raise ServiceError(
                "INVALID_STATE",
                "Payment changed while the intent was being created",
                409,
                {"current_status": exc.current_status},
            ) from exc

        self._logger.info(
            "Payment intent created",
            extra={
                "task_id": task_id,
                "payment_id": held.payment_id,
                "amount": str(held.amount),
                "platform_fee": str(held.platform_fee),
            },
        )
        return str(intent["client_secret"]), held
