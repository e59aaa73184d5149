"""Bid submission, listing, withdrawal and acceptance."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from starlette.concurrency import run_in_threadpool

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.logging import get_logger
from task_bidder_service.models import Bid
from task_bidder_service.schemas import (
    BidAcceptedData,
    BidAcceptedEvent,
    NewBidData,
    NewBidEvent,
    bid_to_response,
)
from task_bidder_service.services.clock import now_iso
from task_bidder_service.services.entity_store import (
    DuplicateBidError,
    DuplicatePaymentError,
    StaleStateError,
)
from task_bidder_service.services.money import parse_amount
from task_bidder_service.services.state_machine import BidStatus, TaskStatus, can_transition_bid

if TYPE_CHECKING:
    from task_bidder_service.models import Acceptance, BidWithWorker
    from task_bidder_service.services.entity_store import EntityStore
    from task_bidder_service.services.notifier import ConnectionRegistry
    from task_bidder_service.services.settlement import SettlementInitiator


class BidLedger:
    """Owns the bid side of the marketplace, including the acceptance workflow."""

    def __init__(
        self,
        store: EntityStore,
        settlement: SettlementInitiator,
        notifier: ConnectionRegistry,
        max_message_length: int,
    ) -> None:
        self._store = store
        self._settlement = settlement
        self._notifier = notifier
        self._max_message_length = max_message_length
        self._logger = get_logger(__name__)

    async def submit_bid(
        self,
        task_id: str,
        worker_id: str,
        amount: object,
        message: str | None = None,
        estimated_duration: int | None = None,
    ) -> Bid:
        """
        Place a pending bid on an open task.

        Error precedence:
        1. VALIDATION_ERROR: amount, message or estimated_duration malformed
        2. TASK_NOT_FOUND
        3. VALIDATION_ERROR: bidder is the task's customer
        4. INVALID_STATE: task not open (re-checked at insert time)
        5. INVALID_STATE: worker already has a pending bid on the task
        """
        bid_amount = parse_amount(amount, "amount")

        if message is not None and len(message) > self._max_message_length:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"message must be at most {self._max_message_length} characters",
                400,
                {"field": "message"},
            )
        if estimated_duration is not None and estimated_duration <= 0:
            raise ServiceError(
                "VALIDATION_ERROR",
                "estimated_duration must be a positive number of minutes",
                400,
                {"field": "estimated_duration"},
            )

        task = await run_in_threadpool(self._store.get_task, task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

        if worker_id == task.customer_id:
            raise ServiceError(
                "VALIDATION_ERROR",
                "Cannot bid on your own task",
                400,
                {"field": "task_id"},
            )

        if task.status != TaskStatus.OPEN:
            raise ServiceError(
                "INVALID_STATE",
                f"Cannot bid on task in '{task.status.value}' status, must be 'open'",
                409,
                {"current_status": task.status.value},
            )

        now = now_iso()
        draft = Bid(
            bid_id=f"bid-{uuid.uuid4()}",
            task_id=task_id,
            worker_id=worker_id,
            amount=bid_amount,
            message=message,
            estimated_duration=estimated_duration,
            status=BidStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        try:
            bid = await run_in_threadpool(self._store.insert_bid, draft)
        except StaleStateError as exc:
            raise ServiceError(
                "INVALID_STATE",
                "Task is no longer open for bids",
                409,
                {"current_status": exc.current_status},
            ) from exc
        except DuplicateBidError as exc:
            raise ServiceError(
                "INVALID_STATE",
                "You already have a pending bid on this task",
                409,
                {},
            ) from exc

        self._logger.info(
            "Bid submitted",
            extra={"bid_id": bid.bid_id, "task_id": task_id, "worker_id": worker_id},
        )
        await self._notifier.send(
            task.customer_id,
            NewBidEvent(data=NewBidData(task_id=task_id, bid=bid_to_response(bid))),
        )
        return bid

    async def list_bids(self, task_id: str) -> list[BidWithWorker]:
        """Bids on a task, cheapest first, with each bidder's profile."""
        task = await run_in_threadpool(self._store.get_task, task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return await run_in_threadpool(self._store.find_bids_for_task, task_id)

    async def list_worker_bids(self, worker_id: str) -> list[Bid]:
        return await run_in_threadpool(self._store.find_bids_by_worker, worker_id)

    async def withdraw_bid(self, bid_id: str, caller_id: str) -> Bid:
        """
        Withdraw one of the caller's own pending bids.

        Error precedence:
        1. BID_NOT_FOUND
        2. FORBIDDEN: caller did not place the bid
        3. INVALID_STATE: bid no longer pending
        """
        bid = await run_in_threadpool(self._store.get_bid, bid_id)
        if bid is None:
            raise ServiceError("BID_NOT_FOUND", "Bid not found", 404, {})

        if caller_id != bid.worker_id:
            raise ServiceError("FORBIDDEN", "Only the bidder can withdraw a bid", 403, {})

        if not can_transition_bid(bid.status, BidStatus.WITHDRAWN):
            raise ServiceError(
                "INVALID_STATE",
                f"Cannot withdraw a bid in '{bid.status.value}' status",
                409,
                {"current_status": bid.status.value},
            )

        try:
            withdrawn = await run_in_threadpool(self._store.withdraw_bid, bid_id, now_iso())
        except StaleStateError as exc:
            raise ServiceError(
                "INVALID_STATE",
                "Bid is no longer pending",
                409,
                {"current_status": exc.current_status},
            ) from exc

        self._logger.info("Bid withdrawn", extra={"bid_id": bid_id, "task_id": bid.task_id})
        return withdrawn

    async def accept_bid(self, bid_id: str, caller_id: str) -> Acceptance:
        """
        Accept a bid: assign the task, reject competing bids, open the payment.

        Error precedence:
        1. BID_NOT_FOUND
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is not the task's customer
        4. INVALID_STATE: task not open or bid not pending, including losing
           a race against a concurrent acceptance

        All writes commit together or not at all.
        """
        bid = await run_in_threadpool(self._store.get_bid, bid_id)
        if bid is None:
            raise ServiceError("BID_NOT_FOUND", "Bid not found", 404, {})

        task = await run_in_threadpool(self._store.get_task, bid.task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

        if caller_id != task.customer_id:
            raise ServiceError("FORBIDDEN", "Only the customer can accept bids", 403, {})

        if task.status != TaskStatus.OPEN:
            raise ServiceError(
                "INVALID_STATE",
                f"Cannot accept bid on task in '{task.status.value}' status, must be 'open'",
                409,
                {"current_status": task.status.value},
            )
        if not can_transition_bid(bid.status, BidStatus.ACCEPTED):
            raise ServiceError(
                "INVALID_STATE",
                f"Cannot accept a bid in '{bid.status.value}' status",
                409,
                {"current_status": bid.status.value},
            )

        payment = self._settlement.initiate_settlement(task, bid)
        try:
            acceptance = await run_in_threadpool(
                self._store.accept_bid, bid_id, payment, now_iso()
            )
        except StaleStateError as exc:
            raise ServiceError(
                "INVALID_STATE",
                "Task or bid changed before the acceptance could commit",
                409,
                {"current_status": exc.current_status},
            ) from exc
        except DuplicatePaymentError as exc:
            raise ServiceError(
                "INVALID_STATE",
                "A payment already exists for this task",
                409,
                {},
            ) from exc

        self._logger.info(
            "Bid accepted",
            extra={
                "bid_id": bid_id,
                "task_id": task.task_id,
                "worker_id": bid.worker_id,
                "final_price": str(bid.amount),
                "platform_fee": str(acceptance.payment.platform_fee),
                "rejected_bids": len(acceptance.rejected_bid_ids),
            },
        )
        await self._notifier.broadcast(
            BidAcceptedEvent(
                data=BidAcceptedData(
                    task_id=task.task_id,
                    bid_id=bid_id,
                    worker_id=bid.worker_id,
                    final_price=bid.amount,
                    rejected_bid_ids=acceptance.rejected_bid_ids,
                )
            )
        )
        return acceptance
