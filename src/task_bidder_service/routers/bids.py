"""Bid submission, listing, withdrawal and acceptance endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_bidder_service.core.state import get_app_state
from task_bidder_service.routers.validation import (
    optional_int,
    optional_string,
    parse_json_body,
    require_string,
    require_user,
)
from task_bidder_service.schemas import (
    AcceptBidResponse,
    bid_to_response,
    bid_with_worker_to_response,
    payment_to_response,
    task_to_response,
)

if TYPE_CHECKING:
    from task_bidder_service.services.bid_ledger import BidLedger

router = APIRouter()


def _bid_ledger() -> BidLedger:
    state = get_app_state()
    if state.bid_ledger is None:
        msg = "BidLedger not initialized"
        raise RuntimeError(msg)
    return state.bid_ledger


# ---------------------------------------------------------------------------
# POST /api/bids: submit bid
# ---------------------------------------------------------------------------


@router.post("/api/bids", status_code=201)
async def submit_bid(request: Request) -> JSONResponse:
    """Submit a bid on an open task."""
    user = await require_user(request)
    data = parse_json_body(await request.body())
    task_id = require_string(data, "task_id")

    bid = await _bid_ledger().submit_bid(
        task_id,
        user.user_id,
        data.get("amount"),
        message=optional_string(data, "message"),
        estimated_duration=optional_int(data, "estimated_duration"),
    )
    return JSONResponse(status_code=201, content=bid_to_response(bid).model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Listings (GET /api/bids/my MUST be before any /api/bids/{bid_id} GET route)
# ---------------------------------------------------------------------------


@router.get("/api/bids/my")
async def list_my_bids(request: Request) -> dict[str, Any]:
    """Bids the caller placed, newest first."""
    user = await require_user(request)
    bids = await _bid_ledger().list_worker_bids(user.user_id)
    return {"bids": [bid_to_response(bid).model_dump(mode="json") for bid in bids]}


@router.get("/api/tasks/{task_id}/bids")
async def list_task_bids(task_id: str, request: Request) -> dict[str, Any]:
    """Bids on a task, cheapest first, with bidder profiles."""
    await require_user(request)
    entries = await _bid_ledger().list_bids(task_id)
    return {
        "task_id": task_id,
        "bids": [bid_with_worker_to_response(entry).model_dump(mode="json") for entry in entries],
    }


# ---------------------------------------------------------------------------
# Bid actions
# ---------------------------------------------------------------------------


@router.post("/api/bids/{bid_id}/accept")
async def accept_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Accept a bid: assign the task, reject competing bids, open the payment."""
    user = await require_user(request)
    acceptance = await _bid_ledger().accept_bid(bid_id, user.user_id)
    return AcceptBidResponse(
        bid=bid_to_response(acceptance.bid),
        task=task_to_response(acceptance.task),
        payment=payment_to_response(acceptance.payment),
        rejected_bid_ids=acceptance.rejected_bid_ids,
    ).model_dump(mode="json")


@router.post("/api/bids/{bid_id}/withdraw")
async def withdraw_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Withdraw one of the caller's pending bids."""
    user = await require_user(request)
    bid = await _bid_ledger().withdraw_bid(bid_id, user.user_id)
    return bid_to_response(bid).model_dump(mode="json")
