"""Payment intent and payment lookup endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request

from task_bidder_service.core.state import get_app_state
from task_bidder_service.routers.validation import parse_json_body, require_string, require_user
from task_bidder_service.schemas import PaymentIntentResponse, payment_to_response
from task_bidder_service.services.money import parse_amount

if TYPE_CHECKING:
    from task_bidder_service.services.settlement import SettlementInitiator

router = APIRouter()


def _settlement() -> SettlementInitiator:
    state = get_app_state()
    if state.settlement is None:
        msg = "SettlementInitiator not initialized"
        raise RuntimeError(msg)
    return state.settlement


@router.post("/api/create-payment-intent")
async def create_payment_intent(request: Request) -> dict[str, Any]:
    """Create a processor payment intent for an accepted bid and hold the payment."""
    user = await require_user(request)
    data = parse_json_body(await request.body())
    amount = parse_amount(data.get("amount"), "amount")
    task_id = require_string(data, "task_id")

    client_secret, payment = await _settlement().create_payment_intent(
        task_id, amount, user.user_id
    )
    return PaymentIntentResponse(
        client_secret=client_secret,
        payment=payment_to_response(payment),
    ).model_dump(mode="json")


@router.get("/api/tasks/{task_id}/payment")
async def get_task_payment(task_id: str, request: Request) -> dict[str, Any]:
    user = await require_user(request)
    payment = await _settlement().get_payment(task_id, user.user_id)
    return payment_to_response(payment).model_dump(mode="json")
