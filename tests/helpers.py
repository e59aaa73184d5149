"""Shared test helpers: config files, auth headers, record builders and API shortcuts."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.models import Bid, Payment, Task
from task_bidder_service.services.state_machine import (
    BidStatus,
    PaymentStatus,
    TaskCategory,
    TaskStatus,
    Urgency,
)

if TYPE_CHECKING:
    from pathlib import Path

    import httpx

    from task_bidder_service.core.state import AppState


def write_config(tmp_path: Path, *, platform_fee_rate: str = "0.10") -> Path:
    """Write a complete config file into ``tmp_path`` and return its path."""
    config_content = f"""\
service:
  name: "task-bidder"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{tmp_path / "test.db"}"
  lock_timeout_seconds: 5
identity:
  base_url: "http://localhost:8001"
  verify_session_path: "/sessions/verify"
  timeout_seconds: 10
payment_processor:
  base_url: "http://localhost:8020"
  payment_intents_path: "/v1/payment_intents"
  currency: "usd"
  api_key: "sk-test-secret"
  timeout_seconds: 10
settlement:
  platform_fee_rate: "{platform_fee_rate}"
websocket:
  path: "/ws"
request:
  max_body_size: 4096
limits:
  max_title_length: 200
  max_description_length: 5000
  max_message_length: 2000
  max_photos: 3
  default_open_tasks_limit: 50
  max_open_tasks_limit: 200
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def token_for(user_id: str) -> str:
    return f"token-{user_id}"


def auth(user_id: str) -> dict[str, str]:
    """Authorization header for a user known to the mocked identity service."""
    return {"Authorization": f"Bearer {token_for(user_id)}"}


# ---------------------------------------------------------------------------
# Store record builders
# ---------------------------------------------------------------------------


def make_task(
    customer_id: str = "u-customer",
    *,
    task_id: str | None = None,
    budget_min: str = "10.00",
    budget_max: str = "40.00",
) -> Task:
    timestamp = now_iso()
    return Task(
        task_id=task_id or f"t-{uuid.uuid4()}",
        customer_id=customer_id,
        worker_id=None,
        title="Pick up dry cleaning",
        description="Two shirts and a coat from the shop on Main St",
        category=TaskCategory.DOCUMENT_PICKUP,
        location="Main St 12",
        budget_min=Decimal(budget_min),
        budget_max=Decimal(budget_max),
        final_price=None,
        urgency=Urgency.TODAY,
        status=TaskStatus.OPEN,
        photos=[],
        completion_photos=[],
        due_date=None,
        completed_at=None,
        created_at=timestamp,
        updated_at=timestamp,
    )


def make_bid(task_id: str, worker_id: str, amount: str) -> Bid:
    timestamp = now_iso()
    return Bid(
        bid_id=f"bid-{uuid.uuid4()}",
        task_id=task_id,
        worker_id=worker_id,
        amount=Decimal(amount),
        message=None,
        estimated_duration=None,
        status=BidStatus.PENDING,
        created_at=timestamp,
        updated_at=timestamp,
    )


def make_payment(task: Task, bid: Bid, fee: str = "0.00") -> Payment:
    timestamp = now_iso()
    return Payment(
        payment_id=f"pay-{uuid.uuid4()}",
        task_id=task.task_id,
        customer_id=task.customer_id,
        worker_id=bid.worker_id,
        amount=bid.amount,
        platform_fee=Decimal(fee),
        processor_reference=None,
        status=PaymentStatus.PENDING,
        created_at=timestamp,
        updated_at=timestamp,
    )


# ---------------------------------------------------------------------------
# API shortcuts
# ---------------------------------------------------------------------------


def task_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Queue for concert tickets",
        "description": "Stand in line at the box office from 8am",
        "category": "queue_standing",
        "location": "Arena box office",
        "budget_min": "20.00",
        "budget_max": "40.00",
        "urgency": "tomorrow",
    }
    payload.update(overrides)
    return payload


async def create_task(client: httpx.AsyncClient, customer_id: str, **overrides: Any) -> Any:
    """Create a task via POST /api/tasks and return the response."""
    return await client.post("/api/tasks", json=task_payload(**overrides), headers=auth(customer_id))


async def submit_bid(
    client: httpx.AsyncClient,
    worker_id: str,
    task_id: str,
    amount: Any = "25.00",
    **extra: Any,
) -> Any:
    """Submit a bid via POST /api/bids and return the response."""
    body: dict[str, Any] = {"task_id": task_id, "amount": amount}
    body.update(extra)
    return await client.post("/api/bids", json=body, headers=auth(worker_id))


async def accept_bid(client: httpx.AsyncClient, customer_id: str, bid_id: str) -> Any:
    return await client.post(f"/api/bids/{bid_id}/accept", headers=auth(customer_id))


async def update_status(
    client: httpx.AsyncClient, user_id: str, task_id: str, status: str
) -> Any:
    return await client.patch(
        f"/api/tasks/{task_id}/status", json={"status": status}, headers=auth(user_id)
    )


async def assigned_task(
    client: httpx.AsyncClient,
    customer_id: str,
    worker_id: str,
    amount: str = "25.00",
) -> tuple[str, str]:
    """Create a task, bid on it and accept the bid. Returns (task_id, bid_id)."""
    task_resp = await create_task(client, customer_id)
    assert task_resp.status_code == 201
    task_id = task_resp.json()["task_id"]

    bid_resp = await submit_bid(client, worker_id, task_id, amount)
    assert bid_resp.status_code == 201
    bid_id = bid_resp.json()["bid_id"]

    accept_resp = await accept_bid(client, customer_id, bid_id)
    assert accept_resp.status_code == 200
    return task_id, bid_id


# ---------------------------------------------------------------------------
# External service mocks
# ---------------------------------------------------------------------------


def resolve_session(token: str) -> dict[str, Any]:
    """Mock identity resolution: ``token-<user_id>`` is a valid session for that user."""
    if not token.startswith("token-"):
        raise ServiceError("UNAUTHORIZED", "Session is not valid", 401, {})
    user_id = token[len("token-") :]
    return {"valid": True, "user_id": user_id, "display_name": user_id.removeprefix("u-")}


def install_service_mocks(state: AppState) -> None:
    """Replace the identity and payment processor clients with async mocks."""
    mock_identity = AsyncMock()
    mock_identity.close = AsyncMock()
    mock_identity.resolve_session = AsyncMock(side_effect=resolve_session)
    state.identity_client = mock_identity

    # Every intent succeeds
    mock_processor = AsyncMock()
    mock_processor.close = AsyncMock()
    mock_processor.create_payment_intent = AsyncMock(
        side_effect=lambda amount_cents, metadata: {
            "id": f"pi_{uuid.uuid4().hex[:12]}",
            "client_secret": f"secret_{metadata['payment_id']}",
        }
    )
    state.payment_processor_client = mock_processor
