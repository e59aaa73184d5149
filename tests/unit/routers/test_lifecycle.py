"""Task status transition and completion photo tests."""

from __future__ import annotations

import pytest

from task_bidder_service.core.state import get_app_state
from task_bidder_service.services.state_machine import WORKER_BOUND_STATUSES
from tests.helpers import assigned_task, auth, create_task, update_status


def assert_worker_invariant(task: dict) -> None:
    """worker_id and final_price are set exactly in the worker-bound statuses."""
    bound = task["status"] in WORKER_BOUND_STATUSES
    assert (task["worker_id"] is not None) == bound
    assert (task["final_price"] is not None) == bound


class TestStatusTransitions:
    """PATCH /api/tasks/{task_id}/status"""

    @pytest.mark.unit
    async def test_full_happy_path(self, client, customer_id, worker_one_id):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)

        started = await update_status(client, worker_one_id, task_id, "in_progress")
        assert started.status_code == 200
        assert started.json()["status"] == "in_progress"
        assert_worker_invariant(started.json())

        completed = await update_status(client, worker_one_id, task_id, "completed")
        assert completed.status_code == 200
        data = completed.json()
        assert data["status"] == "completed"
        assert data["completed_at"] is not None
        assert_worker_invariant(data)

        me = await client.get("/api/auth/user", headers=auth(worker_one_id))
        assert me.json()["completed_tasks"] == 1

    @pytest.mark.unit
    async def test_stranger_is_forbidden_and_nothing_changes(
        self, client, customer_id, worker_one_id, stranger_id
    ):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)

        response = await update_status(client, stranger_id, task_id, "in_progress")
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

        task = (await client.get(f"/api/tasks/{task_id}", headers=auth(customer_id))).json()
        assert task["status"] == "assigned"
        assert task["worker_id"] == worker_one_id

    @pytest.mark.unit
    async def test_direct_assigned_request_is_invalid(self, client, customer_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]

        response = await update_status(client, customer_id, task_id, "assigned")
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"
        assert response.json()["details"]["requested_status"] == "assigned"

    @pytest.mark.unit
    async def test_skipping_in_progress_is_invalid(self, client, customer_id, worker_one_id):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)

        response = await update_status(client, customer_id, task_id, "completed")
        assert response.status_code == 409
        assert response.json()["details"]["current_status"] == "assigned"

    @pytest.mark.unit
    async def test_terminal_task_rejects_changes(self, client, customer_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        assert (await update_status(client, customer_id, task_id, "cancelled")).status_code == 200

        response = await update_status(client, customer_id, task_id, "open")
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

    @pytest.mark.unit
    async def test_unknown_status_value(self, client, customer_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]

        response = await update_status(client, customer_id, task_id, "paused")
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.unit
    async def test_missing_task(self, client, customer_id):
        response = await update_status(client, customer_id, "t-missing", "cancelled")
        assert response.status_code == 404

    @pytest.mark.unit
    async def test_cancel_assigned_task_clears_worker_and_refunds(
        self, client, customer_id, worker_one_id
    ):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)

        response = await update_status(client, worker_one_id, task_id, "cancelled")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "cancelled"
        assert_worker_invariant(data)

        payment = await client.get(f"/api/tasks/{task_id}/payment", headers=auth(customer_id))
        assert payment.json()["status"] == "refunded"

    @pytest.mark.unit
    async def test_completion_releases_held_payment(self, client, customer_id, worker_one_id):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id, "25.00")
        intent = await client.post(
            "/api/create-payment-intent",
            json={"task_id": task_id, "amount": "25.00"},
            headers=auth(customer_id),
        )
        assert intent.status_code == 200

        await update_status(client, worker_one_id, task_id, "in_progress")
        await update_status(client, worker_one_id, task_id, "completed")

        payment = await client.get(f"/api/tasks/{task_id}/payment", headers=auth(worker_one_id))
        assert payment.json()["status"] == "released"

    @pytest.mark.unit
    async def test_status_update_is_broadcast(self, client, customer_id, worker_one_id):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)
        events = []

        async def record(event, exclude_user_id=None):
            events.append(event)

        get_app_state().notifier.broadcast = record
        await update_status(client, worker_one_id, task_id, "in_progress")

        assert [event.type for event in events] == ["TASK_STATUS_UPDATE"]
        assert events[0].data.status == "in_progress"


class TestCompletionPhotos:
    """POST /api/tasks/{task_id}/completion-photos"""

    @pytest.mark.unit
    async def test_photos_before_completion_rejected(self, client, customer_id, worker_one_id):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)

        response = await client.post(
            f"/api/tasks/{task_id}/completion-photos",
            json={"photos": ["https://img.example/done.jpg"]},
            headers=auth(worker_one_id),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

    @pytest.mark.unit
    async def test_photos_after_completion(self, client, customer_id, worker_one_id):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)
        await update_status(client, worker_one_id, task_id, "in_progress")
        await update_status(client, worker_one_id, task_id, "completed")

        response = await client.post(
            f"/api/tasks/{task_id}/completion-photos",
            json={"photos": ["https://img.example/done.jpg"]},
            headers=auth(worker_one_id),
        )
        assert response.status_code == 200
        assert response.json()["completion_photos"] == ["https://img.example/done.jpg"]

    @pytest.mark.unit
    async def test_photos_limit_enforced(self, client, customer_id, worker_one_id):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)
        await update_status(client, worker_one_id, task_id, "in_progress")
        await update_status(client, worker_one_id, task_id, "completed")

        response = await client.post(
            f"/api/tasks/{task_id}/completion-photos",
            json={"photos": ["a", "b", "c", "d"]},
            headers=auth(customer_id),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.unit
    async def test_photos_by_stranger_forbidden(
        self, client, customer_id, worker_one_id, stranger_id
    ):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)

        response = await client.post(
            f"/api/tasks/{task_id}/completion-photos",
            json={"photos": ["x"]},
            headers=auth(stranger_id),
        )
        assert response.status_code == 403
