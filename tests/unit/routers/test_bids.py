"""Bid submission, listing, withdrawal and acceptance tests."""

from __future__ import annotations

import asyncio

import pytest

from task_bidder_service.core.state import get_app_state
from tests.helpers import accept_bid, assigned_task, auth, create_task, submit_bid


class TestSubmitBid:
    """POST /api/bids"""

    @pytest.mark.unit
    async def test_submit_valid_bid(self, client, customer_id, worker_one_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]

        response = await submit_bid(
            client, worker_one_id, task_id, "25.00", message="On my way", estimated_duration=45
        )
        assert response.status_code == 201

        data = response.json()
        assert data["bid_id"].startswith("bid-")
        assert data["task_id"] == task_id
        assert data["worker_id"] == worker_one_id
        assert data["amount"] == "25.00"
        assert data["status"] == "pending"
        assert data["message"] == "On my way"
        assert data["estimated_duration"] == 45

    @pytest.mark.unit
    async def test_bid_amount_accepts_json_number(self, client, customer_id, worker_one_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        response = await client.post(
            "/api/bids",
            content=f'{{"task_id": "{task_id}", "amount": 25.5}}'.encode(),
            headers={**auth(worker_one_id), "Content-Type": "application/json"},
        )
        assert response.status_code == 201
        assert response.json()["amount"] == "25.50"

    @pytest.mark.unit
    async def test_huge_json_number_is_validation_error(self, client, customer_id, worker_one_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        response = await client.post(
            "/api/bids",
            content=f'{{"task_id": "{task_id}", "amount": 1e30}}'.encode(),
            headers={**auth(worker_one_id), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert response.json()["details"] == {"field": "amount"}

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", ["0", "-5.00", "abc", None, True, "1.005", "1e30", 10**30])
    async def test_invalid_amount(self, client, customer_id, worker_one_id, amount):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        response = await submit_bid(client, worker_one_id, task_id, amount)
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert response.json()["details"]["field"] == "amount"

    @pytest.mark.unit
    async def test_bid_on_missing_task(self, client, worker_one_id):
        response = await submit_bid(client, worker_one_id, "t-missing")
        assert response.status_code == 404
        assert response.json()["error"] == "TASK_NOT_FOUND"

    @pytest.mark.unit
    async def test_self_bid_rejected(self, client, customer_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        response = await submit_bid(client, customer_id, task_id)
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.unit
    async def test_duplicate_pending_bid_rejected(self, client, customer_id, worker_one_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        assert (await submit_bid(client, worker_one_id, task_id, "25.00")).status_code == 201

        response = await submit_bid(client, worker_one_id, task_id, "24.00")
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

    @pytest.mark.unit
    async def test_bid_on_cancelled_task_creates_no_row(self, client, customer_id, worker_one_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        cancel = await client.patch(
            f"/api/tasks/{task_id}/status",
            json={"status": "cancelled"},
            headers=auth(customer_id),
        )
        assert cancel.status_code == 200

        response = await submit_bid(client, worker_one_id, task_id)
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

        bids = await client.get(f"/api/tasks/{task_id}/bids", headers=auth(customer_id))
        assert bids.json()["bids"] == []

    @pytest.mark.unit
    async def test_bid_notifies_task_owner(self, client, customer_id, worker_one_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        state = get_app_state()
        sent = []

        async def record(user_id, event):
            sent.append((user_id, event))

        state.notifier.send = record
        await submit_bid(client, worker_one_id, task_id, "25.00")

        assert len(sent) == 1
        user_id, event = sent[0]
        assert user_id == customer_id
        assert event.type == "NEW_BID"
        assert event.data.task_id == task_id


class TestListBids:
    """GET /api/tasks/{task_id}/bids and GET /api/bids/my"""

    @pytest.mark.unit
    async def test_bids_sorted_ascending_with_worker(
        self, client, customer_id, worker_one_id, worker_two_id
    ):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        await submit_bid(client, worker_one_id, task_id, "30.00")
        await submit_bid(client, worker_two_id, task_id, "9.50")

        response = await client.get(f"/api/tasks/{task_id}/bids", headers=auth(customer_id))
        assert response.status_code == 200

        bids = response.json()["bids"]
        assert [bid["amount"] for bid in bids] == ["9.50", "30.00"]
        assert bids[0]["worker"]["user_id"] == worker_two_id
        assert bids[0]["worker"]["display_name"] == "worker-two"

    @pytest.mark.unit
    async def test_list_bids_missing_task(self, client, customer_id):
        response = await client.get("/api/tasks/t-missing/bids", headers=auth(customer_id))
        assert response.status_code == 404

    @pytest.mark.unit
    async def test_my_bids(self, client, customer_id, worker_one_id, worker_two_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        mine = (await submit_bid(client, worker_one_id, task_id)).json()["bid_id"]
        await submit_bid(client, worker_two_id, task_id)

        response = await client.get("/api/bids/my", headers=auth(worker_one_id))
        assert response.status_code == 200
        assert [bid["bid_id"] for bid in response.json()["bids"]] == [mine]


class TestWithdrawBid:
    """POST /api/bids/{bid_id}/withdraw"""

    @pytest.mark.unit
    async def test_withdraw_own_pending_bid(self, client, customer_id, worker_one_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        bid_id = (await submit_bid(client, worker_one_id, task_id)).json()["bid_id"]

        response = await client.post(f"/api/bids/{bid_id}/withdraw", headers=auth(worker_one_id))
        assert response.status_code == 200
        assert response.json()["status"] == "withdrawn"

        # A withdrawn bid frees the worker to bid again
        again = await submit_bid(client, worker_one_id, task_id, "20.00")
        assert again.status_code == 201

    @pytest.mark.unit
    async def test_withdraw_someone_elses_bid(self, client, customer_id, worker_one_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        bid_id = (await submit_bid(client, worker_one_id, task_id)).json()["bid_id"]

        response = await client.post(f"/api/bids/{bid_id}/withdraw", headers=auth(customer_id))
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_withdraw_accepted_bid(self, client, customer_id, worker_one_id):
        _task_id, bid_id = await assigned_task(client, customer_id, worker_one_id)

        response = await client.post(f"/api/bids/{bid_id}/withdraw", headers=auth(worker_one_id))
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

    @pytest.mark.unit
    async def test_withdraw_missing_bid(self, client, worker_one_id):
        response = await client.post("/api/bids/bid-missing/withdraw", headers=auth(worker_one_id))
        assert response.status_code == 404
        assert response.json()["error"] == "BID_NOT_FOUND"


class TestAcceptBid:
    """POST /api/bids/{bid_id}/accept"""

    @pytest.mark.unit
    async def test_accept_lowest_bid_scenario(
        self, client, customer_id, worker_one_id, worker_two_id
    ):
        """W1 bids 25, W2 bids 30; accepting W1 assigns at 25.00 with a 2.50 fee."""
        task_id = (
            await create_task(client, customer_id, budget_min="20.00", budget_max="40.00")
        ).json()["task_id"]
        w1_bid = (await submit_bid(client, worker_one_id, task_id, "25.00")).json()["bid_id"]
        w2_bid = (await submit_bid(client, worker_two_id, task_id, "30.00")).json()["bid_id"]

        response = await accept_bid(client, customer_id, w1_bid)
        assert response.status_code == 200

        data = response.json()
        assert data["bid"]["status"] == "accepted"
        assert data["task"]["status"] == "assigned"
        assert data["task"]["worker_id"] == worker_one_id
        assert data["task"]["final_price"] == "25.00"
        assert data["payment"]["amount"] == "25.00"
        assert data["payment"]["platform_fee"] == "2.50"
        assert data["payment"]["status"] == "pending"
        assert data["payment"]["payment_id"].startswith("pay-")
        assert data["rejected_bid_ids"] == [w2_bid]

        bids = (await client.get(f"/api/tasks/{task_id}/bids", headers=auth(customer_id))).json()
        statuses = {bid["bid_id"]: bid["status"] for bid in bids["bids"]}
        assert statuses == {w1_bid: "accepted", w2_bid: "rejected"}

    @pytest.mark.unit
    async def test_worker_cannot_accept(self, client, customer_id, worker_one_id, worker_two_id):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        bid_id = (await submit_bid(client, worker_one_id, task_id)).json()["bid_id"]

        response = await accept_bid(client, worker_two_id, bid_id)
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

        task = await client.get(f"/api/tasks/{task_id}", headers=auth(customer_id))
        assert task.json()["status"] == "open"

    @pytest.mark.unit
    async def test_accept_missing_bid(self, client, customer_id):
        response = await accept_bid(client, customer_id, "bid-missing")
        assert response.status_code == 404
        assert response.json()["error"] == "BID_NOT_FOUND"

    @pytest.mark.unit
    async def test_second_accept_is_invalid_state(
        self, client, customer_id, worker_one_id, worker_two_id
    ):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        first = (await submit_bid(client, worker_one_id, task_id)).json()["bid_id"]
        second = (await submit_bid(client, worker_two_id, task_id, "30.00")).json()["bid_id"]
        assert (await accept_bid(client, customer_id, first)).status_code == 200

        response = await accept_bid(client, customer_id, second)
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

    @pytest.mark.unit
    async def test_bid_after_assignment_is_invalid_state(
        self, client, customer_id, worker_one_id, stranger_id
    ):
        task_id, _bid_id = await assigned_task(client, customer_id, worker_one_id)

        response = await submit_bid(client, stranger_id, task_id, "20.00")
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

    @pytest.mark.unit
    async def test_concurrent_accepts_one_wins(
        self, client, customer_id, worker_one_id, worker_two_id
    ):
        task_id = (await create_task(client, customer_id)).json()["task_id"]
        first = (await submit_bid(client, worker_one_id, task_id, "25.00")).json()["bid_id"]
        second = (await submit_bid(client, worker_two_id, task_id, "30.00")).json()["bid_id"]

        responses = await asyncio.gather(
            accept_bid(client, customer_id, first),
            accept_bid(client, customer_id, second),
        )
        codes = sorted(response.status_code for response in responses)
        assert codes == [200, 409]

        bids = (await client.get(f"/api/tasks/{task_id}/bids", headers=auth(customer_id))).json()
        accepted = [bid for bid in bids["bids"] if bid["status"] == "accepted"]
        assert len(accepted) == 1

        task = (await client.get(f"/api/tasks/{task_id}", headers=auth(customer_id))).json()
        assert task["worker_id"] == accepted[0]["worker_id"]
        assert task["final_price"] == accepted[0]["amount"]
