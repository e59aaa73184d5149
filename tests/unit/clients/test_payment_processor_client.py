from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from task_bidder_service.clients.payment_processor_client import PaymentProcessorClient
from task_bidder_service.core.exceptions import ServiceError

_METADATA = {"task_id": "t-1", "payment_id": "pay-1"}


def _make_client(mock_response: httpx.Response) -> tuple[PaymentProcessorClient, AsyncMock]:
    """Create a PaymentProcessorClient with a mock HTTP transport."""
    client = PaymentProcessorClient(
        base_url="http://mock-processor:8020",
        payment_intents_path="/v1/payment_intents",
        currency="usd",
        api_key="sk-test",
        timeout_seconds=5,
    )
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.post = AsyncMock(return_value=mock_response)
    client._client = mock_http
    return client, mock_http


def _mock_response(status_code: int, json_body: Any) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        json=json_body,
        request=httpx.Request("POST", "http://mock-processor:8020/v1/payment_intents"),
    )


@pytest.mark.unit
async def test_create_intent_sends_cents_and_currency() -> None:
    client, mock_http = _make_client(
        _mock_response(201, {"id": "pi_1", "client_secret": "pi_1_secret"})
    )

    result = await client.create_payment_intent(amount_cents=2500, metadata=_METADATA)

    assert result["client_secret"] == "pi_1_secret"
    mock_http.post.assert_awaited_once_with(
        "/v1/payment_intents",
        json={"amount": 2500, "currency": "usd", "metadata": _METADATA},
    )


@pytest.mark.unit
async def test_api_key_sent_as_bearer() -> None:
    client = PaymentProcessorClient(
        base_url="http://mock-processor:8020",
        payment_intents_path="/v1/payment_intents",
        currency="usd",
        api_key="sk-test",
        timeout_seconds=5,
    )
    assert client._client.headers["Authorization"] == "Bearer sk-test"
    await client.close()


@pytest.mark.unit
@pytest.mark.parametrize(
    ("status_code", "body"),
    [
        (402, {"error": "card_declined"}),
        (500, {"error": "internal"}),
        (200, {"id": "pi_1"}),
        (200, {"client_secret": "s"}),
    ],
)
async def test_bad_responses_are_unavailable(status_code: int, body: Any) -> None:
    client, _mock_http = _make_client(_mock_response(status_code, body))

    with pytest.raises(ServiceError) as exc_info:
        await client.create_payment_intent(amount_cents=100, metadata=_METADATA)

    assert exc_info.value.status_code == 502
    assert exc_info.value.error == "PAYMENT_PROCESSOR_UNAVAILABLE"


@pytest.mark.unit
async def test_connection_failure_is_unavailable() -> None:
    client, mock_http = _make_client(_mock_response(200, {}))
    mock_http.post = AsyncMock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(ServiceError) as exc_info:
        await client.create_payment_intent(amount_cents=100, metadata=_METADATA)

    assert exc_info.value.error == "PAYMENT_PROCESSOR_UNAVAILABLE"
