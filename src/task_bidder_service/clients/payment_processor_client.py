"""Async HTTP client for the external payment processor."""

from __future__ import annotations

from typing import Any

import httpx

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.logging import get_logger


class PaymentProcessorClient:
    """
    Client for payment intent creation.

    Amounts are sent in integer minor units (cents) together with the
    configured currency. The processor answers with an intent id and a
    client secret that the UI uses to confirm the card payment.
    """

    def __init__(
        self,
        base_url: str,
        payment_intents_path: str,
        currency: str,
        api_key: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._payment_intents_path = payment_intents_path
        self._currency = currency
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def create_payment_intent(
        self,
        amount_cents: int,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        """
        Create a payment intent.

        Returns:
            dict with keys: id, client_secret

        Raises:
            ServiceError: PAYMENT_PROCESSOR_UNAVAILABLE (502) on connection/timeout/unexpected
                responses
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._payment_intents_path,
                json={
                    "amount": amount_cents,
                    "currency": self._currency,
                    "metadata": metadata,
                },
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Payment processor connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="PAYMENT_PROCESSOR_UNAVAILABLE",
                message="Cannot connect to payment processor",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Payment processor HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="PAYMENT_PROCESSOR_UNAVAILABLE",
                message="Payment processor request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code not in (200, 201):
            logger.warning(
                "Payment processor unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ServiceError(
                error="PAYMENT_PROCESSOR_UNAVAILABLE",
                message="Payment processor rejected the request",
                status_code=502,
                details={"processor_status": response.status_code},
            )

        try:
            result = response.json()
        except ValueError:
            result = None
        if (
            not isinstance(result, dict)
            or not isinstance(result.get("id"), str)
            or not isinstance(result.get("client_secret"), str)
        ):
            raise ServiceError(
                error="PAYMENT_PROCESSOR_UNAVAILABLE",
                message="Payment processor returned an incomplete intent",
                status_code=502,
                details={},
            )
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
