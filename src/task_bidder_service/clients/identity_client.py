"""Async HTTP client for the session (identity) service."""

from __future__ import annotations

from typing import Any

import httpx

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.logging import get_logger


class IdentityClient:
    """
    Client for session token resolution.

    Bearer tokens are opaque to this service; the identity service maps
    them to a user via POST {verify_session_path}.
    """

    def __init__(
        self,
        base_url: str,
        verify_session_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_session_path = verify_session_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def resolve_session(self, token: str) -> dict[str, Any]:
        """
        Resolve a session token into the identity it belongs to.

        Args:
            token: opaque bearer token from the Authorization header

        Returns:
            dict with keys: valid (bool), user_id (str), display_name (str | None)

        Raises:
            ServiceError: UNAUTHORIZED (401) if the identity service says valid=false
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._verify_session_path,
                json={"token": token},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Cannot connect to identity service",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code in (401, 404):
            raise ServiceError(
                error="UNAUTHORIZED",
                message="Session is not valid",
                status_code=401,
                details={},
            )

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={
                    "status_code": response.status_code,
                    "base_url": self._base_url,
                },
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned unexpected status",
                status_code=502,
                details={},
            )

        try:
            result = response.json()
        except ValueError as exc:
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned an unreadable body",
                status_code=502,
                details={},
            ) from exc

        if (
            not isinstance(result, dict)
            or not result.get("valid", False)
            or not isinstance(result.get("user_id"), str)
        ):
            raise ServiceError(
                error="UNAUTHORIZED",
                message="Session is not valid",
                status_code=401,
                details={},
            )

        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
