"""Bearer session resolution into a stored user record."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.concurrency import run_in_threadpool

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.services.clock import now_iso

if TYPE_CHECKING:
    from task_bidder_service.clients.identity_client import IdentityClient
    from task_bidder_service.models import User
    from task_bidder_service.services.entity_store import EntityStore


class SessionAuthenticator:
    """Resolves session tokens via the identity service and keeps the user table in sync."""

    def __init__(self, identity_client: IdentityClient, store: EntityStore) -> None:
        self._identity_client = identity_client
        self._store = store

    def set_identity_client(self, client: IdentityClient) -> None:
        self._identity_client = client

    async def authenticate(self, token: str | None) -> User:
        """
        Resolve a bearer token into the caller's user record.

        The user row is created on first sight and its display name refreshed
        on every call.

        Raises:
            ServiceError: UNAUTHORIZED if the token is missing or rejected
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE if the identity service is down
        """
        if not token:
            raise ServiceError("UNAUTHORIZED", "Authentication required", 401, {})

        identity = await self._identity_client.resolve_session(token)
        user_id = str(identity["user_id"])
        display_name = identity.get("display_name")
        if display_name is not None and not isinstance(display_name, str):
            display_name = None

        return await run_in_threadpool(self._store.upsert_user, user_id, display_name, now_iso())
