"""Router test fixtures with mocked identity and payment processor services."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from task_bidder_service.app import create_app
from task_bidder_service.config import clear_settings_cache
from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.core.lifespan import lifespan
from task_bidder_service.core.state import get_app_state, reset_app_state
from tests.helpers import install_service_mocks, write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

# ---------------------------------------------------------------------------
# Fixed user IDs
# ---------------------------------------------------------------------------
CUSTOMER_ID = "u-customer"
WORKER_ONE_ID = "u-worker-one"
WORKER_TWO_ID = "u-worker-two"
STRANGER_ID = "u-stranger"


@pytest.fixture
def customer_id() -> str:
    return CUSTOMER_ID


@pytest.fixture
def worker_one_id() -> str:
    return WORKER_ONE_ID


@pytest.fixture
def worker_two_id() -> str:
    return WORKER_TWO_ID


@pytest.fixture
def stranger_id() -> str:
    return STRANGER_ID


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    config_path = write_config(tmp_path)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        install_service_mocks(get_app_state())

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_unavailable(app: Any) -> None:
    """Configure the identity mock to simulate service unavailability."""
    state = get_app_state()
    state.identity_client.resolve_session = AsyncMock(
        side_effect=ServiceError(
            "IDENTITY_SERVICE_UNAVAILABLE", "Cannot connect to identity service", 502, {}
        )
    )


@pytest.fixture
def mock_processor_unavailable(app: Any) -> None:
    """Configure the payment processor mock to simulate unavailability."""
    state = get_app_state()
    state.payment_processor_client.create_payment_intent = AsyncMock(
        side_effect=ServiceError(
            "PAYMENT_PROCESSOR_UNAVAILABLE", "Cannot connect to payment processor", 502, {}
        )
    )
