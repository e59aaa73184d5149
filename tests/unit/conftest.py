"""Unit test fixtures: auto-clear caches between tests."""

import pytest

from task_bidder_service.config import clear_settings_cache
from task_bidder_service.core.state import reset_app_state
from task_bidder_service.services.entity_store import EntityStore


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def store(tmp_path):
    """A fresh entity store on a temp database."""
    entity_store = EntityStore(db_path=str(tmp_path / "store.db"), lock_timeout_seconds=5)
    yield entity_store
    entity_store.close()
