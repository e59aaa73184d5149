"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from task_bidder_service.clients.identity_client import IdentityClient
    from task_bidder_service.clients.payment_processor_client import PaymentProcessorClient
    from task_bidder_service.services.bid_ledger import BidLedger
    from task_bidder_service.services.entity_store import EntityStore
    from task_bidder_service.services.message_board import MessageBoard
    from task_bidder_service.services.notifier import ConnectionRegistry
    from task_bidder_service.services.session_authenticator import SessionAuthenticator
    from task_bidder_service.services.settlement import SettlementInitiator
    from task_bidder_service.services.task_lifecycle import TaskLifecycleManager


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: EntityStore | None = None
    notifier: ConnectionRegistry | None = None
    identity_client: IdentityClient | None = None
    payment_processor_client: PaymentProcessorClient | None = None
    session_authenticator: SessionAuthenticator | None = None
    settlement: SettlementInitiator | None = None
    bid_ledger: BidLedger | None = None
    task_lifecycle: TaskLifecycleManager | None = None
    message_board: MessageBoard | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep service client references in sync with AppState fields."""
        super().__setattr__(name, value)
        if value is None:
            return

        session_authenticator = self.__dict__.get("session_authenticator")
        if name == "identity_client" and session_authenticator is not None:
            session_authenticator.set_identity_client(value)

        settlement = self.__dict__.get("settlement")
        if name == "payment_processor_client" and settlement is not None:
            settlement.set_payment_processor_client(value)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
