"""Service layer components."""

from task_bidder_service.services.bid_ledger import BidLedger
from task_bidder_service.services.entity_store import EntityStore
from task_bidder_service.services.message_board import MessageBoard
from task_bidder_service.services.notifier import ConnectionRegistry
from task_bidder_service.services.session_authenticator import SessionAuthenticator
from task_bidder_service.services.settlement import SettlementInitiator
from task_bidder_service.services.task_lifecycle import TaskLifecycleManager

__all__ = [
    "BidLedger",
    "ConnectionRegistry",
    "EntityStore",
    "MessageBoard",
    "SessionAuthenticator",
    "SettlementInitiator",
    "TaskLifecycleManager",
]
