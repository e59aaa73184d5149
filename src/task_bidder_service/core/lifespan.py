"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_bidder_service.clients.identity_client import IdentityClient
from task_bidder_service.clients.payment_processor_client import PaymentProcessorClient
from task_bidder_service.config import get_settings
from task_bidder_service.core.state import init_app_state
from task_bidder_service.logging import get_logger, setup_logging
from task_bidder_service.services.bid_ledger import BidLedger
from task_bidder_service.services.entity_store import EntityStore
from task_bidder_service.services.message_board import MessageBoard
from task_bidder_service.services.notifier import ConnectionRegistry
from task_bidder_service.services.session_authenticator import SessionAuthenticator
from task_bidder_service.services.settlement import SettlementInitiator
from task_bidder_service.services.task_lifecycle import TaskLifecycleManager

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    store = EntityStore(
        db_path=settings.database.path,
        lock_timeout_seconds=settings.database.lock_timeout_seconds,
    )
    state.store = store

    notifier = ConnectionRegistry()
    state.notifier = notifier

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_session_path=settings.identity.verify_session_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    payment_processor_client = PaymentProcessorClient(
        base_url=settings.payment_processor.base_url,
        payment_intents_path=settings.payment_processor.payment_intents_path,
        currency=settings.payment_processor.currency,
        api_key=settings.payment_processor.api_key,
        timeout_seconds=settings.payment_processor.timeout_seconds,
    )

    state.session_authenticator = SessionAuthenticator(
        identity_client=identity_client,
        store=store,
    )
    settlement = SettlementInitiator(
        store=store,
        payment_processor_client=payment_processor_client,
        platform_fee_rate=settings.settlement.platform_fee_rate,
    )
    state.settlement = settlement
    state.identity_client = identity_client
    state.payment_processor_client = payment_processor_client

    state.bid_ledger = BidLedger(
        store=store,
        settlement=settlement,
        notifier=notifier,
        max_message_length=settings.limits.max_message_length,
    )
    state.task_lifecycle = TaskLifecycleManager(
        store=store,
        notifier=notifier,
        limits=settings.limits,
    )
    state.message_board = MessageBoard(
        store=store,
        notifier=notifier,
        max_message_length=settings.limits.max_message_length,
        max_attachments=settings.limits.max_photos,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "identity_base_url": settings.identity.base_url,
            "payment_processor_base_url": settings.payment_processor.base_url,
            "platform_fee_rate": str(settings.settlement.platform_fee_rate),
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    await notifier.close()
    store.close()

    if state.identity_client is not None:
        await state.identity_client.close()
    if state.payment_processor_client is not None:
        await state.payment_processor_client.close()
