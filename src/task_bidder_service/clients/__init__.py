"""HTTP clients for the session service and the payment processor."""

from task_bidder_service.clients.identity_client import IdentityClient
from task_bidder_service.clients.payment_processor_client import PaymentProcessorClient

__all__ = ["IdentityClient", "PaymentProcessorClient"]
