"""API routers."""

from task_bidder_service.routers import bids, health, messages, payments, tasks, users, websocket

__all__ = ["bids", "health", "messages", "payments", "tasks", "users", "websocket"]
