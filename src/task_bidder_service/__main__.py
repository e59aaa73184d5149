"""Run the service with uvicorn using the configured host and port."""

from __future__ import annotations

import uvicorn

from task_bidder_service.app import create_app
from task_bidder_service.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
