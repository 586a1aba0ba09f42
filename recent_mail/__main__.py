"""Entry point: ``python -m recent_mail``."""

from __future__ import annotations

import uvicorn

from .config import ServiceConfig
from .logging import setup_logging


def main() -> None:
    settings = ServiceConfig()
    setup_logging(json=settings.log_json, level=settings.log_level)

    uvicorn.run(
        "recent_mail.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
