"""Serve the API with uvicorn: ``python -m signal_chat.api``."""

from __future__ import annotations

import uvicorn

from signal_chat.api.main import create_app
from signal_chat.config import Settings


def main() -> None:
    settings = Settings()
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
