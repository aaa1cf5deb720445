"""HTTP API and process entry point."""

from __future__ import annotations

import os


def main() -> None:
    """Run the API (and with it the scheduler) under uvicorn."""
    import uvicorn

    uvicorn.run(
        "weekletter.api.app:app",
        host=os.getenv("WEEKLETTER_HOST", "127.0.0.1"),
        port=int(os.getenv("WEEKLETTER_PORT", "8000")),
        log_level=os.getenv("WEEKLETTER_LOG_LEVEL", "info").lower(),
    )
