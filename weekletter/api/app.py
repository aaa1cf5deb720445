"""FastAPI server for weekletter: admin endpoints plus the scheduler lifecycle"""

from __future__ import annotations

import os
import sqlite3
import threading
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from weekletter.api.routes.documents import router as documents_router
from weekletter.api.routes.health import router as health_router
from weekletter.api.routes.reminders import router as reminders_router
from weekletter.api.routes.retries import router as retries_router
from weekletter.config import APP_VERSION
from weekletter.errors import ConfigurationError
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter, log_event

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)

app = FastAPI(title="weekletter API", version=APP_VERSION)

WAL_CHECKPOINT_INTERVAL_SECONDS = 300
_checkpoint_stop = threading.Event()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return field names only, not the validation internals."""
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


app.include_router(health_router)
app.include_router(reminders_router)
app.include_router(documents_router)
app.include_router(retries_router)


# ============================================================================
# WAL CHECKPOINT BACKGROUND TASK
# ============================================================================
def _wal_checkpoint_loop() -> None:
    """Periodically fold the WAL file back into the database

    Side Effects:
        - Calls checkpoint_wal() on weekletter.db
        - Runs until shutdown sets _checkpoint_stop
    """
    from weekletter.infrastructure.database import checkpoint_wal

    while not _checkpoint_stop.wait(WAL_CHECKPOINT_INTERVAL_SECONDS):
        try:
            stats = checkpoint_wal()
            if stats["bytes_freed"] > 1024 * 1024:
                logger.info("WAL checkpoint freed %d MB", stats["bytes_freed"] // (1024 * 1024))
        except Exception as e:
            logger.error("WAL checkpoint failed: %s", e)


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================
@app.on_event("startup")
async def start_runtime() -> None:
    """Initialize the database, validate it and start the scheduler

    Side Effects:
        - Creates weekletter.db tables if missing
        - Stores the Runtime on app.state.runtime
        - Starts the scheduler thread (unless WEEKLETTER_SCHEDULER_ENABLED=false)
        - Starts the WAL checkpoint thread
    """
    from weekletter.infrastructure.database import validate_schema
    from weekletter.runtime import build_runtime

    try:
        runtime = build_runtime()
        validate_schema()
        logger.info("Database schema validation passed")
    except ConfigurationError as e:
        logger.critical("Configuration error: %s", e)
        raise RuntimeError(f"Startup failed: {e}") from e
    except (sqlite3.OperationalError, ValueError) as e:
        logger.critical("Database schema invalid: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e

    app.state.runtime = runtime

    if os.getenv("WEEKLETTER_SCHEDULER_ENABLED", "true").lower() == "true":
        runtime.start()
    else:
        logger.warning("Scheduler disabled by WEEKLETTER_SCHEDULER_ENABLED=false")

    _checkpoint_stop.clear()
    threading.Thread(target=_wal_checkpoint_loop, name="wal-checkpoint", daemon=True).start()

    log_event("api.startup", service="weekletter", version=APP_VERSION)


@app.on_event("shutdown")
async def stop_runtime() -> None:
    _checkpoint_stop.set()
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        runtime.stop()
        app.state.runtime = None
    log_event("api.shutdown", service="weekletter")


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "weekletter API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "reminders": "/api/reminders",
            "documents": "/api/documents/{subject}/latest",
            "retries": "/api/retries",
        },
    }
