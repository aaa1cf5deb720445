"""Health check endpoints.

- /health - Service health, LLM credential presence and scheduler state
- /health/db - Database connection pool health
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from weekletter.config import APP_VERSION, USE_LLM
from weekletter.observability.telemetry import get_counter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Health check endpoint.

    Reports credential presence for Vertex AI without calling it.
    """
    runtime = getattr(request.app.state, "runtime", None)

    return {
        "status": "healthy",
        "service": "weekletter",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "enabled": USE_LLM,
            "google_cloud_project": bool(os.getenv("GOOGLE_CLOUD_PROJECT")),
        },
        "scheduler": {
            "running": bool(runtime and runtime.scheduler.is_running),
            "subjects": [s.id for s in runtime.subjects] if runtime else [],
            "ticks_skipped": get_counter("scheduler.tick_skipped"),
        },
    }


@router.get("/health/db")
async def database_health() -> dict[str, Any]:
    """
    Database health check endpoint.

    Alerts if pool usage exceeds 80%.
    """
    from weekletter.infrastructure.database import get_pool_stats

    stats = get_pool_stats()
    usage_percent = stats["usage_percent"]

    return {
        "status": "degraded" if usage_percent > 80 else "healthy",
        "pool": stats,
        "warning": "Pool usage high" if usage_percent > 80 else None,
    }
