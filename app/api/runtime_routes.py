"""Runtime route registration: health endpoint and lifecycle hooks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import FastAPI

from app.api.contracts import HealthResponse, success_envelope
from app.auth.rate_limiter import EndpointRateLimiter
from app.auth.session_cache import CacheJanitor
from app.core.config import AppConfig
from app.core.detached import DetachedTaskRunner

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeRouteDeps:
    """Dependencies required to mount runtime routes."""

    config: AppConfig
    janitor: CacheJanitor
    runner: DetachedTaskRunner
    rate_limiter: EndpointRateLimiter
    uses_mongo: Callable[[], bool]
    on_shutdown: Callable[[], None] = lambda: None


def register_runtime_routes(app: FastAPI, *, deps: RuntimeRouteDeps) -> None:
    """Register the health endpoint and background start/stop hooks."""

    @app.on_event("startup")
    async def startup_background_work() -> None:
        purged = deps.rate_limiter.purge_expired()
        if purged:
            LOGGER.info("rate_limit_rows_purged", extra={"event": str(purged)})
        await deps.janitor.start()

    @app.on_event("shutdown")
    async def shutdown_background_work() -> None:
        await deps.janitor.stop()
        deps.runner.shutdown(wait=True)
        deps.rate_limiter.close()
        deps.on_shutdown()

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> dict[str, Any]:
        return success_envelope(
            "Service healthy",
            version=deps.config.api_version,
            data={
                "status": "ok",
                "environment": deps.config.environment,
                "storage": "mongo" if deps.uses_mongo() else "json",
            },
        )
