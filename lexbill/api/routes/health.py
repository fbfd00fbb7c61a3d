"""Health check and Prometheus metrics endpoints.

/health probes the database with a ``SELECT 1`` and checks that the
document directory (or the nearest existing parent, when it has not been
created yet) is writable. Email and the cryptographic signer are optional
collaborators; they are reported as configured or not rather than probed.
"""

import asyncio
import os
import time
from pathlib import Path

import structlog
from fastapi import APIRouter, Depends
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.responses import Response

from lexbill.api.dependencies import get_db_engine, get_settings_from_app
from lexbill.core.config import Settings
from lexbill.models.responses import DependencyHealth, HealthResponse

router = APIRouter(tags=["observability"])
logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_APP_VERSION = "0.1.0"
_start_time: float = time.time()


async def _probe_database(engine: AsyncEngine) -> DependencyHealth:
    """Run a trivial query through the application's engine."""
    start = time.perf_counter()
    try:
        async with engine.connect() as conn:
            await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=3.0)
        latency = (time.perf_counter() - start) * 1000
        return DependencyHealth(name="database", status="healthy", latency_ms=round(latency, 2))
    except Exception as exc:
        latency = (time.perf_counter() - start) * 1000
        logger.warning("database_probe_failed", error=str(exc)[:200])
        return DependencyHealth(
            name="database",
            status="unhealthy",
            latency_ms=round(latency, 2),
            details=str(exc)[:200],
        )


def _check_documents(documents_path: str) -> DependencyHealth:
    target = Path(documents_path).resolve()
    while not target.exists() and target != target.parent:
        target = target.parent
    if os.access(target, os.W_OK):
        return DependencyHealth(name="documents", status="healthy")
    return DependencyHealth(
        name="documents", status="unhealthy", details=f"{target} is not writable"
    )


def _configured(name: str, configured: bool, details: str) -> DependencyHealth:
    if configured:
        return DependencyHealth(name=name, status="healthy", details=details)
    return DependencyHealth(name=name, status="not_configured")


@router.get("/health", response_model=HealthResponse)
async def health_check(
    engine: AsyncEngine = Depends(get_db_engine),
    settings: Settings = Depends(get_settings_from_app),
) -> HealthResponse:
    """Check the database, the document directory and optional collaborators."""
    dependencies = [
        await _probe_database(engine),
        _check_documents(settings.documents_path),
        _configured(
            "email", settings.email_configured, f"{settings.smtp_host}:{settings.smtp_port}"
        ),
        _configured("signing", settings.signing_configured, settings.signer_url),
    ]

    status = "unhealthy" if any(d.status == "unhealthy" for d in dependencies) else "healthy"

    return HealthResponse(
        status=status,
        version=_APP_VERSION,
        uptime_seconds=round(time.time() - _start_time, 2),
        dependencies=dependencies,
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
