"""FastAPI application factory and lifespan management.

create_app() builds the fully configured application: logging,
middleware, exception handlers, and routes. The lifespan context
manager wires the database engine, the case service and the billing
workflow engine onto app.state, and releases them on shutdown.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from lexbill.api.dependencies import get_settings
from lexbill.api.middleware import RequestTracingMiddleware, register_exception_handlers
from lexbill.api.routes import api_router
from lexbill.core.config import Settings
from lexbill.core.logging import setup_logging
from lexbill.db.session import create_engine, create_session_factory
from lexbill.services.billing.workflow import BillingWorkflowEngine
from lexbill.services.cases.service import CaseService
from lexbill.services.email.transport import SmtpEmailTransport
from lexbill.services.references.allocator import ReferenceAllocator
from lexbill.services.signing.backend import HttpSignerBackend

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown."""
    settings: Settings = app.state.settings
    logger.info("application_starting", version="0.1.0", debug=settings.debug)

    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    signer_backend = HttpSignerBackend(settings.signer_url) if settings.signing_configured else None
    email_transport = SmtpEmailTransport.from_settings(settings)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.case_service = CaseService(session_factory, ReferenceAllocator(session_factory))
    app.state.workflow_engine = BillingWorkflowEngine.from_settings(
        settings,
        session_factory,
        signer_backend=signer_backend,
        email_transport=email_transport,
    )
    logger.info(
        "billing_ready",
        email_configured=email_transport is not None,
        signing=app.state.workflow_engine.signature_info().kind.value,
    )

    yield

    logger.info("application_shutting_down")
    if signer_backend is not None:
        await signer_backend.close()
    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return a fully configured FastAPI application."""
    if settings is None:
        settings = get_settings()

    setup_logging(settings)

    app = FastAPI(
        title="LexBill",
        description="Case reference allocation and billing document workflows for a law firm",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings

    app.add_middleware(RequestTracingMiddleware)

    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.api_prefix)

    return app
