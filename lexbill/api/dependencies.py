"""Depends() providers for the route handlers.

The lifespan builds the engine, the case service and the billing workflow
engine once and parks them on app.state; each provider below hands one of
them to a handler. Tests swap them through app.dependency_overrides.
"""

from functools import lru_cache
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from lexbill.core.config import Settings
from lexbill.services.billing.workflow import BillingWorkflowEngine
from lexbill.services.cases.service import CaseService


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings read from the environment, built once per process."""
    return Settings()


def _from_state(request: Request, name: str) -> Any:
    return getattr(request.app.state, name)


def get_settings_from_app(request: Request) -> Settings:
    """The settings the running app was created with, which may differ
    from the environment when create_app() received explicit ones."""
    settings: Settings = _from_state(request, "settings")
    return settings


def get_case_service(request: Request) -> CaseService:
    service: CaseService = _from_state(request, "case_service")
    return service


def get_workflow_engine(request: Request) -> BillingWorkflowEngine:
    engine: BillingWorkflowEngine = _from_state(request, "workflow_engine")
    return engine


def get_db_engine(request: Request) -> AsyncEngine:
    engine: AsyncEngine = _from_state(request, "engine")
    return engine
