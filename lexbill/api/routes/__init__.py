"""Routers mounted by the app factory.

Health and metrics sit next to the case and billing routers under the
same prefix; the order below is the order they appear in the OpenAPI
document.
"""

from fastapi import APIRouter

from lexbill.api.routes import billing, cases, health

ROUTERS: tuple[APIRouter, ...] = (health.router, cases.router, billing.router)

api_router = APIRouter()
for _router in ROUTERS:
    api_router.include_router(_router)
