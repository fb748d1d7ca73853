"""
API v1 package.

- Collects every v1 router under settings.API_V1_STR.
- Adds a diagnostics endpoint: /api/v1/_debug/routers.
"""

from __future__ import annotations

import importlib
import time
from typing import List

from fastapi import APIRouter

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# Order matters: /order-products/deleted must win over /order-products/{id},
# which each module handles internally.
ROUTER_MODULES: List[str] = [
    "app.api.v1.orders",
    "app.api.v1.order_products",
    "app.api.v1.invoices",
    "app.api.v1.sms",
    "app.api.v1.settings",
    "app.api.v1.reports",
]


def create_api_router(api_prefix: str | None = None) -> APIRouter:
    """Create API router with all v1 endpoints."""
    api_prefix = api_prefix or settings.API_V1_STR
    api_router = APIRouter()
    registered: List[str] = []

    for module_name in ROUTER_MODULES:
        t0 = time.perf_counter()
        module = importlib.import_module(module_name)
        router = getattr(module, "router", None)
        if not isinstance(router, APIRouter):
            raise RuntimeError(f"{module_name} does not define an APIRouter named 'router'")
        api_router.include_router(router, prefix=api_prefix)
        registered.append(f"{module_name}:{router.prefix or ''}")
        logger.debug("Loaded router module", module=module_name, ms=round((time.perf_counter() - t0) * 1000, 1))

    diag = APIRouter(prefix=api_prefix, tags=["diagnostics"])

    @diag.get("/_debug/routers", summary="List loaded v1 routers")
    def list_loaded_routers():
        return {"registered": registered}

    api_router.include_router(diag)
    return api_router


__all__ = ["create_api_router", "ROUTER_MODULES"]
