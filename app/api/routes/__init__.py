"""
Single mount point for the v1 API.

Usage in app.main:
    from app.api.routes import mount_v1
    mount_v1(app)
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from app.api.v1 import create_api_router
from app.core.logging import get_logger

logger = get_logger(__name__)


def mount_v1(app: FastAPI, base_prefix: Optional[str] = None) -> bool:
    """
    Mount every v1 router once. Returns False if this app already has them.
    """
    if getattr(app.state, "v1_mounted", False):
        logger.debug("v1 routers already mounted; skipping")
        return False
    app.include_router(create_api_router(base_prefix))
    app.state.v1_mounted = True
    logger.info("API v1 routers mounted", prefix=base_prefix or "default")
    return True


__all__ = ["mount_v1"]
