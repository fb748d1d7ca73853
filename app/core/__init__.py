# app/core/__init__.py
"""
OrderDesk core package: settings, logging, exceptions, database, actor identity.
"""

from __future__ import annotations

from app.core.config import get_settings, settings

__all__ = ["get_settings", "settings"]
