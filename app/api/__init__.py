"""
API package.

    from app.api import mount_v1
    mount_v1(app)
"""

from app.api.routes import mount_v1

__all__ = ["mount_v1"]
