"""
Cloudinary-backed media storage for order product attachments.
"""

from typing import Any, Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader

from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.models.base import utc_now
from app.models.order import OrderMedia, OrderProduct

logger = get_logger(__name__)

# destroy() reports "not found" for assets that are already gone
REMOVED_RESULTS = {"ok", "not found"}


class MediaStorage:
    """Service for Cloudinary asset removal"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.enabled = self.settings.cloudinary_configured
        if self.enabled:
            cloudinary.config(
                cloud_name=self.settings.CLOUDINARY_CLOUD_NAME,
                api_key=self.settings.CLOUDINARY_API_KEY,
                api_secret=self.settings.CLOUDINARY_API_SECRET,
                secure=True,
            )

    def delete_asset(self, public_id: str) -> bool:
        """Delete one asset. Returns False instead of raising on storage errors."""
        try:
            result: dict[str, Any] = cloudinary.uploader.destroy(public_id)
        except (cloudinary.exceptions.Error, OSError) as e:
            logger.error("Cloudinary delete error", public_id=public_id, error=str(e))
            return False

        if result.get("result") in REMOVED_RESULTS:
            logger.info("Asset deleted from Cloudinary", public_id=public_id)
            return True
        logger.warning("Failed to delete asset", public_id=public_id, result=result.get("result"))
        return False

    def remove_product_media(self, product: OrderProduct) -> list[OrderMedia]:
        """
        Remove every still-stored attachment of a product.

        Stamps storage_removed_at on the rows that were removed and returns them.
        Rows stay in place so the product can still be audited or restored.
        """
        pending = [m for m in product.media if m.storage_removed_at is None]
        if not pending:
            return []
        if not self.enabled:
            logger.warning(
                "Cloudinary not configured; media left in storage",
                product_id=product.id,
                count=len(pending),
            )
            return []

        removed = []
        for media in pending:
            if self.delete_asset(media.public_id):
                media.storage_removed_at = utc_now()
                removed.append(media)
        if len(removed) < len(pending):
            logger.warning(
                "Some product media could not be removed",
                product_id=product.id,
                removed=len(removed),
                failed=len(pending) - len(removed),
            )
        return removed


__all__ = ["MediaStorage", "REMOVED_RESULTS"]
