"""Read, list and delete operations over image and analysis records."""

from __future__ import annotations

import logging
from typing import List, Optional

from .errors import ForbiddenError, NotFoundError
from .metadata_store import MetadataStore
from .models import AnalysisRecord, Claims, ImageRecord
from .object_store import ObjectStore

logger = logging.getLogger(__name__)


def ensure_owner(claims: Claims, owner_id: str) -> None:
    """Admins see everything; everyone else only their own records."""
    if claims.is_admin:
        return
    if owner_id != claims.sub:
        raise ForbiddenError("You do not have access to this resource")


class QueryHandler:
    def __init__(self, object_store: ObjectStore, metadata_store: MetadataStore, url_expiry: int = 3600):
        self.object_store = object_store
        self.metadata_store = metadata_store
        self.url_expiry = url_expiry

    async def _owned_image(self, claims: Claims, image_id: str) -> ImageRecord:
        image = await self.metadata_store.get_image(image_id)
        if image is None:
            raise NotFoundError("Image not found")
        ensure_owner(claims, image.user_id)
        return image

    async def list_images(self, claims: Claims) -> List[ImageRecord]:
        logger.info(f"Listing images for user {claims.sub} (admin={claims.is_admin})")
        if claims.is_admin:
            images = await self.metadata_store.list_images()
        else:
            images = await self.metadata_store.list_images_for_user(claims.sub)
        images.sort(key=lambda image: image.uploaded_at, reverse=True)
        return images

    async def get_image(self, claims: Claims, image_id: str) -> ImageRecord:
        return await self._owned_image(claims, image_id)

    async def get_image_url(self, claims: Claims, image_id: str) -> str:
        image = await self._owned_image(claims, image_id)
        return await self.object_store.presigned_get_url(image.s3_key, expires_in=self.url_expiry)

    async def delete_image(self, claims: Claims, image_id: str) -> ImageRecord:
        """Delete the stored object, the image record and its analysis record."""
        image = await self._owned_image(claims, image_id)
        await self.object_store.delete_object(image.s3_key)
        await self.metadata_store.delete_image(image_id)
        await self.metadata_store.delete_analysis(image_id)
        logger.info(f"[{image_id}] Image deleted by user {claims.sub}")
        return image

    async def list_analyses(self, claims: Claims) -> List[AnalysisRecord]:
        if claims.is_admin:
            analyses = await self.metadata_store.list_analyses()
        else:
            analyses = await self.metadata_store.list_analyses_for_user(claims.sub)
        # Both paths include in-flight records; they have no timestamp and sort last.
        analyses.sort(key=lambda analysis: analysis.analyzed_at or "", reverse=True)
        return analyses

    async def get_analysis(self, claims: Claims, image_id: str) -> AnalysisRecord:
        analysis: Optional[AnalysisRecord] = await self.metadata_store.get_analysis(image_id)
        if analysis is None:
            raise NotFoundError("Analysis not found")
        ensure_owner(claims, analysis.user_id)
        return analysis
