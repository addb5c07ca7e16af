"""
User asset repository: upload media to R2 and record it in `assets`.

Records are append-only. There is no update path; a wrong asset is deleted
and generated again.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .database import SupabaseStore
from .errors import PersistenceError, UploadError, ValidationError
from .models import AssetType, GeneratedAsset
from .storage import UploadGateway, UploadResult

logger = logging.getLogger(__name__)

CATEGORIES = ("images", "videos", "characters", "tiktok", "comics")


@dataclass(frozen=True)
class SavedAsset:
    asset: GeneratedAsset
    upload: Optional[UploadResult] = None

    @property
    def degraded(self) -> bool:
        return bool(self.upload and self.upload.degraded)


def infer_category(asset: GeneratedAsset) -> str:
    if asset.type == AssetType.VIDEO:
        return "videos"
    if asset.type == AssetType.CHARACTER:
        return "characters"
    prompt = (asset.prompt or "").lower()
    if "tiktok" in prompt or "ugc" in prompt:
        return "tiktok"
    if "comic" in prompt or "cartoon" in prompt:
        return "comics"
    return "images"


class AssetRepository:
    def __init__(self, store: SupabaseStore, gateway: UploadGateway):
        self.store = store
        self.gateway = gateway

    async def save_user_asset(
        self,
        user_id: str,
        asset: GeneratedAsset,
        category: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> SavedAsset:
        """
        Upload (if embedded) and insert one asset row.

        Upload failures degrade to the embedded payload and are not raised.

        Raises:
            PersistenceError: the row insert failed; `err.asset` is the record
                              the caller may still show.
        """
        upload = None
        url = asset.url
        if url.startswith("data:"):
            category = category or infer_category(asset)
            upload = await self.gateway.upload_asset(
                url,
                user_id,
                category,
                {"name": (metadata or {}).get("name"), "prompt": asset.prompt},
            )
            url = upload.url

        saved = asset.model_copy(update={"url": url, "user_id": user_id})
        try:
            await asyncio.to_thread(self.store.insert_asset, saved.to_row())
        except PersistenceError as e:
            logger.error(f"Failed to save asset {saved.id} for user {user_id}: {e}")
            raise PersistenceError(str(e), asset=saved) from e

        logger.info(f"Saved {saved.type.value} asset {saved.id} for user {user_id}")
        return SavedAsset(asset=saved, upload=upload)

    async def list_user_assets(
        self,
        user_id: str,
        asset_type: Optional[AssetType] = None,
        limit: Optional[int] = None,
    ) -> list[GeneratedAsset]:
        """Newest first."""
        rows = await asyncio.to_thread(self.store.list_assets, user_id, asset_type, limit)
        return [GeneratedAsset.from_row(row) for row in rows]

    async def delete_user_asset(self, user_id: str, asset_id: str) -> None:
        """Remove the stored object (best effort) and then the row."""
        row = await asyncio.to_thread(self.store.get_asset, user_id, asset_id)
        if row is None:
            raise ValidationError("Asset not found.")

        key = self.gateway.storage.key_for_url(row.get("url") or "")
        if key:
            try:
                await asyncio.to_thread(self.gateway.storage.delete, key)
            except UploadError as e:
                logger.warning(f"Storage delete failed for asset {asset_id}, removing row anyway: {e}")

        await asyncio.to_thread(self.store.delete_asset, user_id, asset_id)
        logger.info(f"Deleted asset {asset_id} for user {user_id}")

    async def count_user_assets(self, user_id: str, asset_type: Optional[AssetType] = None) -> int:
        return await asyncio.to_thread(self.store.count_assets, user_id, asset_type)

    async def get_user_asset_stats(self, user_id: str) -> dict:
        total = await self.count_user_assets(user_id)
        images = await self.count_user_assets(user_id, AssetType.IMAGE)
        videos = await self.count_user_assets(user_id, AssetType.VIDEO)
        characters = await self.count_user_assets(user_id, AssetType.CHARACTER)
        return {"total": total, "images": images, "videos": videos, "characters": characters}
