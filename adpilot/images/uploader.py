"""AdPilot — Image upload with checksum de-duplication (stage 5)."""

from dataclasses import dataclass

from adpilot.connectors.meta.client import MetaClient
from adpilot.core.logging import get_logger
from adpilot.images.cache import AssetCache, CachedImage
from adpilot.images.processor import ProcessedAsset

logger = get_logger("images.uploader")


@dataclass(frozen=True)
class UploadedImage:
    checksum: str
    image_hash: str
    image_url: str = ""
    cached: bool = False


class ImageUploader:
    def __init__(self, cache: AssetCache):
        self.cache = cache

    async def upload(
        self, asset: ProcessedAsset, ad_account_id: str, client: MetaClient
    ) -> UploadedImage:
        """Return the platform handle for ``asset``, uploading only on a cache miss."""
        hit = self.cache.get(ad_account_id, asset.checksum)
        if hit is not None:
            logger.info(
                f"Cache hit for {asset.source_ref or asset.checksum[:12]}, skipping upload",
                extra={"stage": "upload"},
            )
            return UploadedImage(
                checksum=asset.checksum,
                image_hash=hit.image_hash,
                image_url=hit.image_url,
                cached=True,
            )

        result = await client.upload_image(
            ad_account_id, asset.data, filename=f"{asset.checksum[:16]}.jpg"
        )
        stored = self.cache.put(
            ad_account_id,
            asset.checksum,
            CachedImage(image_hash=result["hash"], image_url=result.get("url", "")),
        )
        logger.info(
            f"Uploaded {asset.source_ref or asset.checksum[:12]} → {stored.image_hash}",
            extra={"stage": "upload"},
        )
        return UploadedImage(
            checksum=asset.checksum,
            image_hash=stored.image_hash,
            image_url=stored.image_url,
        )
