"""AdPilot — Image Pipeline.

fetch → validate → process → cache lookup → upload, per creative asset.
Assets of one draft run concurrently under a bound; one asset failing does
not cancel its siblings.
"""

import asyncio
import time
from typing import List, Optional

from pydantic import BaseModel

from adpilot.config import settings
from adpilot.connectors.meta.client import MetaClient
from adpilot.core.errors import (
    CredentialRejectedError,
    PublishPipelineError,
    ValidationError,
)
from adpilot.core.logging import get_logger
from adpilot.images.cache import AssetCache, InMemoryAssetCache
from adpilot.images.fetcher import ImageFetcher
from adpilot.images.processor import ImageProcessor
from adpilot.images.uploader import ImageUploader
from adpilot.images.validator import ImageValidator
from adpilot.models.draft_models import CreativeAsset

logger = get_logger("images.pipeline")


class AssetResult(BaseModel):
    """Outcome of one asset through the pipeline."""

    ref: str
    required: bool = True
    success: bool = False
    checksum: Optional[str] = None
    image_hash: Optional[str] = None
    image_url: Optional[str] = None
    cached: bool = False
    warnings: List[str] = []
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    violations: List[str] = []


class ImagePipeline:
    def __init__(
        self,
        fetcher: ImageFetcher | None = None,
        cache: AssetCache | None = None,
        validator: ImageValidator | None = None,
        processor: ImageProcessor | None = None,
        concurrency: int | None = None,
    ):
        self.fetcher = fetcher or ImageFetcher()
        self.validator = validator or ImageValidator()
        self.processor = processor or ImageProcessor()
        self.uploader = ImageUploader(cache or InMemoryAssetCache())
        self.concurrency = concurrency or settings.image_upload_concurrency

    async def run_asset(
        self, asset: CreativeAsset, ad_account_id: str, client: MetaClient
    ) -> AssetResult:
        """Run one asset end to end.

        Pipeline errors become a failed ``AssetResult``. A rejected credential
        is re-raised since nothing else in the batch can succeed either.
        """
        result = AssetResult(ref=asset.ref, required=asset.required)
        started = time.perf_counter()
        try:
            fetched = await self.fetcher.fetch(asset.ref)

            validation = await asyncio.to_thread(
                self.validator.validate, fetched.data, asset.placement
            )
            result.warnings = [w.message for w in validation.warnings]
            if not validation.ok:
                raise ValidationError(
                    "; ".join(e.message for e in validation.errors),
                    violations=[e.code for e in validation.errors],
                )

            processed = await asyncio.to_thread(
                self.processor.process, fetched.data, asset.ref
            )
            uploaded = await self.uploader.upload(processed, ad_account_id, client)
        except CredentialRejectedError:
            raise
        except PublishPipelineError as e:
            result.error_kind = e.kind.value
            result.error_message = e.message
            result.violations = list(getattr(e, "violations", []))
            logger.warning(
                f"Asset {asset.ref} failed: {e.kind.value}: {e.message}",
                extra={"stage": "image"},
            )
            return result

        result.success = True
        result.checksum = uploaded.checksum
        result.image_hash = uploaded.image_hash
        result.image_url = uploaded.image_url
        result.cached = uploaded.cached
        logger.info(
            f"Asset {asset.ref} ready",
            extra={
                "stage": "image",
                "duration_ms": round((time.perf_counter() - started) * 1000),
            },
        )
        return result

    async def run_batch(
        self, assets: List[CreativeAsset], ad_account_id: str, client: MetaClient
    ) -> List[AssetResult]:
        """Run all assets, at most ``concurrency`` at a time. Order is preserved.

        If one asset raises, the rest are cancelled and awaited before the
        error propagates, so none outlive the caller's client.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(asset: CreativeAsset) -> AssetResult:
            async with semaphore:
                return await self.run_asset(asset, ad_account_id, client)

        tasks = [asyncio.create_task(_bounded(a)) for a in assets]
        try:
            return list(await asyncio.gather(*tasks))
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def close(self) -> None:
        await self.fetcher.close()
