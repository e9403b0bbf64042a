"""Tests for the image pipeline stages."""

import asyncio
import io

import httpx
import pytest
from PIL import Image

from adpilot.core.errors import (
    CredentialRejectedError,
    FetchError,
    NotFoundError,
    ValidationError,
)
from adpilot.images.cache import CachedImage, InMemoryAssetCache, SQLAssetCache
from adpilot.images.processor import ImageProcessor
from adpilot.images.uploader import ImageUploader
from adpilot.images.validator import ImageRequirements, ImageValidator
from adpilot.models.draft_models import CreativeAsset
from conftest import make_image


def _codes(violations):
    return {v.code for v in violations}


class TestImageValidator:
    def test_valid_square_jpeg(self):
        result = ImageValidator().validate(make_image(800, 800))
        assert result.ok
        assert (result.width, result.height, result.format) == (800, 800, "JPEG")

    def test_below_minimum_is_hard_violation(self):
        result = ImageValidator().validate(make_image(400, 400))
        assert not result.ok
        assert "DIMENSIONS_TOO_SMALL" in _codes(result.errors)

    def test_unsupported_format(self):
        result = ImageValidator().validate(make_image(800, 800, fmt="GIF"))
        assert "UNSUPPORTED_FORMAT" in _codes(result.errors)

    def test_unreadable_bytes(self):
        result = ImageValidator().validate(b"not an image at all")
        assert _codes(result.errors) == {"UNREADABLE_IMAGE"}

    def test_file_too_large(self):
        req = ImageRequirements(
            min_width=600, min_height=600, max_width=8000, max_height=8000,
            max_file_size=100,
        )
        result = ImageValidator(req).validate(make_image(800, 800))
        assert "FILE_TOO_LARGE" in _codes(result.errors)

    def test_aspect_ratio_is_only_a_warning(self):
        result = ImageValidator().validate(make_image(2000, 600))
        assert result.ok
        assert "ASPECT_RATIO_SUBOPTIMAL" in _codes(result.warnings)

    def test_story_expects_vertical(self):
        result = ImageValidator().validate(make_image(800, 800), placement="story")
        assert result.ok
        assert "ASPECT_RATIO_SUBOPTIMAL" in _codes(result.warnings)

    def test_oversized_is_warning(self):
        req = ImageRequirements(
            min_width=600, min_height=600, max_width=1000, max_height=1000,
            max_file_size=30 * 1024 * 1024,
        )
        result = ImageValidator(req).validate(make_image(1200, 1200))
        assert result.ok
        assert "DIMENSIONS_TOO_LARGE" in _codes(result.warnings)


class TestImageProcessor:
    def test_deterministic(self):
        data = make_image(900, 700, fmt="PNG")
        first = ImageProcessor().process(data)
        second = ImageProcessor().process(data)
        assert first.data == second.data
        assert first.checksum == second.checksum
        assert first.format == "JPEG"

    def test_alpha_flattened_onto_white(self):
        img = Image.new("RGBA", (800, 800), (255, 0, 0, 0))
        buf = io.BytesIO()
        img.save(buf, format="PNG")

        processed = ImageProcessor().process(buf.getvalue())
        out = Image.open(io.BytesIO(processed.data))
        assert out.mode == "RGB"
        r, g, b = out.getpixel((400, 400))
        assert min(r, g, b) > 245

    def test_downscales_oversized(self):
        processed = ImageProcessor(max_width=1000, max_height=1000).process(
            make_image(1600, 1200)
        )
        assert (processed.width, processed.height) == (1000, 750)

    def test_undersized_cannot_be_fixed(self):
        with pytest.raises(ValidationError):
            ImageProcessor().process(make_image(400, 400))

    def test_truncated_body_is_unreadable(self):
        truncated = make_image(800, 800)[:3000]
        assert ImageValidator().validate(truncated).ok

        with pytest.raises(ValidationError) as exc:
            ImageProcessor().process(truncated)
        assert exc.value.violations == ["UNREADABLE_IMAGE"]

    def test_exif_orientation_applied(self):
        img = Image.new("RGB", (800, 600), (10, 20, 30))
        exif = Image.Exif()
        exif[0x0112] = 6
        buf = io.BytesIO()
        img.save(buf, format="JPEG", exif=exif)

        processed = ImageProcessor().process(buf.getvalue())
        assert (processed.width, processed.height) == (600, 800)
        assert "exif" not in Image.open(io.BytesIO(processed.data)).info

    def test_quality_steps_down_to_fit(self):
        data = make_image(1200, 1200)
        full = ImageProcessor().process(data)
        limited = ImageProcessor(max_file_size=full.size - 1).process(data)
        assert limited.size < full.size


class TestAssetCache:
    def test_in_memory_first_writer_wins(self):
        cache = InMemoryAssetCache()
        first = cache.put("act_1", "abc", CachedImage("h1"))
        second = cache.put("act_1", "abc", CachedImage("h2"))
        assert first == second == CachedImage("h1")
        assert cache.get("act_2", "abc") is None

    def test_sql_cache_write_once(self, session):
        cache = SQLAssetCache(session)
        cache.put("act_1", "abc", CachedImage("h1", "https://cdn/1"))
        kept = cache.put("act_1", "abc", CachedImage("h2"))
        assert kept.image_hash == "h1"
        assert SQLAssetCache(session).get("act_1", "abc").image_url == "https://cdn/1"


@pytest.mark.asyncio
class TestUploader:
    async def test_second_upload_is_cache_hit(self, platform):
        asset = ImageProcessor().process(make_image(800, 800))
        uploader = ImageUploader(InMemoryAssetCache())

        async with platform.client_factory("tok") as client:
            first = await uploader.upload(asset, "act_1", client)
            second = await uploader.upload(asset, "act_1", client)

        assert platform.count("adimages") == 1
        assert not first.cached
        assert second.cached
        assert second.image_hash == first.image_hash

    async def test_cache_is_per_ad_account(self, platform):
        asset = ImageProcessor().process(make_image(800, 800))
        uploader = ImageUploader(InMemoryAssetCache())

        async with platform.client_factory("tok") as client:
            await uploader.upload(asset, "act_1", client)
            await uploader.upload(asset, "act_2", client)
        assert platform.count("adimages") == 2


@pytest.mark.asyncio
class TestFetcher:
    async def test_missing_object_not_retried(self, storage):
        with pytest.raises(NotFoundError):
            await storage.fetcher().fetch("images/missing.jpg")
        assert storage.requests == ["images/missing.jpg"]

    async def test_outage_retried(self, storage):
        storage.failures = [httpx.Response(503), httpx.Response(502)]
        image = await storage.fetcher().fetch("images/hero.jpg")
        assert image.data == storage.objects["images/hero.jpg"]
        assert len(storage.requests) == 3

    async def test_persistent_outage_is_fetch_error(self, storage):
        storage.failures = [httpx.Response(503)] * 3
        with pytest.raises(FetchError):
            await storage.fetcher().fetch("images/hero.jpg")


@pytest.mark.asyncio
class TestImagePipeline:
    async def test_batch_isolates_failures(self, pipeline, platform, storage):
        storage.objects["images/small.jpg"] = make_image(400, 400)
        assets = [
            CreativeAsset(ref="images/hero.jpg"),
            CreativeAsset(ref="images/small.jpg", required=False),
            CreativeAsset(ref="images/gone.jpg", required=False),
        ]
        async with platform.client_factory("tok") as client:
            results = await pipeline.run_batch(assets, "act_1", client)

        assert [r.ref for r in results] == [a.ref for a in assets]
        assert results[0].success and results[0].image_hash
        assert results[1].error_kind == "validation"
        assert "DIMENSIONS_TOO_SMALL" in results[1].violations
        assert results[2].error_kind == "not_found"

    async def test_identical_assets_upload_once(self, pipeline, platform, storage):
        storage.objects["images/copy.jpg"] = storage.objects["images/hero.jpg"]
        assets = [CreativeAsset(ref="images/hero.jpg"), CreativeAsset(ref="images/copy.jpg")]
        pipeline.concurrency = 1
        async with platform.client_factory("tok") as client:
            results = await pipeline.run_batch(assets, "act_1", client)
        assert platform.count("adimages") == 1
        assert results[0].image_hash == results[1].image_hash

    async def test_credential_rejection_propagates(self, pipeline, platform):
        platform.fail(
            "adimages",
            httpx.Response(401, json={"error": {"code": 190, "message": "expired"}}),
        )
        async with platform.client_factory("tok") as client:
            with pytest.raises(CredentialRejectedError):
                await pipeline.run_batch(
                    [CreativeAsset(ref="images/hero.jpg")], "act_1", client
                )

    async def test_rejection_cancels_sibling_assets(self, pipeline, monkeypatch):
        cancelled = []

        async def run_asset(asset, ad_account_id, client):
            if asset.ref == "images/rejected.jpg":
                await asyncio.sleep(0)
                raise CredentialRejectedError("expired")
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(asset.ref)
                raise

        monkeypatch.setattr(pipeline, "run_asset", run_asset)
        assets = [CreativeAsset(ref="images/slow.jpg"), CreativeAsset(ref="images/rejected.jpg")]

        with pytest.raises(CredentialRejectedError):
            await pipeline.run_batch(assets, "act_1", client=None)
        assert cancelled == ["images/slow.jpg"]
