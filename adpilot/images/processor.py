"""AdPilot — Image processing for upload (stage 3).

Output is a function of input bytes only: no timestamps, no metadata, fixed
encoder settings. That is what makes the checksum cache valid.
"""

import hashlib
import io
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from adpilot.config import settings
from adpilot.core.errors import ValidationError
from adpilot.core.logging import get_logger

logger = get_logger("images.processor")

WHITE = (255, 255, 255)


@dataclass(frozen=True)
class ProcessedAsset:
    data: bytes
    width: int
    height: int
    format: str
    checksum: str
    source_ref: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


class ImageProcessor:
    def __init__(
        self,
        max_width: int | None = None,
        max_height: int | None = None,
        min_width: int | None = None,
        min_height: int | None = None,
        max_file_size: int | None = None,
        quality: int | None = None,
        min_quality: int | None = None,
    ):
        self.max_width = max_width or settings.image_max_width
        self.max_height = max_height or settings.image_max_height
        self.min_width = min_width or settings.image_min_width
        self.min_height = min_height or settings.image_min_height
        self.max_file_size = max_file_size or settings.image_max_file_size
        self.quality = quality or settings.image_jpeg_quality
        self.min_quality = min_quality or settings.image_min_jpeg_quality

    @staticmethod
    def _flatten(img: Image.Image) -> Image.Image:
        """Composite any transparency onto white and return RGB."""
        if img.mode == "P" and "transparency" in img.info:
            img = img.convert("RGBA")
        if img.mode in ("RGBA", "LA", "PA"):
            img = img.convert("RGBA")
            background = Image.new("RGB", img.size, WHITE)
            background.paste(img, mask=img.getchannel("A"))
            return background
        if img.mode != "RGB":
            return img.convert("RGB")
        return img

    def _encode(self, img: Image.Image, quality: int) -> bytes:
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality, subsampling=0, optimize=True)
        return out.getvalue()

    def process(self, data: bytes, source_ref: str = "") -> ProcessedAsset:
        try:
            with Image.open(io.BytesIO(data)) as original:
                original.load()
                img = ImageOps.exif_transpose(original)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            raise ValidationError(
                f"Could not decode image: {e}", violations=["UNREADABLE_IMAGE"]
            ) from e

        img = self._flatten(img)

        if img.width < self.min_width or img.height < self.min_height:
            raise ValidationError(
                f"{img.width}x{img.height} is below the "
                f"{self.min_width}x{self.min_height} minimum and cannot be upscaled",
                violations=["DIMENSIONS_TOO_SMALL"],
            )

        if img.width > self.max_width or img.height > self.max_height:
            img = img.copy()
            img.thumbnail((self.max_width, self.max_height), Image.Resampling.LANCZOS)

        quality = self.quality
        encoded = self._encode(img, quality)
        while len(encoded) > self.max_file_size and quality - 5 >= self.min_quality:
            quality -= 5
            encoded = self._encode(img, quality)

        if len(encoded) > self.max_file_size:
            raise ValidationError(
                f"Processed image still {len(encoded)} bytes at quality {quality}",
                violations=["FILE_TOO_LARGE"],
            )

        checksum = hashlib.sha256(encoded).hexdigest()
        logger.info(
            f"Processed {source_ref or 'image'}: {img.width}x{img.height}, "
            f"{len(encoded)} bytes, q={quality}",
            extra={"stage": "process"},
        )
        return ProcessedAsset(
            data=encoded,
            width=img.width,
            height=img.height,
            format="JPEG",
            checksum=checksum,
            source_ref=source_ref,
        )
