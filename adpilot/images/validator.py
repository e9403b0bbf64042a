"""AdPilot — Image validation against platform requirements (stage 2).

Hard violations abort the asset. Soft violations are warnings only.
"""

import io
from dataclasses import dataclass
from typing import List, Literal

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from adpilot.config import settings

SUPPORTED_FORMATS = {"JPEG", "PNG"}

# Width / height ranges per placement
ASPECT_RATIOS = {
    "feed": (0.8, 1.91),
    "story": (0.5625, 0.5625),
    "reel": (0.5625, 0.5625),
}

VERY_SMALL_FILE = 10_000  # bytes


class ImageViolation(BaseModel):
    code: str
    message: str
    severity: Literal["error", "warning"]


class ImageValidationResult(BaseModel):
    width: int = 0
    height: int = 0
    format: str = ""
    size: int = 0
    errors: List[ImageViolation] = []
    warnings: List[ImageViolation] = []

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class ImageRequirements:
    min_width: int
    min_height: int
    max_width: int
    max_height: int
    max_file_size: int

    @classmethod
    def from_settings(cls) -> "ImageRequirements":
        return cls(
            min_width=settings.image_min_width,
            min_height=settings.image_min_height,
            max_width=settings.image_max_width,
            max_height=settings.image_max_height,
            max_file_size=settings.image_max_file_size,
        )


class ImageValidator:
    def __init__(self, requirements: ImageRequirements | None = None):
        self.req = requirements or ImageRequirements.from_settings()

    def validate(self, data: bytes, placement: str = "feed") -> ImageValidationResult:
        result = ImageValidationResult(size=len(data))

        def error(code: str, message: str) -> None:
            result.errors.append(ImageViolation(code=code, message=message, severity="error"))

        def warn(code: str, message: str) -> None:
            result.warnings.append(
                ImageViolation(code=code, message=message, severity="warning")
            )

        if len(data) > self.req.max_file_size:
            error(
                "FILE_TOO_LARGE",
                f"File size {len(data)} exceeds maximum {self.req.max_file_size}",
            )

        try:
            with Image.open(io.BytesIO(data)) as img:
                result.format = img.format or ""
                result.width, result.height = img.size
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            error("UNREADABLE_IMAGE", f"Could not decode image: {e}")
            return result

        if result.format not in SUPPORTED_FORMATS:
            error(
                "UNSUPPORTED_FORMAT",
                f"Format {result.format or 'unknown'} not supported "
                f"(expected one of {', '.join(sorted(SUPPORTED_FORMATS))})",
            )

        w, h = result.width, result.height
        if w < self.req.min_width or h < self.req.min_height:
            error(
                "DIMENSIONS_TOO_SMALL",
                f"Image dimensions {w}x{h} below minimum "
                f"{self.req.min_width}x{self.req.min_height}",
            )
        if w > self.req.max_width or h > self.req.max_height:
            warn(
                "DIMENSIONS_TOO_LARGE",
                f"Image {w}x{h} exceeds {self.req.max_width}x{self.req.max_height}. "
                "Will be resized.",
            )

        ratio = w / h if h else 0.0
        low, high = ASPECT_RATIOS.get(placement, ASPECT_RATIOS["feed"])
        if placement == "feed":
            if ratio < low or ratio > high:
                warn(
                    "ASPECT_RATIO_SUBOPTIMAL",
                    f"Aspect ratio {ratio:.2f}:1 outside {low}:1 to {high}:1 for feed",
                )
            elif abs(ratio - 1.0) > 0.1:
                warn(
                    "ASPECT_RATIO_NOT_SQUARE",
                    f"Feed ads perform best at 1:1. Current ratio: {ratio:.2f}:1",
                )
        elif abs(ratio - low) > 0.01:
            warn(
                "ASPECT_RATIO_SUBOPTIMAL",
                f"{placement} placements expect 9:16. Current ratio: {ratio:.2f}:1",
            )

        if len(data) < VERY_SMALL_FILE:
            warn("FILE_VERY_SMALL", f"File size {len(data)} bytes; quality may be poor")

        return result
