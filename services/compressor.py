import logging
import math
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from config import settings
from services.encoders import (
    EXTENSIONS,
    MEDIA_TYPES,
    get_encoder,
    normalize_format,
    sniff_format,
)
from services.quality_search import search_quality
from utils.image_utils import bytes_to_image, parse_size

log = logging.getLogger(__name__)

# Fixed quality presets for /compress
COMPRESSION_LEVELS = {
    "low": 80,
    "medium": 60,
    "high": 40,
}
DEFAULT_QUALITY = COMPRESSION_LEVELS["medium"]

SIZE_PRESETS = {
    label: parse_size(label)
    for label in (
        "5kb", "10kb", "15kb", "20kb", "25kb", "30kb", "40kb", "50kb",
        "100kb", "150kb", "200kb", "300kb", "500kb", "1mb", "2mb",
    )
}

INCREASE_QUALITY = 95
MAX_UPSCALE_PIXELS = 40_000_000


@dataclass
class CompressionResult:
    data: bytes
    media_type: str
    extension: str
    original_size: int
    quality: Optional[int] = None
    fits_budget: bool = True

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def compression_ratio(self) -> float:
        """Percentage saved relative to the upload."""
        if not self.original_size:
            return 0.0
        return round((self.original_size - self.size) / self.original_size * 100, 2)


class CompressionService:

    def __init__(self, encoder=None, quality_range=None):
        self.encoder = encoder or get_encoder(settings.ENCODER_BACKEND)
        self.quality_range = tuple(quality_range or settings.QUALITY_RANGE)
        log.info(
            "Compression engine: %s encoder, quality %d-%d",
            getattr(self.encoder, "name", type(self.encoder).__name__),
            *self.quality_range,
        )

    def smart_compress(self, data: bytes, quality=None, level: str = "medium", format: str = "jpeg"):
        level = (level or "medium").lower()
        if level == "custom":
            if quality is None or not 1 <= quality <= 100:
                quality = DEFAULT_QUALITY
        elif level in COMPRESSION_LEVELS:
            quality = COMPRESSION_LEVELS[level]
        else:
            raise ValueError(
                f"Invalid compression level: {level}. Choose: {', '.join([*COMPRESSION_LEVELS, 'custom'])}"
            )

        fmt = normalize_format(format)
        encoded = self.encoder(data, quality, fmt)
        return CompressionResult(
            data=encoded,
            media_type=MEDIA_TYPES[fmt],
            extension=EXTENSIONS[fmt],
            original_size=len(data),
            quality=quality,
        )

    def compress_to_size(self, data: bytes, target_bytes: int, format: str = "jpeg"):
        fmt = normalize_format(format)
        result = search_quality(
            data,
            target_bytes,
            format=fmt,
            quality_range=self.quality_range,
            encoder=self.encoder,
        )

        if not result.fits_budget:
            log.warning(
                "Could not reach %d bytes even at quality %d; returning original (%d bytes)",
                target_bytes, self.quality_range[0], len(data),
            )
            media_type, extension = sniff_format(data)
            return CompressionResult(
                data=result.buffer,
                media_type=media_type,
                extension=extension,
                original_size=len(data),
                quality=None,
                fits_budget=False,
            )

        return CompressionResult(
            data=result.buffer,
            media_type=MEDIA_TYPES[fmt],
            extension=EXTENSIONS[fmt],
            original_size=len(data),
            quality=result.quality_used,
        )

    def compress_to_preset(self, preset: str, data: bytes):
        target_bytes = SIZE_PRESETS[preset.lower()]
        return self.compress_to_size(data, target_bytes)

    def increase_to_size(self, data: bytes, target_bytes: int):
        if target_bytes <= 0:
            raise ValueError(f"target_bytes must be positive, got {target_bytes}")

        image = bytes_to_image(data)
        encoded = self.encoder(image, INCREASE_QUALITY, "jpeg")

        # Still too small: grow the pixel count in proportion to the missing bytes
        if len(encoded) < target_bytes:
            w, h = image.size
            scale = math.sqrt(target_bytes / len(encoded))
            # Cap total pixels, but never shrink below the upload
            scale = min(scale, max(1.0, math.sqrt(MAX_UPSCALE_PIXELS / (w * h))))
            new_size = (max(w, round(w * scale)), max(h, round(h * scale)))
            if new_size != (w, h):
                log.info("Upscaling %dx%d -> %dx%d to reach %d bytes", w, h, *new_size, target_bytes)
                image = image.resize(new_size, Image.Resampling.LANCZOS)
                encoded = self.encoder(image, INCREASE_QUALITY, "jpeg")

        return CompressionResult(
            data=encoded,
            media_type=MEDIA_TYPES["jpeg"],
            extension=EXTENSIONS["jpeg"],
            original_size=len(data),
            quality=INCREASE_QUALITY,
            fits_budget=len(encoded) >= target_bytes,
        )


compressor_instance = CompressionService()
