import io
import logging

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

log = logging.getLogger(__name__)

FORMAT_ALIASES = {"jpg": "jpeg", "jpeg": "jpeg", "webp": "webp"}
MEDIA_TYPES = {"jpeg": "image/jpeg", "webp": "image/webp"}
EXTENSIONS = {"jpeg": "jpg", "webp": "webp"}


class EncoderError(Exception):
    """Raised when an image cannot be decoded or encoded."""


def normalize_format(fmt: str) -> str:
    key = (fmt or "").strip().lower()
    if key not in FORMAT_ALIASES:
        raise EncoderError(
            f"Unsupported format: {fmt}. Supported formats: {', '.join(MEDIA_TYPES)}"
        )
    return FORMAT_ALIASES[key]


class PillowEncoder:
    name = "pillow"

    def __init__(self, optimize: bool = True, progressive: bool = False):
        self.optimize = optimize
        self.progressive = progressive

    def _load(self, image) -> Image.Image:
        if isinstance(image, Image.Image):
            return image
        try:
            img = Image.open(io.BytesIO(bytes(image)))
            img.load()
            return img
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            raise EncoderError(f"Cannot decode image: {e}") from e

    def __call__(self, image, quality: int, format: str = "jpeg") -> bytes:
        fmt = normalize_format(format)
        img = self._load(image)

        buffer = io.BytesIO()
        try:
            if fmt == "jpeg":
                # JPEG has no alpha or palette
                if img.mode not in ("RGB", "L", "CMYK"):
                    img = img.convert("RGB")
                img.save(
                    buffer,
                    "JPEG",
                    quality=quality,
                    optimize=self.optimize,
                    progressive=self.progressive,
                )
            else:
                if img.mode not in ("RGB", "RGBA"):
                    img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
                img.save(buffer, "WEBP", quality=quality, method=4)
        except (OSError, ValueError) as e:
            raise EncoderError(f"Pillow failed to encode {fmt} at quality {quality}: {e}") from e
        return buffer.getvalue()


class OpenCVEncoder:
    name = "opencv"

    FLAGS = {
        "jpeg": (".jpg", cv2.IMWRITE_JPEG_QUALITY),
        "webp": (".webp", cv2.IMWRITE_WEBP_QUALITY),
    }

    def _load(self, image) -> np.ndarray:
        if isinstance(image, Image.Image):
            img_np = np.array(image.convert("RGB"))
            return cv2.cvtColor(img_np, cv2.COLOR_RGB2BGR)
        raw = np.frombuffer(bytes(image), dtype=np.uint8)
        decoded = cv2.imdecode(raw, cv2.IMREAD_COLOR) if raw.size else None
        if decoded is None:
            raise EncoderError("Cannot decode image")
        return decoded

    def __call__(self, image, quality: int, format: str = "jpeg") -> bytes:
        fmt = normalize_format(format)
        img = self._load(image)
        ext, flag = self.FLAGS[fmt]
        # WebP quality below 1 switches OpenCV to lossless
        if fmt == "webp":
            quality = max(1, quality)

        success, buffer = cv2.imencode(ext, img, [flag, int(quality)])
        if not success:
            raise EncoderError(f"OpenCV failed to encode {fmt} at quality {quality}")
        return buffer.tobytes()


ENCODERS = {
    PillowEncoder.name: PillowEncoder,
    OpenCVEncoder.name: OpenCVEncoder,
}


def get_encoder(name: str):
    try:
        return ENCODERS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown encoder backend: {name}. Choose: {', '.join(ENCODERS)}")


def sniff_format(data: bytes):
    """Best-effort (media type, extension) of an encoded image, for passthrough responses."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        log.debug("Could not identify image format for passthrough")
        return "application/octet-stream", "bin"
    media_type = Image.MIME.get(fmt, "application/octet-stream")
    return media_type, EXTENSIONS.get(fmt.lower(), fmt.lower())
