import io
import re

from PIL import Image, UnidentifiedImageError

from services.encoders import EncoderError

_SIZE_RE = re.compile(r"^\s*(\d+)\s*(b|kb|mb)?\s*$", re.IGNORECASE)
_UNITS = {"b": 1, "kb": 1024, "mb": 1024 * 1024}

def bytes_to_image(image_bytes: bytes) -> Image.Image:
    try:
        return Image.open(io.BytesIO(image_bytes)).convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise EncoderError(f"Cannot decode image: {e}") from e

def parse_size(label: str) -> int:
    """'5kb' -> 5120, '2mb' -> 2097152, '300' -> 300 (bytes)."""
    match = _SIZE_RE.match(str(label))
    if not match:
        raise ValueError(f"Invalid size: {label!r}")
    amount, unit = match.groups()
    return int(amount) * _UNITS[(unit or "b").lower()]

def human_size(num_bytes: int) -> str:
    if num_bytes >= 1024 * 1024:
        return f"{num_bytes / (1024 * 1024):.2f} MB"
    return f"{num_bytes / 1024:.2f} KB"
