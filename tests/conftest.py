# tests/conftest.py
from __future__ import annotations

import io
import os

import numpy as np
import pytest
from PIL import Image

# Deterministic defaults; keep the OpenCV backend opt-in
os.environ.setdefault("ENCODER_BACKEND", "pillow")
os.environ.setdefault("LOG_LEVEL", "WARNING")


def image_to_bytes(image: Image.Image, format: str = "PNG") -> bytes:
    buf = io.BytesIO()
    image.save(buf, format=format)
    return buf.getvalue()


@pytest.fixture(scope="session")
def noisy_png() -> bytes:
    """96x96 RGB noise: hard to compress, so JPEG size tracks quality closely."""
    rng = np.random.default_rng(0)
    pixels = rng.integers(0, 256, size=(96, 96, 3), dtype=np.uint8)
    return image_to_bytes(Image.fromarray(pixels))


@pytest.fixture(scope="session")
def gradient_png() -> bytes:
    """64x64 smooth gradient: compresses very well."""
    x = np.linspace(0, 255, 64, dtype=np.uint8)
    xx, yy = np.meshgrid(x, x)
    pixels = np.stack([xx, yy, np.full((64, 64), 128, dtype=np.uint8)], axis=-1)
    return image_to_bytes(Image.fromarray(pixels))


@pytest.fixture(scope="session")
def rgba_png() -> bytes:
    img = Image.new("RGBA", (32, 32), (255, 0, 0, 128))
    return image_to_bytes(img)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
