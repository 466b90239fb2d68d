import io

import pytest
from PIL import Image

from services import compressor
from services.compressor import (
    COMPRESSION_LEVELS,
    SIZE_PRESETS,
    CompressionResult,
    CompressionService,
)
from services.encoders import EncoderError, PillowEncoder
from utils.image_utils import human_size, parse_size


@pytest.fixture
def service():
    return CompressionService(encoder=PillowEncoder(), quality_range=(10, 100))


class TestSmartCompress:

    @pytest.mark.parametrize("level", ["low", "medium", "high", "HIGH"])
    def test_levels(self, service, noisy_png, level):
        result = service.smart_compress(noisy_png, level=level)
        assert result.quality == COMPRESSION_LEVELS[level.lower()]
        assert result.media_type == "image/jpeg"
        assert result.extension == "jpg"

    def test_custom_quality(self, service, noisy_png):
        result = service.smart_compress(noisy_png, quality=33, level="custom")
        assert result.quality == 33

    @pytest.mark.parametrize("quality", [None, 0, 101, -4])
    def test_invalid_custom_quality_falls_back_to_medium(self, service, noisy_png, quality):
        result = service.smart_compress(noisy_png, quality=quality, level="custom")
        assert result.quality == 60

    def test_unknown_level(self, service, noisy_png):
        with pytest.raises(ValueError):
            service.smart_compress(noisy_png, level="extreme")

    def test_webp(self, service, noisy_png):
        result = service.smart_compress(noisy_png, level="medium", format="webp")
        assert result.media_type == "image/webp"
        assert result.data[8:12] == b"WEBP"


class TestCompressToSize:

    def test_fits(self, service, noisy_png):
        target = len(PillowEncoder()(noisy_png, 40, "jpeg"))
        result = service.compress_to_size(noisy_png, target)

        assert result.fits_budget is True
        assert result.size <= target
        assert 10 <= result.quality <= 100
        assert result.original_size == len(noisy_png)
        assert result.media_type == "image/jpeg"

    def test_unreachable_returns_original_with_its_type(self, service, noisy_png):
        result = service.compress_to_size(noisy_png, 50)

        assert result.fits_budget is False
        assert result.data == noisy_png
        assert result.quality is None
        assert result.media_type == "image/png"
        assert result.extension == "png"
        assert result.compression_ratio == 0.0

    def test_unsupported_format(self, service, noisy_png):
        with pytest.raises(EncoderError):
            service.compress_to_size(noisy_png, 10_000, format="bmp")

    def test_corrupt_input(self, service):
        with pytest.raises(EncoderError):
            service.compress_to_size(b"garbage", 10_000)

    def test_uses_configured_range(self, noisy_png):
        calls = []

        def encoder(image, quality, format):
            calls.append(quality)
            return b"x" * quality

        service = CompressionService(encoder=encoder, quality_range=(20, 30))
        result = service.compress_to_size(noisy_png, 25)
        assert result.quality == 25
        assert all(20 <= q <= 30 for q in calls)


class TestPresets:

    def test_preset_table(self):
        assert SIZE_PRESETS["5kb"] == 5 * 1024
        assert SIZE_PRESETS["300kb"] == 300 * 1024
        assert SIZE_PRESETS["2mb"] == 2 * 1024 * 1024
        assert len(SIZE_PRESETS) == 15

    def test_compress_to_preset(self, service, noisy_png):
        result = service.compress_to_preset("100KB", noisy_png)
        assert result.fits_budget is True
        assert result.size <= 100 * 1024

    def test_unknown_preset(self, service, noisy_png):
        with pytest.raises(KeyError):
            service.compress_to_preset("3kb", noisy_png)


class TestIncreaseToSize:

    def test_upscales_when_too_small(self, service, gradient_png):
        small = len(PillowEncoder()(gradient_png, 95, "jpeg"))
        result = service.increase_to_size(gradient_png, small * 4)

        assert result.quality == 95
        assert result.size > small
        assert Image.open(io.BytesIO(result.data)).size[0] > 64

    def test_no_upscale_when_already_large(self, service, noisy_png):
        result = service.increase_to_size(noisy_png, 1024)
        assert result.fits_budget is True
        assert Image.open(io.BytesIO(result.data)).size == (96, 96)

    def test_never_shrinks_large_upload(self, service, gradient_png, monkeypatch):
        monkeypatch.setattr(compressor, "MAX_UPSCALE_PIXELS", 1024)
        small = len(PillowEncoder()(gradient_png, 95, "jpeg"))
        result = service.increase_to_size(gradient_png, small * 10)

        assert Image.open(io.BytesIO(result.data)).size == (64, 64)
        assert result.size == small

    def test_upscale_capped_by_pixel_limit(self, service, gradient_png, monkeypatch):
        monkeypatch.setattr(compressor, "MAX_UPSCALE_PIXELS", 128 * 128)
        small = len(PillowEncoder()(gradient_png, 95, "jpeg"))
        result = service.increase_to_size(gradient_png, small * 100)

        assert Image.open(io.BytesIO(result.data)).size == (128, 128)

    def test_invalid_target(self, service, noisy_png):
        with pytest.raises(ValueError):
            service.increase_to_size(noisy_png, 0)


def test_compression_ratio():
    result = CompressionResult(data=b"x" * 25, media_type="image/jpeg", extension="jpg", original_size=100)
    assert result.size == 25
    assert result.compression_ratio == 75.0


def test_parse_size():
    assert parse_size("5kb") == 5120
    assert parse_size("2MB") == 2 * 1024 * 1024
    assert parse_size("300") == 300
    with pytest.raises(ValueError):
        parse_size("five kb")


def test_human_size():
    assert human_size(2048) == "2.00 KB"
    assert human_size(3 * 1024 * 1024) == "3.00 MB"


def test_decompression_bomb_is_encoder_error(service, noisy_png, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(EncoderError):
        service.increase_to_size(noisy_png, 1024)
    with pytest.raises(EncoderError):
        service.compress_to_size(noisy_png, 10_000)
