"""
Binary search over a lossy encoder's quality knob.

Given an encoded source image and a byte budget, find the highest quality
whose encoded output still fits the budget. Each trial encode is expensive, so
the quality scale is bisected instead of scanned: for the default 10-100 range
that is at most 7 encodes instead of 91.

The search assumes that, for a fixed image, output size never decreases as
quality increases. Real encoders usually behave that way but are not
guaranteed to; with a non-monotonic encoder the search still terminates and
returns a fitting buffer or the original, but the chosen quality may not be
the global maximum.
"""
import inspect
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from services.encoders import PillowEncoder

log = logging.getLogger(__name__)

DEFAULT_QUALITY_RANGE = (10, 100)

_default_encoder = PillowEncoder()


@dataclass(frozen=True)
class SearchResult:
    """
    Outcome of a quality search.

    ``fits_budget`` is False when no tested quality fit; ``buffer`` is then the
    untouched source and ``quality_used`` is None.
    """
    buffer: bytes
    fits_budget: bool
    quality_used: Optional[int]
    attempts: int
    target_bytes: int

    @property
    def size(self) -> int:
        return len(self.buffer)


def _validate(source_image, target_bytes, quality_range) -> Tuple[int, int]:
    if not isinstance(source_image, (bytes, bytearray, memoryview)):
        raise ValueError("source_image must be an encoded image buffer")
    if len(source_image) == 0:
        raise ValueError("source_image is empty")
    if isinstance(target_bytes, bool) or not isinstance(target_bytes, int) or target_bytes <= 0:
        raise ValueError(f"target_bytes must be a positive integer, got {target_bytes!r}")

    try:
        qmin, qmax = quality_range
    except (TypeError, ValueError):
        raise ValueError(f"quality_range must be a (min, max) pair, got {quality_range!r}")
    for q in (qmin, qmax):
        if isinstance(q, bool) or not isinstance(q, int):
            raise ValueError(f"quality bounds must be integers, got {quality_range!r}")
    if qmin > qmax:
        raise ValueError(f"quality_range min {qmin} is greater than max {qmax}")
    return qmin, qmax


def search_quality(
    source_image: bytes,
    target_bytes: int,
    format: str = "jpeg",
    quality_range: Tuple[int, int] = DEFAULT_QUALITY_RANGE,
    encoder: Optional[Callable] = None,
) -> SearchResult:
    """
    Find the highest quality in ``quality_range`` whose encoding of
    ``source_image`` is at most ``target_bytes`` long.

    ``encoder`` is called as ``encoder(source_image, quality, format)`` and
    must return bytes. Errors it raises propagate to the caller unchanged.
    """
    low, high = _validate(source_image, target_bytes, quality_range)
    encoder = encoder or _default_encoder

    best_buffer = source_image
    best_quality = None
    attempts = 0

    while low <= high:
        mid = (low + high) // 2
        candidate = encoder(source_image, mid, format)
        attempts += 1
        log.debug("quality=%d size=%d target=%d", mid, len(candidate), target_bytes)

        if len(candidate) <= target_bytes:
            best_buffer, best_quality = candidate, mid
            low = mid + 1
        else:
            high = mid - 1

    return _finish(best_buffer, best_quality, attempts, target_bytes, format)


async def search_quality_async(
    source_image: bytes,
    target_bytes: int,
    format: str = "jpeg",
    quality_range: Tuple[int, int] = DEFAULT_QUALITY_RANGE,
    encoder: Optional[Callable] = None,
) -> SearchResult:
    """Same search as :func:`search_quality` for encoders that return awaitables."""
    low, high = _validate(source_image, target_bytes, quality_range)
    encoder = encoder or _default_encoder

    best_buffer = source_image
    best_quality = None
    attempts = 0

    while low <= high:
        mid = (low + high) // 2
        candidate = encoder(source_image, mid, format)
        if inspect.isawaitable(candidate):
            candidate = await candidate
        attempts += 1
        log.debug("quality=%d size=%d target=%d", mid, len(candidate), target_bytes)

        if len(candidate) <= target_bytes:
            best_buffer, best_quality = candidate, mid
            low = mid + 1
        else:
            high = mid - 1

    return _finish(best_buffer, best_quality, attempts, target_bytes, format)


def _finish(best_buffer, best_quality, attempts, target_bytes, format) -> SearchResult:
    fits = best_quality is not None
    if fits:
        log.info(
            "Quality search: %s quality=%d size=%d target=%d encodes=%d",
            format, best_quality, len(best_buffer), target_bytes, attempts,
        )
    else:
        log.info(
            "Quality search: %s budget %d unreachable after %d encodes, returning original",
            format, target_bytes, attempts,
        )
    return SearchResult(
        buffer=best_buffer,
        fits_budget=fits,
        quality_used=best_quality,
        attempts=attempts,
        target_bytes=target_bytes,
    )


def find_best_quality(
    source_image: bytes,
    target_bytes: int,
    format: str = "jpeg",
    quality_range: Tuple[int, int] = DEFAULT_QUALITY_RANGE,
    encoder: Optional[Callable] = None,
) -> bytes:
    """
    Return the best-fitting encoding of ``source_image``, or ``source_image``
    itself when even the lowest quality overshoots ``target_bytes``.

    Callers that must enforce the budget should check the returned length or
    use :func:`search_quality`.
    """
    return search_quality(source_image, target_bytes, format, quality_range, encoder).buffer
