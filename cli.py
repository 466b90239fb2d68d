"""
Compress an image file on disk to a target size.

usage:
    imagefit photo.png -k 100            # <= 100 KB JPEG next to the input
    imagefit photo.png -t 20480 -f webp -o small.webp
"""
import argparse
import logging
import os
import sys

from config import settings
from services.encoders import EXTENSIONS, EncoderError, get_encoder, normalize_format
from services.quality_search import search_quality
from utils.image_utils import human_size

log = logging.getLogger("imagefit")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagefit",
        description="Re-encode an image at the highest quality that fits a byte budget."
    )
    parser.add_argument("input", help="Path to the source image")
    parser.add_argument(
        "-o",
        "--output",
        help="Output file (default: <input>_<target>.<ext>)",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("-t", "--target", type=int, help="Target size in bytes")
    target.add_argument("-k", "--target-kb", type=int, help="Target size in KB (default 100)")
    parser.add_argument(
        "-f",
        "--format",
        default=settings.DEFAULT_FORMAT,
        choices=["jpeg", "jpg", "webp"],
        help="Output format (default %(default)s)",
    )
    parser.add_argument(
        "--encoder",
        default=settings.ENCODER_BACKEND,
        choices=["pillow", "opencv"],
        help="Encoding backend (default %(default)s)",
    )
    parser.add_argument("--min-quality", type=int, default=settings.QUALITY_MIN)
    parser.add_argument("--max-quality", type=int, default=settings.QUALITY_MAX)
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when the target cannot be reached",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every trial encode")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.LOG_LEVEL,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.target is not None:
        target_bytes = args.target
    else:
        target_bytes = (100 if args.target_kb is None else args.target_kb) * 1024
    fmt = normalize_format(args.format)

    try:
        with open(args.input, "rb") as f:
            data = f.read()
    except OSError as e:
        parser.error(f"cannot read {args.input}: {e.strerror}")

    try:
        result = search_quality(
            data,
            target_bytes,
            format=fmt,
            quality_range=(args.min_quality, args.max_quality),
            encoder=get_encoder(args.encoder),
        )
    except (EncoderError, ValueError) as e:
        parser.error(str(e))

    if result.fits_budget:
        output_path = args.output or f"{os.path.splitext(args.input)[0]}_{target_bytes}.{EXTENSIONS[fmt]}"
    else:
        log.warning(
            "Could not reach %s even at quality %d; writing the original unchanged",
            human_size(target_bytes), args.min_quality,
        )
        output_path = args.output or f"{os.path.splitext(args.input)[0]}_{target_bytes}{os.path.splitext(args.input)[1]}"

    with open(output_path, "wb") as f:
        f.write(result.buffer)

    log.info(
        "Done. quality=%s size=%s (%d bytes) encodes=%d -> %s",
        result.quality_used, human_size(result.size), result.size, result.attempts, output_path,
    )

    if args.strict and not result.fits_budget:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
