"""エントリーポイント: python -m emoji_mosaic IMAGE PALETTE.json"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from emoji_mosaic.domain.errors import MosaicError
from emoji_mosaic.domain.image_model import ColorMetric, ConversionOptions
from emoji_mosaic.application.image_analysis import suggest_options
from emoji_mosaic.application.image_converter import ImageConverter
from emoji_mosaic.application.output_generator import render_grid_colors
from emoji_mosaic.infrastructure.image_io import load_image, save_image
from emoji_mosaic.infrastructure.palette_io import load_palette

logger = logging.getLogger(__name__)


def parse_option_value(raw: str) -> Any:
    """--option の値を bool / int / float / 文字列に変換。"""
    lowered = raw.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            continue
    return raw


def parse_option_pairs(pairs: list[str]) -> dict[str, Any]:
    options: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"expected key=value, got {pair!r}")
        options[key.strip()] = parse_option_value(value.strip())
    return options


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="emoji-mosaic",
        description="Convert an image into a grid of emoji tokens drawn from a color palette.",
    )
    parser.add_argument("image", help="Source image file")
    parser.add_argument("palette", help="Palette JSON file (list of entry records)")
    parser.add_argument("--width", type=int, help="Grid width in cells (default 20)")
    parser.add_argument("--height", type=int, help="Grid height in cells (default 20)")
    parser.add_argument(
        "--budget", type=int, dest="char_budget",
        help="Maximum output length in characters, 0 = unlimited (default 4000)",
    )
    parser.add_argument(
        "--tolerance", type=float,
        help="Entry reuse tolerance 0-100, 100 = unlimited (default 10)",
    )
    parser.add_argument(
        "--metric", choices=[m.value for m in ColorMetric], dest="color_metric",
        help="Color distance metric (default oklab)",
    )
    parser.add_argument("--no-dither", action="store_true", help="Disable dithering")
    parser.add_argument(
        "--auto", action="store_true",
        help="Pick photo / graphic / mixed preset from the image before applying overrides",
    )
    parser.add_argument(
        "--option", action="append", default=[], metavar="KEY=VALUE",
        help="Any conversion option, e.g. --option ditheringStrength=70 (repeatable)",
    )
    parser.add_argument("-o", "--output", help="Write the token text to this file instead of stdout")
    parser.add_argument(
        "--preview", metavar="IMAGE",
        help="Also save the grid painted with entry colors as an image (PNG etc.)",
    )
    parser.add_argument("--stats", action="store_true", help="Print statistics as JSON to stderr")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def build_options(args: argparse.Namespace) -> dict[str, Any]:
    overrides = parse_option_pairs(args.option)
    for name in ("width", "height", "char_budget", "tolerance", "color_metric"):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    if args.no_dither:
        overrides["dithering"] = False
    return overrides


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        overrides = build_options(args)
        palette = load_palette(args.palette)
        options = ConversionOptions.from_mapping(overrides)
        source: Any = args.image
        if args.auto:
            # プリセットの上に明示指定を重ねる
            source = load_image(args.image)
            options = suggest_options(source, options).merged(overrides)
        converter = ImageConverter(palette, options)
        result = converter.convert(source)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    except (MosaicError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(result.text + "\n", encoding="utf-8")
        logger.info("wrote %s", args.output)
    else:
        print(result.text)

    if args.preview:
        try:
            save_image(render_grid_colors(result.indices, converter.palette), args.preview)
        except (OSError, ValueError) as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        logger.info("wrote preview %s", args.preview)

    if args.stats:
        print(json.dumps(result.stats.to_dict(), ensure_ascii=False, indent=2), file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
