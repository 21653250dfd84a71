"""Command-line interface for bandtrace."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .pipeline import Pipeline
from .svg import outline_svg, save_svg
from .types import (
    MAX_COLORS,
    STRATEGY_NAMES,
    BandtraceError,
    DecodeError,
    EmptyInputError,
    PipelineConfig,
)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="bandtrace",
        description="Trace raster images into layered flat-color SVG",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Single layer, black on white
  bandtrace logo.png -o logo.svg

  # Three brightness bands
  bandtrace logo.png -o logo.svg --colors 3

  # Four color clusters traced on two threads
  bandtrace logo.png --colors 4 --strategy kmeans --workers 2
        """,
    )

    parser.add_argument("input", help="Input image file path")

    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output SVG file path (default: input name with .svg extension)",
    )

    parser.add_argument(
        "-c",
        "--colors",
        type=int,
        default=1,
        help=f"Number of color bands, 1-{MAX_COLORS} (default: 1, single black layer)",
    )

    parser.add_argument(
        "--long",
        type=int,
        default=800,
        help="Longer side of the working image in pixels (default: 800)",
    )

    parser.add_argument(
        "-s",
        "--strategy",
        choices=STRATEGY_NAMES,
        default="range",
        help="Band partitioning strategy (default: range)",
    )

    parser.add_argument(
        "--blur",
        type=int,
        default=1,
        help="Median filter radius, 0 disables (default: 1)",
    )

    parser.add_argument(
        "--threshold",
        type=float,
        default=128.0,
        help="Single-band brightness threshold (default: 128)",
    )

    parser.add_argument(
        "--adaptive",
        action="store_true",
        help="Compute the single-band threshold from image statistics",
    )

    parser.add_argument(
        "--turdsize",
        type=int,
        default=5,
        help="Suppress speckles up to this many pixels (default: 5)",
    )

    parser.add_argument(
        "--alphamax",
        type=float,
        default=1.0,
        help="Corner threshold, 0 gives polygons (default: 1.0)",
    )

    parser.add_argument(
        "--opttolerance",
        type=float,
        default=0.2,
        help="Curve optimization tolerance (default: 0.2)",
    )

    parser.add_argument(
        "--tolerance",
        type=float,
        default=4000.0,
        help="Squared RGB distance for kmeans/posterize band membership (default: 4000)",
    )

    parser.add_argument(
        "--min-region-area",
        type=int,
        default=0,
        help="Drop mask regions smaller than this many pixels (default: 0)",
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Threads used to trace bands in parallel (default: 1)",
    )

    parser.add_argument(
        "--skip-failed-bands",
        action="store_true",
        help="Leave out bands that fail to trace instead of failing the run",
    )

    parser.add_argument(
        "--outline",
        action="store_true",
        help="Write outlines instead of filled shapes",
    )

    parser.add_argument(
        "--save-stages",
        default=None,
        help="Directory to save intermediate masks as PNG",
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Log pipeline progress")

    return parser


def config_from_args(parsed: argparse.Namespace) -> PipelineConfig:
    """Build a PipelineConfig from parsed arguments."""
    return PipelineConfig(
        color_count=parsed.colors,
        long_side=parsed.long,
        strategy=parsed.strategy,
        blur_radius=parsed.blur,
        threshold=parsed.threshold,
        adaptive_threshold=parsed.adaptive,
        turdsize=parsed.turdsize,
        alphamax=parsed.alphamax,
        opttolerance=parsed.opttolerance,
        color_tolerance=parsed.tolerance,
        min_region_area=parsed.min_region_area,
        workers=parsed.workers,
        on_band_error="skip" if parsed.skip_failed_bands else "abort",
        stages_dir=parsed.save_stages,
    )


def main(args: Optional[list] = None) -> int:
    """Main entry point for CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 2 for unusable input, 1 for other errors)
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    logging.basicConfig(
        level=logging.INFO if parsed.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(parsed.input)
    output_path = Path(parsed.output) if parsed.output else input_path.with_suffix(".svg")

    try:
        config = config_from_args(parsed)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT

    try:
        print(f"Processing: {input_path}")
        print(f"  Colors: {config.color_count}")
        if config.color_count > 1:
            print(f"  Strategy: {config.strategy}")

        result = Pipeline(config).process_file(input_path)

        svg = outline_svg(result.svg) if parsed.outline else result.svg
        output_path.parent.mkdir(parents=True, exist_ok=True)
        save_svg(svg, output_path)

        print(f"  Size: {result.width}x{result.height}")
        print(f"  Layers: {len(result.layers)}")
        for diagnostic in result.diagnostics:
            print(f"  Warning: {diagnostic}", file=sys.stderr)
        print(f"  Output saved: {output_path}")
        return EXIT_OK

    except (FileNotFoundError, EmptyInputError, DecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    except (BandtraceError, OSError) as e:
        print(f"Error processing image: {e}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
