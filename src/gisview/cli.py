#!/usr/bin/env python3
"""
gis-view - View GIS raster images in the terminal.

Renders GeoTIFFs and any other raster GDAL can read as color images using
the best graphics protocol the terminal supports (Kitty, iTerm2, Sixel),
falling back to colored Unicode blocks. Works over SSH.

Usage:
    gis-view scene.tif                         # bands 1,2,3 (or band 1)
    gis-view scene.tif --bands 4,3,2           # false color
    gis-view dem.tif --bands 1 --colormap terrain
    gis-view S2A_MSIL2A.zip -i                 # pick subdataset and bands
    gis-view scene.tif --info                  # metadata only
    gis-view scene.tif -p blocks --quarter-blocks
"""

import argparse
import logging
import os
import sys
from typing import Optional, Sequence, Tuple

from src.config import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_RES,
    DEFAULT_STRETCH_PERCENT,
    LOG_FORMAT,
    PROGRAM_NAME,
)
from src.gisview import __version__
from src.gisview.capabilities import CapabilityInputs, PROTOCOL_ALIASES, resolve
from src.gisview.encoders import COLOR_MODES, display
from src.gisview.errors import GisViewError, OutputClosedError
from src.gisview.explorer import run_interactive
from src.gisview.normalize import STRETCH_METHODS, stretch_from_name
from src.gisview.pipeline import RenderOptions, render_raster
from src.gisview.raster_source import RasterSource
from src.gisview.terminal import cell_pixel_size, query_sixel_support, terminal_size

logger = logging.getLogger(__name__)


def band_list(value: str) -> Tuple[int, ...]:
    """argparse type for '4,3,2'."""
    try:
        bands = tuple(int(v) for v in value.split(",") if v.strip())
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid band list '{value}' (expected e.g. 4,3,2)")
    if len(bands) not in (1, 3):
        raise argparse.ArgumentTypeError(
            f"give 1 band (grayscale) or 3 bands (RGB), got {len(bands)}"
        )
    return bands


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="View GIS raster images in the terminal",
        epilog=__doc__.split("Usage:", 1)[1],
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("file", help="Path to the raster file (GeoTIFF, ZIP, subdataset URI, ...)")
    parser.add_argument(
        "-b", "--bands",
        type=band_list,
        default=None,
        help='Bands to display as RGB (e.g. "4,3,2" for false color) or one band for grayscale',
    )
    parser.add_argument(
        "-w", "--width",
        type=int,
        default=None,
        help="Output width in terminal columns (auto-detected if not set)",
    )
    parser.add_argument(
        "-H", "--height",
        type=int,
        default=None,
        help="Output height in terminal rows (auto-detected if not set)",
    )
    parser.add_argument("--info", action="store_true", help="Show raster metadata only")
    parser.add_argument(
        "-s", "--stretch",
        type=float,
        default=DEFAULT_STRETCH_PERCENT,
        help="Percentile for contrast stretch (e.g. 2 for 2%%-98%%) (default: %(default)s)",
    )
    parser.add_argument(
        "--stretch-method",
        choices=sorted(STRETCH_METHODS),
        default="percentile",
        help="How display bounds are derived from each band (default: %(default)s)",
    )
    parser.add_argument(
        "-r", "--max-res",
        type=int,
        default=DEFAULT_MAX_RES,
        help="Maximum output resolution, 0 for full resolution (default: %(default)s)",
    )
    parser.add_argument(
        "-i", "--interactive",
        action="store_true",
        help="Select subdataset and bands interactively",
    )
    parser.add_argument(
        "-p", "--protocol",
        choices=sorted(PROTOCOL_ALIASES),
        default=None,
        help="Force display protocol (auto-detected by default)",
    )
    parser.add_argument(
        "--quarter-blocks",
        action="store_true",
        help="Use 2x2 quadrant glyphs in block mode for higher resolution",
    )
    parser.add_argument(
        "--color-mode",
        choices=COLOR_MODES,
        default="truecolor",
        help="ANSI color depth for block mode (default: %(default)s)",
    )
    parser.add_argument(
        "--colormap",
        default=None,
        help="Matplotlib colormap for single-band images (e.g. viridis, terrain)",
    )
    parser.add_argument(
        "--no-compress",
        action="store_true",
        help="Send uncompressed Kitty graphics payloads",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def setup_logging(verbosity: int) -> None:
    """Configure root logging on stderr."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = getattr(logging, DEFAULT_LOG_LEVEL)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def target_cells(args) -> Tuple[int, int]:
    """(columns, rows) available for the image."""
    cols, rows = terminal_size()
    # Keep the last row free for the shell prompt
    rows = max(1, rows - 1)
    return args.width or cols, args.height or rows


def run(args, source: RasterSource, out) -> int:
    path = args.file
    interactive = args.interactive

    with source.open(path) as dataset:
        if dataset.count == 0:
            entries = source.list_subdatasets(dataset)
            if not entries:
                raise GisViewError(
                    f"File has no raster bands. If this is a multi-dataset format, "
                    f"try: {PROGRAM_NAME} -i {path}"
                )
            if args.info:
                print("\n".join(source.describe_container(dataset, entries, PROGRAM_NAME)))
                return 0
            print(
                f"Detected container file with {len(entries)} subdatasets. "
                "Switching to interactive mode...\n",
                file=sys.stderr,
            )
            interactive = True
        elif args.info:
            print("\n".join(source.describe(dataset)))
            return 0

    capability = resolve(
        CapabilityInputs(env=dict(os.environ), override=args.protocol, query=query_sixel_support)
    )

    bands = args.bands
    if interactive:
        ready = run_interactive(path, source)
        path, bands = ready.path, ready.bands
        # The dialogue is printed as text; the image goes to the binary stream
        sys.stdout.flush()

    options = RenderOptions(
        bands=bands,
        stretch=stretch_from_name(args.stretch_method, args.stretch),
        max_res=args.max_res,
        colormap=args.colormap,
    )
    buffer = render_raster(path, options, source)

    protocol = display(
        buffer,
        capability,
        out,
        target_cells(args),
        compress=not args.no_compress,
        quarter_blocks=args.quarter_blocks,
        color_mode=args.color_mode,
        cell_pixels=cell_pixel_size(),
    )
    logger.info(f"Displayed {buffer.width}x{buffer.height} image using {protocol}")
    return 0


def main(argv: Optional[Sequence[str]] = None, out=None) -> int:
    """Entry point for the gis-view command."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    if out is None:
        out = sys.stdout.buffer

    try:
        return run(args, RasterSource(), out)
    except OutputClosedError as e:
        logger.debug(str(e))
        return 1
    except (GisViewError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, EOFError):
        print(file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
