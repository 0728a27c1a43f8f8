"""
Render pipeline: raster source -> normalize -> compose -> downsample.

Each stage consumes the complete output of the previous one; stretch bounds
need a full pass over every band, so nothing is streamed row by row.
"""

import logging
import sys
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from tqdm import tqdm

from src.config import DEFAULT_MAX_RES, MAX_PIXELS
from src.gisview.compose import RgbBuffer, compose
from src.gisview.errors import BandCountMismatch, EmptyRasterError
from src.gisview.normalize import Percentile, StretchConfig, normalize_bands
from src.gisview.raster_source import RasterSource
from src.gisview.transforms import downsample, plan_read, select_overview

logger = logging.getLogger(__name__)


@dataclass
class RenderOptions:
    """Parameters of one render request."""

    bands: Optional[Tuple[int, ...]] = None
    """1 or 3 one-based band indices; None picks a default from the band count."""

    stretch: StretchConfig = field(default_factory=Percentile)
    """Stretch applied to every band (bounds computed per band)."""

    max_res: int = DEFAULT_MAX_RES
    """Maximum size of the larger output side; 0 reads full resolution."""

    max_pixels: int = MAX_PIXELS
    """Total pixel cap when max_res is 0."""

    colormap: Optional[str] = None
    """Matplotlib colormap for single-band output."""


def select_bands(requested: Optional[Sequence[int]], band_count: int) -> Tuple[int, ...]:
    """
    Validate or default the band selection.

    Defaults to bands 1,2,3 when the dataset has at least three bands and to
    band 1 (grayscale) otherwise.

    Raises:
        BandCountMismatch: If the request is not 1 or 3 bands, or an index is
            outside 1..band_count
    """
    if band_count <= 0:
        raise EmptyRasterError("Dataset has no raster bands")

    if requested is None:
        return (1, 2, 3) if band_count >= 3 else (1,)

    bands = tuple(int(b) for b in requested)
    if len(bands) not in (1, 3):
        raise BandCountMismatch(
            f"Select 1 band (grayscale) or 3 bands (RGB), got {len(bands)}: "
            f"{','.join(str(b) for b in bands)}"
        )
    for b in bands:
        if not 1 <= b <= band_count:
            raise BandCountMismatch(
                f"Band {b} out of range. Dataset has {band_count} bands (1-{band_count})"
            )
    return bands


def render_dataset(
    dataset,
    options: RenderOptions,
    source: Optional[RasterSource] = None,
) -> RgbBuffer:
    """
    Render an open dataset into an RGB buffer.

    When the output is smaller than the source, the smallest overview that is
    still at least as large as the output is read instead of full resolution,
    and the result is box-filtered down to the output size.

    Args:
        dataset: Open rasterio dataset
        options: Render parameters
        source: Raster source used for reads (default: RasterSource())

    Returns:
        RgbBuffer no larger than the planned output size
    """
    source = source or RasterSource()
    bands = select_bands(options.bands, dataset.count)
    src_w, src_h = dataset.width, dataset.height
    out_w, out_h = plan_read(src_w, src_h, options.max_res, options.max_pixels)
    target = max(out_w, out_h)

    read_shape = None
    if (out_w, out_h) != (src_w, src_h):
        overview_sizes = source.overview_levels(dataset)
        level = select_overview(overview_sizes, target)
        if level is not None:
            ovr_w, ovr_h = overview_sizes[level]
            read_shape = (ovr_h, ovr_w)
            logger.info(
                f"Using overview level {level} ({ovr_w}x{ovr_h}) for {out_w}x{out_h} output"
            )

    samples = _read_bands(source, dataset, bands, read_shape)

    logger.info(f"Normalizing bands {','.join(str(b) for b in bands)} with {options.stretch}")
    intensities = normalize_bands(samples, options.stretch)

    width, height = samples[0].width, samples[0].height
    rgb = compose(intensities, width, height, colormap=options.colormap)

    if max(rgb.width, rgb.height) > target:
        rgb = downsample(rgb, target)
    return rgb


def render_raster(
    path: str,
    options: RenderOptions,
    source: Optional[RasterSource] = None,
) -> RgbBuffer:
    """Open ``path`` and render it (see ``render_dataset``)."""
    source = source or RasterSource()
    with source.open(path) as dataset:
        logger.info(f"Rendering {path} ({dataset.width}x{dataset.height}, {dataset.count} bands)")
        return render_dataset(dataset, options, source)


def _read_bands(source, dataset, bands, out_shape=None):
    unique = list(dict.fromkeys(bands))
    progress = tqdm(
        unique,
        desc="Reading bands",
        file=sys.stderr,
        disable=len(unique) < 2 or not sys.stderr.isatty(),
    )
    cache = {}
    with progress as pbar:
        for band in pbar:
            cache[band] = source.read_band(dataset, band, out_shape)
    return [cache[b] for b in bands]
