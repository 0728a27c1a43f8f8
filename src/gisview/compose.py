"""
Band composition for terminal display.

Assembles one or three normalized bands into an RGB pixel buffer. Single
bands are shown as grayscale, or through a matplotlib colormap when one is
requested.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from src.gisview.errors import BandCountMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class RgbBuffer:
    """
    Fully populated RGB image ready for encoding.

    Attributes:
        pixels: uint8 array with shape (height, width, 3)
    """

    pixels: np.ndarray

    def __post_init__(self):
        pixels = self.pixels
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ValueError(f"RGB buffer must have shape (height, width, 3), got {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"RGB buffer must be uint8, got {pixels.dtype}")

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def size(self):
        """(width, height) tuple."""
        return self.width, self.height

    def copy(self) -> "RgbBuffer":
        return RgbBuffer(self.pixels.copy())


def compose(
    bands: Sequence[np.ndarray],
    width: int,
    height: int,
    colormap: Optional[str] = None,
) -> RgbBuffer:
    """
    Combine normalized bands into an RGB buffer.

    Args:
        bands: 1 or 3 uint8 intensity arrays, each with width*height values
        width: Output width in pixels
        height: Output height in pixels
        colormap: Optional matplotlib colormap name for single-band images

    Returns:
        RgbBuffer with shape (height, width, 3)

    Raises:
        BandCountMismatch: If the band count is not 1 or 3, a band has the
            wrong number of values, or a colormap is given for 3 bands
    """
    if len(bands) not in (1, 3):
        raise BandCountMismatch(f"Expected 1 or 3 bands, got {len(bands)}")

    expected = width * height
    planes = []
    for i, band in enumerate(bands, start=1):
        band = np.asarray(band)
        if band.size != expected:
            raise BandCountMismatch(
                f"Band {i} has {band.size} values, expected {width}x{height}={expected}"
            )
        planes.append(band.reshape(height, width).astype(np.uint8, copy=False))

    if len(planes) == 1:
        if colormap:
            pixels = apply_colormap(planes[0], colormap)
        else:
            pixels = np.repeat(planes[0][:, :, np.newaxis], 3, axis=2)
    else:
        if colormap:
            raise BandCountMismatch("A colormap can only be applied to a single band")
        pixels = np.stack(planes, axis=-1)

    return RgbBuffer(np.ascontiguousarray(pixels))


def apply_colormap(intensity: np.ndarray, cmap_name: str) -> np.ndarray:
    """
    Map 8-bit intensities through a matplotlib colormap.

    Args:
        intensity: 2D uint8 array
        cmap_name: Matplotlib colormap name (e.g. 'viridis', 'terrain')

    Returns:
        uint8 array with shape (*intensity.shape, 3)

    Raises:
        ValueError: If the colormap name is unknown
    """
    import matplotlib

    logger.info(f"Applying colormap: {cmap_name}")
    try:
        cmap = matplotlib.colormaps[cmap_name]
    except KeyError:
        raise ValueError(f"Unknown colormap '{cmap_name}'") from None

    # Sample the colormap once per intensity level
    lut = (cmap(np.linspace(0.0, 1.0, 256))[:, :3] * 255).round().astype(np.uint8)
    return lut[intensity]
