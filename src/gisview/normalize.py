"""
Normalization of raw band samples to 8-bit display intensities.

This module contains the stretch methods used to map floating-point raster
values (reflectance, radiance, elevation, ...) onto the 0-255 range of a
terminal pixel. Bounds are always computed per band: when several bands are
composited the same stretch parameters are applied to each band, but each
band gets its own min/max.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from src.config import DEFAULT_STRETCH_PERCENT, NODATA_INTENSITY
from src.gisview.errors import EmptyBandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SampleBuffer:
    """One band of raw samples as read from the raster source."""

    data: np.ndarray
    """2D array of samples with shape (height, width)."""

    nodata: Optional[float] = None
    """Sentinel marking pixels with no valid measurement."""

    band: Optional[int] = None
    """1-based index of the source band, used in error messages."""

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    def valid_mask(self) -> np.ndarray:
        """Boolean mask of samples that are finite and not NoData."""
        data = np.asarray(self.data, dtype=np.float64)
        mask = np.isfinite(data)
        if self.nodata is not None and np.isfinite(self.nodata):
            mask &= data != self.nodata
        return mask


@dataclass(frozen=True)
class Linear:
    """Scale the full min..max range of valid samples to 0..255."""


@dataclass(frozen=True)
class Percentile:
    """Clip to the values at the ``low`` and ``high`` fractions of sorted samples."""

    low: float = DEFAULT_STRETCH_PERCENT / 100.0
    high: float = 1.0 - DEFAULT_STRETCH_PERCENT / 100.0

    def __post_init__(self):
        if not (0.0 <= self.low < self.high <= 1.0):
            raise ValueError(
                f"Percentile fractions must satisfy 0 <= low < high <= 1, "
                f"got low={self.low}, high={self.high}"
            )

    @classmethod
    def from_percent(cls, percent: float) -> "Percentile":
        """Build a symmetric clip, e.g. ``2`` for a 2%-98% stretch."""
        if not (0.0 <= percent < 50.0):
            raise ValueError(f"Stretch percent must be in [0, 50), got {percent}")
        return cls(low=percent / 100.0, high=1.0 - percent / 100.0)


@dataclass(frozen=True)
class Histogram:
    """Histogram equalization using the empirical CDF of valid samples."""


@dataclass(frozen=True)
class NoStretch:
    """Samples are already display values; only rounding and clamping apply."""


StretchConfig = Union[Linear, Percentile, Histogram, NoStretch]

STRETCH_METHODS = {
    "percentile": Percentile,
    "linear": Linear,
    "histogram": Histogram,
    "none": NoStretch,
}


def stretch_from_name(name: str, percent: float = DEFAULT_STRETCH_PERCENT) -> StretchConfig:
    """
    Build a StretchConfig from a command-line method name.

    Args:
        name: One of 'percentile', 'linear', 'histogram', 'none'
        percent: Clip percentage used by the percentile method

    Returns:
        StretchConfig instance

    Raises:
        ValueError: If the method name is unknown
    """
    key = name.lower()
    if key not in STRETCH_METHODS:
        raise ValueError(
            f"Unknown stretch method '{name}'. Use: {', '.join(STRETCH_METHODS)}"
        )
    if key == "percentile":
        return Percentile.from_percent(percent)
    return STRETCH_METHODS[key]()


def stretch_bounds(samples: SampleBuffer, stretch: StretchConfig) -> Tuple[float, float]:
    """
    Compute the (min, max) display bounds of one band.

    Args:
        samples: Band to inspect
        stretch: Linear or Percentile configuration

    Returns:
        tuple: (low, high) sample values mapped to 0 and 255

    Raises:
        EmptyBandError: If the band has no valid samples
        TypeError: If the stretch method does not use numeric bounds
    """
    valid = _valid_values(samples)

    if isinstance(stretch, Linear):
        return float(valid.min()), float(valid.max())

    if isinstance(stretch, Percentile):
        ordered = np.sort(valid)
        n = ordered.size
        low_idx = min(int(np.floor(stretch.low * n)), n - 1)
        high_idx = min(int(np.floor(stretch.high * n)), n - 1)
        return float(ordered[low_idx]), float(ordered[high_idx])

    raise TypeError(f"{type(stretch).__name__} stretch has no numeric bounds")


def normalize(samples: SampleBuffer, stretch: StretchConfig) -> np.ndarray:
    """
    Map raw samples of one band to 8-bit intensities.

    NoData and non-finite samples become mid-gray (128).

    Args:
        samples: Band samples with optional NoData sentinel
        stretch: Stretch method and parameters

    Returns:
        uint8 array with the same shape as ``samples.data``

    Raises:
        EmptyBandError: If the band has no valid samples
    """
    data = np.asarray(samples.data, dtype=np.float64)
    mask = samples.valid_mask()
    if not mask.any():
        raise EmptyBandError(samples.band)

    out = np.full(data.shape, NODATA_INTENSITY, dtype=np.uint8)
    values = data[mask]

    if isinstance(stretch, (Linear, Percentile)):
        low, high = stretch_bounds(samples, stretch)
        logger.debug(f"Band {samples.band}: stretch bounds {low:.4g} to {high:.4g}")
        out[mask] = _scale_linear(values, low, high)

    elif isinstance(stretch, Histogram):
        out[mask] = _equalize(values)

    elif isinstance(stretch, NoStretch):
        out[mask] = np.clip(np.rint(values), 0, 255).astype(np.uint8)

    else:
        raise TypeError(f"Unsupported stretch configuration: {stretch!r}")

    return out


def normalize_bands(
    buffers: Sequence[SampleBuffer], stretch: StretchConfig
) -> list:
    """
    Normalize every band of a composite with the same stretch parameters.

    Each band's bounds are computed from that band alone.

    Args:
        buffers: 1 or 3 SampleBuffers in R, G, B order
        stretch: Stretch configuration shared by all bands

    Returns:
        list of uint8 arrays, one per input band
    """
    result = []
    for buf in buffers:
        result.append(normalize(buf, stretch))
    return result


def _valid_values(samples: SampleBuffer) -> np.ndarray:
    data = np.asarray(samples.data, dtype=np.float64)
    valid = data[samples.valid_mask()]
    if valid.size == 0:
        raise EmptyBandError(samples.band)
    return valid


def _scale_linear(values: np.ndarray, low: float, high: float) -> np.ndarray:
    if high <= low:
        # Flat field
        return np.full(values.shape, NODATA_INTENSITY, dtype=np.uint8)
    scaled = (values - low) / (high - low) * 255.0
    return np.clip(scaled, 0.0, 255.0).astype(np.uint8)


def _equalize(values: np.ndarray) -> np.ndarray:
    ordered = np.sort(values)
    n = ordered.size
    # Number of samples <= v, for each v
    cdf = np.searchsorted(ordered, values, side="right")
    cdf_min = np.searchsorted(ordered, ordered[0], side="right")
    if cdf_min == n:
        return np.full(values.shape, NODATA_INTENSITY, dtype=np.uint8)
    scaled = (cdf - cdf_min) / (n - cdf_min) * 255.0
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)
