"""
Terminal viewer for GIS rasters.

Core functionality:
- Per-band contrast stretching (percentile, linear, histogram) with NoData handling
- RGB / grayscale / colormapped band composition
- Overview-aware area-average downsampling
- Kitty, iTerm2, Sixel and Unicode block encoders with protocol fallback
- Interactive subdataset and band selection
"""

__version__ = "0.1.0"

from .normalize import (
    SampleBuffer,
    Linear,
    Percentile,
    Histogram,
    NoStretch,
    normalize,
    normalize_bands,
    stretch_bounds,
    stretch_from_name,
)
from .compose import RgbBuffer, compose
from .transforms import downsample, output_shape, select_overview
from .capabilities import CapabilityDescriptor, CapabilityInputs, Protocol, resolve
from .encoders import display, encode
from .pipeline import RenderOptions, render_raster

__all__ = [
    "SampleBuffer",
    "Linear",
    "Percentile",
    "Histogram",
    "NoStretch",
    "normalize",
    "normalize_bands",
    "stretch_bounds",
    "stretch_from_name",
    "RgbBuffer",
    "compose",
    "downsample",
    "output_shape",
    "select_overview",
    "CapabilityDescriptor",
    "CapabilityInputs",
    "Protocol",
    "resolve",
    "display",
    "encode",
    "RenderOptions",
    "render_raster",
]
