"""Pytest configuration and fixtures for gis-view tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import pytest
import numpy as np


@pytest.fixture
def gradient_band():
    """A 40x60 float band with a horizontal gradient from 0 to 1000."""
    row = np.linspace(0.0, 1000.0, 60, dtype=np.float32)
    return np.tile(row, (40, 1))


@pytest.fixture
def rgb_buffer():
    """A small RGB buffer with distinct pixel colors."""
    from src.gisview.compose import RgbBuffer

    rng = np.random.default_rng(42)
    pixels = rng.integers(0, 256, size=(8, 12, 3), dtype=np.uint8)
    return RgbBuffer(pixels)


def _write_geotiff(path, data, nodata=None, overviews=None):
    import rasterio
    from rasterio.enums import Resampling
    from rasterio.transform import from_origin

    count, height, width = data.shape
    profile = {
        "driver": "GTiff",
        "width": width,
        "height": height,
        "count": count,
        "dtype": data.dtype.name,
        "crs": "EPSG:32633",
        "transform": from_origin(500000.0, 4500000.0, 10.0, 10.0),
    }
    if nodata is not None:
        profile["nodata"] = nodata
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data)
        if overviews:
            dst.build_overviews(overviews, Resampling.average)
    return path


@pytest.fixture
def multiband_tif(tmp_path):
    """A 4-band 50x80 uint16 GeoTIFF; band b holds values offset by 1000*b."""
    rng = np.random.default_rng(0)
    data = np.stack(
        [rng.integers(1000 * b, 1000 * b + 500, size=(50, 80)) for b in range(1, 5)]
    ).astype(np.uint16)
    return _write_geotiff(tmp_path / "scene.tif", data)


@pytest.fixture
def single_band_tif(tmp_path):
    """A single-band float32 GeoTIFF with a NoData border."""
    data = np.tile(np.linspace(0.0, 100.0, 30, dtype=np.float32), (20, 1))
    data[0, :] = -9999.0
    return _write_geotiff(tmp_path / "dem.tif", data[np.newaxis], nodata=-9999.0)


@pytest.fixture
def large_tif_with_overviews(tmp_path):
    """A 3-band 512x256 GeoTIFF with 2x, 4x and 8x overviews."""
    y, x = np.mgrid[0:256, 0:512]
    data = np.stack([x % 256, y % 256, (x + y) % 256]).astype(np.uint8)
    return _write_geotiff(tmp_path / "big.tif", data, overviews=[2, 4, 8])


@pytest.fixture
def project_root():
    """Get the project root directory."""
    return Path(__file__).parent.parent
