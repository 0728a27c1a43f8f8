"""
Raster access through rasterio.

This module is the boundary between gis-view and GDAL: opening files (plain
rasters, ZIP archives and subdataset URIs), listing the subdatasets of
container formats (Sentinel-2 SAFE/ZIP, HDF, NetCDF), reading bands with
their NoData value, and enumerating overview levels.
"""

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import rasterio
from rasterio.enums import Resampling
from rasterio.errors import RasterioIOError

from src.gisview.errors import InvalidSelectionError, NotFoundError
from src.gisview.normalize import SampleBuffer

logger = logging.getLogger(__name__)

# GDAL subdataset URIs look like DRIVER:"path":layer or SENTINEL2_L2A:/vsizip/...
_DRIVER_PREFIX = re.compile(r"^[A-Z][A-Z0-9_]+:")
_SUBDATASET_KEY = re.compile(r"^SUBDATASET_(\d+)_(NAME|DESC)$")


@dataclass(frozen=True)
class SubdatasetEntry:
    """One addressable raster inside a container file."""

    identifier: str
    """GDAL name used to reopen the subdataset."""

    label: str
    """Human-readable description from the container metadata."""

    band_count: int = 0
    width: int = 0
    height: int = 0

    def summary(self) -> str:
        """Menu line, e.g. 'Bands B4, B3, B2 with 10m resolution (3 bands, 10980x10980)'."""
        if self.band_count:
            return f"{self.label} ({self.band_count} bands, {self.width}x{self.height})"
        return self.label


def is_subdataset_uri(path: str) -> bool:
    """True for GDAL subdataset names and virtual file system paths."""
    return bool(_DRIVER_PREFIX.match(path)) or ":/vsi" in path or path.startswith("/vsi")


def parse_subdataset_tags(tags: Dict[str, str]) -> List[Tuple[str, str]]:
    """
    Extract (name, description) pairs from the SUBDATASETS metadata domain.

    Entries are returned in index order; an entry missing its name is skipped
    and a missing description falls back to the name.
    """
    found: Dict[int, Dict[str, str]] = {}
    for key, value in tags.items():
        match = _SUBDATASET_KEY.match(key)
        if match:
            found.setdefault(int(match.group(1)), {})[match.group(2)] = value

    pairs = []
    for index in sorted(found):
        item = found[index]
        if "NAME" not in item:
            continue
        pairs.append((item["NAME"], item.get("DESC", item["NAME"])))
    return pairs


class RasterSource:
    """
    Opens and reads rasters via rasterio.

    Examples:
        >>> source = RasterSource()
        >>> with source.open('scene.tif') as ds:
        ...     red = source.read_band(ds, 3)
    """

    def open(self, path: str):
        """
        Open a raster, subdataset URI or ZIP archive.

        ZIP files are opened directly first (recent GDAL versions recognise
        some archive products) and then through /vsizip/.

        Raises:
            NotFoundError: If the file does not exist or GDAL cannot read it
        """
        path = str(path)
        if not is_subdataset_uri(path) and not Path(path).exists():
            raise NotFoundError(f"File not found: {path}")

        try:
            return rasterio.open(path)
        except RasterioIOError as e:
            if path.lower().endswith(".zip"):
                logger.debug(f"Direct open failed, retrying through /vsizip/: {e}")
                try:
                    return rasterio.open(f"/vsizip/{path}")
                except RasterioIOError as zip_error:
                    raise NotFoundError(
                        f"Failed to open: {path}\n"
                        "The file exists but GDAL cannot read it. "
                        "The ZIP may be corrupted or incomplete."
                    ) from zip_error
            raise NotFoundError(
                f"Failed to open: {path}\n"
                "GDAL cannot read this file. It may be corrupted or in an unsupported format."
            ) from e

    def list_subdatasets(self, dataset) -> List[SubdatasetEntry]:
        """
        List the subdatasets of a container file.

        Each subdataset is opened briefly to record its band count and size;
        one that cannot be opened is kept with a band count of 0.
        """
        entries = []
        for name, desc in parse_subdataset_tags(dataset.tags(ns="SUBDATASETS")):
            try:
                with rasterio.open(name) as sub:
                    entries.append(SubdatasetEntry(name, desc, sub.count, sub.width, sub.height))
            except RasterioIOError as e:
                logger.warning(f"Could not open subdataset {name}: {e}")
                entries.append(SubdatasetEntry(name, desc))
        return entries

    def read_band(
        self, dataset, band_index: int, out_shape: Optional[Tuple[int, int]] = None
    ) -> SampleBuffer:
        """
        Read one band (1-based).

        Args:
            dataset: Open rasterio dataset
            band_index: 1-based band number
            out_shape: Optional (rows, cols) resolution hint. When it matches an
                overview size GDAL reads that overview directly; other sizes
                are area-averaged.

        Returns:
            SampleBuffer with the band's NoData value

        Raises:
            InvalidSelectionError: If the band index is out of range
        """
        if not 1 <= band_index <= dataset.count:
            raise InvalidSelectionError(
                f"Band {band_index} out of range. Dataset has {dataset.count} bands (1-{dataset.count})"
            )
        if out_shape is None:
            data = dataset.read(band_index)
        else:
            data = dataset.read(band_index, out_shape=out_shape, resampling=Resampling.average)
        nodata = dataset.nodatavals[band_index - 1]
        logger.debug(f"Read band {band_index}: {data.shape[1]}x{data.shape[0]} {data.dtype}")
        return SampleBuffer(data, nodata=nodata, band=band_index)

    def overview_levels(self, dataset) -> List[Tuple[int, int]]:
        """(width, height) of each overview level of band 1, largest first."""
        if dataset.count == 0:
            return []
        return [
            (math.ceil(dataset.width / factor), math.ceil(dataset.height / factor))
            for factor in dataset.overviews(1)
        ]

    def describe(self, dataset) -> List[str]:
        """Metadata report for a plain raster (--info)."""
        lines = [
            f"Dimensions: {dataset.width}x{dataset.height}",
            f"Bands: {dataset.count}",
        ]

        transform = dataset.transform
        if transform is not None and not transform.is_identity:
            lines.append(f"Origin: ({transform.c:.6f}, {transform.f:.6f})")
            lines.append(f"Pixel size: ({transform.a:.6f}, {transform.e:.6f})")

        if dataset.crs:
            projection = dataset.crs.to_wkt()
            # Truncate long WKT strings
            if len(projection) > 80:
                projection = projection[:80] + "..."
            lines.append(f"Projection: {projection}")

        overviews = self.overview_levels(dataset)
        if overviews:
            sizes = ", ".join(f"{w}x{h}" for w, h in overviews)
            lines.append(f"Overviews: {sizes}")

        for i in range(1, dataset.count + 1):
            line = f"Band {i}: {dataset.dtypes[i - 1]}"
            nodata = dataset.nodatavals[i - 1]
            if nodata is not None:
                line += f" (nodata: {nodata})"
            description = dataset.descriptions[i - 1]
            if description:
                line += f" - {description}"
            lines.append(line)
        return lines

    def describe_container(self, dataset, entries: List[SubdatasetEntry], program: str) -> List[str]:
        """Subdataset report for a container file (--info)."""
        lines = [
            f"Container format: {dataset.driver}",
            f"Subdatasets: {len(entries)}",
            "",
        ]
        for i, entry in enumerate(entries, start=1):
            lines.append(f"  [{i}] {entry.summary()}")
            lines.append(f"      Path: {entry.identifier}")
        lines.extend(
            [
                "",
                "To view a subdataset, use interactive mode:",
                f"  {program} -i <file>",
                "",
                "Or specify the subdataset path directly:",
                f'  {program} "<subdataset_path>" --bands 4,3,2',
            ]
        )
        return lines
