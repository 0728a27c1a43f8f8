"""
Resolution reduction for terminal display.

This module contains the downsampling policy used before encoding: picking a
precomputed overview level when the source has one, sizing the output, and
area-averaging (box filter) resampling of RGB buffers.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy import sparse

from src.gisview.compose import RgbBuffer
from src.gisview.errors import EmptyRasterError

logger = logging.getLogger(__name__)


def output_shape(width: int, height: int, target_max_dimension: int) -> Tuple[int, int]:
    """
    Compute the output size whose larger side equals the target.

    Aspect ratio is preserved (to within rounding). The size is never
    enlarged: a target at or above the source dimension returns the source
    size.

    Args:
        width: Source width in pixels
        height: Source height in pixels
        target_max_dimension: Desired size of the larger side

    Returns:
        tuple: (out_width, out_height)

    Raises:
        EmptyRasterError: If width or height is zero
        ValueError: If the target is not positive
    """
    if width <= 0 or height <= 0:
        raise EmptyRasterError(f"Raster has no pixels ({width}x{height})")
    if target_max_dimension <= 0:
        raise ValueError(f"Target dimension must be positive, got {target_max_dimension}")

    largest = max(width, height)
    if target_max_dimension >= largest:
        return width, height

    scale = target_max_dimension / largest
    out_w = max(1, int(round(width * scale)))
    out_h = max(1, int(round(height * scale)))
    return out_w, out_h


def plan_read(
    width: int, height: int, max_res: int, max_pixels: int
) -> Tuple[int, int]:
    """
    Decide the working resolution for a render.

    Args:
        width: Source width
        height: Source height
        max_res: Maximum size of the larger side; 0 means full resolution
        max_pixels: Cap on total pixels when reading at full resolution

    Returns:
        tuple: (out_width, out_height)
    """
    if width <= 0 or height <= 0:
        raise EmptyRasterError(f"Raster has no pixels ({width}x{height})")

    if max_res > 0:
        return output_shape(width, height, max_res)

    total = width * height
    if total <= max_pixels:
        return width, height

    scale = math.sqrt(max_pixels / total)
    return max(1, int(width * scale)), max(1, int(height * scale))


def select_overview(
    overview_sizes: Sequence[Tuple[int, int]], target_max_dimension: int
) -> Optional[int]:
    """
    Pick the overview closest to the target size from above.

    Args:
        overview_sizes: (width, height) of each overview level, in level order
        target_max_dimension: Desired size of the larger side

    Returns:
        Index into ``overview_sizes`` of the best level, or None if no overview
        is at least as large as the target
    """
    best = None
    best_dim = None
    for level, (w, h) in enumerate(overview_sizes):
        dim = max(w, h)
        if dim < target_max_dimension:
            continue
        if best_dim is None or dim < best_dim:
            best, best_dim = level, dim
    return best


def downsample(buffer: RgbBuffer, target_max_dimension: int) -> RgbBuffer:
    """
    Reduce an RGB buffer so its larger side equals the target.

    Uses area averaging, so every source pixel contributes to the output in
    proportion to its overlap with the output pixel.

    Args:
        buffer: Source image
        target_max_dimension: Desired size of the larger side

    Returns:
        New RgbBuffer; a copy when no reduction is needed

    Raises:
        EmptyRasterError: If the buffer has no pixels
    """
    out_w, out_h = output_shape(buffer.width, buffer.height, target_max_dimension)
    if (out_w, out_h) == (buffer.width, buffer.height):
        return buffer.copy()

    logger.info(
        f"Downsampling {buffer.width}x{buffer.height} -> {out_w}x{out_h} for display"
    )
    return RgbBuffer(area_average(buffer.pixels, out_w, out_h))


def fit_within(buffer: RgbBuffer, max_width: int, max_height: int) -> RgbBuffer:
    """
    Shrink an RGB buffer to fit inside a bounding box, preserving aspect.

    Args:
        buffer: Source image
        max_width: Maximum output width
        max_height: Maximum output height

    Returns:
        New RgbBuffer no larger than (max_width, max_height)
    """
    if buffer.width == 0 or buffer.height == 0:
        raise EmptyRasterError(f"Raster has no pixels ({buffer.width}x{buffer.height})")
    if max_width <= 0 or max_height <= 0:
        raise ValueError(f"Bounding box must be positive, got {max_width}x{max_height}")

    scale = min(max_width / buffer.width, max_height / buffer.height)
    if scale >= 1.0:
        return buffer.copy()

    out_w = max(1, int(round(buffer.width * scale)))
    out_h = max(1, int(round(buffer.height * scale)))
    logger.debug(f"Fitting {buffer.width}x{buffer.height} -> {out_w}x{out_h}")
    return RgbBuffer(area_average(buffer.pixels, out_w, out_h))


def area_average(pixels: np.ndarray, out_width: int, out_height: int) -> np.ndarray:
    """
    Box-filter resample an (H, W, C) uint8 array to a smaller size.

    Args:
        pixels: Source array
        out_width: Output width (<= source width)
        out_height: Output height (<= source height)

    Returns:
        uint8 array with shape (out_height, out_width, C)
    """
    src_h, src_w = pixels.shape[:2]
    rows = _box_weights(src_h, out_height)
    cols = _box_weights(src_w, out_width)

    channels = pixels.shape[2]
    out = np.empty((out_height, out_width, channels), dtype=np.uint8)
    for c in range(channels):
        plane = pixels[:, :, c].astype(np.float64)
        # (out_h x src_h) @ (src_h x src_w) -> (out_h x src_w), then columns
        reduced = rows @ plane
        reduced = (cols @ reduced.T).T
        out[:, :, c] = np.clip(np.rint(reduced), 0, 255).astype(np.uint8)
    return out


def _box_weights(src_len: int, out_len: int) -> sparse.csr_matrix:
    """Sparse (out_len x src_len) matrix of fractional overlaps, rows sum to 1."""
    scale = src_len / out_len
    out_idx = np.arange(out_len)
    starts = out_idx * scale
    ends = starts + scale

    span = int(math.ceil(scale)) + 1
    row_ids, col_ids, weights = [], [], []
    first = np.floor(starts).astype(np.int64)
    for k in range(span):
        src_idx = first + k
        overlap = np.minimum(ends, src_idx + 1) - np.maximum(starts, src_idx)
        keep = (overlap > 1e-12) & (src_idx < src_len)
        row_ids.append(out_idx[keep])
        col_ids.append(src_idx[keep])
        weights.append(overlap[keep] / scale)

    return sparse.csr_matrix(
        (np.concatenate(weights), (np.concatenate(row_ids), np.concatenate(col_ids))),
        shape=(out_len, src_len),
    )
