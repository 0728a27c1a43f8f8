"""
Terminal encoders for RGB buffers.

Each protocol turns a fully populated RgbBuffer into the bytes a terminal
needs to draw it:

- Kitty graphics protocol: raw RGB, zlib-compressed, base64 in 4096-byte chunks
- iTerm2 inline images: PNG in an OSC 1337 sequence (multipart when large)
- Sixel: median-cut palette of up to 256 colors, run-length encoded bands
- Unicode blocks: half-block (or quadrant) glyphs with ANSI colors, for
  terminals without any graphics extension

Encoders are stateless; ``display`` walks the protocol fallback chain and
writes the first encoding that succeeds.

Reference: https://sw.kovidgoyal.net/kitty/graphics-protocol/
"""

import base64
import io
import logging
import zlib
from typing import Optional, Tuple

import numpy as np

from src.config import (
    DEFAULT_CELL_PIXELS,
    ITERM_CHUNK_SIZE,
    KITTY_CHUNK_SIZE,
    MAX_PAYLOAD_BYTES,
    SIXEL_MAX_COLORS,
)
from src.gisview.capabilities import CapabilityDescriptor, Protocol
from src.gisview.compose import RgbBuffer
from src.gisview.errors import OutputClosedError, UnsupportedProtocolFallback
from src.gisview.transforms import fit_within

logger = logging.getLogger(__name__)

ESC = "\x1b"
ST = ESC + "\\"  # String terminator for APC / DCS sequences
BEL = "\x07"
RESET = ESC + "[0m"

# Quadrant glyphs indexed by a bitmask of lit quadrants:
# 1 = upper left, 2 = upper right, 4 = lower left, 8 = lower right
QUADRANT_GLYPHS = (
    " ", "▘", "▝", "▀",
    "▖", "▌", "▞", "▛",
    "▗", "▚", "▐", "▜",
    "▄", "▙", "▟", "█",
)
UPPER_HALF = QUADRANT_GLYPHS[3]

COLOR_MODES = ("truecolor", "256", "8")

# RGB values of the 8 basic ANSI colors (xterm defaults)
_ANSI8 = np.array(
    [
        (0, 0, 0), (205, 0, 0), (0, 205, 0), (205, 205, 0),
        (0, 0, 238), (205, 0, 205), (0, 205, 205), (229, 229, 229),
    ],
    dtype=np.int32,
)
_CUBE_LEVELS = np.array([0, 95, 135, 175, 215, 255], dtype=np.int32)


def encode(
    buffer: RgbBuffer,
    protocol: Protocol,
    target_cell_size: Optional[Tuple[int, int]] = None,
    *,
    compress: bool = True,
    quarter_blocks: bool = False,
    color_mode: str = "truecolor",
    cell_pixels: Tuple[int, int] = DEFAULT_CELL_PIXELS,
    max_payload: int = MAX_PAYLOAD_BYTES,
) -> bytes:
    """
    Encode an RGB buffer for one terminal protocol.

    Args:
        buffer: Image to encode
        protocol: Output protocol
        target_cell_size: (columns, rows) available for the image; the
            buffer is shrunk (never enlarged) to fit that area
        compress: zlib-compress Kitty payloads
        quarter_blocks: Use 2x2 quadrant glyphs instead of half blocks
        color_mode: 'truecolor', '256' or '8' for block output
        cell_pixels: (width, height) of a character cell, used to size sixels
        max_payload: Largest encoded payload before falling back a tier

    Returns:
        bytes to write to the terminal

    Raises:
        UnsupportedProtocolFallback: If this protocol cannot render the buffer
    """
    if protocol is Protocol.BLOCKS:
        if target_cell_size:
            cols, rows = target_cell_size
            per_cell = 2 if quarter_blocks else 1
            buffer = fit_within(buffer, cols * per_cell, rows * 2)
        return encode_blocks(buffer, quarter=quarter_blocks, color_mode=color_mode)

    cells = None
    if target_cell_size:
        cols, rows = target_cell_size
        cell_w, cell_h = cell_pixels
        buffer = fit_within(buffer, cols * cell_w, rows * cell_h)
        # Columns actually covered at native cell size
        cells = (min(cols, -(-buffer.width // cell_w)), min(rows, -(-buffer.height // cell_h)))

    if protocol is Protocol.KITTY:
        return encode_kitty(buffer, cells, compress=compress, max_payload=max_payload)
    if protocol is Protocol.ITERM2:
        return encode_iterm(buffer, cells, max_payload=max_payload)
    if protocol is Protocol.SIXEL:
        return encode_sixel(buffer, max_payload=max_payload)
    raise ValueError(f"Unknown protocol: {protocol!r}")


def display(
    buffer: RgbBuffer,
    capability: CapabilityDescriptor,
    out,
    target_cell_size: Optional[Tuple[int, int]] = None,
    **options,
) -> Protocol:
    """
    Encode and write a buffer, downgrading protocol tiers as needed.

    Args:
        buffer: Image to display
        capability: Resolved capability descriptor
        out: Binary stream (e.g. ``sys.stdout.buffer``)
        target_cell_size: (columns, rows) available for the image
        **options: Passed through to ``encode``

    Returns:
        Protocol that was actually written

    Raises:
        OutputClosedError: If the stream cannot be written
    """
    for protocol in capability.fallback_chain():
        try:
            data = encode(buffer, protocol, target_cell_size, **options)
        except UnsupportedProtocolFallback as e:
            logger.info(f"{e}; falling back to next protocol")
            continue
        write_stream(out, data)
        return protocol

    # Blocks never raises UnsupportedProtocolFallback
    raise RuntimeError("No display protocol could render the image")


def write_stream(out, data: bytes) -> None:
    """
    Write encoded bytes and flush.

    Raises:
        OutputClosedError: On broken pipe or a closed stream
    """
    try:
        out.write(data)
        out.flush()
    except BrokenPipeError as e:
        raise OutputClosedError("Output stream closed (broken pipe)") from e
    except ValueError as e:
        # Writing to a closed file object
        raise OutputClosedError(f"Output stream closed: {e}") from e
    except OSError as e:
        raise OutputClosedError(f"Failed to write to output: {e}") from e


# =============================================================================
# Kitty graphics protocol
# =============================================================================


def encode_kitty(
    buffer: RgbBuffer,
    target_cell_size: Optional[Tuple[int, int]] = None,
    compress: bool = True,
    chunk_size: int = KITTY_CHUNK_SIZE,
    max_payload: int = MAX_PAYLOAD_BYTES,
) -> bytes:
    """
    Encode a buffer with the Kitty graphics protocol.

    The image is sent as 24-bit RGB (f=24) in one transmit-and-display
    command (a=T). The base64 payload is split into chunks of ``chunk_size``
    bytes; every chunk but the last carries m=1 and the last carries m=0 so
    the terminal knows the transfer is complete. q=2 suppresses replies that
    would otherwise show up as garbage input.
    """
    raw = buffer.pixels.tobytes()
    control = f"a=T,f=24,s={buffer.width},v={buffer.height},q=2"
    if compress:
        raw = zlib.compress(raw)
        control += ",o=z"
    if target_cell_size:
        control += f",c={target_cell_size[0]}"

    payload = base64.standard_b64encode(raw).decode("ascii")
    if len(payload) > max_payload:
        raise UnsupportedProtocolFallback(
            Protocol.KITTY, f"payload of {len(payload)} bytes exceeds {max_payload}"
        )

    chunks = [payload[i : i + chunk_size] for i in range(0, len(payload), chunk_size)] or [""]
    parts = []
    for i, chunk in enumerate(chunks):
        more = 0 if i == len(chunks) - 1 else 1
        if i == 0:
            parts.append(f"{ESC}_G{control},m={more};{chunk}{ST}")
        else:
            parts.append(f"{ESC}_Gm={more};{chunk}{ST}")
    parts.append("\n")
    return "".join(parts).encode("ascii")


# =============================================================================
# iTerm2 inline images
# =============================================================================


def encode_iterm(
    buffer: RgbBuffer,
    target_cell_size: Optional[Tuple[int, int]] = None,
    chunk_size: int = ITERM_CHUNK_SIZE,
    max_payload: int = MAX_PAYLOAD_BYTES,
) -> bytes:
    """
    Encode a buffer as an iTerm2 inline image (OSC 1337).

    Payloads larger than ``chunk_size`` use the multipart form
    (MultipartFile / FilePart / FileEnd), which also passes through
    terminal multiplexers that limit sequence length.
    """
    png = _to_png(buffer, Protocol.ITERM2)
    payload = base64.standard_b64encode(png).decode("ascii")
    if len(payload) > max_payload:
        raise UnsupportedProtocolFallback(
            Protocol.ITERM2, f"payload of {len(payload)} bytes exceeds {max_payload}"
        )

    args = f"inline=1;size={len(png)};preserveAspectRatio=1"
    if target_cell_size:
        args += f";width={target_cell_size[0]}"

    if len(payload) <= chunk_size:
        return f"{ESC}]1337;File={args}:{payload}{BEL}\n".encode("ascii")

    parts = [f"{ESC}]1337;MultipartFile={args}{BEL}"]
    for i in range(0, len(payload), chunk_size):
        parts.append(f"{ESC}]1337;FilePart={payload[i : i + chunk_size]}{BEL}")
    parts.append(f"{ESC}]1337;FileEnd{BEL}\n")
    return "".join(parts).encode("ascii")


def _to_png(buffer: RgbBuffer, protocol: Protocol) -> bytes:
    from PIL import Image

    try:
        out = io.BytesIO()
        Image.fromarray(buffer.pixels).save(out, format="PNG")
    except (OSError, ValueError) as e:
        raise UnsupportedProtocolFallback(protocol, f"PNG encoding failed ({e})") from e
    return out.getvalue()


# =============================================================================
# Sixel
# =============================================================================


def quantize(buffer: RgbBuffer, max_colors: int = SIXEL_MAX_COLORS) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reduce a buffer to an indexed palette with median-cut quantization.

    Returns:
        tuple: (indices, palette) where indices is a (height, width) array of
        palette positions and palette is a (n_colors, 3) uint8 array
    """
    from PIL import Image

    try:
        image = Image.fromarray(buffer.pixels)
        indexed = image.quantize(
            colors=max_colors,
            method=Image.Quantize.MEDIANCUT,
            dither=Image.Dither.NONE,
        )
    except (OSError, ValueError) as e:
        raise UnsupportedProtocolFallback(Protocol.SIXEL, f"quantization failed ({e})") from e

    indices = np.asarray(indexed, dtype=np.int32)
    n_colors = int(indices.max()) + 1
    palette = np.array(indexed.getpalette()[: 3 * n_colors], dtype=np.uint8).reshape(-1, 3)
    return indices, palette


def encode_sixel(
    buffer: RgbBuffer,
    max_colors: int = SIXEL_MAX_COLORS,
    max_payload: int = MAX_PAYLOAD_BYTES,
) -> bytes:
    """
    Encode a buffer as a sixel image.

    Rows are grouped into bands of six. Within a band each palette color
    present is drawn in one pass ('#n' followed by run-length encoded sixel
    characters), passes are separated by '$' (carriage return) and bands by
    '-' (line feed).
    """
    indices, palette = quantize(buffer, max_colors)
    height, width = indices.shape

    parts = [f"{ESC}Pq", f'"1;1;{width};{height}']
    for i, (r, g, b) in enumerate(palette.tolist()):
        parts.append(f"#{i};2;{_pct(r)};{_pct(g)};{_pct(b)}")

    for top in range(0, height, 6):
        band = indices[top : top + 6]
        passes = []
        for color in np.unique(band):
            bits = np.zeros(width, dtype=np.uint8)
            for row in range(band.shape[0]):
                bits |= (band[row] == color).astype(np.uint8) << row
            passes.append(f"#{color}" + _sixel_rle(bits + 63))
        parts.append("$".join(passes))
        if top + 6 < height:
            parts.append("-")

    parts.append(ST)
    data = "".join(parts).encode("ascii")
    if len(data) > max_payload:
        raise UnsupportedProtocolFallback(
            Protocol.SIXEL, f"payload of {len(data)} bytes exceeds {max_payload}"
        )
    return data


def _pct(value: int) -> int:
    return int(round(value * 100 / 255))


def _sixel_rle(codes: np.ndarray) -> str:
    """Run-length encode sixel characters ('!<count><char>' for runs > 3)."""
    boundaries = np.flatnonzero(np.diff(codes)) + 1
    starts = np.concatenate(([0], boundaries))
    ends = np.concatenate((boundaries, [codes.size]))
    out = []
    for start, end in zip(starts, ends):
        char = chr(int(codes[start]))
        count = int(end - start)
        out.append(f"!{count}{char}" if count > 3 else char * count)
    return "".join(out)


# =============================================================================
# Unicode block fallback
# =============================================================================


def encode_blocks(
    buffer: RgbBuffer, quarter: bool = False, color_mode: str = "truecolor"
) -> bytes:
    """
    Render a buffer as colored Unicode block characters.

    Half-block mode draws two vertically stacked pixels per cell with '▀':
    the foreground is the upper pixel and the background the lower pixel.
    Quarter mode draws a 2x2 pixel cell with the quadrant glyph whose
    two-color split best matches the four pixels.

    Args:
        buffer: Image to render
        quarter: Use quadrant glyphs (4 pixels per cell)
        color_mode: 'truecolor' (24-bit), '256' or '8' (3-bit ANSI)

    Returns:
        UTF-8 bytes, one terminal line per cell row
    """
    if color_mode not in COLOR_MODES:
        raise ValueError(f"Unknown color mode '{color_mode}'. Use: {', '.join(COLOR_MODES)}")

    if quarter:
        glyphs, fg, bg = _quadrant_cells(buffer.pixels)
    else:
        glyphs, fg, bg = _half_block_cells(buffer.pixels)

    lines = []
    for y in range(glyphs.shape[0]):
        lines.append(_render_row(glyphs[y], fg[y], bg[y], color_mode))
    return "".join(lines).encode("utf-8")


def _half_block_cells(pixels: np.ndarray):
    height, width = pixels.shape[:2]
    top = pixels[0::2]
    bottom = pixels[1::2]
    rows = top.shape[0]
    glyphs = np.full((rows, width), 3, dtype=np.int8)  # mask 3 == '▀'
    bg = np.full((rows, width, 3), -1, dtype=np.int32)
    bg[: bottom.shape[0]] = bottom
    # An odd final row has no lower pixel; -1 keeps the default background
    return glyphs, top.astype(np.int32), bg


def _quadrant_cells(pixels: np.ndarray):
    height, width = pixels.shape[:2]
    # Pad odd dimensions by repeating the edge pixel
    padded = np.pad(pixels, ((0, height % 2), (0, width % 2), (0, 0)), mode="edge")
    p = padded.astype(np.float64)
    # (rows, cols, 4, 3) in quadrant order UL, UR, LL, LR
    quads = np.stack([p[0::2, 0::2], p[0::2, 1::2], p[1::2, 0::2], p[1::2, 1::2]], axis=2)

    best_err = None
    best_mask = None
    best_fg = best_bg = None
    for mask in range(1, 16):
        lit = np.array([(mask >> q) & 1 for q in range(4)], dtype=bool)
        fg = quads[:, :, lit].mean(axis=2)
        if lit.all():
            bg = fg
            err = ((quads - fg[:, :, None, :]) ** 2).sum(axis=(2, 3))
        else:
            bg = quads[:, :, ~lit].mean(axis=2)
            err = ((quads[:, :, lit] - fg[:, :, None, :]) ** 2).sum(axis=(2, 3))
            err += ((quads[:, :, ~lit] - bg[:, :, None, :]) ** 2).sum(axis=(2, 3))
        if best_err is None:
            best_err, best_fg, best_bg = err, fg, bg
            best_mask = np.full(err.shape, mask, dtype=np.int8)
            continue
        better = err < best_err
        best_err = np.where(better, err, best_err)
        best_mask = np.where(better, mask, best_mask).astype(np.int8)
        best_fg = np.where(better[:, :, None], fg, best_fg)
        best_bg = np.where(better[:, :, None], bg, best_bg)

    fg = np.rint(best_fg).astype(np.int32)
    bg = np.rint(best_bg).astype(np.int32)
    return best_mask, fg, bg


def _render_row(glyphs, fg, bg, color_mode: str) -> str:
    out = []
    last_fg = last_bg = None
    for x in range(glyphs.shape[0]):
        f = tuple(fg[x])
        b = tuple(bg[x])
        codes = []
        if f != last_fg:
            codes.append(_sgr(f, color_mode, background=False))
            last_fg = f
        if b != last_bg:
            codes.append("49" if b[0] < 0 else _sgr(b, color_mode, background=True))
            last_bg = b
        if codes:
            out.append(f"{ESC}[{';'.join(codes)}m")
        out.append(QUADRANT_GLYPHS[glyphs[x]])
    out.append(RESET + "\n")
    return "".join(out)


def _sgr(color, color_mode: str, background: bool) -> str:
    r, g, b = (int(c) for c in color)
    if color_mode == "truecolor":
        return f"{48 if background else 38};2;{r};{g};{b}"
    if color_mode == "256":
        return f"{48 if background else 38};5;{rgb_to_ansi256(r, g, b)}"
    return str((40 if background else 30) + rgb_to_ansi8(r, g, b))


def rgb_to_ansi256(r: int, g: int, b: int) -> int:
    """Nearest xterm-256 palette entry (6x6x6 cube or gray ramp)."""
    rgb = np.array([r, g, b], dtype=np.int32)
    cube_idx = np.abs(_CUBE_LEVELS[None, :] - rgb[:, None]).argmin(axis=1)
    cube_rgb = _CUBE_LEVELS[cube_idx]
    cube_code = 16 + 36 * int(cube_idx[0]) + 6 * int(cube_idx[1]) + int(cube_idx[2])

    gray_level = int(round((int(rgb.mean()) - 8) / 10))
    gray_level = min(max(gray_level, 0), 23)
    gray_value = 8 + 10 * gray_level

    cube_err = int(((cube_rgb - rgb) ** 2).sum())
    gray_err = int(((gray_value - rgb) ** 2).sum())
    return 232 + gray_level if gray_err < cube_err else cube_code


def rgb_to_ansi8(r: int, g: int, b: int) -> int:
    """Nearest of the 8 basic ANSI colors (0-7)."""
    rgb = np.array([r, g, b], dtype=np.int32)
    return int(((_ANSI8 - rgb) ** 2).sum(axis=1).argmin())
