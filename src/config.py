"""Configuration module for gis-view.

Centralizes display defaults and protocol limits.
"""
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

PROGRAM_NAME = "gis-view"

# Stretch defaults (percent clipped at each end of the histogram)
DEFAULT_STRETCH_PERCENT = 2.0
NODATA_INTENSITY = 128  # Mid-gray for NoData / flat fields

# Resolution limits
DEFAULT_MAX_RES = 4000
MAX_PIXELS = 4000 * 4000  # Cap when reading at full resolution (--max-res 0)

# Terminal protocol limits
KITTY_CHUNK_SIZE = 4096  # Max base64 bytes per Kitty escape sequence
ITERM_CHUNK_SIZE = 1024 * 1024  # Payloads above this use multipart transfer
MAX_PAYLOAD_BYTES = 64 * 1024 * 1024  # Larger encoded images fall back a tier
SIXEL_MAX_COLORS = 256

# Terminal detection
QUERY_TIMEOUT = 0.2  # Seconds to wait for a device attribute reply
DEFAULT_TERMINAL_SIZE = (80, 24)  # columns, rows
DEFAULT_CELL_PIXELS = (9, 18)  # width, height of a character cell

# Logging
DEFAULT_LOG_LEVEL = "WARNING"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
