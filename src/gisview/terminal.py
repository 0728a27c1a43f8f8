"""
Terminal transport helpers: size detection and the bounded device query.

Nothing here blocks for longer than ``QUERY_TIMEOUT``; when the terminal does
not answer the caller gets ``None`` and falls back to a lower protocol.
"""

import logging
import os
import re
import shutil
import struct
import sys
import time
from typing import Optional, Tuple

from src.config import DEFAULT_CELL_PIXELS, DEFAULT_TERMINAL_SIZE, QUERY_TIMEOUT

logger = logging.getLogger(__name__)

# Primary device attributes request; replies look like ESC [ ? 62 ; 4 ; 22 c
DA1_QUERY = b"\x1b[c"
_DA1_REPLY = re.compile(rb"\x1b\[\?([0-9;]*)c")


def terminal_size() -> Tuple[int, int]:
    """Return (columns, rows) of the controlling terminal, with a safe default."""
    size = shutil.get_terminal_size(DEFAULT_TERMINAL_SIZE)
    return size.columns, size.lines


def cell_pixel_size(fd: Optional[int] = None) -> Tuple[int, int]:
    """
    Return the (width, height) of one character cell in pixels.

    Uses the TIOCGWINSZ ioctl, which reports pixel dimensions on most modern
    terminals. Falls back to ``DEFAULT_CELL_PIXELS`` when unavailable (over
    some SSH sessions the pixel fields are zero).
    """
    try:
        if fd is None:
            fd = sys.stdout.fileno()
        import fcntl
        import termios

        packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\0" * 8)
        rows, cols, xpixels, ypixels = struct.unpack("HHHH", packed)
    except (ImportError, OSError, ValueError) as e:
        logger.debug(f"Could not read terminal pixel size: {e}")
        return DEFAULT_CELL_PIXELS

    if rows and cols and xpixels and ypixels:
        return max(1, xpixels // cols), max(1, ypixels // rows)
    return DEFAULT_CELL_PIXELS


def parse_da1_reply(reply: bytes) -> Optional[bool]:
    """
    Interpret a DA1 reply.

    Returns:
        True if attribute 4 (sixel graphics) is advertised, False if a reply
        without it was found, None if no reply could be parsed
    """
    match = _DA1_REPLY.search(reply)
    if not match:
        return None
    attributes = [a for a in match.group(1).split(b";") if a]
    return b"4" in attributes


def query_sixel_support(timeout: float = QUERY_TIMEOUT) -> Optional[bool]:
    """
    Ask the terminal whether it supports sixel graphics.

    Sends a DA1 request on the controlling TTY and waits at most ``timeout``
    seconds in total for the reply, however slowly its bytes arrive.

    Returns:
        True/False from the reply, or None when stdin/stdout are not a TTY,
        the platform lacks termios, or the terminal did not answer in time
    """
    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        return None
    try:
        import select
        import termios
        import tty
    except ImportError:
        return None

    fd = sys.stdin.fileno()
    saved = termios.tcgetattr(fd)
    reply = b""
    try:
        tty.setcbreak(fd)
        os.write(sys.stdout.fileno(), DA1_QUERY)
        deadline = time.monotonic() + timeout
        while not reply.endswith(b"c"):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug("DA1 query timed out")
                break
            ready, _, _ = select.select([fd], [], [], remaining)
            if not ready:
                logger.debug("DA1 query timed out")
                break
            chunk = os.read(fd, 64)
            if not chunk:
                break
            reply += chunk
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    return parse_da1_reply(reply)
