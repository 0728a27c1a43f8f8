"""Tests for terminal size detection and the device attribute query."""

import os
import threading
import time
from types import SimpleNamespace

import pytest
from unittest.mock import MagicMock, patch


@pytest.fixture
def pseudo_terminal():
    """Point stdin/stdout at the slave end of a pty; yields (master, slave)."""
    pty = pytest.importorskip("pty")
    master, slave = pty.openpty()
    stream = MagicMock()
    stream.isatty.return_value = True
    stream.fileno.return_value = slave
    try:
        # Patch the module's ``sys`` reference rather than the global
        # sys.stdout, which pytest's output capture reassigns between phases.
        with patch(
            "src.gisview.terminal.sys", SimpleNamespace(stdin=stream, stdout=stream)
        ):
            yield master, slave
    finally:
        os.close(master)
        os.close(slave)


def _respond(master, reply, delay=0.0):
    """Answer the query from the terminal side, optionally one byte per delay."""
    stop = threading.Event()

    def answer():
        os.read(master, 16)
        if not delay:
            os.write(master, reply)
            return
        for i in range(len(reply)):
            if stop.wait(delay):
                return
            os.write(master, reply[i : i + 1])

    thread = threading.Thread(target=answer, daemon=True)
    thread.start()
    return thread, stop


class TestParseDa1Reply:
    """Tests for parse_da1_reply function."""

    def test_sixel_advertised(self):
        """Attribute 4 in the reply means sixel support."""
        from src.gisview.terminal import parse_da1_reply

        assert parse_da1_reply(b"\x1b[?62;4;22c") is True

    def test_sixel_not_advertised(self):
        """A reply without attribute 4 means no sixel support."""
        from src.gisview.terminal import parse_da1_reply

        assert parse_da1_reply(b"\x1b[?62;22c") is False

    def test_attribute_40_is_not_4(self):
        """Attributes are compared whole, not by prefix."""
        from src.gisview.terminal import parse_da1_reply

        assert parse_da1_reply(b"\x1b[?1;40c") is False

    def test_reply_with_leading_noise(self):
        """Bytes typed before the reply are ignored."""
        from src.gisview.terminal import parse_da1_reply

        assert parse_da1_reply(b"abc\x1b[?64;4c") is True

    @pytest.mark.parametrize("reply", [b"", b"garbage", b"\x1b[?62;4"])
    def test_no_reply(self, reply):
        """Missing or truncated replies are inconclusive."""
        from src.gisview.terminal import parse_da1_reply

        assert parse_da1_reply(reply) is None


class TestQuerySixelSupport:
    """Tests for query_sixel_support function."""

    def test_not_a_tty(self):
        """No query is sent when stdin is not a terminal."""
        from src.gisview.terminal import query_sixel_support

        with patch("src.gisview.terminal.sys.stdin") as stdin, patch(
            "src.gisview.terminal.os.write"
        ) as write:
            stdin.isatty.return_value = False
            assert query_sixel_support() is None
            write.assert_not_called()

    def test_reply_with_sixel(self, pseudo_terminal):
        """A reply listing attribute 4 reports sixel support."""
        from src.gisview.terminal import query_sixel_support

        master, _ = pseudo_terminal
        thread, _ = _respond(master, b"\x1b[?62;4;22c")
        assert query_sixel_support(timeout=2.0) is True
        thread.join(1.0)

    def test_reply_without_sixel(self, pseudo_terminal):
        """A reply without attribute 4 reports no sixel support."""
        from src.gisview.terminal import query_sixel_support

        master, _ = pseudo_terminal
        thread, _ = _respond(master, b"\x1b[?62;22c")
        assert query_sixel_support(timeout=2.0) is False
        thread.join(1.0)

    def test_silent_terminal(self, pseudo_terminal):
        """A terminal that never answers gives None after the timeout."""
        from src.gisview.terminal import query_sixel_support

        started = time.monotonic()
        assert query_sixel_support(timeout=0.2) is None
        assert time.monotonic() - started < 0.6

    def test_slow_partial_reply_is_bounded(self, pseudo_terminal):
        """A reply trickling in without its final byte cannot extend the wait."""
        from src.gisview.terminal import query_sixel_support

        master, _ = pseudo_terminal
        thread, stop = _respond(master, b"\x1b[?62;22;", delay=0.15)
        started = time.monotonic()
        result = query_sixel_support(timeout=0.2)
        elapsed = time.monotonic() - started
        stop.set()
        thread.join(1.0)

        assert result is None
        assert elapsed < 0.6

    def test_terminal_mode_restored(self, pseudo_terminal):
        """The terminal attributes are put back after the query."""
        import termios
        from src.gisview.terminal import query_sixel_support

        _, slave = pseudo_terminal
        before = termios.tcgetattr(slave)
        query_sixel_support(timeout=0.05)
        assert termios.tcgetattr(slave) == before


class TestTerminalSize:
    """Tests for terminal_size and cell_pixel_size."""

    def test_terminal_size_uses_shutil(self):
        """terminal_size returns (columns, rows)."""
        from src.gisview.terminal import terminal_size

        with patch(
            "src.gisview.terminal.shutil.get_terminal_size",
            return_value=os.terminal_size((120, 40)),
        ):
            assert terminal_size() == (120, 40)

    def test_cell_pixel_size_from_ioctl(self):
        """Pixel dimensions from TIOCGWINSZ are divided by the cell grid."""
        import struct
        from src.gisview.terminal import cell_pixel_size

        packed = struct.pack("HHHH", 50, 200, 1600, 1000)
        with patch("fcntl.ioctl", return_value=packed):
            assert cell_pixel_size(fd=1) == (8, 20)

    def test_cell_pixel_size_fallback(self):
        """Zero pixel fields fall back to the default cell size."""
        import struct
        from src.config import DEFAULT_CELL_PIXELS
        from src.gisview.terminal import cell_pixel_size

        packed = struct.pack("HHHH", 50, 200, 0, 0)
        with patch("fcntl.ioctl", return_value=packed):
            assert cell_pixel_size(fd=1) == DEFAULT_CELL_PIXELS

    def test_cell_pixel_size_ioctl_error(self):
        """An ioctl failure (not a terminal) falls back to the default."""
        from src.config import DEFAULT_CELL_PIXELS
        from src.gisview.terminal import cell_pixel_size

        with patch("fcntl.ioctl", side_effect=OSError("not a tty")):
            assert cell_pixel_size(fd=1) == DEFAULT_CELL_PIXELS
