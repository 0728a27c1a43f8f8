"""
Exception types raised by the rendering pipeline and the interactive explorer.
"""


class GisViewError(Exception):
    """Base class for all gis-view errors."""

    pass


class NotFoundError(GisViewError):
    """Raised when a raster path does not exist or cannot be opened."""

    pass


class EmptyRasterError(GisViewError):
    """Raised when a raster or buffer reports zero width or height."""

    pass


class EmptyBandError(GisViewError):
    """Raised when a band has no valid (non-NoData) samples."""

    def __init__(self, band=None):
        self.band = band
        where = f"Band {band}" if band is not None else "Band"
        super().__init__(f"{where} has no valid samples; cannot compute stretch bounds")


class BandCountMismatch(GisViewError):
    """Raised when a composite gets neither 1 nor 3 bands, or bands of the wrong size."""

    pass


class OutputClosedError(GisViewError):
    """Raised when the terminal stream can no longer be written to."""

    pass


class InvalidSelectionError(GisViewError):
    """Raised for interactive choices that are out of range or malformed."""

    pass


class UnsupportedProtocolFallback(GisViewError):
    """
    Raised by an encoder that cannot serve the requested protocol.

    Not fatal: the display loop catches it and retries at the next lower tier.
    """

    def __init__(self, protocol, reason):
        self.protocol = protocol
        self.reason = reason
        super().__init__(f"{protocol} output unavailable: {reason}")
