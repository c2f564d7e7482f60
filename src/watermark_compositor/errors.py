class CompositorError(Exception):
    """Base class for every compositing failure."""


class DecodeError(CompositorError):
    """Source or watermark asset could not be decoded."""


class EncodeError(CompositorError):
    """No drawing surface could be allocated, or the final encode failed."""


class UnsupportedFormatError(CompositorError):
    """No compatible video output codec is available on this host."""


class CompositorTimeoutError(CompositorError, TimeoutError):
    """An asset did not become ready within the grace window."""


class CompositionCancelled(CompositorError):
    """The caller cancelled a running composition."""
