# kestrel/core/errors.py
from __future__ import annotations


class KestrelError(Exception):
    """Base class for all errors raised by kestrel."""


class ConfigurationError(KestrelError, ValueError):
    """A setting was rejected. The previous value is still in effect."""


class SourceRectUndeterminable(KestrelError):
    """No drawable rectangle could be resolved for a frame source."""

    def __init__(self, source: object) -> None:
        super().__init__(
            f"Cannot determine a source rect for {type(source).__name__}"
        )
        self.source = source


class DimensionsExceeded(KestrelError):
    """A single frame is larger than the maximum atlas image."""

    def __init__(
        self, width: int, height: int, max_width: int, max_height: int
    ) -> None:
        super().__init__(
            f"Frame dimensions {width}x{height} exceed max atlas "
            f"dimensions {max_width}x{max_height}"
        )
        self.width = width
        self.height = height
        self.max_width = max_width
        self.max_height = max_height


class AlreadyRunning(KestrelError, RuntimeError):
    """A build was requested while another one is still in progress."""

    def __init__(self) -> None:
        super().__init__("A build is already running")


class BuildAborted(KestrelError):
    """An asynchronous build was stopped before it completed."""

    def __init__(self, drawn: int = 0, total: int = 0) -> None:
        super().__init__(f"Build aborted after {drawn}/{total} frames")
        self.drawn = drawn
        self.total = total
