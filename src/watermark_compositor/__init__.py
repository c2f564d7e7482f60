"""Watermark compositing for images and videos."""

__version__ = "0.1.0"

from .core.config import WatermarkConfig
from .core.placement import GestureState, PlacementModel, PreviewRect
from .errors import (
    CompositionCancelled,
    CompositorError,
    CompositorTimeoutError,
    DecodeError,
    EncodeError,
    UnsupportedFormatError,
)
from .processors import CancellationToken, ComposedVideo, compose_image, compose_video

__all__ = [
    "__version__",
    "WatermarkConfig",
    "PlacementModel",
    "PreviewRect",
    "GestureState",
    "compose_image",
    "compose_video",
    "CancellationToken",
    "ComposedVideo",
    "CompositorError",
    "DecodeError",
    "EncodeError",
    "UnsupportedFormatError",
    "CompositorTimeoutError",
    "CompositionCancelled",
]
