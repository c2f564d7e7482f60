from .image import SUPPORTED_IMAGE_FORMATS, compose_image, is_supported_image, process_image, render_image
from .video import (
    SUPPORTED_VIDEO_FORMATS,
    CancellationToken,
    ComposedVideo,
    compose_video,
    is_supported_video,
    process_video,
)

__all__ = [
    "compose_image",
    "render_image",
    "process_image",
    "compose_video",
    "process_video",
    "CancellationToken",
    "ComposedVideo",
    "is_supported_image",
    "is_supported_video",
    "SUPPORTED_IMAGE_FORMATS",
    "SUPPORTED_VIDEO_FORMATS",
]
