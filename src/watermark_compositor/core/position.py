import math
from dataclasses import dataclass

from .config import WatermarkConfig


@dataclass
class OverlayGeometry:
    """Watermark placement in native pixel space of the target canvas."""

    cx: float  # center x in pixels
    cy: float  # center y in pixels
    width: float
    height: float
    rotation: float  # degrees, clockwise on screen

    @property
    def radians(self) -> float:
        # -180 and 180 are the same turn; fold both onto -180
        return math.radians((self.rotation + 180.0) % 360.0 - 180.0)


def percent_to_pixels(x: float, y: float, canvas_width: int, canvas_height: int) -> tuple[float, float]:
    """Map a normalized (percentage) position onto a canvas of the given size."""
    return x / 100 * canvas_width, y / 100 * canvas_height


def calculate_overlay_geometry(
    canvas_width: int,
    canvas_height: int,
    config: WatermarkConfig,
    watermark_width: int,
    watermark_height: int,
) -> OverlayGeometry:
    """
    Calculate where the watermark lands on a canvas.

    The percentages recorded by the editor are resolution-independent, so
    the canvas here must be the asset's native size, never a preview box.
    Width follows `scale`; height keeps the watermark's own aspect ratio.
    """
    cx, cy = percent_to_pixels(config.x, config.y, canvas_width, canvas_height)
    target_width = config.scale / 100 * canvas_width
    target_height = target_width * watermark_height / watermark_width

    return OverlayGeometry(
        cx=cx,
        cy=cy,
        width=target_width,
        height=target_height,
        rotation=config.rotation,
    )
