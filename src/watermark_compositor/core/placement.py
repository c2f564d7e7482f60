"""
Interactive watermark placement.

Turns pointer gestures over a preview rectangle into the normalized
(x, y, scale) of a watermark. The model is event driven and single
threaded: callers feed it pointer-down, pointer-move and pointer-up
events in the order the UI receives them.
"""

import math
from dataclasses import dataclass, field
from enum import Enum

from . import (
    ASPECT_RATIOS,
    DEFAULT_NAME,
    DEFAULT_OPACITY,
    DEFAULT_ROTATION,
    DEFAULT_SCALE,
    DEFAULT_X,
    DEFAULT_Y,
    MAX_OPACITY,
    MAX_POSITION,
    MAX_ROTATION,
    MAX_SCALE,
    MIN_OPACITY,
    MIN_POSITION,
    MIN_ROTATION,
    MIN_SCALE,
    PRESET_POSITIONS,
)
from .config import WatermarkConfig, clamp, new_watermark_id


class GestureState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    RESIZING = "resizing"


@dataclass(frozen=True)
class PreviewRect:
    """Bounding rectangle of the preview surface, in pointer coordinates."""

    left: float
    top: float
    width: float
    height: float

    def center_of(self, x: float, y: float) -> tuple[float, float]:
        """Pixel position of a percentage point inside the rectangle."""
        return self.left + x / 100 * self.width, self.top + y / 100 * self.height


@dataclass
class PlacementSession:
    state: GestureState = GestureState.IDLE
    rect: PreviewRect | None = None
    pointer_id: int | None = None
    baseline_distance: float = 0.0
    baseline_scale: float = 0.0


def fit_preview_rect(
    container_width: float, container_height: float, aspect_ratio: str = ASPECT_RATIOS[0]
) -> PreviewRect:
    """
    Largest rectangle of the given aspect ratio ("w:h") centered in a container.

    Unparseable ratios fall back to a square.
    """
    try:
        w, h = (float(part) for part in aspect_ratio.split(":"))
        ratio = w / h
    except (ValueError, ZeroDivisionError):
        ratio = 1.0
    if not math.isfinite(ratio) or ratio <= 0:
        ratio = 1.0

    width = min(container_width, container_height * ratio)
    height = width / ratio
    return PreviewRect(
        left=(container_width - width) / 2,
        top=(container_height - height) / 2,
        width=width,
        height=height,
    )


@dataclass
class PlacementModel:
    """Editable placement of one watermark."""

    image: str | bytes | None = None
    x: float = DEFAULT_X
    y: float = DEFAULT_Y
    scale: float = DEFAULT_SCALE
    opacity: float = DEFAULT_OPACITY
    rotation: float = DEFAULT_ROTATION
    session: PlacementSession = field(default_factory=PlacementSession)

    @classmethod
    def from_config(cls, config: WatermarkConfig) -> "PlacementModel":
        return cls(
            image=config.image,
            x=config.x,
            y=config.y,
            scale=config.scale,
            opacity=config.opacity,
            rotation=config.rotation,
        )

    def to_config(self, name: str = DEFAULT_NAME, watermark_id: str | None = None) -> WatermarkConfig:
        if self.image is None:
            raise ValueError("Cannot save a watermark without an image")
        return WatermarkConfig(
            id=watermark_id or new_watermark_id(),
            name=name,
            image=self.image,
            x=self.x,
            y=self.y,
            scale=self.scale,
            opacity=self.opacity,
            rotation=self.rotation,
        ).clamped()

    @property
    def state(self) -> GestureState:
        return self.session.state

    # ===== Gestures =====

    def begin_drag(self, rect: PreviewRect | None = None, pointer_id: int | None = None) -> None:
        """Pointer went down on the watermark body."""
        if self.image is None or self.session.state is not GestureState.IDLE:
            return
        self.session = PlacementSession(state=GestureState.DRAGGING, rect=rect, pointer_id=pointer_id)

    def begin_resize(
        self,
        pointer_x: float,
        pointer_y: float,
        rect: PreviewRect,
        pointer_id: int | None = None,
    ) -> None:
        """
        Pointer went down on the resize handle.

        The handle sits on top of the watermark body, so this fires before
        begin_drag for the same pointer-down; once the session leaves IDLE
        the drag begin is ignored.
        """
        if self.image is None or self.session.state is not GestureState.IDLE:
            return
        cx, cy = rect.center_of(self.x, self.y)
        self.session = PlacementSession(
            state=GestureState.RESIZING,
            rect=rect,
            pointer_id=pointer_id,
            baseline_distance=math.hypot(pointer_x - cx, pointer_y - cy),
            baseline_scale=self.scale,
        )

    def move(
        self,
        pointer_x: float,
        pointer_y: float,
        rect: PreviewRect | None = None,
        pointer_id: int | None = None,
    ) -> None:
        """Pointer moved over the preview surface."""
        session = self.session
        if session.state is GestureState.IDLE:
            return
        if session.pointer_id is not None and pointer_id is not None and pointer_id != session.pointer_id:
            return

        rect = rect or session.rect
        if rect is None or rect.width <= 0 or rect.height <= 0:
            return

        if session.state is GestureState.RESIZING:
            # No baseline means no pointer-down was seen; nothing to scale against
            if session.baseline_distance <= 0:
                return
            cx, cy = rect.center_of(self.x, self.y)
            distance = math.hypot(pointer_x - cx, pointer_y - cy)
            self.scale = clamp(
                session.baseline_scale * distance / session.baseline_distance,
                MIN_SCALE,
                MAX_SCALE,
            )
            return

        self.x = clamp(100 * (pointer_x - rect.left) / rect.width, MIN_POSITION, MAX_POSITION)
        self.y = clamp(100 * (pointer_y - rect.top) / rect.height, MIN_POSITION, MAX_POSITION)

    def end(self) -> None:
        """Pointer released or left the surface. Always ends the gesture."""
        self.session = PlacementSession()

    # ===== Controls =====

    def apply_preset(self, position: str) -> None:
        """Jump to one of the nine quick positions."""
        try:
            self.x, self.y = PRESET_POSITIONS[position]
        except KeyError:
            available = ", ".join(PRESET_POSITIONS)
            raise ValueError(f"Unknown position '{position}'. Available: {available}") from None

    def set_scale(self, value: float) -> None:
        self.scale = clamp(value, MIN_SCALE, MAX_SCALE)

    def set_opacity(self, value: float) -> None:
        self.opacity = clamp(value, MIN_OPACITY, MAX_OPACITY)

    def set_rotation(self, value: float) -> None:
        self.rotation = clamp(value, MIN_ROTATION, MAX_ROTATION)

    def describe(self) -> str:
        """Short readout shown while a gesture is active."""
        return f"x:{round(self.x)}% y:{round(self.y)}% w:{round(self.scale)}%"
