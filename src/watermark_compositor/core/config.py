import json
import time
from dataclasses import asdict, dataclass, replace
from pathlib import Path

from . import (
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
    NONE_WATERMARK_ID,
)


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into the closed range [low, high]."""
    return max(low, min(high, value))


def new_watermark_id() -> str:
    """Mint a preset id from the current time in milliseconds."""
    return str(int(time.time() * 1000))


@dataclass(frozen=True)
class WatermarkConfig:
    """
    A named watermark preset.

    Positions are percentages of the target canvas and refer to the
    watermark's center. Only the width is stored (as `scale`, a percentage
    of canvas width); the height always follows the image's aspect ratio.
    """

    id: str
    name: str
    image: str | bytes  # encoded raster payload (data URI, base64 or raw bytes)
    x: float = DEFAULT_X
    y: float = DEFAULT_Y
    scale: float = DEFAULT_SCALE
    opacity: float = DEFAULT_OPACITY
    rotation: float = DEFAULT_ROTATION

    @property
    def is_none(self) -> bool:
        return self.id == NONE_WATERMARK_ID

    def clamped(self) -> "WatermarkConfig":
        """Return a copy with every numeric field forced into its range."""
        return replace(
            self,
            x=clamp(float(self.x), MIN_POSITION, MAX_POSITION),
            y=clamp(float(self.y), MIN_POSITION, MAX_POSITION),
            scale=clamp(float(self.scale), MIN_SCALE, MAX_SCALE),
            opacity=clamp(float(self.opacity), MIN_OPACITY, MAX_OPACITY),
            rotation=clamp(float(self.rotation), MIN_ROTATION, MAX_ROTATION),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "WatermarkConfig":
        """
        Build a config from a stored record.

        Accepts `imageBase64` as an alias of `image`, the key used by
        records saved from the web editor.
        """
        image = data.get("image", data.get("imageBase64"))
        if image is None:
            raise ValueError("Watermark record has no image")

        return cls(
            id=str(data.get("id") or new_watermark_id()),
            name=str(data.get("name", DEFAULT_NAME)),
            image=image,
            x=float(data.get("x", DEFAULT_X)),
            y=float(data.get("y", DEFAULT_Y)),
            scale=float(data.get("scale", DEFAULT_SCALE)),
            opacity=float(data.get("opacity", DEFAULT_OPACITY)),
            rotation=float(data.get("rotation", DEFAULT_ROTATION)),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        if isinstance(self.image, bytes):
            # JSON cannot carry raw bytes
            from .raster import to_data_uri

            data["image"] = to_data_uri(self.image)
        return data


def load_config(path: Path) -> WatermarkConfig:
    """Load a single watermark record from a JSON file."""
    with open(path, encoding="utf-8") as f:
        return WatermarkConfig.from_dict(json.load(f))


def save_config(config: WatermarkConfig, path: Path) -> Path:
    """Write a single watermark record as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
    return path
