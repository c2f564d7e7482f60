import io
import shutil

import numpy as np
import pytest
from PIL import Image

from watermark_compositor.core.config import WatermarkConfig
from watermark_compositor.core.raster import to_data_uri

GRAY = 128
FILTERED_GRAY = 134  # GRAY after contrast(1.1) brightness(1.05)

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def png_bytes(width: int, height: int, color=(GRAY, GRAY, GRAY), mode: str = "RGB") -> bytes:
    """Encode a solid-color image as PNG."""
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def gradient_png(width: int, height: int) -> bytes:
    """A non-uniform source so misplaced pixels show up in comparisons."""
    xs = np.linspace(0, 255, width, dtype=np.float32)
    ys = np.linspace(0, 255, height, dtype=np.float32)
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[:, :, 0] = xs[np.newaxis, :].astype(np.uint8)
    arr[:, :, 1] = ys[:, np.newaxis].astype(np.uint8)
    arr[:, :, 2] = 128
    buffer = io.BytesIO()
    Image.fromarray(arr).save(buffer, format="PNG")
    return buffer.getvalue()


def decode_data_uri(uri: str) -> Image.Image:
    import base64

    header, _, body = uri.partition(",")
    assert header == "data:image/png;base64"
    img = Image.open(io.BytesIO(base64.b64decode(body)))
    img.load()
    return img


def make_config(image, **overrides) -> WatermarkConfig:
    values = dict(id="wm-1", name="Test", image=image, x=50.0, y=50.0, scale=20.0, opacity=1.0, rotation=0.0)
    values.update(overrides)
    return WatermarkConfig(**values)


@pytest.fixture
def white_logo() -> str:
    """Opaque white 200x100 watermark as a data URI."""
    return to_data_uri(png_bytes(200, 100, (255, 255, 255)))


@pytest.fixture
def gray_source() -> bytes:
    return png_bytes(1000, 1000)
