import logging
from pathlib import Path

import numpy as np
from PIL import Image

from ..core.blend import build_overlay_layer, render_frame
from ..core.config import WatermarkConfig
from ..core.position import calculate_overlay_geometry
from ..core.raster import RasterPayload, decode_raster, encode_png, to_data_uri
from ..errors import EncodeError

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_FORMATS = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tiff"}


def is_supported_image(path: Path) -> bool:
    """Check if file is a supported image format."""
    return path.suffix.lower() in SUPPORTED_IMAGE_FORMATS


def render_image(
    source: Image.Image,
    watermark: Image.Image,
    config: WatermarkConfig,
) -> Image.Image:
    """
    Burn a decoded watermark into a decoded source image.

    The drawing surface is allocated at the source's native size, so the
    percentage placement is reapplied against the real output resolution.
    Out-of-range config values are clamped rather than trusted.

    Args:
        source: Decoded source raster (RGB or RGBA)
        watermark: Decoded watermark raster
        config: Watermark placement

    Returns:
        New image of the same size and mode as the source
    """
    config = config.clamped()
    width, height = source.size

    try:
        surface = np.array(source, dtype=np.uint8)
    except MemoryError as e:
        raise EncodeError(f"Cannot allocate a {width}x{height} surface") from e

    geometry = calculate_overlay_geometry(width, height, config, watermark.width, watermark.height)
    logger.debug(
        "Overlay at (%.1f, %.1f) size %.1fx%.1f rotation %.1f",
        geometry.cx, geometry.cy, geometry.width, geometry.height, geometry.rotation,
    )

    layer = build_overlay_layer(watermark, geometry, config.opacity, width, height)
    result = render_frame(surface, layer)

    return Image.fromarray(result)


def compose_image(source: RasterPayload, config: WatermarkConfig) -> str:
    """
    Watermark an encoded image and return the result as a PNG data URI.

    The source is decoded first; the watermark is only decoded after that,
    since its aspect ratio is needed for layout. Both decodes finish before
    anything is drawn.

    Raises:
        DecodeError: If the source or the watermark cannot be decoded
        EncodeError: If the surface cannot be allocated or PNG encoding fails
    """
    source_image = decode_raster(source, "source image")
    watermark_image = decode_raster(config.image, "watermark")

    result = render_image(source_image, watermark_image, config)
    return to_data_uri(encode_png(result), "image/png")


def process_image(
    input_path: Path,
    config: WatermarkConfig,
    output_path: Path | None = None,
    suffix: str = "_watermarked",
) -> Path:
    """
    Watermark a single image file.

    Args:
        input_path: Path to input image
        config: Watermark placement
        output_path: Optional explicit output path. If None, uses input name with suffix.
        suffix: Suffix to add to filename if output_path not specified

    Returns:
        Path to the output PNG file
    """
    if output_path is None:
        output_path = input_path.parent / f"{input_path.stem}{suffix}.png"

    source_image = decode_raster(input_path, "source image")
    watermark_image = decode_raster(config.image, "watermark")
    result = render_image(source_image, watermark_image, config)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(encode_png(result))

    logger.info("Watermarked %s -> %s", input_path, output_path)
    return output_path
