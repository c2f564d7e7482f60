import math
from dataclasses import dataclass

import cv2
import numpy as np
from numpy.typing import NDArray
from PIL import Image

from . import FILTER_BRIGHTNESS, FILTER_CONTRAST, SHADOW_ALPHA, SHADOW_BLUR
from .position import OverlayGeometry


def build_enhancement_lut(
    contrast: float = FILTER_CONTRAST,
    brightness: float = FILTER_BRIGHTNESS,
) -> NDArray[np.uint8]:
    """
    Build a 256-entry lookup table for the contrast/brightness filter.

    Follows CSS filter semantics: contrast pivots around mid-gray, then
    brightness scales linearly, each step clamped to [0, 1].
    """
    values = np.arange(256, dtype=np.float64) / 255.0
    values = np.clip((values - 0.5) * contrast + 0.5, 0.0, 1.0)
    values = np.clip(values * brightness, 0.0, 1.0)
    return np.rint(values * 255.0).astype(np.uint8)


ENHANCEMENT_LUT = build_enhancement_lut()


def apply_enhancement_filter(pixels: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """
    Apply the stylistic filter to the color channels of an (H, W, 3|4) array.

    Alpha is left untouched. Returns a new array.
    """
    result = pixels.copy()
    rgb = np.ascontiguousarray(pixels[:, :, :3])
    result[:, :, :3] = cv2.LUT(rgb, ENHANCEMENT_LUT)
    return result


@dataclass
class OverlayLayer:
    """
    A watermark rendered for one canvas size, ready to composite.

    Covers only the bounding box of the watermark plus its shadow.
    `color` is premultiplied (0-255), `keep` is how much of the
    destination survives, `cover` is the alpha the layer adds.
    """

    x0: int
    y0: int
    color: NDArray[np.float32]  # (h, w, 3)
    keep: NDArray[np.float32]  # (h, w, 1)
    cover: NDArray[np.float32]  # (h, w, 1)

    @property
    def width(self) -> int:
        return self.color.shape[1]

    @property
    def height(self) -> int:
        return self.color.shape[0]


def _bounding_box(
    geometry: OverlayGeometry,
    margin: int,
    canvas_width: int,
    canvas_height: int,
) -> tuple[int, int, int, int]:
    cos, sin = math.cos(geometry.radians), math.sin(geometry.radians)
    half_w, half_h = geometry.width / 2, geometry.height / 2
    xs, ys = [], []
    for lx, ly in ((-half_w, -half_h), (half_w, -half_h), (half_w, half_h), (-half_w, half_h)):
        xs.append(geometry.cx + cos * lx - sin * ly)
        ys.append(geometry.cy + sin * lx + cos * ly)

    x0 = max(0, math.floor(min(xs)) - margin)
    y0 = max(0, math.floor(min(ys)) - margin)
    x1 = min(canvas_width, math.ceil(max(xs)) + margin)
    y1 = min(canvas_height, math.ceil(max(ys)) + margin)
    return x0, y0, x1, y1


def build_overlay_layer(
    watermark: Image.Image,
    geometry: OverlayGeometry,
    opacity: float,
    canvas_width: int,
    canvas_height: int,
) -> OverlayLayer | None:
    """
    Render the watermark into canvas space.

    Equivalent to: filter, translate to the center, rotate, set global
    alpha, set the drop shadow, draw the image centered on the origin.
    Each call starts from an identity transform, so nothing carries over
    between draws. Returns None if the watermark misses the canvas.
    """
    sigma = SHADOW_BLUR / 2
    margin = math.ceil(3 * sigma) + 2
    x0, y0, x1, y1 = _bounding_box(geometry, margin, canvas_width, canvas_height)
    if x1 <= x0 or y1 <= y0:
        return None

    # The canvas filter is still active while the watermark is drawn
    pixels = apply_enhancement_filter(np.asarray(watermark.convert("RGBA"), dtype=np.uint8))
    rgba = pixels.astype(np.float32) / 255.0
    rgba[:, :, :3] *= rgba[:, :, 3:4]

    native_h, native_w = rgba.shape[:2]
    resized_w = max(1, round(geometry.width))
    resized_h = max(1, round(geometry.height))
    interpolation = cv2.INTER_AREA if resized_w < native_w else cv2.INTER_LINEAR
    resized = cv2.resize(rgba, (resized_w, resized_h), interpolation=interpolation)

    # Affine map from resized watermark pixels to canvas pixels (pixel-center coords)
    sx = geometry.width / resized_w
    sy = geometry.height / resized_h
    cos, sin = math.cos(geometry.radians), math.sin(geometry.radians)
    ou, ov = (resized_w - 1) / 2, (resized_h - 1) / 2
    tx = geometry.cx - 0.5 - x0 - cos * sx * ou + sin * sy * ov
    ty = geometry.cy - 0.5 - y0 - sin * sx * ou - cos * sy * ov
    matrix = np.array(
        [[cos * sx, -sin * sy, tx], [sin * sx, cos * sy, ty]],
        dtype=np.float64,
    )

    warped = cv2.warpAffine(
        resized,
        matrix,
        (x1 - x0, y1 - y0),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0, 0),
    )
    warped = np.clip(warped, 0.0, 1.0)

    alpha = warped[:, :, 3] * opacity
    color = warped[:, :, :3] * opacity
    shadow = cv2.GaussianBlur(alpha, (0, 0), sigmaX=sigma, sigmaY=sigma) * SHADOW_ALPHA

    # Shadow (black) first, then the watermark on top of it
    keep = (1.0 - shadow) * (1.0 - alpha)
    cover = alpha + shadow * (1.0 - alpha)

    return OverlayLayer(
        x0=x0,
        y0=y0,
        color=(color * 255.0).astype(np.float32),
        keep=keep[:, :, np.newaxis].astype(np.float32),
        cover=cover[:, :, np.newaxis].astype(np.float32),
    )


def composite_layer(
    surface: NDArray[np.uint8],
    layer: OverlayLayer | None,
) -> NDArray[np.uint8]:
    """
    Composite an overlay layer onto an (H, W, 3|4) surface.

    Modifies the surface in place and returns it.
    """
    if layer is None:
        return surface

    x0, y0 = layer.x0, layer.y0
    x1, y1 = x0 + layer.width, y0 + layer.height
    region = surface[y0:y1, x0:x1].astype(np.float32)

    if surface.shape[2] == 3:
        result = layer.color + region * layer.keep
    else:
        dst_alpha = region[:, :, 3:4] / 255.0
        out_alpha = layer.cover + dst_alpha * layer.keep
        out_color = layer.color + region[:, :, :3] * dst_alpha * layer.keep
        safe_alpha = np.where(out_alpha > 0, out_alpha, 1.0)
        result = np.concatenate(
            [np.where(out_alpha > 0, out_color / safe_alpha, 0.0), out_alpha * 255.0],
            axis=2,
        )

    surface[y0:y1, x0:x1] = np.clip(np.rint(result), 0, 255).astype(np.uint8)
    return surface


def render_frame(
    frame: NDArray[np.uint8],
    layer: OverlayLayer | None,
) -> NDArray[np.uint8]:
    """Draw one frame: filter the source, then composite the overlay."""
    surface = apply_enhancement_filter(frame)
    return composite_layer(surface, layer)
