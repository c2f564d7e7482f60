"""Decoding of opaque raster payloads and PNG / data URI encoding."""

import base64
import binascii
import io
from pathlib import Path
from urllib.parse import unquote_to_bytes

from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import DecodeError, EncodeError

RasterPayload = str | bytes | bytearray | Path


def read_payload(payload: RasterPayload, label: str = "image") -> bytes:
    """
    Turn a raster payload into encoded bytes.

    Accepts raw bytes, a `Path`, a `data:` URI, bare base64 text, or
    (as a last resort for strings that are not base64) a file path.
    """
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)

    if isinstance(payload, Path):
        try:
            return payload.read_bytes()
        except OSError as e:
            raise DecodeError(f"Cannot read {label} from {payload}: {e}") from e

    if not isinstance(payload, str):
        raise DecodeError(f"Unsupported {label} payload type: {type(payload).__name__}")

    text = payload.strip()
    if text.startswith("data:"):
        header, sep, body = text.partition(",")
        if not sep:
            raise DecodeError(f"Malformed data URI for {label}")
        if header.endswith(";base64"):
            try:
                return base64.b64decode(body, validate=True)
            except binascii.Error as e:
                raise DecodeError(f"Invalid base64 in {label} data URI: {e}") from e
        return unquote_to_bytes(body)

    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error:
        pass

    try:
        return Path(text).read_bytes()
    except (OSError, ValueError) as e:
        raise DecodeError(f"{label.capitalize()} payload is neither base64 nor a readable file") from e


def decode_raster(payload: RasterPayload, label: str = "image") -> Image.Image:
    """
    Fully decode a raster payload.

    EXIF orientation is applied, and the result is RGBA when the raster
    carries transparency, RGB otherwise.
    """
    data = read_payload(payload, label)
    if not data:
        raise DecodeError(f"{label.capitalize()} payload is empty")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            mode = "RGBA" if img.has_transparency_data else "RGB"
            decoded = img.convert(mode)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Cannot decode {label}: {e}") from e

    if decoded.width == 0 or decoded.height == 0:
        raise DecodeError(f"{label.capitalize()} has no pixels")

    return decoded


def sniff_mime_type(data: bytes) -> str:
    """Best-effort MIME type of an encoded raster."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.get_format_mimetype() or "application/octet-stream"
    except (UnidentifiedImageError, OSError):
        return "application/octet-stream"


def to_data_uri(data: bytes, mime_type: str | None = None) -> str:
    if mime_type is None:
        mime_type = sniff_mime_type(data)
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def encode_png(image: Image.Image) -> bytes:
    """Encode an image as PNG bytes."""
    buffer = io.BytesIO()
    try:
        image.save(buffer, format="PNG")
    except (OSError, ValueError) as e:
        raise EncodeError(f"PNG encoding failed: {e}") from e
    return buffer.getvalue()
