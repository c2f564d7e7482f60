import base64

import numpy as np
import pytest
from PIL import Image

from watermark_compositor.core.raster import to_data_uri
from watermark_compositor.errors import DecodeError
from watermark_compositor.processors import image as image_processor
from watermark_compositor.processors.image import compose_image, process_image

from conftest import FILTERED_GRAY, decode_data_uri, gradient_png, make_config, png_bytes


def test_output_keeps_source_native_size(white_logo):
    source = png_bytes(640, 360)
    result = decode_data_uri(compose_image(source, make_config(white_logo)))

    assert result.size == (640, 360)
    assert result.mode == "RGB"


def test_scenario_a_placement(gray_source, white_logo):
    config = make_config(white_logo, x=90, y=90, scale=15, opacity=0.9, rotation=0)
    pixels = np.asarray(decode_data_uri(compose_image(gray_source, config)))

    # 150x75 box centered on (900, 900)
    assert pixels[900, 900, 0] > 220
    assert pixels[870, 900, 0] > 220
    assert pixels[900, 830, 0] > 220
    assert pixels[850, 900, 0] <= FILTERED_GRAY
    assert pixels[900, 815, 0] <= FILTERED_GRAY
    assert pixels[100, 100, 0] == FILTERED_GRAY


def test_placement_is_resolution_independent(white_logo):
    config = make_config(white_logo, x=25, y=75, scale=10)
    square = np.asarray(decode_data_uri(compose_image(png_bytes(400, 400), config)))
    wide = np.asarray(decode_data_uri(compose_image(png_bytes(1600, 900), config)))

    assert square[300, 100, 0] == 255
    assert wide[675, 400, 0] == 255


def test_compose_is_deterministic(white_logo):
    source = gradient_png(320, 240)
    config = make_config(white_logo, x=33, y=66, scale=40, opacity=0.7, rotation=21)

    assert compose_image(source, config) == compose_image(source, config)


def test_half_turns_render_identically(white_logo):
    source = gradient_png(320, 240)

    a = compose_image(source, make_config(white_logo, rotation=-180, opacity=0.6))
    b = compose_image(source, make_config(white_logo, rotation=180, opacity=0.6))

    assert a == b


def test_payload_forms_are_equivalent(white_logo):
    source = gradient_png(64, 48)
    config = make_config(white_logo)

    as_bytes = compose_image(source, config)
    as_uri = compose_image(to_data_uri(source), config)
    as_b64 = compose_image(base64.b64encode(source).decode(), config)

    assert as_bytes == as_uri == as_b64


def test_out_of_range_config_is_clamped(white_logo):
    source = gradient_png(200, 200)

    clamped = compose_image(source, make_config(white_logo, scale=-10, x=150, opacity=3))
    explicit = compose_image(source, make_config(white_logo, scale=5, x=100, opacity=1))

    assert clamped == explicit


def test_transparent_source_stays_transparent(white_logo):
    source = png_bytes(100, 100, (0, 0, 0, 0), mode="RGBA")
    result = decode_data_uri(compose_image(source, make_config(white_logo)))

    assert result.mode == "RGBA"
    assert result.getpixel((0, 0))[3] == 0
    assert result.getpixel((50, 50))[3] == 255


def test_malformed_watermark_fails_before_drawing(gray_source, monkeypatch):
    def fail_render(*args, **kwargs):
        raise AssertionError("render_image must not run")

    monkeypatch.setattr(image_processor, "render_image", fail_render)

    with pytest.raises(DecodeError, match="watermark"):
        compose_image(gray_source, make_config("data:image/png;base64,bm90IGFuIGltYWdl"))


def test_malformed_source(white_logo):
    with pytest.raises(DecodeError, match="source"):
        compose_image(b"not an image", make_config(white_logo))


def test_source_is_decoded_before_watermark(monkeypatch, white_logo, gray_source):
    order = []
    real_decode = image_processor.decode_raster

    def tracking_decode(payload, label="image"):
        order.append(label)
        return real_decode(payload, label)

    monkeypatch.setattr(image_processor, "decode_raster", tracking_decode)
    compose_image(gray_source, make_config(white_logo))

    assert order == ["source image", "watermark"]


def test_process_image_writes_png(tmp_path, white_logo):
    source = tmp_path / "photo.jpg"
    Image.new("RGB", (120, 80), (10, 20, 30)).save(source)

    result = process_image(source, make_config(white_logo))

    assert result == tmp_path / "photo_watermarked.png"
    with Image.open(result) as img:
        assert img.format == "PNG"
        assert img.size == (120, 80)


def test_process_image_explicit_output(tmp_path, white_logo):
    source = tmp_path / "photo.png"
    source.write_bytes(png_bytes(50, 50))
    target = tmp_path / "out" / "branded.png"

    assert process_image(source, make_config(white_logo), target) == target
    assert target.exists()
