import json

import pytest
from PIL import Image
from typer.testing import CliRunner

from watermark_compositor import cli
from watermark_compositor.cli import app
from watermark_compositor.processors.video import OUTPUT_FORMATS, resolve_output_path

from conftest import png_bytes

runner = CliRunner()


@pytest.fixture
def logo(tmp_path):
    path = tmp_path / "logo.png"
    path.write_bytes(png_bytes(200, 100, (255, 255, 255)))
    return path


@pytest.fixture
def photo(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(png_bytes(300, 200))
    return path


def test_process_image_with_position(photo, logo):
    result = runner.invoke(app, ["process", str(photo), "-w", str(logo), "--position", "center"])

    assert result.exit_code == 0, result.output
    output = photo.parent / "photo_watermarked.png"
    with Image.open(output) as img:
        assert img.size == (300, 200)
        # default opacity 0.9 over the filtered gray
        assert img.getpixel((150, 100))[0] > 200


def test_preset_roundtrip(tmp_path, photo, logo):
    preset_path = tmp_path / "logo.json"
    result = runner.invoke(
        app,
        ["preset", "Corner", "-w", str(logo), "--position", "top-left", "--scale", "250", "-o", str(preset_path)],
    )
    assert result.exit_code == 0, result.output

    stored = json.loads(preset_path.read_text())
    assert stored["name"] == "Corner"
    assert (stored["x"], stored["y"], stored["scale"]) == (10, 10, 100)

    target = tmp_path / "branded.png"
    result = runner.invoke(app, ["process", str(photo), "-p", str(preset_path), "-o", str(target)])
    assert result.exit_code == 0, result.output
    assert target.exists()


def test_preset_edit_keeps_id(tmp_path, logo):
    first = tmp_path / "a.json"
    second = tmp_path / "b.json"
    runner.invoke(app, ["preset", "Logo", "-w", str(logo), "-o", str(first)])
    result = runner.invoke(app, ["preset", "Logo v2", "--from", str(first), "--x", "40", "-o", str(second)])

    assert result.exit_code == 0, result.output
    a, b = json.loads(first.read_text()), json.loads(second.read_text())
    assert a["id"] == b["id"]
    assert b["x"] == 40
    assert b["name"] == "Logo v2"


def test_none_preset_copies_source_unchanged(photo):
    result = runner.invoke(app, ["process", str(photo), "-p", "none"])

    assert result.exit_code == 0, result.output
    copy = photo.parent / "photo_watermarked.png"
    assert copy.read_bytes() == photo.read_bytes()


def test_failure_falls_back_to_original(tmp_path, photo):
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"not really a png")

    result = runner.invoke(app, ["process", str(photo), "-w", str(broken)])

    assert result.exit_code == 0, result.output
    assert "Kept original" in result.output
    assert (photo.parent / "photo_watermarked.png").read_bytes() == photo.read_bytes()


def test_failure_without_fallback(tmp_path, photo):
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"not really a png")

    result = runner.invoke(app, ["process", str(photo), "-w", str(broken), "--no-fallback"])

    assert result.exit_code == 1
    assert not (photo.parent / "photo_watermarked.png").exists()


def test_batch_directory(tmp_path, logo):
    src = tmp_path / "in"
    src.mkdir()
    for name in ("a.png", "b.jpg"):
        Image.new("RGB", (64, 64), (1, 2, 3)).save(src / name)
    (src / "notes.txt").write_text("skip me")
    out = tmp_path / "out"

    result = runner.invoke(app, ["process", str(src), "-w", str(logo), "-o", str(out)])

    assert result.exit_code == 0, result.output
    assert sorted(p.name for p in out.iterdir()) == ["a_watermarked.png", "b_watermarked.png"]


def test_watermark_is_required(photo):
    result = runner.invoke(app, ["process", str(photo)])
    assert result.exit_code == 2


def test_unknown_position(photo, logo):
    result = runner.invoke(app, ["process", str(photo), "-w", str(logo), "--position", "nowhere"])
    assert result.exit_code == 2


def test_info():
    result = runner.invoke(app, ["info"])

    assert result.exit_code == 0, result.output
    assert "bottom-right" in result.output


@pytest.fixture
def fake_video_pipeline(monkeypatch):
    """Select WebM/VP9 and write b"new" instead of running ffmpeg."""
    calls = []

    def fake_process_video(input_path, config, output_path=None, suffix="_watermarked", *args, **kwargs):
        target = resolve_output_path(input_path, OUTPUT_FORMATS[0], output_path, suffix)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"new")
        calls.append(target)
        return target

    monkeypatch.setattr(cli, "select_output_format", lambda *a, **k: OUTPUT_FORMATS[0])
    monkeypatch.setattr(cli, "process_video", fake_process_video)
    return calls


def test_batch_overwrite_prompt_sees_container_suffix(tmp_path, logo, fake_video_pipeline):
    src = tmp_path / "in"
    src.mkdir()
    (src / "clip.mp4").write_bytes(b"video")
    out = tmp_path / "out"
    out.mkdir()
    existing = out / "clip_watermarked.webm"
    existing.write_bytes(b"precious")

    result = runner.invoke(app, ["process", str(src), "-w", str(logo), "-o", str(out)], input="n\n")

    assert result.exit_code == 0, result.output
    assert "Overwrite" in result.output
    assert existing.read_bytes() == b"precious"
    assert fake_video_pipeline == []


def test_single_video_output_checks_selected_container(tmp_path, logo, fake_video_pipeline):
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"video")
    existing = tmp_path / "branded.webm"
    existing.write_bytes(b"precious")

    declined = runner.invoke(
        app, ["process", str(clip), "-w", str(logo), "-o", str(tmp_path / "branded.mp4")], input="n\n"
    )
    assert declined.exit_code == 0, declined.output
    assert existing.read_bytes() == b"precious"

    forced = runner.invoke(
        app, ["process", str(clip), "-w", str(logo), "-o", str(tmp_path / "branded.mp4"), "--overwrite"]
    )
    assert forced.exit_code == 0, forced.output
    assert existing.read_bytes() == b"new"
    assert fake_video_pipeline == [existing]
