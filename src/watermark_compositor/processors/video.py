import contextlib
import logging
import subprocess
import tempfile
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import ffmpeg
import numpy as np
from numpy.typing import NDArray

from ..core import BITRATE_720P, BITRATE_1080P, BITRATE_4K, BITRATE_HIGHER
from ..core import CAPTURE_FPS, PIXELS_720P, PIXELS_1080P, PIXELS_4K, READY_TIMEOUT
from ..core.blend import build_overlay_layer, render_frame
from ..core.config import WatermarkConfig
from ..core.position import calculate_overlay_geometry
from ..core.raster import decode_raster
from ..errors import (
    CompositionCancelled,
    CompositorTimeoutError,
    DecodeError,
    EncodeError,
    UnsupportedFormatError,
)

logger = logging.getLogger(__name__)

SUPPORTED_VIDEO_FORMATS = {".mp4", ".webm", ".mov", ".avi", ".mkv"}


@dataclass(frozen=True)
class OutputFormat:
    """An encoder/container pair the compositor can write."""

    vcodec: str
    container: str
    suffix: str
    mime_type: str
    options: dict = field(default_factory=dict, compare=False)


# In order of preference; the first one the host ffmpeg can encode wins
OUTPUT_FORMATS: tuple[OutputFormat, ...] = (
    OutputFormat("libvpx-vp9", "webm", ".webm", "video/webm;codecs=vp9",
                 {"deadline": "realtime", "cpu-used": 8, "row-mt": 1}),
    OutputFormat("libx264", "mp4", ".mp4", "video/mp4;codecs=avc1",
                 {"preset": "medium", "crf": 18, "movflags": "+faststart"}),
    OutputFormat("libvpx", "webm", ".webm", "video/webm;codecs=vp8",
                 {"deadline": "realtime", "cpu-used": 8}),
    OutputFormat("mpeg4", "mp4", ".mp4", "video/mp4", {"q:v": 3}),
)

OUTPUT_SUFFIXES = {fmt.suffix for fmt in OUTPUT_FORMATS}


@dataclass
class ComposedVideo:
    """Handle to a finished, watermarked video."""

    path: Path
    mime_type: str
    vcodec: str
    width: int
    height: int
    frames: int
    fps: int = CAPTURE_FPS

    @property
    def duration(self) -> float:
        return self.frames / self.fps


class CancellationToken:
    """
    Cooperative stop signal for a running video composition.

    Safe to trigger from a signal handler or another thread; the frame
    loop checks it once per frame.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CompositionCancelled("Video composition was cancelled")


def is_supported_video(path: Path) -> bool:
    """Check if file is a supported video format."""
    return path.suffix.lower() in SUPPORTED_VIDEO_FORMATS


def _is_quarter_turn(video_stream: dict) -> bool:
    """Whether the stream carries display rotation metadata of +-90 degrees."""
    rotation = video_stream.get("tags", {}).get("rotate")
    for side_data in video_stream.get("side_data_list", []):
        if "rotation" in side_data:
            rotation = side_data["rotation"]
    try:
        return int(float(rotation)) % 180 == 90
    except (TypeError, ValueError):
        return False


def get_video_info(
    source: str | Path,
    ffprobe_cmd: str = "ffprobe",
    timeout: float | None = READY_TIMEOUT,
) -> dict:
    """
    Get video metadata using ffprobe.

    Width and height are the displayed dimensions, i.e. what the decoder
    produces after applying rotation metadata.

    Raises:
        DecodeError: If the source cannot be probed or has no video stream
        CompositorTimeoutError: If probing takes longer than timeout
    """
    try:
        probe = ffmpeg.probe(str(source), cmd=ffprobe_cmd, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise CompositorTimeoutError(f"Video metadata not ready after {timeout}s: {source}") from e
    except ffmpeg.Error as e:
        message = e.stderr.decode(errors="replace").strip() if e.stderr else str(e)
        raise DecodeError(f"Cannot probe video {source}: {message}") from e
    except FileNotFoundError as e:
        raise DecodeError(f"ffprobe not found ({ffprobe_cmd})") from e

    try:
        video_stream = next(s for s in probe["streams"] if s["codec_type"] == "video")
    except StopIteration:
        raise DecodeError(f"No video stream in {source}") from None

    # Check for audio stream
    audio_stream = next(
        (s for s in probe["streams"] if s["codec_type"] == "audio"),
        None,
    )

    width = int(video_stream["width"])
    height = int(video_stream["height"])
    if _is_quarter_turn(video_stream):
        width, height = height, width

    duration = float(probe["format"].get("duration", 0) or 0)
    total_frames = round(duration * CAPTURE_FPS) if duration > 0 else 0

    return {
        "width": width,
        "height": height,
        "duration": duration,
        "total_frames": total_frames,
        "has_audio": audio_stream is not None,
    }


def calculate_bitrate(width: int, height: int) -> int:
    """Calculate optimal bitrate based on resolution."""
    pixels = width * height

    if pixels <= PIXELS_720P:
        return BITRATE_720P
    elif pixels <= PIXELS_1080P:
        return BITRATE_1080P
    elif pixels <= PIXELS_4K:
        return BITRATE_4K
    else:
        return BITRATE_HIGHER


def list_video_encoders(ffmpeg_cmd: str = "ffmpeg") -> set[str]:
    """Ask the host ffmpeg which video encoders it was built with."""
    try:
        result = subprocess.run(
            [ffmpeg_cmd, "-hide_banner", "-encoders"],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise UnsupportedFormatError(f"ffmpeg not found ({ffmpeg_cmd})") from e
    except subprocess.CalledProcessError as e:
        raise UnsupportedFormatError(f"Cannot list ffmpeg encoders: {e.stderr.strip()}") from e

    encoders = set()
    for line in result.stdout.splitlines():
        parts = line.split()
        # Encoder rows look like " V....D libx264   libx264 H.264 ..."
        if len(parts) >= 2 and parts[0].startswith("V") and parts[1] != "=":
            encoders.add(parts[1])
    return encoders


def select_output_format(
    ffmpeg_cmd: str = "ffmpeg",
    formats: tuple[OutputFormat, ...] = OUTPUT_FORMATS,
) -> OutputFormat:
    """
    Pick the most preferred output format this host can encode.

    Queried on every call: encoder support depends on how ffmpeg was built.
    """
    available = list_video_encoders(ffmpeg_cmd)
    for fmt in formats:
        if fmt.vcodec in available:
            logger.debug("Selected %s (%s)", fmt.mime_type, fmt.vcodec)
            return fmt

    wanted = ", ".join(fmt.vcodec for fmt in formats)
    raise UnsupportedFormatError(f"No supported video encoder available (tried {wanted})")


def _with_container_suffix(path: Path, fmt: OutputFormat) -> Path:
    if path.suffix.lower() == fmt.suffix:
        return path
    if path.suffix.lower() in OUTPUT_SUFFIXES | SUPPORTED_VIDEO_FORMATS:
        return path.with_suffix(fmt.suffix)
    return path.with_name(path.name + fmt.suffix)


def _default_output_path(source: str | Path, fmt: OutputFormat) -> Path:
    source_path = Path(source)
    if "://" not in str(source) and source_path.is_file():
        return source_path.parent / f"{source_path.stem}_watermarked{fmt.suffix}"
    return Path(tempfile.mkdtemp(prefix="wmc-")) / f"watermarked{fmt.suffix}"


def _read_frame(process: subprocess.Popen, width: int, height: int) -> NDArray[np.uint8] | None:
    """Read one rgb24 frame from a decoder pipe, or None at end of stream."""
    frame_size = width * height * 3
    data = process.stdout.read(frame_size)
    if len(data) < frame_size:
        return None
    return np.frombuffer(data, dtype=np.uint8).reshape(height, width, 3)


class StderrTail:
    """
    Drain a helper process's stderr on a background thread.

    ffmpeg blocks once its stderr pipe fills up, which would stall the
    frame pipe with it. Only the last max_lines lines are kept for error
    messages.
    """

    def __init__(self, process: subprocess.Popen, max_lines: int = 50):
        self._lines: deque[bytes] = deque(maxlen=max_lines)
        self._thread = threading.Thread(target=self._drain, args=(process.stderr,), daemon=True)
        self._thread.start()

    def _drain(self, stream) -> None:
        # The stream may be closed under us once the process is released
        with contextlib.suppress(OSError, ValueError):
            for line in iter(stream.readline, b""):
                self._lines.append(line)

    def join(self, timeout: float | None = 5.0) -> None:
        self._thread.join(timeout)

    def text(self) -> str:
        return b"".join(self._lines).decode(errors="replace").strip()


def _release(process: subprocess.Popen | None, tail: StderrTail | None = None) -> None:
    """Stop a helper process, wait for its stderr reader and close its pipes."""
    if process is None:
        return
    if process.poll() is None:
        process.kill()
        process.wait()
    if tail is not None:
        tail.join()
    for stream in (process.stdin, process.stdout, process.stderr):
        if stream is not None:
            with contextlib.suppress(OSError):
                stream.close()


def start_decoder(source: str | Path, ffmpeg_cmd: str = "ffmpeg") -> subprocess.Popen:
    """Decode the source as raw rgb24 frames resampled to the capture rate."""
    try:
        return (
            ffmpeg.input(str(source))
            .filter("fps", fps=CAPTURE_FPS)
            .output("pipe:", format="rawvideo", pix_fmt="rgb24")
            .global_args("-loglevel", "error", "-nostdin")
            .run_async(cmd=ffmpeg_cmd, pipe_stdout=True, pipe_stderr=True)
        )
    except FileNotFoundError as e:
        raise DecodeError(f"ffmpeg not found ({ffmpeg_cmd})") from e


def start_encoder(
    output_path: Path,
    fmt: OutputFormat,
    width: int,
    height: int,
    ffmpeg_cmd: str = "ffmpeg",
) -> subprocess.Popen:
    """Encode raw rgb24 frames from stdin at the capture rate."""
    # 4:2:0 chroma needs even dimensions
    pix_fmt = "yuv420p" if width % 2 == 0 and height % 2 == 0 else "yuv444p"
    try:
        return (
            ffmpeg.input(
                "pipe:",
                format="rawvideo",
                pix_fmt="rgb24",
                s=f"{width}x{height}",
                framerate=CAPTURE_FPS,
            )
            .output(
                str(output_path),
                format=fmt.container,
                vcodec=fmt.vcodec,
                video_bitrate=calculate_bitrate(width, height),
                pix_fmt=pix_fmt,
                **fmt.options,
            )
            .overwrite_output()
            .global_args("-loglevel", "error")
            .run_async(cmd=ffmpeg_cmd, pipe_stdin=True, pipe_stderr=True)
        )
    except FileNotFoundError as e:
        raise EncodeError(f"ffmpeg not found ({ffmpeg_cmd})") from e


def compose_video(
    source: str | Path,
    config: WatermarkConfig,
    output_path: Path | None = None,
    cancel_token: CancellationToken | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
    ready_timeout: float = READY_TIMEOUT,
    ffmpeg_cmd: str = "ffmpeg",
    ffprobe_cmd: str = "ffprobe",
    formats: tuple[OutputFormat, ...] = OUTPUT_FORMATS,
) -> ComposedVideo:
    """
    Burn a watermark into every frame of a video.

    Pipeline:
    1. Probe the source for its native dimensions
    2. Decode the watermark once and pre-render it for that canvas
    3. Pick an output encoder the host supports
    4. Once the first frame is decoded and drawn, start the encoder
    5. Filter, draw and encode every frame at the 30 fps capture rate
    6. Finalize the encoder; both ffmpeg processes are released on every path

    Args:
        source: Path or URL of the source video
        config: Watermark placement
        output_path: Optional explicit output path; its suffix is fixed up
            to match the selected container
        cancel_token: Checked once per frame; cancelling aborts the run
        progress_callback: Optional callback(current_frame, total_frames)
        ready_timeout: Seconds to wait for metadata and for the first frame

    Returns:
        ComposedVideo handle to the finalized file

    Raises:
        DecodeError: Source or watermark cannot be decoded
        EncodeError: The encoder failed
        UnsupportedFormatError: No usable output encoder on this host
        CompositorTimeoutError: Source not ready within ready_timeout
        CompositionCancelled: cancel_token was triggered
    """
    cancel_token = cancel_token or CancellationToken()
    config = config.clamped()

    info = get_video_info(source, ffprobe_cmd, ready_timeout)
    width, height = info["width"], info["height"]

    watermark = decode_raster(config.image, "watermark")
    geometry = calculate_overlay_geometry(width, height, config, watermark.width, watermark.height)
    layer = build_overlay_layer(watermark, geometry, config.opacity, width, height)

    fmt = select_output_format(ffmpeg_cmd, formats)
    if output_path is None:
        output_path = _default_output_path(source, fmt)
    else:
        output_path = _with_container_suffix(output_path, fmt)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(
        "Compositing %s (%dx%d, %.2fs) into %s",
        source, width, height, info["duration"], output_path,
    )

    if info["has_audio"]:
        logger.info("%s has an audio track; the output is video only", source)

    total = info["total_frames"]
    frames = 0
    decoder: subprocess.Popen | None = None
    encoder: subprocess.Popen | None = None
    decoder_tail: StderrTail | None = None
    encoder_tail: StderrTail | None = None
    finished = False

    try:
        cancel_token.raise_if_cancelled()
        decoder = start_decoder(source, ffmpeg_cmd)
        decoder_tail = StderrTail(decoder)

        # Watchdog: a source that never yields a frame is killed after the grace window
        timed_out = threading.Event()

        def expire():
            timed_out.set()
            decoder.kill()

        watchdog = threading.Timer(ready_timeout, expire)
        watchdog.daemon = True
        watchdog.start()
        try:
            frame = _read_frame(decoder, width, height)
        finally:
            watchdog.cancel()

        if frame is None and timed_out.is_set():
            raise CompositorTimeoutError(f"No video frame after {ready_timeout}s: {source}")
        if frame is None:
            decoder.wait()
            decoder_tail.join()
            raise DecodeError(f"No frames decoded from {source}: {decoder_tail.text()}")

        # Draw the first frame before the encoder exists, so output never starts blank
        surface = render_frame(frame, layer)
        encoder = start_encoder(output_path, fmt, width, height, ffmpeg_cmd)
        encoder_tail = StderrTail(encoder)

        while frame is not None:
            cancel_token.raise_if_cancelled()
            try:
                encoder.stdin.write(surface.tobytes())
            except BrokenPipeError as e:
                encoder.wait()
                encoder_tail.join()
                raise EncodeError(f"Encoder exited early: {encoder_tail.text()}") from e

            frames += 1
            if progress_callback:
                progress_callback(frames, max(total, frames))

            frame = _read_frame(decoder, width, height)
            if frame is not None:
                surface = render_frame(frame, layer)

        decoder.wait()
        decoder_tail.join()
        if decoder.returncode != 0:
            raise DecodeError(f"Decoding {source} failed: {decoder_tail.text()}")

        try:
            encoder.stdin.close()
        except BrokenPipeError as e:
            raise EncodeError(f"Encoder exited early: {encoder_tail.text()}") from e
        encoder.wait()
        encoder_tail.join()
        if encoder.returncode != 0:
            raise EncodeError(f"Encoding {output_path} failed: {encoder_tail.text()}")

        finished = True

    finally:
        _release(decoder, decoder_tail)
        _release(encoder, encoder_tail)
        if not finished and encoder is not None:
            output_path.unlink(missing_ok=True)

    logger.info("Wrote %d frames to %s", frames, output_path)

    return ComposedVideo(
        path=output_path,
        mime_type=fmt.mime_type,
        vcodec=fmt.vcodec,
        width=width,
        height=height,
        frames=frames,
    )


def resolve_output_path(
    input_path: Path,
    fmt: OutputFormat,
    output_path: Path | None = None,
    suffix: str = "_watermarked",
) -> Path:
    """The path process_video writes to once fmt is selected."""
    if output_path is None:
        output_path = input_path.parent / f"{input_path.stem}{suffix}"
    return _with_container_suffix(output_path, fmt)


def process_video(
    input_path: Path,
    config: WatermarkConfig,
    output_path: Path | None = None,
    suffix: str = "_watermarked",
    progress_callback: Callable[[int, int], None] | None = None,
    cancel_token: CancellationToken | None = None,
    ready_timeout: float = READY_TIMEOUT,
    ffmpeg_cmd: str = "ffmpeg",
    ffprobe_cmd: str = "ffprobe",
    output_format: OutputFormat | None = None,
) -> Path:
    """
    Watermark a single video file.

    Args:
        input_path: Path to input video
        config: Watermark placement
        output_path: Optional explicit output path
        suffix: Suffix for auto-generated output filename
        progress_callback: Optional callback(current_frame, total_frames)
        output_format: Format already chosen by the caller; selected here if None

    Returns:
        Path to the output video; its extension follows the selected container
    """
    if output_format is None:
        output_format = select_output_format(ffmpeg_cmd)

    result = compose_video(
        input_path,
        config,
        resolve_output_path(input_path, output_format, output_path, suffix),
        cancel_token=cancel_token,
        progress_callback=progress_callback,
        ready_timeout=ready_timeout,
        ffmpeg_cmd=ffmpeg_cmd,
        ffprobe_cmd=ffprobe_cmd,
        formats=(output_format,),
    )
    return result.path
