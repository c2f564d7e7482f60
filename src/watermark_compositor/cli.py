import logging
import shutil
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from .core import CAPTURE_FPS, NONE_WATERMARK_ID, PRESET_POSITIONS, READY_TIMEOUT
from .core.config import WatermarkConfig, load_config, save_config
from .core.placement import PlacementModel
from .core.raster import to_data_uri
from .errors import CompositionCancelled, CompositorError, UnsupportedFormatError
from .processors.image import SUPPORTED_IMAGE_FORMATS, is_supported_image, process_image
from .processors.video import (
    OUTPUT_FORMATS,
    SUPPORTED_VIDEO_FORMATS,
    CancellationToken,
    is_supported_video,
    list_video_encoders,
    process_video,
    resolve_output_path,
    select_output_format,
)

app = typer.Typer(
    name="wmc",
    help="Burn a positioned watermark image into images and videos.",
    add_completion=True,
)
console = Console()
logger = logging.getLogger(__name__)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging",
    ),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def get_files_to_process(path: Path, recursive: bool = False) -> list[Path]:
    """Get all supported files from path (file or directory)."""
    if path.is_file():
        return [path]

    files = []
    pattern = "**/*" if recursive else "*"

    for f in path.glob(pattern):
        if f.is_file() and (is_supported_image(f) or is_supported_video(f)):
            files.append(f)

    return sorted(files)


def resolve_config(
    preset: Optional[str],
    watermark: Optional[Path],
    x: Optional[float],
    y: Optional[float],
    scale: Optional[float],
    opacity: Optional[float],
    rotation: Optional[float],
    position: Optional[str],
    name: Optional[str] = None,
) -> WatermarkConfig:
    """
    Build the watermark config from a preset file and explicit options.

    Explicit options win over the preset. A preset of "none" yields the
    no-watermark sentinel.
    """
    if preset == NONE_WATERMARK_ID:
        return WatermarkConfig(id=NONE_WATERMARK_ID, name="None", image=b"")

    base: Optional[WatermarkConfig] = None
    if preset is not None:
        try:
            base = load_config(Path(preset))
        except (OSError, ValueError) as e:
            raise typer.BadParameter(f"Cannot load preset {preset}: {e}", param_hint="--preset")

    model = PlacementModel.from_config(base) if base else PlacementModel()

    if watermark is not None:
        model.image = to_data_uri(watermark.read_bytes())
    if model.image is None:
        raise typer.BadParameter("Provide --watermark or --preset", param_hint="--watermark")

    if position is not None:
        try:
            model.apply_preset(position)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--position")
    if x is not None:
        model.x = x
    if y is not None:
        model.y = y
    if scale is not None:
        model.set_scale(scale)
    if opacity is not None:
        model.set_opacity(opacity)
    if rotation is not None:
        model.set_rotation(rotation)

    return model.to_config(
        name=name or (base.name if base else watermark.stem),
        watermark_id=base.id if base else None,
    )


def _copy_original(file_path: Path, file_output: Optional[Path], suffix: str) -> Path:
    target = file_output or file_path.parent / f"{file_path.stem}{suffix}{file_path.suffix}"
    if file_output is not None and file_output.suffix.lower() != file_path.suffix.lower():
        target = file_output.with_suffix(file_path.suffix)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(file_path, target)
    return target


@app.command()
def process(
    path: Path = typer.Argument(
        ...,
        help="Path to image/video file or directory for batch processing",
        exists=True,
    ),
    preset: Optional[str] = typer.Option(
        None,
        "--preset",
        "-p",
        help="Watermark preset JSON file, or 'none' to skip watermarking",
    ),
    watermark: Optional[Path] = typer.Option(
        None,
        "--watermark",
        "-w",
        help="Watermark image (overrides the preset's image)",
        exists=True,
        dir_okay=False,
    ),
    x: Optional[float] = typer.Option(None, "--x", help="Center x, percent of width (0-100)"),
    y: Optional[float] = typer.Option(None, "--y", help="Center y, percent of height (0-100)"),
    scale: Optional[float] = typer.Option(None, "--scale", help="Width, percent of width (5-100)"),
    opacity: Optional[float] = typer.Option(None, "--opacity", help="Opacity (0.1-1.0)"),
    rotation: Optional[float] = typer.Option(None, "--rotation", help="Rotation in degrees (-180-180)"),
    position: Optional[str] = typer.Option(
        None,
        "--position",
        help=f"Quick position: {', '.join(PRESET_POSITIONS)}",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output path (file or directory). Defaults to input location with '_watermarked' suffix.",
    ),
    recursive: bool = typer.Option(
        False,
        "--recursive",
        "-r",
        help="Process directories recursively",
    ),
    suffix: str = typer.Option(
        "_watermarked",
        "--suffix",
        "-s",
        help="Suffix to add to output filenames",
    ),
    overwrite: bool = typer.Option(
        False,
        "--overwrite",
        "-y",
        help="Overwrite existing output files without prompting",
    ),
    fallback: bool = typer.Option(
        True,
        "--fallback/--no-fallback",
        help="Keep the unwatermarked original when watermarking fails",
    ),
    ready_timeout: float = typer.Option(
        READY_TIMEOUT,
        "--ready-timeout",
        envvar="WMC_READY_TIMEOUT",
        help="Seconds to wait for a video to become readable",
    ),
    ffmpeg_cmd: str = typer.Option("ffmpeg", "--ffmpeg", envvar="WMC_FFMPEG", help="ffmpeg executable"),
    ffprobe_cmd: str = typer.Option("ffprobe", "--ffprobe", envvar="WMC_FFPROBE", help="ffprobe executable"),
):
    """
    Watermark images and videos.

    Images are written as PNG. Videos are re-encoded at 30 fps into the
    best container the local ffmpeg supports (WebM/VP9 preferred).

    Examples:
        wmc process photo.jpg -w logo.png --position bottom-right
        wmc process clip.mp4 -p preset.json -o branded.webm
        wmc process ./renders/ -r -p preset.json --scale 20
    """
    config = resolve_config(preset, watermark, x, y, scale, opacity, rotation, position)

    files = get_files_to_process(path, recursive)

    if not files:
        console.print(f"[red]No supported files found in {path}[/red]")
        console.print(f"Supported formats: {SUPPORTED_IMAGE_FORMATS | SUPPORTED_VIDEO_FORMATS}")
        raise typer.Exit(1)

    # Determine output directory for batch processing
    output_dir = None
    if path.is_dir() and output:
        output_dir = output
        output_dir.mkdir(parents=True, exist_ok=True)

    console.print(
        Panel(
            f"Processing {len(files)} file(s) with watermark '{config.name}'",
            title="Watermark Compositor",
            border_style="blue",
        )
    )

    # Pick the video container up front so overwrite checks see the real output name
    video_format = None
    if not config.is_none and any(is_supported_video(f) for f in files):
        try:
            video_format = select_output_format(ffmpeg_cmd)
        except UnsupportedFormatError as e:
            logger.warning("Videos cannot be encoded on this host: %s", e)

    failures = 0

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        main_task = progress.add_task("Processing files...", total=len(files))

        for file_path in files:
            progress.update(main_task, description=f"Processing {file_path.name}...")

            # Determine output path for this file
            if output_dir:
                file_output = output_dir / f"{file_path.stem}{suffix}{'' if is_supported_video(file_path) else '.png'}"
            elif output and path.is_file():
                file_output = output
            else:
                file_output = None  # Use default naming

            if file_output and video_format and is_supported_video(file_path):
                file_output = resolve_output_path(file_path, video_format, file_output, suffix)

            # Check for overwrite
            if file_output and file_output.exists() and not overwrite:
                if not typer.confirm(f"Overwrite {file_output}?"):
                    progress.advance(main_task)
                    continue

            # The sentinel is handled here; the compositors never see it
            if config.is_none:
                result = _copy_original(file_path, file_output, suffix)
                console.print(f"  [dim]No watermark, copied:[/dim] {result}")
                progress.advance(main_task)
                continue

            try:
                if is_supported_image(file_path):
                    result = process_image(file_path, config, file_output, suffix)
                    console.print(f"  [green]Image saved:[/green] {result}")

                elif is_supported_video(file_path):
                    frame_task = progress.add_task("  Frames...", total=100, visible=True)

                    def video_progress(current: int, total: int):
                        progress.update(frame_task, completed=int(current / total * 100))

                    token = CancellationToken()
                    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
                    try:
                        result = process_video(
                            file_path,
                            config,
                            file_output,
                            suffix,
                            video_progress,
                            cancel_token=token,
                            ready_timeout=ready_timeout,
                            ffmpeg_cmd=ffmpeg_cmd,
                            ffprobe_cmd=ffprobe_cmd,
                            output_format=video_format,
                        )
                    finally:
                        signal.signal(signal.SIGINT, previous_handler)
                        progress.remove_task(frame_task)
                    console.print(f"  [green]Video saved:[/green] {result}")

            except CompositionCancelled:
                console.print(f"  [yellow]Cancelled while processing {file_path}[/yellow]")
                raise typer.Exit(130)

            except CompositorError as e:
                failures += 1
                console.print(f"  [red]Error processing {file_path}:[/red] {e}")
                if fallback:
                    result = _copy_original(file_path, file_output, suffix)
                    logger.warning("Watermarking %s failed, kept original as %s", file_path, result)
                    console.print(f"  [yellow]Kept original:[/yellow] {result}")

            progress.advance(main_task)

    if failures and not fallback:
        console.print(f"[bold red]{failures} file(s) failed[/bold red]")
        raise typer.Exit(1)

    console.print("[bold green]Done![/bold green]")


@app.command()
def preset(
    name: str = typer.Argument(..., help="Display name of the watermark"),
    watermark: Optional[Path] = typer.Option(
        None,
        "--watermark",
        "-w",
        help="Watermark image",
        exists=True,
        dir_okay=False,
    ),
    base: Optional[Path] = typer.Option(
        None,
        "--from",
        help="Existing preset to edit (keeps its id)",
        exists=True,
        dir_okay=False,
    ),
    x: Optional[float] = typer.Option(None, "--x", help="Center x, percent of width (0-100)"),
    y: Optional[float] = typer.Option(None, "--y", help="Center y, percent of height (0-100)"),
    scale: Optional[float] = typer.Option(None, "--scale", help="Width, percent of width (5-100)"),
    opacity: Optional[float] = typer.Option(None, "--opacity", help="Opacity (0.1-1.0)"),
    rotation: Optional[float] = typer.Option(None, "--rotation", help="Rotation in degrees (-180-180)"),
    position: Optional[str] = typer.Option(
        None,
        "--position",
        help=f"Quick position: {', '.join(PRESET_POSITIONS)}",
    ),
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Where to write the preset JSON",
    ),
):
    """
    Write a watermark preset file.

    Out-of-range values are clamped the same way the interactive editor
    clamps them.
    """
    config = resolve_config(
        str(base) if base else None,
        watermark,
        x,
        y,
        scale,
        opacity,
        rotation,
        position,
        name=name,
    )
    save_config(config, output)
    console.print(
        f"[green]Preset saved:[/green] {output} "
        f"[dim](id={config.id}, x={config.x:g}%, y={config.y:g}%, scale={config.scale:g}%, "
        f"opacity={config.opacity:g}, rotation={config.rotation:g}°)[/dim]"
    )


@app.command()
def info(
    ffmpeg_cmd: str = typer.Option("ffmpeg", "--ffmpeg", envvar="WMC_FFMPEG", help="ffmpeg executable"),
):
    """Display supported formats and the video encoders found on this host."""
    try:
        available = list_video_encoders(ffmpeg_cmd)
        encoder_lines = "\n".join(
            f"  {'[green]✓[/green]' if fmt.vcodec in available else '[red]✗[/red]'} "
            f"{fmt.mime_type} ({fmt.vcodec})"
            for fmt in OUTPUT_FORMATS
        )
    except UnsupportedFormatError as e:
        encoder_lines = f"  [red]{e}[/red]"

    console.print(
        Panel(
            "[bold]Watermark Compositor[/bold]\n\n"
            "Places a watermark image by its center, as a percentage of the\n"
            "target's width and height, and burns it into images and videos.\n\n"
            f"[cyan]Supported Image Formats:[/cyan] {', '.join(sorted(SUPPORTED_IMAGE_FORMATS))}\n"
            f"[cyan]Supported Video Formats:[/cyan] {', '.join(sorted(SUPPORTED_VIDEO_FORMATS))}\n"
            "[cyan]Image Output:[/cyan] PNG\n"
            f"[cyan]Video Output:[/cyan] {CAPTURE_FPS} fps, first available of:\n"
            f"{encoder_lines}\n\n"
            f"[cyan]Quick Positions:[/cyan] {', '.join(PRESET_POSITIONS)}\n\n"
            "[dim]Every draw applies contrast(1.1) brightness(1.05) and a soft drop shadow[/dim]",
            title="About",
            border_style="blue",
        )
    )


if __name__ == "__main__":
    app()
