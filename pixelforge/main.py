"""
PixelForge Worker

Command-line entry point. Processes a single image or a directory of
images through the pipeline and writes the encoded results.
"""

import logging
import signal
import sys
import threading
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import get_settings
from .metrics import start_metrics_server
from .pipeline import (
    BackgroundMode,
    ImageProcessingError,
    ProcessingOptions,
    ProcessingPipeline,
    Region,
    WatermarkDetector,
    get_provider,
    load_model,
)
from .pipeline.codec import generate_filename, is_valid_image_file, load_image, save_image

logger = logging.getLogger(__name__)
console = Console()

# Set by SIGINT/SIGTERM, images not yet started are skipped
shutdown_event = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logger.info("Shutdown signal received, finishing running images...")
    shutdown_event.set()


def setup_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def parse_region(ctx, param, value):
    """Click callback turning ``x,y,w,h`` into a Region."""
    if value is None:
        return None
    try:
        x, y, w, h = (int(part) for part in value.split(","))
    except ValueError:
        raise click.BadParameter("expected x,y,width,height") from None
    return Region(x, y, w, h)


def collect_inputs(input_path: Path) -> list[Path]:
    if input_path.is_file():
        return [input_path]
    return sorted(p for p in input_path.iterdir() if p.is_file() and is_valid_image_file(p))


@click.group()
@click.option("--log-level", default=None, help="Logging level (default: from settings)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None):
    """PixelForge image processing worker."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    ctx.obj = settings


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output directory for processed images. Defaults to './processed'"
)
@click.option("--scale", type=float, default=None, help="Resize factor (default: 1.0)")
@click.option(
    "--interpolation",
    type=click.Choice(["nearest", "bilinear", "bicubic", "lanczos"]),
    default=None,
    help="Resampling algorithm used when scaling"
)
@click.option(
    "--format", "output_format",
    type=click.Choice(["jpeg", "png", "webp"]),
    default=None,
    help="Output format (default: png)"
)
@click.option("--quality", type=float, default=None, help="Lossy quality, 0-1 (default: 0.9)")
@click.option("--remove-background", is_flag=True, help="Clear the image background")
@click.option(
    "--background-mode",
    type=click.Choice(["ai", "advanced"]),
    default=None,
    help="ai = segmentation model, advanced = color/edge heuristic"
)
@click.option(
    "--segmentation-provider",
    type=click.Choice(["rembg", "mediapipe"]),
    default=None,
    help="Segmentation model used by ai background mode (default: rembg)"
)
@click.option("--remove-watermark", is_flag=True, help="Remove watermarks")
@click.option(
    "--watermark-method",
    type=click.Choice(["blur", "inpaint", "clone", "frequency", "ai"]),
    default=None,
    help="Watermark removal strategy (default: blur)"
)
@click.option(
    "--region",
    callback=parse_region,
    default=None,
    help="Manual watermark region as x,y,width,height (disables auto-detect)"
)
@click.option("--workers", type=int, default=None, help="Images processed in parallel")
@click.pass_obj
def process(
    settings,
    input_path: Path,
    output: Path | None,
    scale: float | None,
    interpolation: str | None,
    output_format: str | None,
    quality: float | None,
    remove_background: bool,
    background_mode: str | None,
    segmentation_provider: str | None,
    remove_watermark: bool,
    watermark_method: str | None,
    region: Region | None,
    workers: int | None,
):
    """Process images.

    INPUT_PATH can be a single image file or a directory of images.
    """
    # CLI flags override environment settings
    overrides = {
        "scale": scale,
        "interpolation": interpolation,
        "output_format": output_format,
        "quality": quality,
        "remove_background": remove_background or None,
        "background_mode": background_mode,
        "segmentation_provider": segmentation_provider,
        "remove_watermark": remove_watermark or None,
        "watermark_method": watermark_method,
        "max_workers": workers,
    }
    settings = settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    try:
        options = ProcessingOptions.from_settings(settings, region=region)
    except ImageProcessingError as e:
        raise click.BadParameter(str(e)) from e

    if output is None:
        output = Path("./processed")
    output.mkdir(parents=True, exist_ok=True)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    console.print("[bold green]PixelForge Worker[/bold green]")
    console.print(f"Worker ID: {settings.worker_id}")
    console.print(f"Input: {input_path}")
    console.print(f"Output: {output}")

    if settings.metrics_port:
        start_metrics_server(port=settings.metrics_port, worker_id=settings.worker_id)
        console.print(f"Metrics: http://localhost:{settings.metrics_port}/metrics")
    console.print("")

    model = None
    if options.remove_background and options.background.mode is BackgroundMode.AI:
        try:
            model = load_model(get_provider(settings.segmentation_provider))
        except ImageProcessingError as e:
            logger.error(f"Segmentation model unavailable: {e}")
            sys.exit(1)

    paths = []
    buffers = []
    for path in collect_inputs(input_path):
        try:
            buffers.append(load_image(path))
            paths.append(path)
        except ImageProcessingError as e:
            logger.error(f"Skipping {path.name}: {e}")

    if not buffers:
        logger.warning("No images to process")
        return

    logger.info(f"Processing {len(buffers)} images with {settings.max_workers} workers")

    pipeline = ProcessingPipeline(
        model=model,
        model_timeout=settings.segmentation_timeout,
        max_output_pixels=settings.max_output_pixels,
    )
    results = pipeline.process_batch(
        buffers,
        options,
        max_workers=settings.max_workers,
        cancel_event=shutdown_event,
        progress_callback=lambda current, total, message: logger.info(f"[{current}/{total}] {message}"),
    )

    failures = 0
    for path, item in zip(paths, results):
        if item.cancelled:
            logger.warning(f"{path.name}: cancelled")
            continue
        if not item.ok:
            failures += 1
            logger.error(f"{path.name}: {item.error}")
            continue

        target = output / generate_filename(path.name, options.output_format)
        save_image(
            item.buffer,
            target,
            format=options.output_format,
            quality=options.quality,
            background_color=options.output_background,
        )
        steps = ", ".join(item.result.steps) or "copy"
        logger.info(f"{path.name} -> {target.name} ({steps})")

    if failures:
        sys.exit(1)


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def detect(input_path: Path):
    """List likely watermark regions in an image without changing it."""
    try:
        buffer = load_image(input_path)
    except ImageProcessingError as e:
        logger.error(f"Cannot read {input_path.name}: {e}")
        sys.exit(1)
    detections = WatermarkDetector().detect(buffer)

    if not detections:
        console.print("No watermark regions detected")
        return

    table = Table(title=f"Watermark regions in {input_path.name}")
    for column in ("x", "y", "width", "height", "confidence"):
        table.add_column(column, justify="right")
    for d in detections:
        table.add_row(
            str(d.region.x),
            str(d.region.y),
            str(d.region.width),
            str(d.region.height),
            f"{d.confidence:.2f}",
        )
    console.print(table)


if __name__ == "__main__":
    cli()
