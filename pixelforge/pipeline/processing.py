"""
Processing Pipeline

Runs the configured steps on one image in a fixed order:

1. Resize (when scale != 1)
2. Background removal (when enabled)
3. Watermark removal (when enabled)

and fans batches of images out over a thread pool. Images are independent,
so a failed image never stops the rest of the batch.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from .. import metrics
from .background import BackgroundMode, BackgroundOptions, BackgroundRemover
from .buffer import DetectedRegion, PixelBuffer, Region
from .interpolation import InterpolationAlgorithm
from .segmentation import ModelHandle
from .upscaler import Upscaler
from .watermark_remover import WatermarkMethod, WatermarkOptions, WatermarkRemover

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessingOptions:
    """Everything one pipeline call needs, fixed for the duration of the call."""
    interpolation: InterpolationAlgorithm = InterpolationAlgorithm.BICUBIC
    scale: float = 1.0
    quality: float = 0.9
    output_format: str = "png"
    output_background: str = "#ffffff"

    remove_background: bool = False
    background: BackgroundOptions = field(default_factory=BackgroundOptions)

    remove_watermark: bool = False
    watermark: WatermarkOptions = field(default_factory=WatermarkOptions)

    @classmethod
    def from_settings(cls, settings: "Settings", region: Optional[Region] = None) -> "ProcessingOptions":
        """Snapshot the worker settings, optionally with a manual watermark region."""
        return cls(
            interpolation=InterpolationAlgorithm.parse(settings.interpolation),
            scale=settings.scale,
            quality=settings.quality,
            output_format=settings.output_format,
            output_background=settings.output_background,
            remove_background=settings.remove_background,
            background=BackgroundOptions(
                mode=BackgroundMode.parse(settings.background_mode),
                color_tolerance=settings.color_tolerance,
                edge_threshold=settings.edge_threshold,
                smoothing=settings.smoothing,
                background_color=settings.background_color,
                segmentation_threshold=settings.segmentation_threshold,
                mask_blur=settings.mask_blur,
                edge_blur=settings.edge_blur,
                flip_horizontal=settings.flip_horizontal,
                internal_resolution=settings.internal_resolution,
            ),
            remove_watermark=settings.remove_watermark,
            watermark=WatermarkOptions(
                method=WatermarkMethod.parse(settings.watermark_method),
                region=region,
                auto_detect=settings.auto_detect,
                blur_intensity=settings.blur_intensity,
                inpaint_radius=settings.inpaint_radius,
                iterations=settings.iterations,
                dilate_mask=settings.dilate_mask,
            ),
        )


@dataclass
class ProcessingResult:
    """Output of one pipeline call."""
    buffer: PixelBuffer
    steps: list[str] = field(default_factory=list)
    detections: list[DetectedRegion] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class BatchItemResult:
    """Outcome for one image of a batch, in input order."""
    index: int
    source: PixelBuffer
    result: Optional[ProcessingResult] = None
    error: Optional[Exception] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.result is not None

    @property
    def buffer(self) -> PixelBuffer:
        """Processed buffer, or the untouched input when processing did not happen."""
        return self.result.buffer if self.result is not None else self.source


class ProcessingPipeline:
    """
    Composes Upscaler -> BackgroundRemover -> WatermarkRemover.

    The pipeline holds no per-image state, so one instance can process many
    images concurrently. The segmentation model handle is owned by the
    caller and only borrowed here.
    """

    def __init__(
        self,
        model: Optional[ModelHandle] = None,
        model_timeout: Optional[float] = None,
        max_output_pixels: Optional[int] = None,
    ):
        self.model = model
        self.model_timeout = model_timeout
        self.upscaler = Upscaler(max_output_pixels=max_output_pixels)
        self.watermark_remover = WatermarkRemover()

    def process(
        self,
        buffer: PixelBuffer,
        options: Optional[ProcessingOptions] = None,
        model: Optional[ModelHandle] = None,
    ) -> ProcessingResult:
        """
        Run the enabled steps on one image.

        Args:
            buffer: Input image, left untouched
            options: Per-call options, defaults to a plain copy
            model: Segmentation model for AI background removal, overrides
                the one given to the constructor

        Returns:
            ProcessingResult with the output buffer and the steps that ran

        Raises:
            InvalidScaleFactor, BufferAllocationFailed: resize failed
            ModelNotReady, InferenceFailed: AI background removal failed
            UnsupportedMethod: unknown algorithm or method
        """
        options = options or ProcessingOptions()
        start_time = time.time()
        result = ProcessingResult(buffer=buffer.copy())

        if options.scale != 1:
            step_start = time.time()
            result.buffer = self.upscaler.upscale(result.buffer, options.scale, options.interpolation)
            result.steps.append("resize")
            metrics.record_step_duration("resize", time.time() - step_start)

        if options.remove_background:
            step_start = time.time()
            remover = BackgroundRemover(model=model or self.model, model_timeout=self.model_timeout)
            result.buffer = remover.remove(result.buffer, options.background)
            result.steps.append("background")
            metrics.record_step_duration("background", time.time() - step_start)

        if options.remove_watermark:
            step_start = time.time()
            watermark = self.watermark_remover.remove(result.buffer, options.watermark)
            result.buffer = watermark.buffer
            result.detections = watermark.detections
            result.steps.append("watermark")
            metrics.record_step_duration("watermark", time.time() - step_start)
            metrics.record_regions_detected(len(watermark.detections))

        result.duration = time.time() - start_time
        logger.debug(
            f"Processed {buffer.width}x{buffer.height} -> {result.buffer.width}x{result.buffer.height} "
            f"in {result.duration:.2f}s (steps: {', '.join(result.steps) or 'none'})"
        )
        return result

    def process_batch(
        self,
        buffers: Sequence[PixelBuffer],
        options: Optional[ProcessingOptions] = None,
        model: Optional[ModelHandle] = None,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> list[BatchItemResult]:
        """
        Process many images on a thread pool.

        Args:
            buffers: Input images
            options: Options shared by every image
            model: Segmentation model for AI background removal
            max_workers: Thread pool size
            cancel_event: Once set, images that have not started are skipped
                and marked cancelled; running images finish
            progress_callback: Optional callback(current, total, message)

        Returns:
            One BatchItemResult per input, in input order
        """
        buffers = list(buffers)
        total = len(buffers)
        cancel_event = cancel_event or threading.Event()
        results: list[Optional[BatchItemResult]] = [None] * total

        def run(index: int, buffer: PixelBuffer) -> BatchItemResult:
            if cancel_event.is_set():
                return BatchItemResult(index=index, source=buffer, cancelled=True)
            try:
                result = self.process(buffer, options, model=model)
            except Exception as e:
                logger.error(f"Failed to process image {index + 1}/{total}: {e}")
                return BatchItemResult(index=index, source=buffer, error=e)
            return BatchItemResult(index=index, source=buffer, result=result)

        if total == 0:
            return []

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pixelforge") as executor:
            futures = [executor.submit(run, i, b) for i, b in enumerate(buffers)]
            completed = 0
            for future in as_completed(futures):
                item = future.result()
                results[item.index] = item
                completed += 1

                if item.cancelled:
                    metrics.record_image_processed("cancelled")
                elif item.ok:
                    metrics.record_image_processed("completed", item.result.duration)
                else:
                    metrics.record_image_processed("failed")

                if progress_callback:
                    status = "cancelled" if item.cancelled else ("done" if item.ok else "failed")
                    progress_callback(completed, total, f"Image {item.index + 1} {status}")

        succeeded = sum(1 for r in results if r.ok)
        cancelled = sum(1 for r in results if r.cancelled)
        logger.info(
            f"Batch complete: {succeeded}/{total} processed, "
            f"{total - succeeded - cancelled} failed, {cancelled} cancelled"
        )
        return results
