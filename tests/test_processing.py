import threading
import time

import numpy as np
import pytest

from pixelforge.config import Settings
from pixelforge.pipeline.background import BackgroundMode, BackgroundOptions
from pixelforge.pipeline.buffer import PixelBuffer, Region
from pixelforge.pipeline.errors import InferenceFailed, InvalidScaleFactor, ModelNotReady
from pixelforge.pipeline.interpolation import InterpolationAlgorithm
from pixelforge.pipeline.processing import ProcessingOptions, ProcessingPipeline
from pixelforge.pipeline.watermark_remover import WatermarkMethod, WatermarkOptions


def _noise(width, height, seed=0):
    rng = np.random.default_rng(seed)
    return PixelBuffer.from_array(rng.integers(0, 256, (height, width, 4), dtype=np.uint8))


def _solid(width, height, color):
    return PixelBuffer.from_array(np.full((height, width, 4), color, dtype=np.uint8))


class CenterModel:
    """Keeps the central pixel; refuses 7-pixel-wide images."""

    def segment_person(self, image, config):
        if image.width == 7:
            raise RuntimeError("unsupported size")
        mask = np.zeros((image.height, image.width), dtype=np.uint8)
        mask[image.height // 2, image.width // 2] = 1
        return mask.reshape(-1)


def test_format_only_pass_is_byte_identical():
    buf = _noise(17, 11)
    result = ProcessingPipeline().process(buf, ProcessingOptions())
    assert result.buffer.tobytes() == buf.tobytes()
    assert result.buffer.pixels is not buf.pixels
    assert result.steps == []


def test_steps_run_in_order():
    buf = _solid(10, 10, (255, 0, 0, 255))
    options = ProcessingOptions(
        scale=2,
        interpolation=InterpolationAlgorithm.NEAREST,
        remove_background=True,
        background=BackgroundOptions(mode=BackgroundMode.ADVANCED, color_tolerance=10),
        remove_watermark=True,
        watermark=WatermarkOptions(method=WatermarkMethod.FREQUENCY),
    )
    result = ProcessingPipeline().process(buf, options)
    assert result.steps == ["resize", "background", "watermark"]
    assert (result.buffer.width, result.buffer.height) == (20, 20)
    assert (result.buffer.alpha == 0).all()


def test_watermark_detections_are_reported():
    buf = _solid(100, 100, (255, 255, 255, 255))
    options = ProcessingOptions(remove_watermark=True)
    result = ProcessingPipeline().process(buf, options)
    assert len(result.detections) == 5


def test_errors_propagate_from_single_image():
    with pytest.raises(InvalidScaleFactor):
        ProcessingPipeline().process(_noise(4, 4), ProcessingOptions(scale=0))
    with pytest.raises(ModelNotReady):
        ProcessingPipeline().process(_noise(4, 4), ProcessingOptions(remove_background=True))


def test_model_argument_overrides_constructor():
    options = ProcessingOptions(remove_background=True)
    result = ProcessingPipeline().process(_solid(5, 5, (1, 2, 3, 255)), options, model=CenterModel())
    assert int((result.buffer.alpha == 255).sum()) == 1
    assert result.buffer.alpha[2, 2] == 255


def test_batch_results_match_inputs():
    buffers = [_solid(5, 5, (1, 1, 1, 255)), _solid(7, 5, (2, 2, 2, 255)), _solid(9, 3, (3, 3, 3, 255))]
    progress = []
    pipeline = ProcessingPipeline(model=CenterModel())
    results = pipeline.process_batch(
        buffers,
        ProcessingOptions(remove_background=True),
        max_workers=3,
        progress_callback=lambda current, total, message: progress.append((current, total)),
    )

    assert [r.index for r in results] == [0, 1, 2]
    assert results[0].ok and results[2].ok
    assert not results[1].ok
    assert isinstance(results[1].error, InferenceFailed)
    assert results[1].buffer is buffers[1]
    assert results[2].buffer.width == 9
    assert sorted(progress) == [(1, 3), (2, 3), (3, 3)]


def test_batch_cancellation_skips_pending_images():
    cancel = threading.Event()
    cancel.set()
    buffers = [_noise(4, 4, seed=i) for i in range(4)]
    results = ProcessingPipeline().process_batch(buffers, ProcessingOptions(), cancel_event=cancel)
    assert len(results) == 4
    assert all(r.cancelled for r in results)
    assert all(r.buffer is b for r, b in zip(results, buffers))


def test_empty_batch():
    assert ProcessingPipeline().process_batch([], ProcessingOptions()) == []


def test_options_from_settings():
    settings = Settings(
        scale=2.0,
        interpolation="lanczos",
        remove_watermark=True,
        watermark_method="inpaint",
        inpaint_radius=3,
        background_mode="advanced",
        color_tolerance=12,
    )
    options = ProcessingOptions.from_settings(settings, region=Region(1, 2, 3, 4))
    assert options.scale == 2.0
    assert options.interpolation is InterpolationAlgorithm.LANCZOS
    assert options.remove_watermark
    assert options.watermark.method is WatermarkMethod.INPAINT
    assert options.watermark.inpaint_radius == 3
    assert options.watermark.region == Region(1, 2, 3, 4)
    assert options.background.mode is BackgroundMode.ADVANCED
    assert options.background.color_tolerance == 12
    assert not options.remove_background


class OverlapCountingModel:
    """Records how many segment_person calls are in flight at once."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.calls = 0
        self._counter_lock = threading.Lock()

    def segment_person(self, image, config):
        with self._counter_lock:
            self.active += 1
            self.calls += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.05)
        with self._counter_lock:
            self.active -= 1
        return np.ones(image.width * image.height, dtype=np.uint8)


class CancellingModel:
    """Sets the cancel event from inside the first call."""

    def __init__(self, cancel):
        self.cancel = cancel

    def segment_person(self, image, config):
        self.cancel.set()
        return np.ones(image.width * image.height, dtype=np.uint8)


def test_batch_serializes_calls_on_one_model_handle():
    model = OverlapCountingModel()
    buffers = [_noise(6, 6, seed=i) for i in range(4)]
    results = ProcessingPipeline(model=model).process_batch(
        buffers, ProcessingOptions(remove_background=True), max_workers=4
    )
    assert all(r.ok for r in results)
    assert model.calls == 4
    assert model.peak == 1


def test_batch_serializes_calls_with_timeout():
    model = OverlapCountingModel()
    buffers = [_noise(6, 6, seed=i) for i in range(3)]
    results = ProcessingPipeline(model=model, model_timeout=5).process_batch(
        buffers, ProcessingOptions(remove_background=True), max_workers=3
    )
    assert all(r.ok for r in results)
    assert model.peak == 1


def test_batch_cancelled_mid_run_finishes_running_image():
    cancel = threading.Event()
    buffers = [_noise(5, 5, seed=i) for i in range(4)]
    results = ProcessingPipeline(model=CancellingModel(cancel)).process_batch(
        buffers,
        ProcessingOptions(remove_background=True),
        max_workers=1,
        cancel_event=cancel,
    )
    assert results[0].ok
    assert not results[0].cancelled
    assert all(r.cancelled for r in results[1:])
    assert all(r.buffer is b for r, b in zip(results[1:], buffers[1:]))
