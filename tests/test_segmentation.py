import sys
import threading
import time
from types import SimpleNamespace

import numpy as np
import pytest
from PIL import Image

from pixelforge.pipeline.buffer import PixelBuffer
from pixelforge.pipeline.errors import InferenceFailed, ModelLoadFailed, UnsupportedMethod
from pixelforge.pipeline.segmentation import (
    MediaPipeModel,
    MediaPipeSegmentationProvider,
    ModelHandle,
    RembgModel,
    RembgSegmentationProvider,
    SegmentationConfig,
    get_provider,
    load_model,
    segment_person,
)


def _image(width=8, height=6):
    return PixelBuffer.from_array(np.full((height, width, 4), 120, dtype=np.uint8))


class FullMaskModel:
    def segment_person(self, image, config):
        return np.ones(image.width * image.height, dtype=np.uint8)


class BrokenModel:
    def segment_person(self, image, config):
        raise RuntimeError("GPU on fire")


class SlowModel:
    def segment_person(self, image, config):
        time.sleep(1.0)
        return np.ones(image.width * image.height)


class ShortMaskModel:
    def segment_person(self, image, config):
        return np.ones(3)


class FailingProvider:
    def load_model(self):
        raise RuntimeError("weights missing")


class WorkingProvider:
    def load_model(self):
        return FullMaskModel()


def test_fake_model_satisfies_protocol():
    assert isinstance(FullMaskModel(), ModelHandle)


def test_load_model_wraps_failures():
    with pytest.raises(ModelLoadFailed, match="weights missing"):
        load_model(FailingProvider())
    assert isinstance(load_model(WorkingProvider()), FullMaskModel)


def test_segment_person_returns_flat_mask():
    mask = segment_person(FullMaskModel(), _image(), SegmentationConfig(), timeout=5)
    assert mask.shape == (48,)


def test_inference_errors_become_inference_failed():
    with pytest.raises(InferenceFailed):
        segment_person(BrokenModel(), _image(), SegmentationConfig())
    with pytest.raises(InferenceFailed):
        segment_person(BrokenModel(), _image(), SegmentationConfig(), timeout=5)


def test_inference_timeout():
    start = time.time()
    with pytest.raises(InferenceFailed, match="timed out"):
        segment_person(SlowModel(), _image(), SegmentationConfig(), timeout=0.05)
    assert time.time() - start < 0.9


def test_wrong_mask_size():
    with pytest.raises(InferenceFailed):
        segment_person(ShortMaskModel(), _image(), SegmentationConfig())


def test_mediapipe_missing_is_load_failure(monkeypatch):
    monkeypatch.setitem(sys.modules, "mediapipe", None)
    with pytest.raises(ModelLoadFailed, match="mediapipe"):
        load_model(MediaPipeSegmentationProvider())


class FakeSegmenter:
    """Stands in for mediapipe's SelfieSegmentation: left half is a person."""

    def __init__(self):
        self.shapes = []

    def process(self, rgb):
        self.shapes.append(rgb.shape)
        h, w = rgb.shape[:2]
        soft = np.zeros((h, w), dtype=np.float32)
        soft[:, : w // 2] = 0.9
        return SimpleNamespace(segmentation_mask=soft)


def test_mediapipe_model_thresholds_and_flips():
    segmenter = FakeSegmenter()
    model = MediaPipeModel(segmenter)
    image = _image(8, 4)

    mask = model.segment_person(image, SegmentationConfig(internal_resolution="full")).reshape(4, 8)
    assert (mask[:, :4] == 1).all() and (mask[:, 4:] == 0).all()

    flipped = model.segment_person(
        image, SegmentationConfig(internal_resolution="full", flip_horizontal=True)
    ).reshape(4, 8)
    assert (flipped[:, 4:] == 1).all() and (flipped[:, :4] == 0).all()

    strict = model.segment_person(image, SegmentationConfig(internal_resolution="full", segmentation_threshold=0.95))
    assert not strict.any()


def test_mediapipe_model_runs_at_internal_resolution():
    segmenter = FakeSegmenter()
    mask = MediaPipeModel(segmenter).segment_person(_image(40, 20), SegmentationConfig(internal_resolution="medium"))
    assert segmenter.shapes[-1][:2] == (10, 20)
    assert mask.shape == (800,)


def test_rembg_missing_is_load_failure(monkeypatch):
    monkeypatch.setitem(sys.modules, "rembg", None)
    with pytest.raises(ModelLoadFailed, match="rembg"):
        load_model(RembgSegmentationProvider())


def test_rembg_model_uses_only_mask():
    calls = []

    def fake_remove(image, session=None, only_mask=False):
        calls.append((image.size, session, only_mask))
        w, h = image.size
        mask = np.zeros((h, w), dtype=np.uint8)
        mask[:, w // 2:] = 255
        return Image.fromarray(mask)

    model = RembgModel("session", fake_remove)
    mask = model.segment_person(_image(10, 4), SegmentationConfig(internal_resolution="full")).reshape(4, 10)
    assert calls == [((10, 4), "session", True)]
    assert (mask[:, 5:] == 1).all() and (mask[:, :5] == 0).all()


def test_get_provider():
    assert isinstance(get_provider("rembg"), RembgSegmentationProvider)
    assert isinstance(get_provider("MediaPipe"), MediaPipeSegmentationProvider)
    with pytest.raises(UnsupportedMethod):
        get_provider("sam")


class CountingModel:
    def __init__(self):
        self.active = 0
        self.peak = 0

    def segment_person(self, image, config):
        self.active += 1
        self.peak = max(self.peak, self.active)
        time.sleep(0.02)
        self.active -= 1
        return np.ones(image.width * image.height)


def test_calls_on_one_handle_run_one_at_a_time():
    model = CountingModel()
    threads = [
        threading.Thread(target=segment_person, args=(model, _image(), SegmentationConfig()))
        for _ in range(4)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert model.peak == 1
