"""
Segmentation Boundary

The person-segmentation model is an external collaborator. This module
defines the handle it must expose, wraps load and inference failures in
the pipeline's error types, and puts a timeout around inference.

The caller owns the model handle's lifecycle: load it once with
:func:`load_model`, pass it to every call that needs a mask.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import cv2
import numpy as np
from PIL import Image

from .buffer import PixelBuffer
from .errors import InferenceFailed, ModelLoadFailed, UnsupportedMethod

logger = logging.getLogger(__name__)

# Fraction of the input size the model runs at
INTERNAL_RESOLUTIONS = {
    "low": 0.25,
    "medium": 0.5,
    "high": 0.75,
    "full": 1.0,
}


@dataclass(frozen=True)
class SegmentationConfig:
    """Inference settings passed to the model on every call."""
    flip_horizontal: bool = False
    internal_resolution: str = "medium"
    segmentation_threshold: float = 0.7


@runtime_checkable
class ModelHandle(Protocol):
    """A loaded segmentation model."""

    def segment_person(self, image: PixelBuffer, config: SegmentationConfig) -> np.ndarray:
        """Return width * height values, 0 for background, nonzero for person."""
        ...


class SegmentationProvider(Protocol):
    """Something that can load a segmentation model."""

    def load_model(self) -> ModelHandle:
        ...


def load_model(provider: SegmentationProvider) -> ModelHandle:
    """
    Load a model through ``provider``.

    Failures are reported as ModelLoadFailed and never retried here; retry
    policy belongs to the caller.
    """
    logger.info("Loading segmentation model...")
    try:
        model = provider.load_model()
    except ModelLoadFailed:
        raise
    except Exception as e:
        logger.error(f"Failed to load segmentation model: {e}")
        raise ModelLoadFailed(str(e)) from e
    logger.info("Segmentation model loaded successfully")
    return model


_handle_locks: dict[int, threading.Lock] = {}
_handle_locks_guard = threading.Lock()


def _inference_lock(model: ModelHandle) -> threading.Lock:
    with _handle_locks_guard:
        return _handle_locks.setdefault(id(model), threading.Lock())


def segment_person(
    model: ModelHandle,
    image: PixelBuffer,
    config: SegmentationConfig,
    timeout: Optional[float] = None,
) -> np.ndarray:
    """
    Run one segmentation call.

    Calls on the same handle run one at a time; loaded graphs such as
    MediaPipe's are not thread-safe. A timed-out call keeps the handle
    until it actually returns, and time spent waiting for the handle
    counts against ``timeout``.

    Args:
        model: Loaded model handle
        image: Input image
        config: Inference settings
        timeout: Seconds to wait before giving up, None waits forever

    Returns:
        Flat mask with width * height entries

    Raises:
        InferenceFailed: the model raised, timed out or returned a mask of
            the wrong size
    """
    lock = _inference_lock(model)

    def run():
        with lock:
            return model.segment_person(image, config)

    if timeout is None:
        try:
            mask = run()
        except Exception as e:
            raise InferenceFailed(f"Segmentation failed: {e}") from e
    else:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="segmentation")
        future = executor.submit(run)
        try:
            mask = future.result(timeout=timeout)
        except FutureTimeout:
            raise InferenceFailed(f"Segmentation timed out after {timeout}s") from None
        except Exception as e:
            raise InferenceFailed(f"Segmentation failed: {e}") from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    mask = np.asarray(mask).reshape(-1)
    expected = image.width * image.height
    if mask.size != expected:
        raise InferenceFailed(f"Model returned {mask.size} mask values, expected {expected}")
    return mask


class MediaPipeModel:
    """Model handle around MediaPipe Selfie Segmentation."""

    def __init__(self, segmenter):
        self._segmenter = segmenter

    def segment_person(self, image: PixelBuffer, config: SegmentationConfig) -> np.ndarray:
        rgb = np.ascontiguousarray(image.rgb)
        h, w = rgb.shape[:2]

        scale = INTERNAL_RESOLUTIONS.get(config.internal_resolution, INTERNAL_RESOLUTIONS["medium"])
        if scale < 1.0:
            small = (max(1, int(w * scale)), max(1, int(h * scale)))
            rgb = cv2.resize(rgb, small, interpolation=cv2.INTER_AREA)

        soft = self._segmenter.process(rgb).segmentation_mask.astype("float32")
        if soft.shape != (h, w):
            soft = cv2.resize(soft, (w, h), interpolation=cv2.INTER_LINEAR)

        mask = (soft > config.segmentation_threshold).astype(np.uint8)
        if config.flip_horizontal:
            mask = mask[:, ::-1]
        return mask.reshape(-1)

    def close(self):
        self._segmenter.close()


class MediaPipeSegmentationProvider:
    """
    Loads MediaPipe Selfie Segmentation.

    MediaPipe is an optional dependency (``pip install pixelforge[segmentation]``).
    """

    def __init__(self, model_selection: int = 1):
        # model_selection=1 -> landscape model
        self.model_selection = model_selection

    def load_model(self) -> MediaPipeModel:
        try:
            import mediapipe as mp
        except ImportError as e:
            raise ModelLoadFailed(
                "mediapipe not installed. Install with: pip install pixelforge[segmentation]"
            ) from e

        segmenter = mp.solutions.selfie_segmentation.SelfieSegmentation(
            model_selection=self.model_selection
        )
        return MediaPipeModel(segmenter)


class RembgModel:
    """Model handle around a rembg session (U2-Net human segmentation)."""

    def __init__(self, session, remove_fn):
        self._session = session
        self._remove = remove_fn

    def segment_person(self, image: PixelBuffer, config: SegmentationConfig) -> np.ndarray:
        pil_img = image.to_pil().convert("RGB")
        w, h = pil_img.size

        scale = INTERNAL_RESOLUTIONS.get(config.internal_resolution, INTERNAL_RESOLUTIONS["medium"])
        if scale < 1.0:
            pil_img = pil_img.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.Resampling.BILINEAR)

        mask_img = self._remove(pil_img, session=self._session, only_mask=True)
        if mask_img.size != (w, h):
            mask_img = mask_img.resize((w, h), Image.Resampling.BILINEAR)

        soft = np.asarray(mask_img.convert("L"), dtype=np.float32) / 255.0
        mask = (soft > config.segmentation_threshold).astype(np.uint8)
        if config.flip_horizontal:
            mask = mask[:, ::-1]
        return mask.reshape(-1)


class RembgSegmentationProvider:
    """
    Loads a rembg session.

    rembg is an optional dependency (``pip install pixelforge[rembg]``).
    """

    def __init__(self, model_name: str = "u2net_human_seg"):
        self.model_name = model_name

    def load_model(self) -> RembgModel:
        try:
            from rembg import new_session, remove
        except ImportError as e:
            raise ModelLoadFailed(
                "rembg not installed. Install with: pip install pixelforge[rembg]"
            ) from e

        return RembgModel(new_session(self.model_name), remove)


PROVIDERS = {
    "rembg": RembgSegmentationProvider,
    "mediapipe": MediaPipeSegmentationProvider,
}


def get_provider(name: str) -> SegmentationProvider:
    """Provider instance by name (rembg or mediapipe)."""
    try:
        return PROVIDERS[name.lower()]()
    except KeyError:
        raise UnsupportedMethod(f"Unknown segmentation provider: {name!r}") from None
