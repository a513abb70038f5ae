"""
Background Remover

Two ways of clearing the background of an image:

- Mask-based: apply a person-segmentation mask from an external model
- Heuristic ("advanced"): border color sampling + Sobel edges + color
  distance threshold, with optional alpha smoothing
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import cv2
import numpy as np
from scipy.ndimage import correlate1d

from .buffer import PixelBuffer, to_uint8
from .edges import detect_edges
from .errors import ModelNotReady, UnsupportedMethod
from .segmentation import ModelHandle, SegmentationConfig, segment_person

logger = logging.getLogger(__name__)

RGB = tuple[int, int, int]

_HEX_COLOR = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)

# Bucket width used when quantizing sampled border colors
COLOR_BUCKET_SIZE = 32

DEFAULT_FALLBACK_COLOR: RGB = (255, 255, 255)


class BackgroundMode(Enum):
    """Background removal strategy."""
    AI = "ai"                # Segmentation mask from an external model
    ADVANCED = "advanced"    # Color/edge heuristic

    @classmethod
    def parse(cls, value: Union[str, "BackgroundMode"]) -> "BackgroundMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedMethod(f"Unknown background removal mode: {value!r}") from None


@dataclass(frozen=True)
class BackgroundOptions:
    """Per-call background removal settings."""
    mode: BackgroundMode = BackgroundMode.AI

    # Heuristic mode
    color_tolerance: float = 30
    edge_threshold: float = 50
    smoothing: int = 1
    background_color: Union[str, RGB] = "auto"  # "auto", "#rrggbb" or (r, g, b)

    # Mask mode
    segmentation_threshold: float = 0.7
    mask_blur: float = 0
    edge_blur: float = 0
    flip_horizontal: bool = False
    internal_resolution: str = "medium"

    def segmentation_config(self) -> SegmentationConfig:
        return SegmentationConfig(
            flip_horizontal=self.flip_horizontal,
            internal_resolution=self.internal_resolution,
            segmentation_threshold=self.segmentation_threshold,
        )


def hex_to_rgb(value: str) -> Optional[RGB]:
    """Parse ``#rrggbb`` (the ``#`` is optional). Returns None if malformed."""
    match = _HEX_COLOR.match(value.strip())
    if not match:
        return None
    return tuple(int(part, 16) for part in match.groups())


def detect_background_color(buffer: PixelBuffer) -> RGB:
    """
    Estimate the background color from the image border.

    Samples the top and bottom rows every width/10 pixels and the left and
    right columns every height/10 pixels, buckets each sample into
    32-level-per-channel bins and returns the first sample of the most
    frequent bin. Ties go to the bin seen first. An empty image has no
    border and gets white.
    """
    w, h = buffer.width, buffer.height
    if w == 0 or h == 0:
        return DEFAULT_FALLBACK_COLOR
    px = buffer.pixels
    samples: list[RGB] = []

    step_x = max(1, w // 10)
    for x in range(0, w, step_x):
        samples.append(tuple(int(c) for c in px[0, x, :3]))
        samples.append(tuple(int(c) for c in px[h - 1, x, :3]))

    step_y = max(1, h // 10)
    for y in range(0, h, step_y):
        samples.append(tuple(int(c) for c in px[y, 0, :3]))
        samples.append(tuple(int(c) for c in px[y, w - 1, :3]))

    # dicts keep insertion order, so the first bucket wins ties
    buckets: dict[RGB, list] = {}
    for color in samples:
        key = tuple(c // COLOR_BUCKET_SIZE for c in color)
        if key in buckets:
            buckets[key][0] += 1
        else:
            buckets[key] = [1, color]

    best = samples[0]
    best_count = 0
    for count, color in buckets.values():
        if count > best_count:
            best_count = count
            best = color
    return best


def smooth_alpha_inplace(buffer: PixelBuffer, radius: int) -> None:
    """
    Box-average the alpha channel in place.

    Pixels outside the image are excluded from each average, so border
    pixels average over fewer neighbours.
    """
    if radius < 1:
        return
    h, w = buffer.height, buffer.width
    window = np.ones(2 * radius + 1, dtype=np.int64)

    alpha = buffer.alpha.astype(np.int64)
    sums = correlate1d(alpha, window, axis=0, mode="constant", cval=0)
    sums = correlate1d(sums, window, axis=1, mode="constant", cval=0)

    ys = np.arange(h)
    xs = np.arange(w)
    rows = np.minimum(ys + radius, h - 1) - np.maximum(ys - radius, 0) + 1
    cols = np.minimum(xs + radius, w - 1) - np.maximum(xs - radius, 0) + 1
    counts = rows[:, None] * cols[None, :]

    buffer.pixels[:, :, 3] = to_uint8(sums / counts)


def _resolve_color(value: Union[str, RGB], buffer: PixelBuffer) -> RGB:
    if isinstance(value, str):
        if value.lower() == "auto":
            color = detect_background_color(buffer)
            logger.debug(f"Auto-detected background color: {color}")
            return color
        parsed = hex_to_rgb(value)
        if parsed is None:
            logger.warning(f"Invalid background color {value!r}, using white")
            return DEFAULT_FALLBACK_COLOR
        return parsed
    return tuple(int(c) for c in value)


def remove_background_heuristic(
    buffer: PixelBuffer,
    options: Optional[BackgroundOptions] = None,
) -> PixelBuffer:
    """
    Clear pixels close to the background color that are not on an edge.

    Args:
        buffer: Source image, left untouched
        options: Tolerance, edge threshold, smoothing and fixed color

    Returns:
        New buffer with background alpha set to 0
    """
    options = options or BackgroundOptions(mode=BackgroundMode.ADVANCED)
    result = buffer.copy()

    bg = np.array(_resolve_color(options.background_color, buffer), dtype=np.float64)
    edges = detect_edges(buffer, options.edge_threshold)

    diff = buffer.rgb.astype(np.float64) - bg
    distance = np.sqrt(diff[:, :, 0] ** 2 + diff[:, :, 1] ** 2 + diff[:, :, 2] ** 2)
    background = (distance < options.color_tolerance) & ~edges
    result.pixels[:, :, 3][background] = 0

    logger.debug(
        f"Heuristic removal cleared {int(background.sum())}/{buffer.width * buffer.height} pixels"
    )

    if options.smoothing > 1:
        smooth_alpha_inplace(result, int(options.smoothing))

    return result


def apply_segmentation_mask(
    buffer: PixelBuffer,
    mask: np.ndarray,
    blur_radius: float = 0,
) -> PixelBuffer:
    """
    Make every background pixel (mask value 0) fully transparent.

    Args:
        buffer: Source image, left untouched
        mask: width * height values, 0 = background, nonzero = foreground.
            Read only.
        blur_radius: Gaussian sigma applied to the alpha channel afterwards
            to soften the cutout edge, 0 disables it

    Returns:
        New buffer with the mask applied
    """
    mask = np.asarray(mask)
    if mask.size != buffer.width * buffer.height:
        raise ValueError(
            f"Mask has {mask.size} values, expected {buffer.width * buffer.height}"
        )
    result = buffer.copy()
    background = mask.reshape(buffer.height, buffer.width) == 0
    result.pixels[:, :, 3][background] = 0

    if blur_radius > 0:
        alpha = np.ascontiguousarray(result.pixels[:, :, 3])
        result.pixels[:, :, 3] = cv2.GaussianBlur(alpha, (0, 0), sigmaX=blur_radius, sigmaY=blur_radius)

    return result


class BackgroundRemover:
    """Dispatches background removal to the mask-based or heuristic variant."""

    def __init__(self, model: Optional[ModelHandle] = None, model_timeout: Optional[float] = None):
        """
        Args:
            model: Loaded segmentation model, required for AI mode
            model_timeout: Seconds to wait for one segmentation call
        """
        self.model = model
        self.model_timeout = model_timeout

    def remove(self, buffer: PixelBuffer, options: BackgroundOptions) -> PixelBuffer:
        """
        Remove the background according to ``options.mode``.

        Raises:
            ModelNotReady: AI mode without a model handle
            InferenceFailed: the segmentation call failed or timed out
        """
        if options.mode is BackgroundMode.ADVANCED:
            return remove_background_heuristic(buffer, options)
        return self.remove_with_model(buffer, options)

    def remove_with_model(self, buffer: PixelBuffer, options: BackgroundOptions) -> PixelBuffer:
        if self.model is None:
            raise ModelNotReady("Segmentation model not loaded. Call load_model() first.")

        mask = segment_person(
            self.model,
            buffer,
            options.segmentation_config(),
            timeout=self.model_timeout,
        )
        blur = max(options.mask_blur, options.edge_blur)
        return apply_segmentation_mask(buffer, mask, blur_radius=blur)
