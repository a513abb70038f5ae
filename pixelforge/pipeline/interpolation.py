"""
Interpolators

Pixel-sampling functions used by the upscaler. Every sampler takes a
source buffer and fractional source coordinates and returns RGBA samples.

Coordinates outside [0, width-1] x [0, height-1] replicate the nearest
border pixel for all algorithms.
"""

from enum import Enum
from typing import Union

import numpy as np
from scipy.ndimage import map_coordinates

from .buffer import PixelBuffer, clamp_round
from .errors import UnsupportedMethod

ArrayLike = Union[float, np.ndarray]

LANCZOS_RADIUS = 2


class InterpolationAlgorithm(Enum):
    """Resampling algorithms understood by the upscaler."""
    NEAREST = "nearest"
    BILINEAR = "bilinear"
    BICUBIC = "bicubic"
    LANCZOS = "lanczos"

    @classmethod
    def parse(cls, value: Union[str, "InterpolationAlgorithm"]) -> "InterpolationAlgorithm":
        """Resolve a config string or enum member, raising UnsupportedMethod."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedMethod(f"Unknown interpolation algorithm: {value!r}") from None


def cubic_weight(t: ArrayLike) -> ArrayLike:
    """
    Piecewise cubic kernel (a = -0.5).

    |t| <= 1:      1.5|t|^3 - 2.5t^2 + 1
    1 < |t| <= 2:  -0.5|t|^3 + 2.5t^2 - 4|t| + 2
    otherwise:     0
    """
    abs_t = np.abs(np.asarray(t, dtype=np.float64))
    near = 1.5 * abs_t * abs_t * abs_t - 2.5 * abs_t * abs_t + 1
    far = -0.5 * abs_t * abs_t * abs_t + 2.5 * abs_t * abs_t - 4 * abs_t + 2
    weight = np.where(abs_t <= 1, near, np.where(abs_t <= 2, far, 0.0))
    return float(weight) if weight.ndim == 0 else weight


def lanczos_weight(t: ArrayLike, radius: int = LANCZOS_RADIUS) -> ArrayLike:
    """
    Windowed sinc: ``radius * sin(pi t) * sin(pi t / radius) / (pi t)^2``.

    Exactly 1 at t == 0 and 0 for |t| >= radius.
    """
    t = np.asarray(t, dtype=np.float64)
    pi_t = np.pi * t
    with np.errstate(divide="ignore", invalid="ignore"):
        weight = (radius * np.sin(pi_t) * np.sin(pi_t / radius)) / (pi_t * pi_t)
    weight = np.where(np.abs(t) >= radius, 0.0, weight)
    weight = np.where(t == 0, 1.0, weight)
    return float(weight) if weight.ndim == 0 else weight


def _prepare(xs: ArrayLike, ys: ArrayLike) -> tuple[np.ndarray, np.ndarray, bool]:
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    scalar = xs.ndim == 0 and ys.ndim == 0
    xs, ys = np.broadcast_arrays(np.atleast_1d(xs), np.atleast_1d(ys))
    return xs, ys, scalar


def _finish(acc: np.ndarray, scalar: bool) -> np.ndarray:
    result = clamp_round(acc)
    return result[0] if scalar else result


def sample_bicubic(buffer: PixelBuffer, xs: ArrayLike, ys: ArrayLike) -> np.ndarray:
    """
    Bicubic sample over the 4x4 neighbourhood of each coordinate.

    Args:
        buffer: Source image
        xs: Fractional x coordinates (scalar or array)
        ys: Fractional y coordinates, broadcastable against ``xs``

    Returns:
        uint8 RGBA samples with shape ``xs.shape + (4,)``, or shape (4,)
        for scalar input
    """
    xs, ys, scalar = _prepare(xs, ys)
    # uint8 neighbours promote to float64 when weighted, no full-image copy
    src = buffer.pixels
    max_x, max_y = buffer.width - 1, buffer.height - 1

    x1 = np.floor(xs)
    y1 = np.floor(ys)
    dx = xs - x1
    dy = ys - y1
    x1 = x1.astype(np.int64)
    y1 = y1.astype(np.int64)

    acc = np.zeros(xs.shape + (4,), dtype=np.float64)
    for j in range(-1, 3):
        py = np.clip(y1 + j, 0, max_y)
        wy = cubic_weight(dy - j)
        for i in range(-1, 3):
            px = np.clip(x1 + i, 0, max_x)
            weight = cubic_weight(dx - i) * wy
            acc += src[py, px] * weight[..., None]

    return _finish(acc, scalar)


def sample_lanczos(buffer: PixelBuffer, xs: ArrayLike, ys: ArrayLike) -> np.ndarray:
    """
    Lanczos (radius 2) sample over the 5x5 neighbourhood of each coordinate.

    The weighted sum is divided by the sum of the applied weights.
    """
    xs, ys, scalar = _prepare(xs, ys)
    src = buffer.pixels
    max_x, max_y = buffer.width - 1, buffer.height - 1
    radius = LANCZOS_RADIUS

    x1 = np.floor(xs).astype(np.int64)
    y1 = np.floor(ys).astype(np.int64)

    acc = np.zeros(xs.shape + (4,), dtype=np.float64)
    weight_sum = np.zeros(xs.shape, dtype=np.float64)
    for j in range(-radius, radius + 1):
        py = np.clip(y1 + j, 0, max_y)
        wy = lanczos_weight(ys - (y1 + j), radius)
        for i in range(-radius, radius + 1):
            px = np.clip(x1 + i, 0, max_x)
            weight = lanczos_weight(xs - (x1 + i), radius) * wy
            acc += src[py, px] * weight[..., None]
            weight_sum += weight

    positive = weight_sum > 0
    acc[positive] /= weight_sum[positive][:, None]
    return _finish(acc, scalar)


def _sample_spline(buffer: PixelBuffer, xs: ArrayLike, ys: ArrayLike, order: int) -> np.ndarray:
    xs, ys, scalar = _prepare(xs, ys)
    coords = np.stack([ys.ravel(), xs.ravel()])
    acc = np.empty(xs.shape + (4,), dtype=np.float64)
    for c in range(4):
        channel = buffer.pixels[:, :, c].astype(np.float64)
        sampled = map_coordinates(channel, coords, order=order, mode="nearest")
        acc[..., c] = sampled.reshape(xs.shape)
    return _finish(acc, scalar)


def sample_nearest(buffer: PixelBuffer, xs: ArrayLike, ys: ArrayLike) -> np.ndarray:
    """Nearest-neighbour sample (no smoothing)."""
    return _sample_spline(buffer, xs, ys, order=0)


def sample_bilinear(buffer: PixelBuffer, xs: ArrayLike, ys: ArrayLike) -> np.ndarray:
    """Bilinear sample (smoothing enabled)."""
    return _sample_spline(buffer, xs, ys, order=1)


SAMPLERS = {
    InterpolationAlgorithm.NEAREST: sample_nearest,
    InterpolationAlgorithm.BILINEAR: sample_bilinear,
    InterpolationAlgorithm.BICUBIC: sample_bicubic,
    InterpolationAlgorithm.LANCZOS: sample_lanczos,
}


def sample(
    buffer: PixelBuffer,
    xs: ArrayLike,
    ys: ArrayLike,
    algorithm: Union[str, InterpolationAlgorithm] = InterpolationAlgorithm.BICUBIC,
) -> np.ndarray:
    """Sample ``buffer`` at fractional coordinates with the chosen algorithm."""
    return SAMPLERS[InterpolationAlgorithm.parse(algorithm)](buffer, xs, ys)
