"""
Upscaler

Resize a PixelBuffer by a scale factor. Nearest and bilinear go through
Pillow's resampler; bicubic and Lanczos run the explicit per-pixel kernels
from the interpolation module.
"""

import logging
import math
from typing import Optional, Union

import numpy as np
from PIL import Image

from .buffer import PixelBuffer
from .errors import InvalidScaleFactor
from .interpolation import InterpolationAlgorithm, sample_bicubic, sample_lanczos

logger = logging.getLogger(__name__)

_PIL_FILTERS = {
    InterpolationAlgorithm.NEAREST: Image.Resampling.NEAREST,
    InterpolationAlgorithm.BILINEAR: Image.Resampling.BILINEAR,
}

_KERNELS = {
    InterpolationAlgorithm.BICUBIC: sample_bicubic,
    InterpolationAlgorithm.LANCZOS: sample_lanczos,
}


def target_size(width: int, height: int, factor: float) -> tuple[int, int]:
    """floor(width * factor) x floor(height * factor)."""
    return math.floor(width * factor), math.floor(height * factor)


class Upscaler:
    """
    Resizes images with a selectable interpolation algorithm.

    Factors below 1 downscale with the same algorithm family.
    """

    # Output rows sampled per kernel pass, bounds temporary memory
    ROWS_PER_CHUNK = 128

    def __init__(self, max_output_pixels: Optional[int] = None):
        """
        Args:
            max_output_pixels: Refuse outputs larger than this many pixels
        """
        self.max_output_pixels = max_output_pixels

    def upscale(
        self,
        buffer: PixelBuffer,
        factor: float,
        algorithm: Union[str, InterpolationAlgorithm] = InterpolationAlgorithm.BICUBIC,
    ) -> PixelBuffer:
        """
        Resize ``buffer`` by ``factor``.

        Args:
            buffer: Source image, left untouched
            factor: Scale factor, must be > 0
            algorithm: nearest, bilinear, bicubic or lanczos

        Returns:
            New buffer of size floor(width * factor) x floor(height * factor)

        Raises:
            InvalidScaleFactor: factor <= 0 or not finite
            UnsupportedMethod: unknown algorithm
            BufferAllocationFailed: output would be empty or too large
        """
        if not isinstance(factor, (int, float)) or not math.isfinite(factor) or factor <= 0:
            raise InvalidScaleFactor(f"Scale factor must be a positive number, got {factor!r}")
        algorithm = InterpolationAlgorithm.parse(algorithm)

        new_width, new_height = target_size(buffer.width, buffer.height, factor)
        target = PixelBuffer.allocate(new_width, new_height, self.max_output_pixels)

        logger.debug(
            f"Resizing {buffer.width}x{buffer.height} -> {new_width}x{new_height} "
            f"({algorithm.value}, factor={factor})"
        )

        if algorithm in _PIL_FILTERS:
            resized = buffer.to_pil().resize((new_width, new_height), _PIL_FILTERS[algorithm])
            target.pixels[:] = np.asarray(resized)
            return target

        kernel = _KERNELS[algorithm]
        xs = np.arange(new_width, dtype=np.float64) / new_width * buffer.width
        for row0 in range(0, new_height, self.ROWS_PER_CHUNK):
            row1 = min(new_height, row0 + self.ROWS_PER_CHUNK)
            ys = np.arange(row0, row1, dtype=np.float64) / new_height * buffer.height
            grid_x, grid_y = np.meshgrid(xs, ys)
            target.pixels[row0:row1] = kernel(buffer, grid_x, grid_y)

        return target


def upscale_image(
    buffer: PixelBuffer,
    factor: float,
    algorithm: Union[str, InterpolationAlgorithm] = InterpolationAlgorithm.BICUBIC,
    max_output_pixels: Optional[int] = None,
) -> PixelBuffer:
    """Convenience wrapper around :meth:`Upscaler.upscale`."""
    return Upscaler(max_output_pixels=max_output_pixels).upscale(buffer, factor, algorithm)
