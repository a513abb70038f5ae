"""
Pixel Buffer

In-memory RGBA8 image representation shared by every pipeline component,
plus the rectangle types used for watermark regions.

Ownership rule: functions that take a buffer and return one never alias
the input. Functions that modify a buffer in place say so in their name
(``*_inplace``) or docstring.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image

from .errors import BufferAllocationFailed, InvalidRegion


def round_half_up(values: np.ndarray) -> np.ndarray:
    """Round halves towards +infinity (2.5 -> 3, -2.5 -> -2)."""
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


def to_uint8(values: np.ndarray) -> np.ndarray:
    """
    Store float values into 8-bit channels.

    Rounds half to even and clamps to [0, 255], which is how a clamped
    8-bit array store behaves.
    """
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def clamp_round(values: np.ndarray) -> np.ndarray:
    """Half-up rounding followed by clamping to [0, 255]."""
    return np.clip(round_half_up(values), 0, 255).astype(np.uint8)


@dataclass
class PixelBuffer:
    """
    Width x height RGBA8 pixels, row-major, no padding.

    ``pixels`` has shape (height, width, 4) and dtype uint8, so
    ``pixels.size == width * height * 4`` always holds.
    """
    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(f"Negative buffer size {self.width}x{self.height}")
        expected = (self.height, self.width, 4)
        if self.pixels.shape != expected:
            raise ValueError(f"Pixel array shape {self.pixels.shape} does not match {expected}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Pixel array must be uint8, got {self.pixels.dtype}")

    @classmethod
    def allocate(
        cls,
        width: int,
        height: int,
        max_pixels: Optional[int] = None,
    ) -> "PixelBuffer":
        """
        Allocate a transparent black buffer.

        Args:
            width: Buffer width in pixels
            height: Buffer height in pixels
            max_pixels: Optional ceiling on width * height

        Raises:
            BufferAllocationFailed: zero area, over the ceiling, or out of memory
        """
        if width <= 0 or height <= 0:
            raise BufferAllocationFailed(f"Cannot allocate a {width}x{height} buffer")
        if max_pixels is not None and width * height > max_pixels:
            raise BufferAllocationFailed(
                f"Requested {width}x{height} buffer exceeds the limit of {max_pixels} pixels"
            )
        try:
            pixels = np.zeros((height, width, 4), dtype=np.uint8)
        except MemoryError as e:
            raise BufferAllocationFailed(f"Out of memory allocating {width}x{height} buffer") from e
        return cls(width=width, height=height, pixels=pixels)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """
        Build a buffer from an (H, W, 3) RGB or (H, W, 4) RGBA uint8 array.

        The array is copied. RGB input gets a fully opaque alpha channel.
        """
        array = np.asarray(array)
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise ValueError(f"Expected (H, W, 3|4) array, got shape {array.shape}")
        h, w = array.shape[:2]
        pixels = np.empty((h, w, 4), dtype=np.uint8)
        pixels[:, :, :3] = array[:, :, :3]
        pixels[:, :, 3] = array[:, :, 3] if array.shape[2] == 4 else 255
        return cls(width=w, height=h, pixels=pixels)

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes) -> "PixelBuffer":
        """Build a buffer from raw row-major RGBA8 bytes."""
        if len(data) != width * height * 4:
            raise ValueError(f"Expected {width * height * 4} bytes, got {len(data)}")
        pixels = np.frombuffer(data, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(width=width, height=height, pixels=pixels)

    @classmethod
    def from_pil(cls, image: Image.Image) -> "PixelBuffer":
        """Convert a PIL image of any mode to an RGBA buffer."""
        return cls.from_array(np.array(image.convert("RGBA")))

    def to_pil(self) -> Image.Image:
        """Return an RGBA PIL image holding a copy of the pixels."""
        return Image.fromarray(self.pixels.copy())

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(width=self.width, height=self.height, pixels=self.pixels.copy())

    @property
    def data(self) -> np.ndarray:
        """Flat view of the pixels, length width * height * 4."""
        return self.pixels.reshape(-1)

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]

    def tobytes(self) -> bytes:
        return self.pixels.tobytes()

    def __eq__(self, other) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return (
            self.width == other.width
            and self.height == other.height
            and np.array_equal(self.pixels, other.pixels)
        )


@dataclass(frozen=True)
class Region:
    """Axis-aligned rectangle in pixel coordinates."""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    def clamp(self, width: int, height: int) -> Optional["Region"]:
        """
        Intersect with a width x height buffer.

        Returns None when nothing of the region lies inside the buffer.
        """
        x0 = max(0, self.x)
        y0 = max(0, self.y)
        x1 = min(width, self.x + self.width)
        y1 = min(height, self.y + self.height)
        if x1 <= x0 or y1 <= y0:
            return None
        return Region(x0, y0, x1 - x0, y1 - y0)

    def clamp_strict(self, width: int, height: int) -> "Region":
        """Like :meth:`clamp` but raises InvalidRegion for an empty result."""
        clamped = self.clamp(width, height)
        if clamped is None:
            raise InvalidRegion(f"{self} lies outside a {width}x{height} buffer")
        return clamped

    def intersects(self, other: "Region") -> bool:
        return (
            self.x < other.right
            and self.right > other.x
            and self.y < other.bottom
            and self.bottom > other.y
        )

    def union(self, other: "Region") -> "Region":
        x0 = min(self.x, other.x)
        y0 = min(self.y, other.y)
        x1 = max(self.right, other.right)
        y1 = max(self.bottom, other.bottom)
        return Region(x0, y0, x1 - x0, y1 - y0)

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class DetectedRegion:
    """A watermark candidate with a confidence in [0, 1]."""
    region: Region
    confidence: float

    def to_dict(self) -> dict:
        return {
            "x": self.region.x,
            "y": self.region.y,
            "width": self.region.width,
            "height": self.region.height,
            "confidence": round(self.confidence, 4),
        }
