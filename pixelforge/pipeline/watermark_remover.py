"""
Watermark Remover

Removes watermarks from a region (given manually or found by the
detector) with one of five strategies:

- blur: content-aware Gaussian blur that leaves edges alone
- inpaint: iterative texture-aware fill from surrounding pixels
- clone: copy a same-sized patch from beside the region
- frequency: 3x3 high-pass filter over the whole image
- ai: not backed by a model yet, runs the inpaint strategy
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

import numpy as np
from scipy.ndimage import binary_dilation, correlate

from .buffer import DetectedRegion, PixelBuffer, Region, round_half_up, to_uint8
from .edges import forward_gradient_magnitude, gray_levels, local_edge_mask
from .errors import InvalidRegion, UnsupportedMethod
from .watermark_detector import WatermarkDetector

logger = logging.getLogger(__name__)

HIGH_PASS_KERNEL = np.array([
    [-1, -1, -1],
    [-1, 8, -1],
    [-1, -1, -1],
], dtype=np.int64)

# Gap between the watermark and the patch cloned over it
CLONE_GAP = 10

# Fill value when an inpainted pixel has no usable neighbours
INPAINT_FALLBACK = 128

# Gradient magnitude above which a texture sample counts as an edge
TEXTURE_EDGE_THRESHOLD = 10


class WatermarkMethod(Enum):
    """Watermark removal strategy."""
    BLUR = "blur"
    INPAINT = "inpaint"
    CLONE = "clone"
    FREQUENCY = "frequency"
    AI = "ai"  # Alias for INPAINT until a removal model exists

    @classmethod
    def parse(cls, value: Union[str, "WatermarkMethod"]) -> "WatermarkMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedMethod(f"Unknown watermark removal method: {value!r}") from None


@dataclass(frozen=True)
class WatermarkOptions:
    """Per-call watermark removal settings."""
    method: WatermarkMethod = WatermarkMethod.BLUR
    region: Optional[Region] = None  # Manual region, wins over auto_detect
    auto_detect: bool = True
    blur_intensity: float = 10
    inpaint_radius: int = 5
    iterations: int = 3
    dilate_mask: bool = False  # Grow the inpaint mask by inpaint_radius


@dataclass
class WatermarkResult:
    """Result of watermark removal processing."""
    buffer: PixelBuffer
    method: WatermarkMethod
    regions: list[Region] = field(default_factory=list)  # Regions actually processed
    detections: list[DetectedRegion] = field(default_factory=list)
    failed_regions: list[Region] = field(default_factory=list)


def content_aware_blur_inplace(buffer: PixelBuffer, region: Region, intensity: float) -> None:
    """
    Gaussian-blur the non-edge pixels of ``region`` in place.

    The blur only reads pixels inside the region. Edge pixels (8-neighbour
    brightness jump above 30, or on the region boundary) pass through.
    Alpha is never changed.

    Raises:
        InvalidRegion: region lies outside the buffer
    """
    region = region.clamp_strict(buffer.width, buffer.height)
    block = buffer.pixels[region.y:region.bottom, region.x:region.right]
    h, w = block.shape[:2]

    edges = local_edge_mask(block)
    radius = max(1, math.floor(intensity / 3))
    src = block[:, :, :3].astype(np.float64)

    acc = np.zeros((h, w, 3), dtype=np.float64)
    total = np.zeros((h, w), dtype=np.float64)
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            distance = math.sqrt(dx * dx + dy * dy)
            weight = math.exp(-(distance * distance) / (2 * radius * radius))
            ty0, ty1 = max(0, -dy), min(h, h - dy)
            tx0, tx1 = max(0, -dx), min(w, w - dx)
            if ty1 <= ty0 or tx1 <= tx0:
                continue
            acc[ty0:ty1, tx0:tx1] += src[ty0 + dy:ty1 + dy, tx0 + dx:tx1 + dx] * weight
            total[ty0:ty1, tx0:tx1] += weight

    blurred = to_uint8(acc / total[:, :, None])
    smooth = ~edges
    block[:, :, :3][smooth] = blurred[smooth]


def texture_similarity(gray: np.ndarray) -> np.ndarray:
    """
    Per-pixel texture score, higher for flat, edge-free neighbourhoods.

    Over the 5x5 window around each pixel: ``exp(-avg / 50) *
    (1 - 0.5 * edge_ratio) + 0.1`` where ``avg`` is the summed forward
    gradient magnitude / 25 and ``edge_ratio`` the share of magnitudes
    above 10.
    """
    h, w = gray.shape
    magnitude, valid = forward_gradient_magnitude(gray)
    strong = ((magnitude > TEXTURE_EDGE_THRESHOLD) & valid).astype(np.float64)

    padded_mag = np.pad(magnitude, 2)
    padded_strong = np.pad(strong, 2)
    total = np.zeros((h, w), dtype=np.float64)
    edge_count = np.zeros((h, w), dtype=np.float64)
    for dy in range(-2, 3):
        for dx in range(-2, 3):
            total += padded_mag[2 + dy:2 + dy + h, 2 + dx:2 + dx + w]
            edge_count += padded_strong[2 + dy:2 + dy + h, 2 + dx:2 + dx + w]

    average = total / 25
    edge_ratio = edge_count / 25
    return np.exp(-average / 50) * (1 - edge_ratio * 0.5) + 0.1


def inpaint_inplace(
    buffer: PixelBuffer,
    region: Region,
    radius: int = 5,
    iterations: int = 3,
    dilate: bool = False,
) -> None:
    """
    Fill ``region`` in place from its unmasked surroundings.

    Each pass replaces every masked pixel's RGB with the average of the
    unmasked pixels within ``radius``, weighted by ``1 / (1 + distance)``
    times the neighbour's texture similarity. Passes read the previous
    pass's complete output. Pixels with no usable neighbour become mid
    gray. Alpha is never changed.

    Raises:
        InvalidRegion: region lies outside the buffer
    """
    region = region.clamp_strict(buffer.width, buffer.height)
    h, w = buffer.height, buffer.width
    radius = int(radius)

    mask = np.zeros((h, w), dtype=bool)
    mask[region.y:region.bottom, region.x:region.right] = True
    if dilate and radius > 0:
        mask = binary_dilation(mask, structure=np.ones((2 * radius + 1, 2 * radius + 1), dtype=bool))

    ys, xs = np.nonzero(mask)
    offsets = []
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            distance = math.sqrt(dx * dx + dy * dy)
            if 0 < distance <= radius:
                offsets.append((dx, dy, 1 / (1 + distance)))

    result = buffer.pixels.copy()
    for iteration in range(iterations):
        similarity = texture_similarity(gray_levels(result))
        src = result[:, :, :3].astype(np.float64)

        acc = np.zeros((len(ys), 3), dtype=np.float64)
        total = np.zeros(len(ys), dtype=np.float64)
        for dx, dy, distance_weight in offsets:
            ny = ys + dy
            nx = xs + dx
            inside = (ny >= 0) & (ny < h) & (nx >= 0) & (nx < w)
            ny = np.clip(ny, 0, h - 1)
            nx = np.clip(nx, 0, w - 1)
            usable = inside & ~mask[ny, nx]
            weight = np.where(usable, distance_weight * similarity[ny, nx], 0.0)
            acc += src[ny, nx] * weight[:, None]
            total += weight

        filled = np.full((len(ys), 3), INPAINT_FALLBACK, dtype=np.float64)
        has_neighbours = total > 0
        filled[has_neighbours] = round_half_up(acc[has_neighbours] / total[has_neighbours][:, None])

        updated = result.copy()
        updated[ys, xs, :3] = np.clip(filled, 0, 255).astype(np.uint8)
        result = updated
        logger.debug(f"Inpainting pass {iteration + 1}/{iterations}: {len(ys)} pixels")

    buffer.pixels[ys, xs, :3] = result[ys, xs, :3]


def _donor_offset(start: int, size: int, limit: int) -> Optional[int]:
    """Origin of a same-sized donor strip on the roomier side, or None."""
    room_before = start
    room_after = limit - (start + size)
    if room_before > room_after:
        donor = start - size - CLONE_GAP
    else:
        donor = start + size + CLONE_GAP
    if donor >= 0 and donor + size <= limit:
        return donor
    return None


def clone_region_inplace(buffer: PixelBuffer, region: Region) -> bool:
    """
    Copy a same-sized patch over ``region`` in place.

    The donor sits 10px above or below the region (whichever side has more
    room), or failing that 10px left or right.

    Returns:
        False when no donor fits inside the buffer; nothing is changed then

    Raises:
        InvalidRegion: region lies outside the buffer
    """
    region = region.clamp_strict(buffer.width, buffer.height)
    x, y, w, h = region.as_tuple()

    donor_y = _donor_offset(y, h, buffer.height)
    if donor_y is not None:
        patch = buffer.pixels[donor_y:donor_y + h, x:x + w].copy()
    else:
        donor_x = _donor_offset(x, w, buffer.width)
        if donor_x is None:
            logger.debug(f"No donor patch fits around {region}, leaving it unchanged")
            return False
        patch = buffer.pixels[y:y + h, donor_x:donor_x + w].copy()

    buffer.pixels[y:y + h, x:x + w] = patch
    return True


def high_pass_filter(buffer: PixelBuffer) -> PixelBuffer:
    """
    Apply the 3x3 high-pass kernel to the RGB channels of the whole image.

    Each filtered value is offset by 128 and clamped to [0, 255]. Alpha and
    the 1-pixel border are copied unchanged.

    Returns:
        New filtered buffer
    """
    result = buffer.copy()
    if buffer.width < 3 or buffer.height < 3:
        return result

    for c in range(3):
        channel = buffer.pixels[:, :, c].astype(np.int64)
        filtered = correlate(channel, HIGH_PASS_KERNEL, mode="constant", cval=0)
        result.pixels[1:-1, 1:-1, c] = np.clip(filtered[1:-1, 1:-1] + 128, 0, 255).astype(np.uint8)
    return result


class WatermarkRemover:
    """
    Removes watermarks with the strategy chosen in WatermarkOptions.

    Target regions are the manual region when one is given, otherwise the
    detector's regions when auto-detect is on, otherwise nothing. A region
    that fails is logged and skipped; the remaining regions still run.
    """

    def __init__(self, detector: Optional[WatermarkDetector] = None):
        self._detector = detector or WatermarkDetector()
        self._strategies: dict[WatermarkMethod, Callable[[PixelBuffer, Region, WatermarkOptions], None]] = {
            WatermarkMethod.BLUR: self._blur,
            WatermarkMethod.INPAINT: self._inpaint,
            WatermarkMethod.CLONE: self._clone,
            WatermarkMethod.AI: self._ai,
        }

    def detect(self, buffer: PixelBuffer) -> list[DetectedRegion]:
        """Read-only detection, for confirming regions before removal."""
        return self._detector.detect(buffer)

    def remove(self, buffer: PixelBuffer, options: Optional[WatermarkOptions] = None) -> WatermarkResult:
        """
        Remove watermarks from a copy of ``buffer``.

        Args:
            buffer: Source image, left untouched
            options: Method, target region and strategy parameters

        Returns:
            WatermarkResult with the cleaned buffer and the regions touched

        Raises:
            UnsupportedMethod: unknown method
        """
        options = options or WatermarkOptions()
        method = WatermarkMethod.parse(options.method)

        if method is WatermarkMethod.FREQUENCY:
            logger.info("Applying high-pass filter to the whole image")
            return WatermarkResult(buffer=high_pass_filter(buffer), method=method)

        result = WatermarkResult(buffer=buffer.copy(), method=method)
        regions = self._target_regions(buffer, options, result)
        strategy = self._strategies[method]

        for region in regions:
            try:
                strategy(result.buffer, region, options)
                result.regions.append(region)
            except InvalidRegion as e:
                logger.debug(f"Skipping region: {e}")
            except Exception as e:
                logger.error(f"Failed to process watermark region {region}: {e}")
                result.failed_regions.append(region)

        logger.info(f"Watermark removal ({method.value}) processed {len(result.regions)} regions")
        return result

    def _target_regions(
        self,
        buffer: PixelBuffer,
        options: WatermarkOptions,
        result: WatermarkResult,
    ) -> list[Region]:
        if options.region is not None:
            return [options.region]
        if options.auto_detect:
            result.detections = self._detector.detect(buffer)
            return [d.region for d in result.detections]
        logger.debug("No watermark region given and auto-detect disabled")
        return []

    def _blur(self, buffer: PixelBuffer, region: Region, options: WatermarkOptions) -> None:
        content_aware_blur_inplace(buffer, region, options.blur_intensity)

    def _inpaint(self, buffer: PixelBuffer, region: Region, options: WatermarkOptions) -> None:
        inpaint_inplace(
            buffer,
            region,
            radius=options.inpaint_radius,
            iterations=options.iterations,
            dilate=options.dilate_mask,
        )

    def _clone(self, buffer: PixelBuffer, region: Region, options: WatermarkOptions) -> None:
        clone_region_inplace(buffer, region)

    def _ai(self, buffer: PixelBuffer, region: Region, options: WatermarkOptions) -> None:
        # TODO: swap in a trained watermark-removal model once one is bundled
        logger.warning("AI watermark removal not implemented yet, using inpainting fallback")
        self._inpaint(buffer, region, options)


def remove_watermark(buffer: PixelBuffer, options: Optional[WatermarkOptions] = None) -> WatermarkResult:
    """Convenience wrapper around :meth:`WatermarkRemover.remove`."""
    return WatermarkRemover().remove(buffer, options)
