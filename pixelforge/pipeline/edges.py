"""
Edge Detection

Sobel gradient magnitude over the gray value (R + G + B) / 3, plus the
cheaper 8-neighbour brightness test used by the content-aware blur.
"""

import numpy as np

from .buffer import PixelBuffer

# Brightness difference that marks a pixel as a local edge
LOCAL_EDGE_THRESHOLD = 30

_NEIGHBOURS = [(-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1)]


def gray_levels(pixels: np.ndarray) -> np.ndarray:
    """(R + G + B) / 3 for an (H, W, 3|4) uint8 array."""
    rgb = pixels[:, :, :3].astype(np.float64)
    return (rgb[:, :, 0] + rgb[:, :, 1] + rgb[:, :, 2]) / 3


def sobel_magnitude(buffer: PixelBuffer) -> np.ndarray:
    """
    Sobel gradient magnitude for every interior pixel.

    Args:
        buffer: Source image

    Returns:
        (H, W) float64 array. The 1-pixel border is always 0.
    """
    h, w = buffer.height, buffer.width
    magnitude = np.zeros((h, w), dtype=np.float64)
    if h < 3 or w < 3:
        return magnitude

    g = gray_levels(buffer.pixels)
    tl, tc, tr = g[:-2, :-2], g[:-2, 1:-1], g[:-2, 2:]
    ml, mr = g[1:-1, :-2], g[1:-1, 2:]
    bl, bc, br = g[2:, :-2], g[2:, 1:-1], g[2:, 2:]

    gx = -1 * tl + 1 * tr + -2 * ml + 2 * mr + -1 * bl + 1 * br
    gy = -1 * tl + -2 * tc + -1 * tr + 1 * bl + 2 * bc + 1 * br

    magnitude[1:-1, 1:-1] = np.sqrt(gx * gx + gy * gy)
    return magnitude


def detect_edges(buffer: PixelBuffer, threshold: float) -> np.ndarray:
    """
    Boolean edge map: True where the Sobel magnitude exceeds ``threshold``.

    Border pixels are never edges here.
    """
    return sobel_magnitude(buffer) > threshold


def local_edge_mask(pixels: np.ndarray, threshold: float = LOCAL_EDGE_THRESHOLD) -> np.ndarray:
    """
    8-neighbour brightness test over a standalone pixel block.

    A pixel is an edge when any neighbour's brightness differs from its own
    by more than ``threshold``. Pixels on the block boundary always count
    as edges so that they are preserved.

    Args:
        pixels: (H, W, 3|4) uint8 block, usually a region cut from a buffer
        threshold: Brightness difference threshold

    Returns:
        (H, W) bool array
    """
    h, w = pixels.shape[:2]
    edges = np.ones((h, w), dtype=bool)
    if h < 3 or w < 3:
        return edges

    b = gray_levels(pixels)
    center = b[1:-1, 1:-1]
    interior = np.zeros((h - 2, w - 2), dtype=bool)
    for dx, dy in _NEIGHBOURS:
        neighbour = b[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx]
        interior |= np.abs(neighbour - center) > threshold

    edges[1:-1, 1:-1] = interior
    return edges


def forward_gradient_magnitude(gray: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Forward-difference gradient magnitude used for texture analysis.

    For each interior pixel, ``sqrt((right - center)^2 + (bottom - center)^2)``.

    Returns:
        Tuple of (magnitude, valid) arrays of shape (H, W); ``valid`` marks
        the interior pixels where the magnitude is defined.
    """
    h, w = gray.shape
    magnitude = np.zeros((h, w), dtype=np.float64)
    valid = np.zeros((h, w), dtype=bool)
    if h < 3 or w < 3:
        return magnitude, valid

    center = gray[1:-1, 1:-1]
    gx = gray[1:-1, 2:] - center
    gy = gray[2:, 1:-1] - center
    magnitude[1:-1, 1:-1] = np.sqrt(gx * gx + gy * gy)
    valid[1:-1, 1:-1] = True
    return magnitude, valid
