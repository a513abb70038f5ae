"""
Watermark Detector

Heuristic search for rectangular watermark candidates:

1. Transparency-block scan: overlapping blocks whose sampled alpha sits in
   the semi-transparent band
2. Corner/pattern scan: the four corners and the center, flagged when the
   colors are flat and very bright or very dark

Overlapping candidates are merged into their union. Detection is read-only;
callers can show the regions for confirmation before removing anything.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .buffer import DetectedRegion, PixelBuffer, Region

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Candidate:
    region: Region
    evidence: float  # 0-1 strength of the signal that flagged the region


def _merge_candidates(candidates: list[_Candidate]) -> list[_Candidate]:
    """Replace intersecting candidates by their union until none overlap."""
    merged = list(candidates)
    changed = True
    while changed and len(merged) > 1:
        changed = False
        result = []
        used = [False] * len(merged)
        for i, current in enumerate(merged):
            if used[i]:
                continue
            used[i] = True
            for j in range(i + 1, len(merged)):
                if used[j]:
                    continue
                other = merged[j]
                if current.region.intersects(other.region):
                    current = _Candidate(
                        region=current.region.union(other.region),
                        evidence=max(current.evidence, other.evidence),
                    )
                    used[j] = True
                    changed = True
            result.append(current)
        merged = result
    return merged


def merge_overlapping_regions(regions: list[Region]) -> list[Region]:
    """
    Merge intersecting rectangles into their bounding union.

    Repeats until no two output regions intersect. Regions that only touch
    along an edge are not merged.
    """
    candidates = [_Candidate(region, 0.0) for region in regions]
    return [c.region for c in _merge_candidates(candidates)]


class WatermarkDetector:
    """
    Detects likely watermark regions in an RGBA image.

    Confidence is derived from the evidence that flagged each region:
    ``0.7 + 0.3 * evidence``, where evidence is how far the transparency
    ratio or color flatness went past its threshold.
    """

    # Transparency-block scan
    MAX_BLOCK_SIZE = 64
    BLOCK_SAMPLE_STEP = 4
    SEMI_TRANSPARENT_MIN = 50
    SEMI_TRANSPARENT_MAX = 200
    MIN_TRANSPARENCY_RATIO = 0.2

    # Corner/pattern scan
    MAX_CORNER_SIZE = 100
    CORNER_SAMPLE_STEP = 8
    COLOR_BUCKET_SIZE = 32
    MAX_COLOR_DIVERSITY = 0.3
    BRIGHT_THRESHOLD = 180
    DARK_THRESHOLD = 80

    MIN_CONFIDENCE = 0.7

    def detect(self, buffer: PixelBuffer) -> list[DetectedRegion]:
        """
        Run both scans and merge the results.

        A failing scan is logged and skipped; the other scan's candidates
        are still returned.

        Args:
            buffer: Image to inspect, not modified

        Returns:
            Merged regions with confidence in [0.7, 1.0]
        """
        logger.debug(f"Running watermark detection on {buffer.width}x{buffer.height} image")

        candidates: list[_Candidate] = []
        for name, scan in (
            ("transparency", self._scan_transparency),
            ("corner", self._scan_corners),
        ):
            try:
                found = scan(buffer)
            except Exception as e:
                logger.error(f"{name} scan failed: {e}")
                continue
            logger.debug(f"{name} scan: {len(found)} candidates")
            candidates.extend(found)

        merged = _merge_candidates(candidates)
        detections = [
            DetectedRegion(region=c.region, confidence=self._confidence(c.evidence))
            for c in merged
        ]
        if detections:
            logger.info(f"Detected {len(detections)} watermark regions")
        return detections

    def _confidence(self, evidence: float) -> float:
        evidence = min(1.0, max(0.0, evidence))
        return self.MIN_CONFIDENCE + (1.0 - self.MIN_CONFIDENCE) * evidence

    def _scan_transparency(self, buffer: PixelBuffer) -> list[_Candidate]:
        w, h = buffer.width, buffer.height
        block = min(self.MAX_BLOCK_SIZE, min(w, h) // 8)
        step = block // 2
        if step < 1:
            return []

        alpha = buffer.alpha
        candidates = []
        for y in range(0, h - block, step):
            for x in range(0, w - block, step):
                samples = alpha[y:y + block:self.BLOCK_SAMPLE_STEP, x:x + block:self.BLOCK_SAMPLE_STEP]
                total = samples.size
                if total == 0:
                    continue
                semi = (samples > self.SEMI_TRANSPARENT_MIN) & (samples < self.SEMI_TRANSPARENT_MAX)
                ratio = int(semi.sum()) / total
                average = int(samples.sum(dtype=np.int64)) / total

                if (
                    ratio > self.MIN_TRANSPARENCY_RATIO
                    and self.SEMI_TRANSPARENT_MIN < average < self.SEMI_TRANSPARENT_MAX
                ):
                    evidence = (ratio - self.MIN_TRANSPARENCY_RATIO) / (1 - self.MIN_TRANSPARENCY_RATIO)
                    candidates.append(_Candidate(Region(x, y, block, block), evidence))
        return candidates

    def _scan_corners(self, buffer: PixelBuffer) -> list[_Candidate]:
        w, h = buffer.width, buffer.height
        size = min(self.MAX_CORNER_SIZE, min(w, h) // 4)
        if size <= 0:
            return []

        origins = [
            (0, 0),                                 # Top-left
            (w - size, 0),                          # Top-right
            (0, h - size),                          # Bottom-left
            (w - size, h - size),                   # Bottom-right
            ((w - size) // 2, (h - size) // 2),     # Center
        ]

        candidates = []
        for x, y in origins:
            if x < 0 or y < 0 or x + size > w or y + size > h:
                continue
            samples = buffer.pixels[
                y:y + size:self.CORNER_SAMPLE_STEP,
                x:x + size:self.CORNER_SAMPLE_STEP,
                :3,
            ].reshape(-1, 3).astype(np.int64)
            count = len(samples)
            if count == 0:
                continue

            brightness = (samples[:, 0] + samples[:, 1] + samples[:, 2]) / 3
            average = float(brightness.sum()) / count

            q = samples // self.COLOR_BUCKET_SIZE
            unique_colors = len(np.unique(q[:, 0] * 64 + q[:, 1] * 8 + q[:, 2]))

            flat = unique_colors < count * self.MAX_COLOR_DIVERSITY
            extreme = average > self.BRIGHT_THRESHOLD or average < self.DARK_THRESHOLD
            if flat and extreme:
                evidence = 1 - unique_colors / (count * self.MAX_COLOR_DIVERSITY)
                candidates.append(_Candidate(Region(x, y, size, size), evidence))
        return candidates


def detect_watermarks(buffer: PixelBuffer) -> list[DetectedRegion]:
    """Read-only detection for manual confirmation before removal."""
    return WatermarkDetector().detect(buffer)
