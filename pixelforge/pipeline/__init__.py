"""
PixelForge Pipeline

Upscaling, background removal and watermark removal on RGBA pixel buffers.
"""

from .errors import (
    ImageProcessingError,
    InvalidScaleFactor,
    ModelNotReady,
    ModelLoadFailed,
    InferenceFailed,
    BufferAllocationFailed,
    InvalidRegion,
    UnsupportedMethod,
    UnsupportedFormat,
)
from .buffer import PixelBuffer, Region, DetectedRegion
from .edges import detect_edges, sobel_magnitude
from .interpolation import InterpolationAlgorithm, cubic_weight, lanczos_weight
from .upscaler import Upscaler, upscale_image
from .segmentation import (
    SegmentationConfig,
    ModelHandle,
    MediaPipeSegmentationProvider,
    RembgSegmentationProvider,
    get_provider,
    load_model,
    segment_person,
)
from .background import (
    BackgroundMode,
    BackgroundOptions,
    BackgroundRemover,
    detect_background_color,
)
from .watermark_detector import WatermarkDetector, detect_watermarks, merge_overlapping_regions
from .watermark_remover import WatermarkMethod, WatermarkOptions, WatermarkRemover, WatermarkResult
from .processing import ProcessingPipeline, ProcessingOptions, ProcessingResult, BatchItemResult
from .codec import ImageFormat, load_image, encode_image, save_image

__all__ = [
    # Errors
    "ImageProcessingError",
    "InvalidScaleFactor",
    "ModelNotReady",
    "ModelLoadFailed",
    "InferenceFailed",
    "BufferAllocationFailed",
    "InvalidRegion",
    "UnsupportedMethod",
    "UnsupportedFormat",
    # Buffers
    "PixelBuffer",
    "Region",
    "DetectedRegion",
    # Edges
    "detect_edges",
    "sobel_magnitude",
    # Upscaling
    "InterpolationAlgorithm",
    "cubic_weight",
    "lanczos_weight",
    "Upscaler",
    "upscale_image",
    # Segmentation
    "SegmentationConfig",
    "ModelHandle",
    "MediaPipeSegmentationProvider",
    "RembgSegmentationProvider",
    "get_provider",
    "load_model",
    "segment_person",
    # Background removal
    "BackgroundMode",
    "BackgroundOptions",
    "BackgroundRemover",
    "detect_background_color",
    # Watermark removal
    "WatermarkDetector",
    "detect_watermarks",
    "merge_overlapping_regions",
    "WatermarkMethod",
    "WatermarkOptions",
    "WatermarkRemover",
    "WatermarkResult",
    # Pipeline
    "ProcessingPipeline",
    "ProcessingOptions",
    "ProcessingResult",
    "BatchItemResult",
    # Codec
    "ImageFormat",
    "load_image",
    "encode_image",
    "save_image",
]
