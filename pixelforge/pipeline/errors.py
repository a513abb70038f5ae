"""
Processing Errors

Exception taxonomy shared by every pipeline component.
"""


class ImageProcessingError(Exception):
    """Base class for all pixelforge processing errors."""


class InvalidScaleFactor(ImageProcessingError, ValueError):
    """Scale factor was zero, negative or not a finite number."""


class ModelNotReady(ImageProcessingError):
    """Mask-based background removal requested without a loaded model."""


class ModelLoadFailed(ImageProcessingError):
    """The segmentation provider could not load its model."""


class InferenceFailed(ImageProcessingError):
    """The segmentation model raised, timed out or returned a bad mask."""


class BufferAllocationFailed(ImageProcessingError):
    """An output buffer of the requested size could not be allocated."""


class InvalidRegion(ImageProcessingError, ValueError):
    """A region collapsed to zero area after clamping to buffer bounds."""


class UnsupportedMethod(ImageProcessingError, ValueError):
    """Unknown watermark method or interpolation algorithm."""


class UnsupportedFormat(ImageProcessingError, ValueError):
    """Unknown output image format."""
