"""
Image Codec

Decoding files into PixelBuffers and encoding results as JPEG, PNG or
WebP. Formats without alpha are composited over a solid background color.
"""

import io
import logging
from enum import Enum
from pathlib import Path
from typing import Union

from PIL import Image

from .background import hex_to_rgb
from .buffer import PixelBuffer
from .errors import UnsupportedFormat

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

DEFAULT_BACKGROUND = (255, 255, 255)


class ImageFormat(Enum):
    """Output encodings."""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @classmethod
    def parse(cls, value: Union[str, "ImageFormat"]) -> "ImageFormat":
        if isinstance(value, cls):
            return value
        name = str(value).lower().lstrip(".")
        if name == "jpg":
            name = "jpeg"
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedFormat(f"Unsupported image format: {value!r}") from None

    @property
    def has_alpha(self) -> bool:
        return self is not ImageFormat.JPEG


def load_image(source: Union[str, Path, bytes]) -> PixelBuffer:
    """
    Decode an image file (or its raw bytes) into an RGBA buffer.

    Raises:
        UnsupportedFormat: Pillow cannot decode the data
    """
    try:
        if isinstance(source, bytes):
            image = Image.open(io.BytesIO(source))
        else:
            image = Image.open(source)
        with image:
            return PixelBuffer.from_pil(image)
    except (OSError, SyntaxError) as e:
        # Pillow reports undecodable data as UnidentifiedImageError (an OSError)
        raise UnsupportedFormat(f"Could not decode image: {e}") from e


def encode_image(
    buffer: PixelBuffer,
    format: Union[str, ImageFormat] = ImageFormat.PNG,
    quality: float = 0.9,
    background_color: str = "#ffffff",
) -> bytes:
    """
    Encode a buffer for output.

    Args:
        buffer: Image to encode
        format: jpeg, png or webp
        quality: 0-1, mapped onto Pillow's 1-100 for lossy formats
        background_color: ``#rrggbb`` fill behind transparent pixels when the
            format has no alpha channel

    Returns:
        Encoded file contents
    """
    fmt = ImageFormat.parse(format)
    image = buffer.to_pil()

    if not fmt.has_alpha:
        color = hex_to_rgb(background_color)
        if color is None:
            logger.warning(f"Invalid background color {background_color!r}, using white")
            color = DEFAULT_BACKGROUND
        background = Image.new("RGB", image.size, color)
        background.paste(image, mask=image.getchannel("A"))
        image = background

    out = io.BytesIO()
    if fmt is ImageFormat.PNG:
        image.save(out, format="PNG")
    else:
        pil_quality = max(1, min(100, round(quality * 100)))
        image.save(out, format=fmt.name, quality=pil_quality)
    return out.getvalue()


def save_image(
    buffer: PixelBuffer,
    path: Union[str, Path],
    format: Union[str, ImageFormat] = ImageFormat.PNG,
    quality: float = 0.9,
    background_color: str = "#ffffff",
) -> Path:
    """Encode ``buffer`` and write it to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_image(buffer, format, quality, background_color))
    return path


def get_file_extension(format: Union[str, ImageFormat]) -> str:
    """File extension for a format, without the dot."""
    fmt = ImageFormat.parse(format)
    return "jpg" if fmt is ImageFormat.JPEG else fmt.value


def generate_filename(original: str, format: Union[str, ImageFormat], suffix: str = "processed") -> str:
    """``photo.jpeg`` -> ``photo_processed.png``, or ``photo.png`` with no suffix."""
    stem = Path(original).stem
    if suffix:
        stem = f"{stem}_{suffix}"
    return f"{stem}.{get_file_extension(format)}"


def is_valid_image_file(path: Union[str, Path]) -> bool:
    """Check by extension whether a file is a supported input image."""
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS
