"""Image decoding, cropping, and resizing for the recognition model.

Decoding goes through Pillow. Every output buffer is an HxWx3 RGB uint8
array sized for the recognition model input.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from facevault.errors import ImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

RESAMPLING = Image.Resampling.LANCZOS


@dataclass(frozen=True)
class CropRect:
    """Pixel rectangle within a source image."""

    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        """Return the rectangle as a Pillow ``(left, upper, right, lower)`` box."""
        return (self.left, self.top, self.left + self.width, self.top + self.height)


def load_image(data: bytes, max_pixels: int) -> Image.Image:
    """Decode raw image bytes into an RGB Pillow image.

    Args:
        data: Raw file bytes (any format Pillow can read).
        max_pixels: Upper bound on ``width * height``.

    Returns:
        Fully loaded image in RGB mode, alpha channel dropped.

    Raises:
        ImageError: If the bytes are empty, cannot be decoded, or the image is too large.
    """
    if not data:
        raise ImageError("Empty image file")

    try:
        image = Image.open(io.BytesIO(data))
        width, height = image.size
        if width * height > max_pixels:
            raise ImageError(f"Image too large: {width}x{height} exceeds {max_pixels} pixels")
        image.load()
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as exc:
        raise ImageError(f"Failed to decode image: {exc}") from exc

    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def crop_and_resize(image: Image.Image, rect: CropRect, size: int) -> NDArray[np.uint8]:
    """Crop a rectangle out of ``image`` and resize it to ``size x size``.

    Raises:
        ImageError: If the rectangle falls outside the image or is empty.
    """
    width, height = image.size
    if rect.width <= 0 or rect.height <= 0 or rect.left < 0 or rect.top < 0:
        raise ImageError(f"Invalid crop rectangle: {rect}")
    if rect.left + rect.width > width or rect.top + rect.height > height:
        raise ImageError(f"Crop rectangle {rect} exceeds image bounds {width}x{height}")

    region = image.crop(rect.box).resize((size, size), RESAMPLING)
    return np.asarray(region, dtype=np.uint8)


def fit_and_resize(image: Image.Image, size: int) -> NDArray[np.uint8]:
    """Resize the whole image to ``size x size``, center-cropping any aspect overflow."""
    try:
        fitted = ImageOps.fit(image, (size, size), method=RESAMPLING, centering=(0.5, 0.5))
    except ValueError as exc:
        raise ImageError(f"Failed to resize image: {exc}") from exc
    return np.asarray(fitted, dtype=np.uint8)
