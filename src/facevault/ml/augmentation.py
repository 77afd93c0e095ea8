"""Deterministic view sampling for a single source photo.

Each photo yields the full frame plus one centered square crop per ratio,
all resized to the recognition input size. Embedding every view reduces
sensitivity to how tightly the face was framed.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from facevault.ml.preprocessing import CropRect, crop_and_resize, fit_and_resize

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np
    from numpy.typing import NDArray
    from PIL import Image

DEFAULT_CROP_RATIOS: tuple[float, ...] = (0.92, 0.85)


def crop_rects(width: int, height: int, ratios: Sequence[float] = DEFAULT_CROP_RATIOS) -> list[CropRect]:
    """Centered square crops of side ``floor(min(width, height) * ratio)``.

    The origin on each axis is ``floor((dimension - side) / 2)``. Returns no
    rectangles when either dimension is unknown (zero).
    """
    if not width or not height:
        return []

    square = min(width, height)
    rects: list[CropRect] = []
    for ratio in ratios:
        side = math.floor(square * ratio)
        if side <= 0:
            continue
        left = (width - side) // 2
        top = (height - side) // 2
        rects.append(CropRect(left=left, top=top, width=side, height=side))
    return rects


def sample_variants(
    image: Image.Image,
    size: int,
    ratios: Sequence[float] = DEFAULT_CROP_RATIOS,
) -> list[NDArray[np.uint8]]:
    """Return the full-frame view followed by each centered crop, all ``size x size``."""
    width, height = image.size
    variants = [fit_and_resize(image, size)]
    variants.extend(crop_and_resize(image, rect, size) for rect in crop_rects(width, height, ratios))
    return variants
