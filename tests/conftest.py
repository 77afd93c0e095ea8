"""Shared test helpers: in-memory images and a deterministic recognizer."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from facevault.ml.vectors import Embedding

if TYPE_CHECKING:
    from numpy.typing import NDArray


def make_png(color: tuple[int, int, int] = (200, 40, 40), size: tuple[int, int] = (160, 120)) -> bytes:
    """Encode a solid-color RGB image as PNG bytes."""
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeRecognizer:
    """Maps a crop to a vector of its channel means and their complements.

    Solid-color images give identical vectors for every crop, and different
    colors give clearly separated vectors.
    """

    model_name = "fake"
    embedding_dim = 8
    input_size = 112

    def __init__(self) -> None:
        self.calls = 0

    def extract(self, pixels: NDArray[np.uint8]) -> Embedding:
        self.calls += 1
        means = pixels.reshape(-1, 3).mean(axis=0)
        return Embedding(np.concatenate([means, 255.0 - means, [64.0, 64.0]]).astype(np.float32))


@pytest.fixture()
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()
