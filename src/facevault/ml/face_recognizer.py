"""Face recognition (embedding) model.

Wraps a single ONNX InferenceSession that is created once at startup.
Supported graphs: AuraFace v1 (default), ArcFace w600k_r50 (opt-in), or any
ArcFace-style ONNX file taking a 112x112 BGR face crop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facevault.errors import ExtractionError
from facevault.ml.vectors import Embedding

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

logger = logging.getLogger(__name__)

INPUT_SIZE: int = 112
PIXEL_MEAN: float = 127.5
PIXEL_SCALE: float = 128.0


class FaceRecognizer(Protocol):
    """Protocol for face recognition (embedding) models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def embedding_dim(self) -> int:
        """Return the embedding dimensionality (e.g., 512)."""
        ...

    @property
    def input_size(self) -> int:
        """Return the side length of the square input the model expects."""
        ...

    def extract(self, pixels: NDArray[np.uint8]) -> Embedding:
        """Generate a raw embedding for one face crop.

        Args:
            pixels: HxWx3 RGB uint8 array, H == W == input_size.

        Returns:
            Embedding vector, shape (embedding_dim,), not normalized.
        """
        ...


def to_model_input(pixels: NDArray[np.uint8], channels_first: bool) -> NDArray[np.float32]:
    """Convert an RGB uint8 crop into a batched BGR float tensor.

    Values map to ``(v - 127.5) / 128.0``. The result has shape
    (1, H, W, 3), or (1, 3, H, W) when ``channels_first`` is set.
    """
    bgr = pixels[..., ::-1].astype(np.float32)
    tensor = (bgr - PIXEL_MEAN) / PIXEL_SCALE
    if channels_first:
        tensor = np.transpose(tensor, (2, 0, 1))
    return np.ascontiguousarray(tensor[np.newaxis, ...], dtype=np.float32)


class OnnxFaceRecognizer:
    """Embedding extractor backed by an ONNX Runtime session.

    The tensor layout (NHWC or NCHW) is read from the model's declared input shape.
    """

    def __init__(self, session: InferenceSession, model_name: str) -> None:
        self._session = session
        self._model_name = model_name

        model_input = session.get_inputs()[0]
        self._input_name: str = model_input.name
        self._output_name: str = session.get_outputs()[0].name
        self._channels_first = _is_channels_first(model_input.shape)

        output_shape = session.get_outputs()[0].shape
        last_dim = output_shape[-1] if output_shape else None
        self._embedding_dim = last_dim if isinstance(last_dim, int) else 512

        logger.info(
            "Recognizer %s ready (input=%s %s, layout=%s, dim=%s)",
            model_name,
            self._input_name,
            model_input.shape,
            "NCHW" if self._channels_first else "NHWC",
            self._embedding_dim,
        )

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim

    @property
    def input_size(self) -> int:
        return INPUT_SIZE

    def extract(self, pixels: NDArray[np.uint8]) -> Embedding:
        """Run the model on one face crop.

        Raises:
            ExtractionError: If the crop has the wrong shape or dtype, or inference fails.
        """
        expected = (INPUT_SIZE, INPUT_SIZE, 3)
        if pixels.shape != expected:
            raise ExtractionError(f"Expected input of shape {expected}, got {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ExtractionError(f"Expected uint8 pixels, got {pixels.dtype}")

        tensor = to_model_input(pixels, self._channels_first)
        try:
            outputs = self._session.run([self._output_name], {self._input_name: tensor})
        except Exception as exc:
            raise ExtractionError(f"Inference failed for {self._model_name}: {exc}") from exc

        return Embedding(np.asarray(outputs[0], dtype=np.float32).reshape(-1))


def _is_channels_first(shape: list[object]) -> bool:
    # Symbolic dims come through as strings; only a literal 3 in position 1 means NCHW.
    return len(shape) == 4 and shape[1] == 3 and shape[3] != 3
