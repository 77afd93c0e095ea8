"""Enrollment and verification workflows.

Blocking work (image decode, variant sampling, model inference) runs in the
inference pool. Profile file I/O runs in a worker thread while the per-name
store lock is held. Each variant of a photo is a separate pool task. Any decode
or extraction failure aborts the whole request: variants are never skipped,
since that would change the number of pairs the matcher votes over.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from facevault.errors import NotRegisteredError, ValidationError
from facevault.identity.matcher import MatchResult, Thresholds, Unregistered, match_profile
from facevault.identity.profile import build_profile
from facevault.identity.store import validate_name
from facevault.ml.augmentation import sample_variants
from facevault.ml.preprocessing import load_image
from facevault.ml.vectors import NormalizedEmbedding, normalize

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np
    from numpy.typing import NDArray

    from facevault.config import Settings
    from facevault.identity.store import ProfileStore
    from facevault.ml.face_recognizer import FaceRecognizer
    from facevault.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrollmentResult:
    name: str
    samples_stored: int
    max_intra_distance: float
    min_intra_similarity: float


@dataclass(frozen=True)
class ProfileSummary:
    name: str
    samples: int
    max_intra_distance: float
    min_intra_similarity: float


class IdentityService:
    """Enrolls people and verifies query photos against their stored profiles."""

    def __init__(
        self,
        recognizer: FaceRecognizer,
        store: ProfileStore,
        pool: InferencePool,
        settings: Settings,
    ) -> None:
        self._recognizer = recognizer
        self._store = store
        self._pool = pool
        self._thresholds = Thresholds.from_settings(settings)
        self._crop_ratios = tuple(settings.crop_ratios)
        self._max_image_pixels = settings.max_image_pixels
        self._max_enroll_images = settings.max_enroll_images

    @property
    def thresholds(self) -> Thresholds:
        return self._thresholds

    @property
    def store(self) -> ProfileStore:
        return self._store

    def check_enrollment(self, name: str | None, image_count: int) -> str:
        """Validate an enrollment request before any image is read; returns the cleaned name.

        Raises:
            ValidationError: If the name is missing or invalid, or the image count is out of range.
        """
        name = validate_name(name)
        if image_count == 0:
            raise ValidationError("At least one image required")
        if image_count > self._max_enroll_images:
            raise ValidationError(f"At most {self._max_enroll_images} images allowed, got {image_count}")
        return name

    async def enroll(self, name: str | None, images: Sequence[bytes]) -> EnrollmentResult:
        """Build a profile from every variant of every image and store it under ``name``.

        An existing profile for the same name is replaced.

        Raises:
            ValidationError: If the name is missing or invalid, or the image count is out of range.
            ImageError: If any image cannot be decoded.
            ExtractionError: If the model fails on any variant.
        """
        name = self.check_enrollment(name, len(images))

        embeddings: list[NormalizedEmbedding] = []
        for data in images:
            embeddings.extend(await self.embed_image(data))

        profile = build_profile(embeddings)
        async with self._store.locked(name):
            await asyncio.to_thread(self._store.put, name, profile)

        logger.info(
            "Enrolled %s: %d samples from %d images (max_intra_distance=%.4f, min_intra_similarity=%.4f)",
            name,
            profile.sample_count,
            len(images),
            profile.max_intra_distance,
            profile.min_intra_similarity,
        )
        return EnrollmentResult(
            name=name,
            samples_stored=profile.sample_count,
            max_intra_distance=profile.max_intra_distance,
            min_intra_similarity=profile.min_intra_similarity,
        )

    async def verify(self, name: str | None, image: bytes | None) -> MatchResult | Unregistered:
        """Compare a query photo with the profile stored under ``name``.

        Returns ``Unregistered`` without touching the model when no profile exists.

        Raises:
            ValidationError: If the name is missing or invalid, or no image was given.
            ImageError: If the image cannot be decoded.
            ExtractionError: If the model fails on any variant.
        """
        name = validate_name(name)
        if not image:
            raise ValidationError("Image required")

        async with self._store.locked(name):
            profile = await asyncio.to_thread(self._store.get, name)
        if profile is None:
            logger.info("Verification for unregistered name %s", name)
            return Unregistered(name=name)

        query = await self.embed_image(image)
        result = match_profile(query, profile, self._thresholds)
        logger.info(
            "Verified %s: is_match=%s min_distance=%.4f max_similarity=%.4f variant_matches=%d",
            name,
            result.is_match,
            result.min_distance,
            result.max_similarity,
            result.variant_matches,
        )
        return result

    async def profile_summary(self, name: str) -> ProfileSummary:
        """Return the sample count and dispersion statistics of a stored profile.

        Raises:
            NotRegisteredError: If no profile is stored under ``name``.
        """
        name = validate_name(name)
        async with self._store.locked(name):
            profile = await asyncio.to_thread(self._store.get, name)
        if profile is None:
            raise NotRegisteredError(name)
        return ProfileSummary(
            name=name,
            samples=profile.sample_count,
            max_intra_distance=profile.max_intra_distance,
            min_intra_similarity=profile.min_intra_similarity,
        )

    async def forget(self, name: str) -> None:
        """Delete the profile stored under ``name``.

        Raises:
            NotRegisteredError: If no profile is stored under ``name``.
        """
        name = validate_name(name)
        async with self._store.locked(name):
            removed = await asyncio.to_thread(self._store.delete, name)
        if not removed:
            raise NotRegisteredError(name)
        logger.info("Deleted profile for %s", name)

    async def embed_image(self, data: bytes) -> list[NormalizedEmbedding]:
        """Return one normalized embedding per augmentation variant of ``data``, in variant order."""
        variants = await self._pool.run(self._decode_variants, data)
        raw = await asyncio.gather(*(self._pool.run(self._recognizer.extract, v) for v in variants))
        return [normalize(embedding) for embedding in raw]

    def _decode_variants(self, data: bytes) -> list[NDArray[np.uint8]]:
        image = load_image(data, self._max_image_pixels)
        return sample_variants(image, self._recognizer.input_size, self._crop_ratios)
