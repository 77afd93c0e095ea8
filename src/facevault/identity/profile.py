"""Person profiles built from enrollment embeddings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from facevault.errors import ValidationError
from facevault.ml.vectors import NormalizedEmbedding, average, cosine_similarity, euclidean_distance, normalize

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True)
class PersonProfile:
    """Identity signature for one enrolled person.

    ``max_intra_distance`` and ``min_intra_similarity`` describe how widely the
    enrolled variants spread around the centroid. They are reported only and
    do not take part in the match decision.
    """

    embeddings: tuple[NormalizedEmbedding, ...]
    centroid: NormalizedEmbedding
    max_intra_distance: float
    min_intra_similarity: float

    @property
    def sample_count(self) -> int:
        return len(self.embeddings)


def build_profile(embeddings: Sequence[NormalizedEmbedding]) -> PersonProfile:
    """Aggregate the flattened variant embeddings of one enrollment.

    Raises:
        ValidationError: If ``embeddings`` is empty.
    """
    if not embeddings:
        raise ValidationError("At least one embedding is required to build a profile")

    centroid = normalize(average(embeddings))

    max_intra_distance = 0.0
    min_intra_similarity = float("inf")
    for embedding in embeddings:
        max_intra_distance = max(max_intra_distance, euclidean_distance(embedding, centroid))
        min_intra_similarity = min(min_intra_similarity, cosine_similarity(embedding, centroid))

    return PersonProfile(
        embeddings=tuple(embeddings),
        centroid=centroid,
        max_intra_distance=max_intra_distance,
        min_intra_similarity=min_intra_similarity,
    )
