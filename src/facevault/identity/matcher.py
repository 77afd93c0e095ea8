"""Match decision: compare query variants against a stored profile.

Every (query variant, stored variant) pair is scored. A pair counts as a
variant match only when it passes the distance and cosine thresholds
together. The final decision needs the best distance, the best similarity,
and enough variant matches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from facevault.errors import ValidationError
from facevault.ml.vectors import cosine_similarity, euclidean_distance

if TYPE_CHECKING:
    from collections.abc import Sequence

    from facevault.config import Settings
    from facevault.identity.profile import PersonProfile
    from facevault.ml.vectors import NormalizedEmbedding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    """Decision thresholds applied to every verification."""

    distance: float = 0.95
    cosine: float = 0.62
    required_variant_matches: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> Thresholds:
        return cls(
            distance=settings.distance_threshold,
            cosine=settings.cosine_threshold,
            required_variant_matches=settings.required_variant_matches,
        )


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing one query photo against a stored profile."""

    min_distance: float
    max_similarity: float
    centroid_distance: float
    centroid_similarity: float
    variant_matches: int
    is_match: bool
    thresholds: Thresholds


@dataclass(frozen=True)
class Unregistered:
    """Verification outcome for a name with no stored profile."""

    name: str


def match_profile(
    query: Sequence[NormalizedEmbedding],
    profile: PersonProfile,
    thresholds: Thresholds,
) -> MatchResult:
    """Score ``query`` variants against ``profile`` and decide whether they match.

    Centroid figures compare only the first query variant with the stored
    centroid. They are reported and do not gate the decision.

    Raises:
        ValidationError: If ``query`` is empty.
    """
    if not query:
        raise ValidationError("At least one query embedding is required")

    min_distance = float("inf")
    max_similarity = float("-inf")
    variant_matches = 0

    for query_embedding in query:
        for stored in profile.embeddings:
            distance = euclidean_distance(stored, query_embedding)
            similarity = cosine_similarity(stored, query_embedding)
            min_distance = min(min_distance, distance)
            max_similarity = max(max_similarity, similarity)
            if distance <= thresholds.distance and similarity >= thresholds.cosine:
                variant_matches += 1

    centroid_distance = euclidean_distance(profile.centroid, query[0])
    centroid_similarity = cosine_similarity(profile.centroid, query[0])

    is_match = (
        min_distance <= thresholds.distance
        and max_similarity >= thresholds.cosine
        and variant_matches >= thresholds.required_variant_matches
    )

    logger.debug(
        "Scored %d x %d pairs: min_distance=%.4f max_similarity=%.4f variant_matches=%d",
        len(query),
        len(profile.embeddings),
        min_distance,
        max_similarity,
        variant_matches,
    )

    return MatchResult(
        min_distance=min_distance,
        max_similarity=max_similarity,
        centroid_distance=centroid_distance,
        centroid_similarity=centroid_similarity,
        variant_matches=variant_matches,
        is_match=is_match,
        thresholds=thresholds,
    )
