"""Pydantic request/response schemas for the FaceVault API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class RegisterResponse(BaseModel):
    """Response for a completed enrollment."""

    message: str = "Person Registered"
    samples_stored: int = Field(description="Number of variant embeddings stored in the profile")
    max_intra_distance: float = Field(description="Largest distance from an enrolled variant to the centroid")
    min_intra_similarity: float = Field(description="Smallest similarity of an enrolled variant to the centroid")


class ThresholdsInfo(BaseModel):
    """Thresholds applied to a verification."""

    distance: float
    cosine: float
    required_variant_matches: int


class FindResponse(BaseModel):
    """Verification result for a registered person."""

    message: Literal["Person Found", "Person Not Found"]
    registered: Literal[True] = True
    is_match: bool
    min_distance: float = Field(description="Smallest distance over all query/stored variant pairs")
    max_similarity: float = Field(description="Largest cosine similarity over all query/stored variant pairs")
    centroid_distance: float = Field(description="Distance between the stored centroid and the first query variant")
    centroid_similarity: float = Field(description="Similarity between the stored centroid and the first query variant")
    variant_matches: int = Field(description="Pairs passing both the distance and cosine thresholds")
    thresholds: ThresholdsInfo


class NotRegisteredResponse(BaseModel):
    """Verification result for a name with no stored profile."""

    message: Literal["Person not registered"] = "Person not registered"
    registered: Literal[False] = False


class ProfileSummaryResponse(BaseModel):
    """Stored profile statistics."""

    name: str
    samples: int
    max_intra_distance: float
    min_intra_similarity: float


class ProfilesResponse(BaseModel):
    """Registered names."""

    names: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    profiles: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
