"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, File, Form, Request, Response, UploadFile, status

from facevault.api.schemas import (
    ErrorResponse,
    FindResponse,
    HealthResponse,
    NotRegisteredResponse,
    ProfileSummaryResponse,
    ProfilesResponse,
    RegisterResponse,
    ThresholdsInfo,
)
from facevault.errors import ImageError
from facevault.identity.matcher import Unregistered

if TYPE_CHECKING:
    from facevault.config import Settings
    from facevault.identity.service import IdentityService
    from facevault.ml.inference import InferencePool
    from facevault.ml.model_manager import OnnxModelManager

router = APIRouter(prefix="/api/v1")

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> OnnxModelManager:
    manager: OnnxModelManager = request.app.state.model_manager
    return manager


def _get_identity_service(request: Request) -> IdentityService:
    service: IdentityService = request.app.state.identity_service
    return service


async def _read_upload(upload: UploadFile, max_size: int) -> bytes:
    data = await upload.read(max_size + 1)
    if len(data) > max_size:
        raise ImageError(f"File {upload.filename!r} exceeds the {max_size} byte limit")
    return data


@router.post(
    "/register",
    response_model=RegisterResponse,
    responses=_ERROR_RESPONSES,
    summary="Enroll a person from one or more photos",
)
async def register(
    request: Request,
    name: Annotated[str | None, Form()] = None,
    images: Annotated[list[UploadFile] | None, File()] = None,
) -> RegisterResponse:
    """Build and store a profile from every augmentation variant of the uploaded photos."""
    settings = _get_settings(request)
    service = _get_identity_service(request)
    uploads = images or []
    service.check_enrollment(name, len(uploads))
    payloads = [await _read_upload(upload, settings.max_file_size) for upload in uploads]

    result = await service.enroll(name, payloads)
    return RegisterResponse(
        samples_stored=result.samples_stored,
        max_intra_distance=result.max_intra_distance,
        min_intra_similarity=result.min_intra_similarity,
    )


@router.post(
    "/find",
    response_model=FindResponse | NotRegisteredResponse,
    responses=_ERROR_RESPONSES,
    summary="Verify a photo against a registered person",
)
async def find(
    request: Request,
    name: Annotated[str | None, Form()] = None,
    image: Annotated[UploadFile | None, File()] = None,
) -> FindResponse | NotRegisteredResponse:
    """Compare the uploaded photo with the profile stored under ``name``."""
    settings = _get_settings(request)
    service = _get_identity_service(request)
    payload = await _read_upload(image, settings.max_file_size) if image is not None else None

    outcome = await service.verify(name, payload)
    if isinstance(outcome, Unregistered):
        return NotRegisteredResponse()

    return FindResponse(
        message="Person Found" if outcome.is_match else "Person Not Found",
        is_match=outcome.is_match,
        min_distance=outcome.min_distance,
        max_similarity=outcome.max_similarity,
        centroid_distance=outcome.centroid_distance,
        centroid_similarity=outcome.centroid_similarity,
        variant_matches=outcome.variant_matches,
        thresholds=ThresholdsInfo(
            distance=outcome.thresholds.distance,
            cosine=outcome.thresholds.cosine,
            required_variant_matches=outcome.thresholds.required_variant_matches,
        ),
    )


@router.get(
    "/profiles",
    response_model=ProfilesResponse,
    summary="List registered people",
)
async def list_profiles(request: Request) -> ProfilesResponse:
    service = _get_identity_service(request)
    return ProfilesResponse(names=service.store.names())


@router.get(
    "/profiles/{name}",
    response_model=ProfileSummaryResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Show a stored profile's statistics",
)
async def get_profile(request: Request, name: str) -> ProfileSummaryResponse:
    service = _get_identity_service(request)
    summary = await service.profile_summary(name)
    return ProfileSummaryResponse(
        name=summary.name,
        samples=summary.samples,
        max_intra_distance=summary.max_intra_distance,
        min_intra_similarity=summary.min_intra_similarity,
    )


@router.delete(
    "/profiles/{name}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Delete a stored profile",
)
async def delete_profile(request: Request, name: str) -> Response:
    service = _get_identity_service(request)
    await service.forget(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)
    service = _get_identity_service(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        profiles=service.store.count(),
    )
