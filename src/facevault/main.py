"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from facevault.api.routes import router
from facevault.config import Settings, get_settings
from facevault.errors import (
    ExtractionError,
    FaceVaultError,
    ImageError,
    NotRegisteredError,
    ProfileStoreError,
    ValidationError,
)
from facevault.identity.service import IdentityService
from facevault.identity.store import JsonProfileStore
from facevault.ml.face_recognizer import OnnxFaceRecognizer
from facevault.ml.inference import InferencePool
from facevault.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[FaceVaultError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ImageError: status.HTTP_400_BAD_REQUEST,
    NotRegisteredError: status.HTTP_404_NOT_FOUND,
    ExtractionError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ProfileStoreError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def build_identity_service(settings: Settings, model_manager: OnnxModelManager, pool: InferencePool) -> IdentityService:
    """Load the recognition model once and wire it into the identity service."""
    session = model_manager.get_session(settings.recognition_model)
    recognizer = OnnxFaceRecognizer(session, settings.recognition_model)
    store = JsonProfileStore(settings.profiles_dir)
    return IdentityService(recognizer, store, pool, settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceVault (device=%s, max_concurrent=%s, recognition=%s, profiles_dir=%s)",
        settings.device,
        settings.max_concurrent,
        settings.recognition_model,
        settings.profiles_dir,
    )
    logger.info(
        "Match thresholds: distance<=%s cosine>=%s required_variant_matches>=%s",
        settings.distance_threshold,
        settings.cosine_threshold,
        settings.required_variant_matches,
    )

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager
    app.state.identity_service = build_identity_service(settings, model_manager, inference_pool)

    logger.info("FaceVault ready")
    yield

    logger.info("Shutting down FaceVault")
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("FaceVault shutdown complete")


async def _facevault_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def _timeout_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Inference queue is full, try again later"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceVault",
        description="Face identity enrollment and verification API",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(FaceVaultError, _facevault_error_handler)
    application.add_exception_handler(TimeoutError, _timeout_handler)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("facevault.main:app", host=settings.host, port=settings.port)
