"""Tests for the FaceVault HTTP API."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI, status

from facevault.config import get_settings
from facevault.errors import ExtractionError
from facevault.identity.service import IdentityService
from facevault.identity.store import JsonProfileStore
from facevault.main import create_app
from facevault.ml.inference import InferencePool
from facevault.ml.model_manager import OnnxModelManager

from .conftest import FakeRecognizer, make_png

RED = (200, 40, 40)
BLUE = (30, 60, 220)


def _init_app_state(app: FastAPI, tmp_path: Path, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    env = {
        "FACEVAULT_PROFILES_DIR": str(tmp_path / "data"),
        "FACEVAULT_MODELS_DIR": str(tmp_path / "models"),
        **env_overrides,
    }
    with patch.dict(os.environ, env):
        settings = get_settings()
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.identity_service = IdentityService(
        FakeRecognizer(),
        JsonProfileStore(settings.profiles_dir),
        app.state.inference_pool,
        settings,
    )


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: InferencePool = app.state.inference_pool
    pool.shutdown()


@pytest.fixture()
def app(tmp_path: Path) -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application, tmp_path)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


async def _register(client: httpx.AsyncClient, name: str, *images: bytes) -> httpx.Response:
    return await client.post(
        "/api/v1/register",
        data={"name": name},
        files=[("images", (f"{i}.png", data, "image/png")) for i, data in enumerate(images)],
    )


async def _find(client: httpx.AsyncClient, name: str, image: bytes) -> httpx.Response:
    return await client.post(
        "/api/v1/find",
        data={"name": name},
        files={"image": ("query.png", image, "image/png")},
    )


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["gpu"] is False
        assert data["models_loaded"] == []
        assert data["concurrent_requests"] == 0
        assert data["queue_depth"] == 0
        assert data["profiles"] == 0

    async def test_health_counts_profiles(self, client: httpx.AsyncClient) -> None:
        await _register(client, "alice", make_png())
        await _register(client, "bob", make_png())
        await client.delete("/api/v1/profiles/bob")

        response = await client.get("/api/v1/health")

        assert response.json()["profiles"] == 1

    async def test_health_gpu_true_when_cuda(self, tmp_path: Path) -> None:
        cuda_app = create_app()
        _init_app_state(cuda_app, tmp_path, FACEVAULT_DEVICE="cuda")
        async for ac in _make_client(cuda_app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["gpu"] is True


class TestRegisterEndpoint:
    async def test_register_one_image(self, client: httpx.AsyncClient) -> None:
        response = await _register(client, "alice", make_png(RED))
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["message"] == "Person Registered"
        assert data["samples_stored"] == 3
        assert data["max_intra_distance"] == pytest.approx(0.0, abs=1e-5)
        assert data["min_intra_similarity"] == pytest.approx(1.0, abs=1e-5)

    async def test_register_several_images(self, client: httpx.AsyncClient) -> None:
        response = await _register(client, "alice", make_png(RED), make_png(BLUE))
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["samples_stored"] == 6

    async def test_register_requires_name(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/register",
            files=[("images", ("a.png", make_png(), "image/png"))],
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Name is required"

    async def test_register_requires_images(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/register", data={"name": "alice"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "At least one image required"

    async def test_register_rejects_too_many_images(self, client: httpx.AsyncClient) -> None:
        response = await _register(client, "alice", *([make_png()] * 6))
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_register_rejects_unsafe_name(self, client: httpx.AsyncClient) -> None:
        response = await _register(client, "../../etc/passwd", make_png())
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "Invalid name" in response.json()["detail"]

    async def test_register_rejects_corrupt_image(self, client: httpx.AsyncClient) -> None:
        response = await _register(client, "alice", b"definitely not a png")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "decode" in response.json()["detail"]

    async def test_register_rejects_oversized_upload(self, tmp_path: Path) -> None:
        small_app = create_app()
        _init_app_state(small_app, tmp_path, FACEVAULT_MAX_FILE_SIZE="64")
        async for ac in _make_client(small_app):
            response = await _register(ac, "alice", make_png())
            assert response.status_code == status.HTTP_400_BAD_REQUEST
            assert "byte limit" in response.json()["detail"]

    async def test_request_checked_before_uploads_are_read(self, tmp_path: Path) -> None:
        small_app = create_app()
        _init_app_state(small_app, tmp_path, FACEVAULT_MAX_FILE_SIZE="64")
        async for ac in _make_client(small_app):
            with patch("facevault.api.routes._read_upload", AsyncMock()) as read_upload:
                bad_name = await _register(ac, "../../etc/passwd", make_png())
                too_many = await _register(ac, "alice", *([make_png()] * 6))

            assert bad_name.status_code == status.HTTP_400_BAD_REQUEST
            assert "Invalid name" in bad_name.json()["detail"]
            assert too_many.status_code == status.HTTP_400_BAD_REQUEST
            assert too_many.json()["detail"] == "At most 5 images allowed, got 6"
            read_upload.assert_not_called()

    async def test_extraction_failure_is_server_error(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        service: IdentityService = app.state.identity_service
        with patch.object(service, "enroll", AsyncMock(side_effect=ExtractionError("model failed"))):
            response = await _register(client, "alice", make_png())
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["detail"] == "model failed"


class TestFindEndpoint:
    async def test_same_image_is_found(self, client: httpx.AsyncClient) -> None:
        await _register(client, "alice", make_png(RED))

        response = await _find(client, "alice", make_png(RED))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["message"] == "Person Found"
        assert data["registered"] is True
        assert data["is_match"] is True
        assert data["variant_matches"] == 9
        assert data["min_distance"] == pytest.approx(0.0, abs=1e-5)
        assert data["max_similarity"] == pytest.approx(1.0, abs=1e-5)
        assert data["centroid_similarity"] == pytest.approx(1.0, abs=1e-5)
        assert data["thresholds"] == {"distance": 0.95, "cosine": 0.62, "required_variant_matches": 1}

    async def test_other_person_not_found(self, client: httpx.AsyncClient) -> None:
        await _register(client, "alice", make_png(RED))

        response = await _find(client, "alice", make_png(BLUE))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["message"] == "Person Not Found"
        assert data["is_match"] is False

    async def test_unregistered_name(self, client: httpx.AsyncClient) -> None:
        response = await _find(client, "bob", make_png())

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data == {"message": "Person not registered", "registered": False}
        assert "min_distance" not in data

    async def test_find_requires_image(self, client: httpx.AsyncClient) -> None:
        await _register(client, "alice", make_png())
        response = await client.post("/api/v1/find", data={"name": "alice"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Image required"

    async def test_find_requires_name(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/find",
            files={"image": ("query.png", make_png(), "image/png")},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_thresholds_from_settings(self, tmp_path: Path) -> None:
        strict_app = create_app()
        _init_app_state(strict_app, tmp_path, FACEVAULT_DISTANCE_THRESHOLD="0", FACEVAULT_REQUIRED_VARIANT_MATCHES="2")
        async for ac in _make_client(strict_app):
            await _register(ac, "alice", make_png(RED))
            response = await _find(ac, "alice", make_png((195, 45, 40)))
            data = response.json()
            assert data["thresholds"]["distance"] == 0.0
            assert data["thresholds"]["required_variant_matches"] == 2
            assert data["is_match"] is False

    async def test_queue_timeout_returns_503(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        service: IdentityService = app.state.identity_service
        with patch.object(service, "verify", AsyncMock(side_effect=TimeoutError())):
            response = await _find(client, "alice", make_png())
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


class TestProfilesEndpoints:
    async def test_list_profiles(self, client: httpx.AsyncClient) -> None:
        await _register(client, "bob", make_png())
        await _register(client, "alice", make_png())

        response = await client.get("/api/v1/profiles")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"names": ["alice", "bob"]}

    async def test_profile_summary(self, client: httpx.AsyncClient) -> None:
        await _register(client, "alice", make_png(RED), make_png(BLUE))

        response = await client.get("/api/v1/profiles/alice")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["name"] == "alice"
        assert data["samples"] == 6

    async def test_profile_summary_unregistered(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/profiles/bob")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "not registered" in response.json()["detail"]

    async def test_delete_profile(self, client: httpx.AsyncClient) -> None:
        await _register(client, "alice", make_png())

        response = await client.delete("/api/v1/profiles/alice")
        assert response.status_code == status.HTTP_204_NO_CONTENT

        response = await client.delete("/api/v1/profiles/alice")
        assert response.status_code == status.HTTP_404_NOT_FOUND

        response = await _find(client, "alice", make_png())
        assert response.json()["registered"] is False
