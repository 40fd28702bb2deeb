"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from nutrition_label.api.app import create_app
from nutrition_label.config import Settings
from nutrition_label.containers import AppContainer
from nutrition_label.errors import WorkerFatalError
from nutrition_label.worker import WorkerContext
from tests.conftest import StubLanguageModel, StubRecognitionEngine


def _upload(image: bytes) -> dict[str, tuple[str, bytes, str]]:
    return {"image": ("label.png", image, "image/png")}


def test_analyze_returns_structured_record(container, png_bytes: bytes) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/analyze-nutrition", files=_upload(png_bytes))

    assert response.status_code == 200
    body = response.json()
    assert body["calories"] == {"value": 250, "unit": "kcal"}
    assert body["totalFat"]["value"] == 9
    assert body["carbohydrates"]["value"] == 31
    assert body["protein"]["value"] == 3
    assert "fiber" not in body


def test_analyze_without_image_returns_400(container) -> None:
    with TestClient(create_app(container)) as client:
        bare = client.post("/analyze-nutrition")
        with_fields = client.post("/analyze-nutrition", data={"note": "front of pack"})

    for response in (bare, with_fields):
        assert response.status_code == 400
        assert response.json() == {"error": "No image file uploaded"}


def test_analyze_empty_upload_returns_400(container) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/analyze-nutrition", files=_upload(b""))

    assert response.status_code == 400


def test_corrupt_image_fails_without_taking_worker_down(
    container, png_bytes: bytes
) -> None:
    with TestClient(create_app(container)) as client:
        failed = client.post("/analyze-nutrition", files=_upload(b"corrupt-bytes"))
        recovered = client.post("/analyze-nutrition", files=_upload(png_bytes))

    assert failed.status_code == 500
    assert failed.json() == {"error": "An error occurred during analysis"}
    assert recovered.status_code == 200


def test_decode_failure_returns_generic_error(
    container, png_bytes: bytes, model: StubLanguageModel
) -> None:
    model.output = '{"calories": {"value": 250, "unit": "kcal"}}'

    with TestClient(create_app(container)) as client:
        response = client.post("/analyze-nutrition", files=_upload(png_bytes))

    assert response.status_code == 500
    assert response.json() == {"error": "An error occurred during analysis"}


def test_version_and_health(container, settings: Settings) -> None:
    with TestClient(create_app(container)) as client:
        version = client.get("/version")
        health = client.get("/health")

    assert version.json() == {"version": settings.app_version}
    assert health.json() == {"status": "ok"}


def test_requests_are_refused_before_startup(container, png_bytes: bytes) -> None:
    client = TestClient(create_app(container))

    health = client.get("/health")
    analyze = client.post("/analyze-nutrition", files=_upload(png_bytes))

    for response in (health, analyze):
        assert response.status_code == 503
        assert response.json() == {"error": "Worker is not ready"}


def test_shutdown_terminates_engine(
    container, engine: StubRecognitionEngine, model: StubLanguageModel
) -> None:
    with TestClient(create_app(container)):
        assert engine.initialized

    assert engine.terminate_calls == 1
    assert model.closed


def test_startup_failure_is_not_swallowed(settings: Settings) -> None:
    async def build_context() -> WorkerContext:
        raise WorkerFatalError("model could not be loaded")

    app = create_app(AppContainer(settings=settings, build_context=build_context))

    with pytest.raises(WorkerFatalError):
        with TestClient(app):
            pass


def test_image_sent_as_text_field_returns_400(container) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/analyze-nutrition", data={"image": "not-a-file"})

    assert response.status_code == 400
    assert response.json() == {"error": "No image file uploaded"}


def test_unexpected_failure_returns_error_envelope(
    container, png_bytes: bytes, engine: StubRecognitionEngine
) -> None:
    engine.error = RuntimeError("tesseract timed out")

    with TestClient(create_app(container)) as client:
        failed = client.post("/analyze-nutrition", files=_upload(png_bytes))
        engine.error = None
        recovered = client.post("/analyze-nutrition", files=_upload(png_bytes))

    assert failed.status_code == 500
    assert failed.json() == {"error": "An error occurred during analysis"}
    assert recovered.status_code == 200
