"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nutrition_label.app_logging import configure_logging
from nutrition_label.containers import AppContainer
from nutrition_label.errors import DecodeError, ExtractionError, ValidationError
from nutrition_label.services.pipeline import ExtractionPipeline, ExtractionRequest
from nutrition_label.worker import WorkerState, shutdown_worker_context

NO_IMAGE_MESSAGE = "No image file uploaded"
ANALYSIS_FAILED_MESSAGE = "An error occurred during analysis"
NOT_READY_MESSAGE = "Worker is not ready"


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup failures propagate so the worker exits and is replaced.
        context = await app.state.container.build_context()
        app.state.worker_context = context
        app.state.pipeline = ExtractionPipeline(context)
        app.state.worker_state = WorkerState.READY
        logger.info("Worker ready to serve extractions")
        try:
            yield
        finally:
            app.state.worker_state = WorkerState.STOPPED
            await shutdown_worker_context(
                context, container.settings.shutdown_timeout_seconds
            )

    app = FastAPI(lifespan=lifespan)
    app.state.container = container
    app.state.worker_state = WorkerState.INITIALIZING

    @app.exception_handler(ValidationError)
    async def handle_validation_error(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        logger.info("Rejected extraction request: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": NO_IMAGE_MESSAGE},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # The only request body is the image upload; anything else is no image.
        logger.info("Rejected malformed request: %s", exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": NO_IMAGE_MESSAGE},
        )

    @app.exception_handler(ExtractionError)
    async def handle_extraction_error(
        request: Request, exc: ExtractionError
    ) -> JSONResponse:
        if isinstance(exc, DecodeError):
            logger.error("Constrained output failed to decode (%s)", exc)
        else:
            logger.error("Extraction failed", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": ANALYSIS_FAILED_MESSAGE},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @app.get("/health")
    async def health(request: Request) -> dict[str, str]:
        """Report whether this worker is ready to serve extractions."""
        if request.app.state.worker_state is not WorkerState.READY:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=NOT_READY_MESSAGE,
            )
        return {"status": "ok"}

    @app.get("/version")
    async def version() -> dict[str, str]:
        """Return the service version."""
        return {"version": container.settings.app_version}

    @app.post("/analyze-nutrition")
    async def analyze_nutrition(
        request: Request, image: UploadFile | None = File(default=None)
    ) -> dict[str, object]:
        """Extract nutrition facts from an uploaded label image."""
        state = request.app.state
        if state.worker_state is not WorkerState.READY:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=NOT_READY_MESSAGE,
            )
        extraction = ExtractionRequest(
            image=(await image.read() or None) if image is not None else None,
            content_type=image.content_type if image is not None else None,
        )
        try:
            async with state.worker_context.lock:
                record = await state.pipeline.extract(extraction)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError("Unexpected extraction failure") from exc
        return record.to_payload()

    return app
