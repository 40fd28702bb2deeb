"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from nutrition_label.adapters.llama_cpp_model import LlamaCppModel
from nutrition_label.adapters.tesseract_engine import TesseractEngine
from nutrition_label.config import Settings
from nutrition_label.worker import WorkerContext, start_worker_context


@dataclass
class AppContainer:
    """Holds application-wide dependencies.

    Heavy resources are created by ``build_context`` inside the worker process,
    so nothing is loaded before the process that owns it has started.
    """

    settings: Settings
    build_context: Callable[[], Awaitable[WorkerContext]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()

    async def build_context() -> WorkerContext:
        engine = TesseractEngine(
            language=resolved_settings.ocr_language,
            resource_path=resolved_settings.ocr_resource_path,
        )
        return await start_worker_context(
            resolved_settings,
            engine=engine,
            load_model=lambda: LlamaCppModel.load(
                model_path=resolved_settings.model_path,
                context_size=resolved_settings.context_size,
                batch_size=resolved_settings.batch_size,
            ),
        )

    return AppContainer(settings=resolved_settings, build_context=build_context)
