"""Per-process worker context and lifecycle."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from nutrition_label.config import Settings
from nutrition_label.domain.schema import build_schema
from nutrition_label.errors import EngineError, WorkerFatalError
from nutrition_label.services.generation import LanguageModel
from nutrition_label.services.grammar import SchemaGrammar
from nutrition_label.services.recognition import RecognitionEngine, RecognitionOptions

_logger = logging.getLogger(__name__)


class WorkerState(StrEnum):
    """Lifecycle of a worker process with respect to serving traffic."""

    INITIALIZING = "initializing"
    READY = "ready"
    STOPPED = "stopped"


@dataclass
class WorkerContext:
    """Long-lived resources owned by one worker process."""

    settings: Settings
    grammar: SchemaGrammar
    engine: RecognitionEngine
    model: LanguageModel
    recognition_options: RecognitionOptions
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


async def start_worker_context(
    settings: Settings,
    *,
    engine: RecognitionEngine,
    load_model: Callable[[], LanguageModel],
) -> WorkerContext:
    """Compile the schema, load the model and start the recognition engine."""
    try:
        grammar = SchemaGrammar.compile(build_schema(settings.schema_variant))
    except ValueError as exc:
        raise WorkerFatalError(f"Invalid schema configuration: {exc}") from exc
    model = await asyncio.to_thread(load_model)
    try:
        await engine.initialize()
    except BaseException:
        model.close()
        raise
    _logger.info(
        "Worker context ready (schema v%s, n_ctx=%s)",
        grammar.schema.version,
        model.context_size,
    )
    return WorkerContext(
        settings=settings,
        grammar=grammar,
        engine=engine,
        model=model,
        recognition_options=RecognitionOptions(
            page_segmentation_mode=settings.ocr_page_segmentation_mode,
            engine_mode=settings.ocr_engine_mode,
        ),
    )


async def shutdown_worker_context(context: WorkerContext, timeout: float) -> bool:
    """Terminate the recognition engine, waiting at most ``timeout`` seconds.

    Returns whether the engine released its resources in time. The model is
    closed either way.
    """
    released = False
    try:
        await asyncio.wait_for(context.engine.terminate(), timeout=timeout)
        released = True
    except TimeoutError:
        _logger.warning("Recognition engine did not terminate within %ss", timeout)
    except EngineError:
        _logger.exception("Recognition engine failed to terminate")
    context.model.close()
    return released
