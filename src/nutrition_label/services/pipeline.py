"""End-to-end extraction of nutrition facts from a label image."""

import asyncio
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from nutrition_label.domain.schema import StructuredRecord
from nutrition_label.errors import ValidationError
from nutrition_label.services.imaging import normalize_image

if TYPE_CHECKING:
    from nutrition_label.worker import WorkerContext

_logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "Analyze the nutritional facts table in this text and provide the "
    "information in a structured format:\n{text}"
)


@dataclass(frozen=True)
class ExtractionRequest:
    """Image payload for a single extraction call."""

    image: bytes | None
    content_type: str | None = None


def truncate_text(text: str, limit: int) -> str:
    """Cut text to at most ``limit`` characters."""
    if limit < 0:
        raise ValueError("limit must be non-negative")
    return text[:limit]


def build_prompt(text: str) -> str:
    """Build the instruction prompt embedding recognized label text."""
    return PROMPT_TEMPLATE.format(text=text)


@dataclass
class ExtractionPipeline:
    """Runs normalize, recognize, generate and decode for one request."""

    context: "WorkerContext"

    async def extract(self, request: ExtractionRequest) -> StructuredRecord:
        """Extract a structured record from the request image."""
        if not request.image:
            raise ValidationError("no-image")
        settings = self.context.settings
        timings: dict[str, float] = {}

        with _timed(timings, "normalize"):
            image = await asyncio.to_thread(
                normalize_image, request.image, settings.image_width
            )
        with _timed(timings, "recognize"):
            text = await self.context.engine.recognize(
                image, self.context.recognition_options
            )
        _logger.info("Recognized text (%s chars):\n%s", len(text), text)

        prompt = build_prompt(truncate_text(text, settings.max_text_length))
        model = self.context.model
        session = model.new_session()
        with _timed(timings, "generate"):
            raw_output = await session.generate(
                prompt, self.context.grammar.artifact, model.context_size
            )
        _logger.info("Model output: %s", raw_output)

        with _timed(timings, "decode"):
            record = self.context.grammar.decode(raw_output)
        if settings.log_timings:
            _logger.info(
                "Extraction timings: %s",
                ", ".join(f"{step}={seconds:.3f}s" for step, seconds in timings.items()),
            )
        return record


@contextmanager
def _timed(timings: dict[str, float], step: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        timings[step] = time.perf_counter() - started
