"""Tesseract-backed recognition engine."""

import asyncio
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import pytesseract
from PIL import Image, UnidentifiedImageError

from nutrition_label.errors import EngineError, WorkerFatalError
from nutrition_label.services.recognition import RecognitionEngine, RecognitionOptions

_logger = logging.getLogger(__name__)


@dataclass
class TesseractEngine(RecognitionEngine):
    """Recognition engine running tesseract on a dedicated worker thread."""

    language: str = "eng"
    resource_path: str | None = None
    _executor: ThreadPoolExecutor | None = field(default=None, init=False, repr=False)
    _terminated: bool = field(default=False, init=False)

    async def initialize(self) -> None:
        """Verify the tesseract binary and language data are available."""
        if self._executor is not None or self._terminated:
            raise WorkerFatalError("Recognition engine was already initialized")
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tesseract")
        loop = asyncio.get_running_loop()
        try:
            available = await loop.run_in_executor(executor, self._probe)
        except (pytesseract.TesseractError, OSError) as exc:
            executor.shutdown(wait=False)
            raise WorkerFatalError(f"Tesseract is unavailable: {exc}") from exc
        missing = [lang for lang in self.language.split("+") if lang not in available]
        if missing:
            executor.shutdown(wait=False)
            raise WorkerFatalError(
                f"Tesseract language data not found: {', '.join(missing)}"
            )
        self._executor = executor

    async def recognize(self, image_bytes: bytes, options: RecognitionOptions) -> str:
        """Run OCR on the image bytes with the given decoding options."""
        if self._executor is None:
            raise EngineError("Recognition engine is not running")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self._recognize, image_bytes, options
        )

    async def terminate(self) -> None:
        """Shut down the recognition thread after in-flight work finishes."""
        if self._terminated:
            raise EngineError("Recognition engine was already terminated")
        self._terminated = True
        executor, self._executor = self._executor, None
        if executor is not None:
            await asyncio.to_thread(executor.shutdown, wait=True)

    def _probe(self) -> set[str]:
        version = pytesseract.get_tesseract_version()
        languages = set(pytesseract.get_languages(config=self._base_config()))
        _logger.info("Tesseract %s ready (languages=%s)", version, len(languages))
        return languages

    def _recognize(self, image_bytes: bytes, options: RecognitionOptions) -> str:
        config = (
            f"{self._base_config()} --psm {options.page_segmentation_mode} "
            f"--oem {options.engine_mode}"
        ).strip()
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                text = pytesseract.image_to_string(
                    image, lang=self.language, config=config
                )
        except (pytesseract.TesseractError, UnidentifiedImageError, OSError) as exc:
            raise EngineError(f"Tesseract recognition failed: {exc}") from exc
        return text or ""

    def _base_config(self) -> str:
        if not self.resource_path:
            return ""
        return f'--tessdata-dir "{self.resource_path}"'
