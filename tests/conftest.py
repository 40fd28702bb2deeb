"""Shared test fixtures."""

import asyncio
import io
import json
from dataclasses import dataclass, field

import pytest
from PIL import Image

from nutrition_label.config import Settings
from nutrition_label.containers import AppContainer
from nutrition_label.domain.schema import build_schema
from nutrition_label.errors import WorkerFatalError
from nutrition_label.services.generation import GenerationSession, LanguageModel
from nutrition_label.services.grammar import ConstraintArtifact, SchemaGrammar
from nutrition_label.services.recognition import RecognitionEngine, RecognitionOptions
from nutrition_label.worker import WorkerContext, start_worker_context

LABEL_TEXT = "Nutrition Facts\nCalories 250 Total Fat 9g Total Carbohydrate 31g Protein 3g"

LABELED_OUTPUT = json.dumps(
    {
        "calories": {"value": 250, "unit": "kcal"},
        "totalFat": {"value": 9, "unit": "g"},
        "carbohydrates": {"value": 31, "unit": "g"},
        "protein": {"value": 3, "unit": "g"},
    }
)


@dataclass
class StubRecognitionEngine(RecognitionEngine):
    """Recognition engine returning fixed text."""

    text: str = LABEL_TEXT
    error: Exception | None = None
    fail_initialize: bool = False
    terminate_delay: float = 0.0
    initialized: bool = False
    terminate_calls: int = 0
    images: list[bytes] = field(default_factory=list)
    options: list[RecognitionOptions] = field(default_factory=list)

    async def initialize(self) -> None:
        if self.fail_initialize:
            raise WorkerFatalError("recognition resources missing")
        self.initialized = True

    async def recognize(self, image_bytes: bytes, options: RecognitionOptions) -> str:
        self.images.append(image_bytes)
        self.options.append(options)
        if self.error is not None:
            raise self.error
        return self.text

    async def terminate(self) -> None:
        self.terminate_calls += 1
        if self.terminate_delay:
            await asyncio.sleep(self.terminate_delay)


@dataclass
class StubGenerationSession(GenerationSession):
    """Session recording its single call on the owning model."""

    model: "StubLanguageModel"

    async def generate(
        self, prompt: str, artifact: ConstraintArtifact, max_tokens: int
    ) -> str:
        self.model.calls.append((prompt, artifact, max_tokens))
        if self.model.error is not None:
            raise self.model.error
        return self.model.output


@dataclass
class StubLanguageModel(LanguageModel):
    """Language model returning a canned constrained output."""

    output: str = LABELED_OUTPUT
    error: Exception | None = None
    size: int = 2048
    closed: bool = False
    sessions: list[StubGenerationSession] = field(default_factory=list)
    calls: list[tuple[str, ConstraintArtifact, int]] = field(default_factory=list)

    @property
    def context_size(self) -> int:
        return self.size

    def new_session(self) -> StubGenerationSession:
        session = StubGenerationSession(model=self)
        self.sessions.append(session)
        return session

    def close(self) -> None:
        self.closed = True


def make_png(width: int = 1600, height: int = 400) -> bytes:
    image = Image.new("RGB", (width, height), color="white")
    output = io.BytesIO()
    image.save(output, format="PNG")
    return output.getvalue()


@pytest.fixture
def settings() -> Settings:
    return Settings(model_path="models/test-model.gguf")


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def grammar() -> SchemaGrammar:
    return SchemaGrammar.compile(build_schema("labeled"))


@pytest.fixture
def engine() -> StubRecognitionEngine:
    return StubRecognitionEngine()


@pytest.fixture
def model() -> StubLanguageModel:
    return StubLanguageModel()


@pytest.fixture
def worker_context(
    settings: Settings,
    grammar: SchemaGrammar,
    engine: StubRecognitionEngine,
    model: StubLanguageModel,
) -> WorkerContext:
    return WorkerContext(
        settings=settings,
        grammar=grammar,
        engine=engine,
        model=model,
        recognition_options=RecognitionOptions(),
    )


@pytest.fixture
def container(
    settings: Settings,
    engine: StubRecognitionEngine,
    model: StubLanguageModel,
) -> AppContainer:
    async def build_context() -> WorkerContext:
        return await start_worker_context(
            settings, engine=engine, load_model=lambda: model
        )

    return AppContainer(settings=settings, build_context=build_context)
