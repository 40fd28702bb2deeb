"""Tests for the llama.cpp model adapter."""

import asyncio
from dataclasses import dataclass, field

import pytest
from llama_cpp import LlamaGrammar

from nutrition_label.adapters.llama_cpp_model import LlamaCppModel
from nutrition_label.errors import GenerationError, WorkerFatalError
from nutrition_label.services.grammar import SchemaGrammar
from tests.conftest import LABELED_OUTPUT


@dataclass
class FakeLlama:
    """Stand-in for ``llama_cpp.Llama`` recording completion requests."""

    content: str | None = LABELED_OUTPUT
    error: Exception | None = None
    requests: list[dict[str, object]] = field(default_factory=list)
    closed: bool = False

    def n_ctx(self) -> int:
        return 2048

    def create_chat_completion(self, **kwargs):  # type: ignore[no-untyped-def]
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"choices": [{"message": {"role": "assistant", "content": self.content}}]}

    def close(self) -> None:
        self.closed = True


def test_session_runs_constrained_completion(grammar: SchemaGrammar) -> None:
    llama = FakeLlama()
    model = LlamaCppModel(llama=llama)  # type: ignore[arg-type]

    output = asyncio.run(
        model.new_session().generate("Calories 250", grammar.artifact, model.context_size)
    )

    assert output == LABELED_OUTPUT
    request = llama.requests[0]
    assert request["messages"] == [{"role": "user", "content": "Calories 250"}]
    assert request["max_tokens"] == 2048
    assert isinstance(request["grammar"], LlamaGrammar)


def test_sessions_are_single_shot(grammar: SchemaGrammar) -> None:
    session = LlamaCppModel(llama=FakeLlama()).new_session()  # type: ignore[arg-type]

    async def twice() -> None:
        await session.generate("a", grammar.artifact, 16)
        await session.generate("b", grammar.artifact, 16)

    with pytest.raises(RuntimeError):
        asyncio.run(twice())


def test_inference_failure_is_a_generation_error(grammar: SchemaGrammar) -> None:
    llama = FakeLlama(error=RuntimeError("llama_decode returned -3"))
    session = LlamaCppModel(llama=llama).new_session()  # type: ignore[arg-type]

    with pytest.raises(GenerationError):
        asyncio.run(session.generate("prompt", grammar.artifact, 16))


def test_empty_completion_is_a_generation_error(grammar: SchemaGrammar) -> None:
    session = LlamaCppModel(llama=FakeLlama(content="")).new_session()  # type: ignore[arg-type]

    with pytest.raises(GenerationError):
        asyncio.run(session.generate("prompt", grammar.artifact, 16))


def test_close_releases_model() -> None:
    llama = FakeLlama()

    LlamaCppModel(llama=llama).close()  # type: ignore[arg-type]

    assert llama.closed


def test_load_missing_model_is_fatal(tmp_path) -> None:
    with pytest.raises(WorkerFatalError):
        LlamaCppModel.load(
            model_path=str(tmp_path / "missing.gguf"), context_size=512, batch_size=64
        )
