"""llama.cpp model runtime for grammar-constrained generation."""

import asyncio
import logging
from dataclasses import dataclass

from llama_cpp import Llama, LlamaGrammar

from nutrition_label.errors import GenerationError, WorkerFatalError
from nutrition_label.services.generation import GenerationSession, LanguageModel
from nutrition_label.services.grammar import ConstraintArtifact

_logger = logging.getLogger(__name__)


@dataclass
class LlamaCppModel(LanguageModel):
    """Model weights loaded into a llama.cpp context."""

    llama: Llama

    @classmethod
    def load(
        cls, model_path: str, context_size: int, batch_size: int
    ) -> "LlamaCppModel":
        """Load a GGUF model file, failing the worker if it cannot be read."""
        try:
            llama = Llama(
                model_path=model_path,
                n_ctx=context_size,
                n_batch=batch_size,
                verbose=False,
            )
        except (ValueError, OSError, RuntimeError) as exc:
            raise WorkerFatalError(f"Unable to load model {model_path}: {exc}") from exc
        _logger.info("Loaded model %s (n_ctx=%s)", model_path, llama.n_ctx())
        return cls(llama=llama)

    @property
    def context_size(self) -> int:
        """Context window size of the loaded model."""
        return self.llama.n_ctx()

    def new_session(self) -> "LlamaCppSession":
        """Create a single-shot generation session."""
        return LlamaCppSession(llama=self.llama)

    def close(self) -> None:
        """Free the llama.cpp context and weights."""
        self.llama.close()


@dataclass
class LlamaCppSession(GenerationSession):
    """One chat completion against the shared model."""

    llama: Llama
    used: bool = False

    async def generate(
        self, prompt: str, artifact: ConstraintArtifact, max_tokens: int
    ) -> str:
        """Run a grammar-constrained completion off the event loop."""
        if self.used:
            raise RuntimeError("Generation sessions are single-shot")
        self.used = True
        return await asyncio.to_thread(self._generate, prompt, artifact, max_tokens)

    def _generate(
        self, prompt: str, artifact: ConstraintArtifact, max_tokens: int
    ) -> str:
        try:
            grammar = LlamaGrammar.from_string(artifact.grammar, verbose=False)
        except (ValueError, RuntimeError) as exc:
            raise GenerationError(f"Invalid constraint artifact: {exc}") from exc
        try:
            completion = self.llama.create_chat_completion(
                messages=[{"role": "user", "content": prompt}],
                grammar=grammar,
                max_tokens=max_tokens,
            )
        except (ValueError, RuntimeError, MemoryError) as exc:
            raise GenerationError(f"Inference failed: {exc}") from exc
        content = completion["choices"][0]["message"].get("content")
        if not content:
            raise GenerationError("Model returned an empty completion")
        return content
