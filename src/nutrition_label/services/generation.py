"""Constrained generation interfaces."""

from typing import Protocol

from nutrition_label.services.grammar import ConstraintArtifact


class GenerationSession(Protocol):
    """Single-shot constrained generation against a loaded model."""

    async def generate(
        self, prompt: str, artifact: ConstraintArtifact, max_tokens: int
    ) -> str:
        """Return raw model output restricted by the constraint artifact."""


class LanguageModel(Protocol):
    """A model loaded once per worker and shared by its sessions."""

    @property
    def context_size(self) -> int:
        """Size of the model's context window in tokens."""

    def new_session(self) -> GenerationSession:
        """Create a fresh session with no conversation state."""

    def close(self) -> None:
        """Release the loaded model."""
