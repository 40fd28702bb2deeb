"""Text recognition interfaces."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class RecognitionOptions:
    """Decoding configuration passed to the recognition engine."""

    page_segmentation_mode: int = 3
    engine_mode: int = 3


class RecognitionEngine(Protocol):
    """Stateful text recognizer with an explicit lifecycle."""

    async def initialize(self) -> None:
        """Load recognizer resources; raise ``WorkerFatalError`` on failure."""

    async def recognize(self, image_bytes: bytes, options: RecognitionOptions) -> str:
        """Return recognized text, or an empty string when none is found."""

    async def terminate(self) -> None:
        """Release recognizer resources. Must be called at most once."""
