"""Typed failure modes for the extraction service.

Request-scoped errors derive from ``ExtractionError`` so the HTTP layer can map
them to an error envelope without crashing the worker. ``WorkerFatalError`` is
deliberately outside that hierarchy: it is raised during worker start-up and is
left to terminate the process.
"""

from enum import StrEnum


class ExtractionError(Exception):
    """Base class for failures scoped to a single extraction request."""


class ValidationError(ExtractionError):
    """Raised when the request input is missing or unusable."""


class ProcessingError(ExtractionError):
    """Raised when the uploaded image cannot be normalized."""


class EngineError(ExtractionError):
    """Raised when the text recognition engine fails."""


class GenerationError(ExtractionError):
    """Raised when constrained generation fails inside the model runtime."""


class DecodeReason(StrEnum):
    """Why a raw model output could not be decoded into a record."""

    INVALID_JSON = "invalid-json"
    MISSING_REQUIRED_FIELD = "missing-required-field"
    TYPE_MISMATCH = "type-mismatch"


class DecodeError(ExtractionError):
    """Raised when model output does not decode against the schema."""

    def __init__(self, reason: DecodeReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)


class WorkerFatalError(Exception):
    """Raised when a worker cannot reach a state where it may serve traffic."""


__all__ = [
    "DecodeError",
    "DecodeReason",
    "EngineError",
    "ExtractionError",
    "GenerationError",
    "ProcessingError",
    "ValidationError",
    "WorkerFatalError",
]
