"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

from nutrition_label.domain.schema import SchemaVariant

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_path: str
    context_size: int = 2048
    batch_size: int = 1024
    ocr_language: str = "eng"
    ocr_resource_path: str | None = None
    ocr_page_segmentation_mode: int = 3
    ocr_engine_mode: int = 3
    image_width: int = 800
    max_text_length: int = 1000
    schema_variant: SchemaVariant = SchemaVariant.LABELED
    log_timings: bool = False
    workers: int | None = None
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    shutdown_timeout_seconds: float = 5.0
    restart_backoff_initial_seconds: float = 0.5
    restart_backoff_max_seconds: float = 30.0
    restart_min_uptime_seconds: float = 10.0
    app_version: str = "0.1.0"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
        protected_namespaces=(),
    )


def available_cpu_count() -> int:
    """Return the number of CPUs this process is allowed to run on."""
    process_cpu_count = getattr(os, "process_cpu_count", None)
    if process_cpu_count is not None:
        count = process_cpu_count()
    elif hasattr(os, "sched_getaffinity"):
        count = len(os.sched_getaffinity(0))
    else:
        count = os.cpu_count()
    return max(1, count or 1)


def resolve_worker_count(settings: Settings) -> int:
    """Return the configured worker count, defaulting to the usable CPU count."""
    if settings.workers is not None and settings.workers > 0:
        return settings.workers
    return available_cpu_count()
