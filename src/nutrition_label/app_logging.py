"""Logging configuration helpers."""

import logging


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with a single stream handler.

    Worker processes call this again after start-up, so the record format
    carries the process id to tell interleaved worker output apart.
    """
    logger = logging.getLogger("nutrition_label")
    logger.setLevel(level)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(levelname)s: [%(process)d] %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
