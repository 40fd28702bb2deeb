"""Process entry points for the supervisor and its workers."""

import logging
import math
import socket
import sys

import uvicorn

from nutrition_label.api.app import create_app
from nutrition_label.app_logging import configure_logging
from nutrition_label.config import Settings, resolve_worker_count
from nutrition_label.containers import build_container
from nutrition_label.supervisor import RestartPolicy, WorkerSupervisor

STARTUP_FAILURE = 3
SHUTDOWN_HEADROOM_SECONDS = 5.0

_logger = logging.getLogger(__name__)


def graceful_shutdown_seconds(settings: Settings) -> int:
    """Seconds a worker may spend draining connections before shutdown."""
    return max(1, math.ceil(settings.shutdown_timeout_seconds))


def supervisor_shutdown_timeout(settings: Settings) -> float:
    """Time the supervisor waits for workers to finish shutting down.

    Covers the connection drain and the engine release, each bounded by the
    worker itself, before stragglers are killed.
    """
    return (
        graceful_shutdown_seconds(settings)
        + settings.shutdown_timeout_seconds
        + SHUTDOWN_HEADROOM_SECONDS
    )


def run_worker(settings: Settings, sockets: list[socket.socket]) -> None:
    """Serve the API from a worker process on the shared listening sockets."""
    configure_logging()
    app = create_app(build_container(settings))
    config = uvicorn.Config(
        app,
        lifespan="on",
        log_config=None,
        timeout_graceful_shutdown=graceful_shutdown_seconds(settings),
    )
    server = uvicorn.Server(config)
    server.run(sockets=sockets)
    if not server.started:
        sys.exit(STARTUP_FAILURE)


def serve(settings: Settings) -> None:
    """Bind the listening socket and supervise a pool of workers on it."""
    configure_logging()
    bind_config = uvicorn.Config(
        "nutrition_label.api.app:create_app", host=settings.host, port=settings.port
    )
    sock = bind_config.bind_socket()
    worker_count = resolve_worker_count(settings)
    supervisor = WorkerSupervisor(
        target=run_worker,
        args=(settings, [sock]),
        worker_count=worker_count,
        restart_policy=RestartPolicy(
            backoff_initial_seconds=settings.restart_backoff_initial_seconds,
            backoff_max_seconds=settings.restart_backoff_max_seconds,
            min_uptime_seconds=settings.restart_min_uptime_seconds,
        ),
        shutdown_timeout=supervisor_shutdown_timeout(settings),
    )
    _logger.info(
        "Listening on %s:%s with %s workers", settings.host, settings.port, worker_count
    )
    try:
        supervisor.run()
    finally:
        sock.close()


def main() -> None:
    """Console entry point."""
    serve(Settings())


if __name__ == "__main__":  # pragma: no cover - exercised in runtime
    main()
