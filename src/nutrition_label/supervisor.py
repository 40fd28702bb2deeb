"""Fixed-size pool of worker processes that replaces workers as they exit."""

import logging
import multiprocessing
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from multiprocessing.connection import wait
from multiprocessing.context import BaseContext
from multiprocessing.process import BaseProcess
from types import FrameType

_logger = logging.getLogger(__name__)


class SupervisorState(StrEnum):
    """Lifecycle of the supervisor itself."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class RestartPolicy:
    """Delay applied before replacing a worker.

    Workers that lived at least ``min_uptime_seconds`` are replaced
    immediately. Each consecutive early exit from the same slot doubles the
    delay, capped at ``backoff_max_seconds``. Replacement is never abandoned.
    """

    backoff_initial_seconds: float = 0.5
    backoff_max_seconds: float = 30.0
    min_uptime_seconds: float = 10.0

    def delay(self, crash_streak: int) -> float:
        """Return the restart delay for the given number of early exits."""
        if crash_streak <= 0:
            return 0.0
        return min(
            self.backoff_max_seconds,
            self.backoff_initial_seconds * 2 ** (crash_streak - 1),
        )


@dataclass
class WorkerProcess:
    """Supervisor-side handle for one worker process."""

    slot: int
    generation: int
    process: BaseProcess
    started_at: float

    @property
    def pid(self) -> int | None:
        """Operating system process id."""
        return self.process.pid

    @property
    def alive(self) -> bool:
        """Whether the process is still running."""
        return self.process.is_alive()


@dataclass
class _PendingRestart:
    due_at: float
    slot: int
    generation: int


@dataclass
class WorkerSupervisor:
    """Keeps ``worker_count`` processes running ``target(*args)``.

    ``shutdown_timeout`` bounds how long ``run`` waits for workers to exit
    after forwarding a termination signal before killing them.
    """

    target: Callable[..., object]
    args: tuple[object, ...] = ()
    worker_count: int = 1
    restart_policy: RestartPolicy = field(default_factory=RestartPolicy)
    mp_context: BaseContext = field(
        default_factory=lambda: multiprocessing.get_context("spawn")
    )
    shutdown_timeout: float = 10.0
    state: SupervisorState = field(default=SupervisorState.NOT_STARTED, init=False)
    _workers: dict[int, WorkerProcess] = field(default_factory=dict, init=False)
    _pending: list[_PendingRestart] = field(default_factory=list, init=False)
    _crash_streaks: dict[int, int] = field(default_factory=dict, init=False)
    _should_exit: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1")

    @property
    def workers(self) -> tuple[WorkerProcess, ...]:
        """Current worker handles ordered by slot."""
        return tuple(self._workers[slot] for slot in sorted(self._workers))

    @property
    def alive_count(self) -> int:
        """Number of worker processes currently running."""
        return sum(1 for worker in self._workers.values() if worker.alive)

    @property
    def pending_restarts(self) -> int:
        """Number of replacements waiting out their backoff delay."""
        return len(self._pending)

    def start(self) -> None:
        """Start every worker without waiting for them to become ready."""
        if self.state is not SupervisorState.NOT_STARTED:
            raise RuntimeError("Supervisor was already started")
        self.state = SupervisorState.RUNNING
        _logger.info("Starting %s worker processes", self.worker_count)
        for slot in range(self.worker_count):
            self._spawn(slot, generation=0)

    def poll(self, timeout: float | None = None) -> int:
        """Wait for worker exits, schedule replacements and start due ones.

        Returns the number of workers started during the call.
        """
        started = self._spawn_due()
        by_sentinel = {
            worker.process.sentinel: worker for worker in self._workers.values()
        }
        wait_timeout = self._wait_timeout(timeout)
        if by_sentinel:
            ready = wait(list(by_sentinel), timeout=wait_timeout)
        else:
            if wait_timeout:
                time.sleep(wait_timeout)
            ready = []
        for sentinel in ready:
            self.on_worker_exit(by_sentinel[sentinel])
        return started + self._spawn_due()

    def on_worker_exit(self, worker: WorkerProcess) -> None:
        """Record a worker exit and schedule exactly one replacement."""
        worker.process.join()
        exit_code = worker.process.exitcode
        signal_name = None
        if exit_code is not None and exit_code < 0:
            signal_name = signal.Signals(-exit_code).name
        _logger.warning(
            "Worker %s exited (pid=%s, generation=%s, code=%s, signal=%s)",
            worker.slot,
            worker.pid,
            worker.generation,
            exit_code,
            signal_name,
        )
        self._workers.pop(worker.slot, None)
        worker.process.close()
        if self.state is not SupervisorState.RUNNING:
            return

        uptime = time.monotonic() - worker.started_at
        if uptime >= self.restart_policy.min_uptime_seconds:
            self._crash_streaks[worker.slot] = 0
        else:
            self._crash_streaks[worker.slot] = self._crash_streaks.get(worker.slot, 0) + 1
        delay = self.restart_policy.delay(self._crash_streaks[worker.slot])
        if delay:
            _logger.warning("Restarting worker %s in %.1fs", worker.slot, delay)
        self._pending.append(
            _PendingRestart(
                due_at=time.monotonic() + delay,
                slot=worker.slot,
                generation=worker.generation + 1,
            )
        )

    def run(self) -> None:
        """Start workers and supervise them until SIGINT or SIGTERM."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self._handle_exit_signal)
        self.start()
        while not self._should_exit:
            self.poll(timeout=0.5)
        self.shutdown()

    def shutdown(self, timeout: float | None = None) -> None:
        """Forward SIGTERM to workers and wait up to ``timeout`` for them."""
        if timeout is None:
            timeout = self.shutdown_timeout
        self.state = SupervisorState.STOPPING
        self._pending.clear()
        workers = list(self._workers.values())
        for worker in workers:
            if worker.alive:
                worker.process.terminate()
        deadline = time.monotonic() + timeout
        for worker in workers:
            worker.process.join(max(0.0, deadline - time.monotonic()))
            if worker.alive:
                _logger.warning("Worker %s did not stop in time; killing", worker.slot)
                worker.process.kill()
                worker.process.join()
        self._workers.clear()
        _logger.info("All workers stopped")

    def _spawn(self, slot: int, generation: int) -> WorkerProcess:
        process = self.mp_context.Process(
            target=self.target,
            args=self.args,
            name=f"nutrition-label-worker-{slot}",
        )
        process.start()
        worker = WorkerProcess(
            slot=slot,
            generation=generation,
            process=process,
            started_at=time.monotonic(),
        )
        self._workers[slot] = worker
        _logger.info(
            "Started worker %s (pid=%s, generation=%s)", slot, process.pid, generation
        )
        return worker

    def _spawn_due(self) -> int:
        if self.state is not SupervisorState.RUNNING:
            return 0
        now = time.monotonic()
        due = [restart for restart in self._pending if restart.due_at <= now]
        for restart in due:
            self._pending.remove(restart)
            self._spawn(restart.slot, restart.generation)
        return len(due)

    def _wait_timeout(self, timeout: float | None) -> float | None:
        if not self._pending:
            return timeout
        until_due = max(
            0.0, min(restart.due_at for restart in self._pending) - time.monotonic()
        )
        return until_due if timeout is None else min(timeout, until_due)

    def _handle_exit_signal(self, signum: int, frame: FrameType | None) -> None:
        _logger.info("Received %s; stopping workers", signal.Signals(signum).name)
        self._should_exit = True
