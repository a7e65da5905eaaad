"""Periodic background jobs for the extraction router and retention sweep.

Each job owns an asyncio task that waits an initial delay, then runs its
coroutine on a fixed interval. Overlap within a process is prevented by a
RunGuard owned by the component doing the work, not by module state.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from knowledge_sorter.log_config import get_logger

log = get_logger("backend.scheduler")


class RunGuard:
    """Non-blocking "already running" guard.

    Only protects against overlap inside one process; two processes running
    the same job can still overlap.
    """

    def __init__(self, name: str = "job"):
        self.name = name
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()


@dataclass
class PeriodicJob:
    """Runs a coroutine on a fixed interval.

    This is a simple in-process scheduler; it does not coordinate across
    processes.
    """

    name: str
    job: Callable[[], Awaitable[Any]]
    interval_seconds: float
    initial_delay_seconds: float = 0.0
    enabled: bool = True
    _task: asyncio.Task | None = field(default=None, init=False)
    _running: bool = field(default=False, init=False)
    _last_run: float | None = field(default=None, init=False)
    _last_result: Any = field(default=None, init=False)
    _runs: int = field(default=0, init=False)
    _failures: int = field(default=0, init=False)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background task."""
        if not self.enabled:
            log.info(f"{self.name} job disabled")
            return

        if self._running:
            log.warning(f"{self.name} job already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        log.info(
            f"{self.name} job started (every {self.interval_seconds}s, "
            f"first run in {self.initial_delay_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info(f"{self.name} job stopped")

    async def _run_loop(self) -> None:
        try:
            if self.initial_delay_seconds > 0:
                await asyncio.sleep(self.initial_delay_seconds)
            while self._running:
                await self.run_once()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            pass

    async def run_once(self) -> Any:
        """Run the job a single time; failures are logged and counted."""
        self._last_run = time.time()
        self._runs += 1
        try:
            self._last_result = await self.job()
        except Exception as e:
            self._failures += 1
            self._last_result = None
            log.error(f"{self.name} job failed: {e}")
        return self._last_result

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "last_run": self._last_run,
            "runs": self._runs,
            "failures": self._failures,
        }
