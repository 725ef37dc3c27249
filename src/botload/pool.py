import asyncio
import logging
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from botload.aggregator import MetricsAggregator, Sample
from botload.executor import IterationContext, IterationFn, run_iteration
from botload.http import HttpSession
from botload.metrics import VUS_ACTIVE

logger = logging.getLogger(__name__)


class VUState(StrEnum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class VirtualUser:
    id: int
    state: VUState = VUState.STARTING
    iterations: int = 0
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self.state in (VUState.STARTING, VUState.RUNNING)

    def request_stop(self) -> None:
        if self.active:
            self.state = VUState.STOPPING
        self.stop_event.set()


class IterationBudget:
    """Total iterations shared by every VU; ``None`` means unlimited."""

    def __init__(self, total: int | None = None) -> None:
        self._remaining = total

    @property
    def exhausted(self) -> bool:
        return self._remaining is not None and self._remaining <= 0

    def claim(self) -> bool:
        if self._remaining is None:
            return True
        if self._remaining <= 0:
            return False
        self._remaining -= 1
        return True


class VUPool:
    def __init__(
        self,
        fn: IterationFn,
        http: HttpSession,
        aggregator: MetricsAggregator,
        *,
        data: Any = None,
        think_time: tuple[float, float] = (0.0, 0.0),
        budget: IterationBudget | None = None,
        tags: dict[str, str] | None = None,
    ) -> None:
        self._fn = fn
        self._http = http
        self._aggregator = aggregator
        self._data = data
        self._think_time = think_time
        self._budget = budget or IterationBudget()
        self._tags = tags or {}
        self._lock = threading.Lock()
        self._vus: dict[int, VirtualUser] = {}
        self._next_id = 1
        self._max_live = 0
        self._cancelled = asyncio.Event()
        self.fatal_error: BaseException | None = None

    @property
    def active_count(self) -> int:
        with self._lock:
            return sum(1 for vu in self._vus.values() if vu.active)

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._vus)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def budget_exhausted(self) -> bool:
        return self._budget.exhausted

    def live(self) -> list[VirtualUser]:
        with self._lock:
            return list(self._vus.values())

    def reconcile(self, target: int) -> None:
        with self._lock:
            active = sorted((vu for vu in self._vus.values() if vu.active), key=lambda vu: vu.id)
            if len(active) < target and not self._cancelled.is_set() and not self._budget.exhausted:
                for _ in range(target - len(active)):
                    self._spawn()
            elif len(active) > target:
                for vu in active[target:]:
                    vu.request_stop()
                    logger.debug("Stopping VU %d", vu.id)
        self._report()

    def stop_all(self) -> None:
        self._cancelled.set()
        with self._lock:
            for vu in self._vus.values():
                vu.request_stop()
        self._report()

    async def wait_stopped(self, timeout: float) -> int:
        """Wait for every VU to finish its iteration; cancel the rest after ``timeout``."""
        tasks = [vu.task for vu in self.live() if vu.task is not None]
        if not tasks:
            return 0
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning("Graceful stop timed out, cancelling %d VUs mid-iteration", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)

    def _spawn(self) -> None:
        vu = VirtualUser(self._next_id)
        self._next_id += 1
        self._vus[vu.id] = vu
        self._max_live = max(self._max_live, len(self._vus))
        vu.task = asyncio.create_task(self._run(vu), name=f"vu-{vu.id}")
        vu.task.add_done_callback(self._on_done)
        logger.debug("Started VU %d", vu.id)

    def _remove(self, vu: VirtualUser) -> None:
        vu.state = VUState.STOPPED
        with self._lock:
            self._vus.pop(vu.id, None)
        self._report()

    def _report(self) -> None:
        active = self.active_count
        VUS_ACTIVE.set(active)
        self._aggregator.record(Sample("vus", float(active), self._tags))
        self._aggregator.record(Sample("vus_max", float(self._max_live), self._tags))

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and self.fatal_error is None:
            logger.error("VU task %s crashed: %r", task.get_name(), error)
            self.fatal_error = error

    async def _run(self, vu: VirtualUser) -> None:
        if vu.state is VUState.STARTING:
            vu.state = VUState.RUNNING
        try:
            while not vu.stop_event.is_set() and not self._cancelled.is_set():
                if not self._budget.claim():
                    break
                vu.iterations += 1
                ctx = IterationContext(
                    vu=vu.id,
                    iteration=vu.iterations,
                    data=self._data,
                    http=self._http,
                    aggregator=self._aggregator,
                    tags={**self._tags, "vu": str(vu.id)},
                )
                await run_iteration(self._fn, ctx, self._think_time, vu.stop_event)
        finally:
            self._remove(vu)
