import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from botload.aggregator import MetricHandle, MetricsAggregator, Sample, submetric_name
from botload.errors import InternalError
from botload.http import HttpSession
from botload.metrics import ITERATION_DURATION, ITERATIONS_TOTAL

logger = logging.getLogger(__name__)


@dataclass
class IterationContext:
    vu: int
    iteration: int
    data: Any
    http: HttpSession
    aggregator: MetricsAggregator
    tags: dict[str, str] = field(default_factory=dict)

    def check(self, value: Any, checks: Mapping[str, Callable[[Any], bool]]) -> bool:
        """Record one ``checks`` sample per named assertion; True when all hold."""
        all_passed = True
        for name, predicate in checks.items():
            passed = bool(predicate(value))
            tags = {**self.tags, "check": name}
            self.aggregator.record(Sample("checks", float(passed), tags))
            self.aggregator.rate(submetric_name("checks", check=name)).add(passed, tags)
            all_passed = all_passed and passed
        return all_passed

    def counter(self, name: str) -> MetricHandle:
        return self.aggregator.counter(name, self.tags)

    def rate(self, name: str) -> MetricHandle:
        return self.aggregator.rate(name, self.tags)

    def trend(self, name: str) -> MetricHandle:
        return self.aggregator.trend(name, self.tags)

    def gauge(self, name: str) -> MetricHandle:
        return self.aggregator.gauge(name, self.tags)


IterationFn = Callable[[IterationContext], Awaitable[None]]


async def think(think_time: tuple[float, float], stop: asyncio.Event) -> None:
    delay = random.uniform(*think_time)
    if delay <= 0 or stop.is_set():
        return
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except TimeoutError:
        pass


async def run_iteration(
    fn: IterationFn,
    ctx: IterationContext,
    think_time: tuple[float, float],
    stop: asyncio.Event,
) -> bool:
    start = time.perf_counter()
    failed = False
    try:
        await fn(ctx)
    except InternalError:
        raise
    except asyncio.CancelledError:
        _record_iteration(ctx, time.perf_counter() - start, "interrupted")
        raise
    except Exception as e:
        failed = True
        logger.warning("VU %d iteration %d failed: %s: %s", ctx.vu, ctx.iteration, type(e).__name__, e)
    _record_iteration(ctx, time.perf_counter() - start, "failed" if failed else "ok")
    await think(think_time, stop)
    return not failed


def _record_iteration(ctx: IterationContext, duration: float, result: str) -> None:
    tags = ctx.tags
    if result == "interrupted":
        tags = {**tags, "interrupted": "true"}
        ctx.aggregator.record(Sample("iterations_interrupted", 1.0, tags))
    ctx.aggregator.record(Sample("iterations", 1.0, tags))
    ctx.aggregator.record(Sample("iteration_duration", duration * 1000, tags))
    ctx.aggregator.record(Sample("iteration_failed", float(result != "ok"), tags))
    ITERATIONS_TOTAL.labels(result=result).inc()
    ITERATION_DURATION.observe(duration)
