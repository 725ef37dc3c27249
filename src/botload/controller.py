import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import httpx

from botload.aggregator import MetricKind, MetricsAggregator, MetricsSnapshot, SampleSink
from botload.auth import TokenCache, build_token_provider
from botload.config import Settings
from botload.errors import ConfigurationError, TokenError
from botload.http import HttpSession
from botload.metrics import THRESHOLD_BREACHES_TOTAL
from botload.options import Scenario, SetupContext
from botload.pool import IterationBudget, VUPool
from botload.scheduler import RunClock, Schedule
from botload.thresholds import ThresholdEvaluator, ThresholdResult, ThresholdSpec, first_abort

logger = logging.getLogger(__name__)


class RunState(StrEnum):
    IDLE = "idle"
    SETUP = "setup"
    RUNNING = "running"
    ABORTING = "aborting"
    TEARDOWN = "teardown"
    REPORTED = "reported"


class RunStatus(StrEnum):
    COMPLETED = "completed"
    ABORTED_BY_SLA = "aborted_by_sla"
    ABORTED_BY_ERROR = "aborted_by_error"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class RunResult:
    scenario: str
    status: RunStatus
    duration: float
    metrics: MetricsSnapshot
    thresholds: list[ThresholdResult]
    threshold_specs: list[ThresholdSpec] = field(default_factory=list)
    metric_kinds: dict[str, MetricKind] = field(default_factory=dict)
    abort_reason: ThresholdResult | None = None
    error: str | None = None

    @property
    def thresholds_passed(self) -> bool:
        return all(result.passed for result in self.thresholds)

    def recompute_thresholds(self) -> list[ThresholdResult]:
        return ThresholdEvaluator(self.threshold_specs, self.metric_kinds).evaluate(self.metrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "status": self.status.value,
            "duration": self.duration,
            "thresholds_passed": self.thresholds_passed,
            "abort_reason": self.abort_reason.to_dict() if self.abort_reason else None,
            "error": self.error,
            "thresholds": [result.to_dict() for result in self.thresholds],
            "metrics": self.metrics.to_dict(),
        }


class RunController:
    """Drives one scenario through setup, staged execution, teardown and reporting.

    A controller executes exactly one run. The tick loop reconciles the VU pool
    against the schedule and evaluates thresholds; an abort-on-fail breach, an
    external ``cancel()`` or a crashed VU drains the pool instead of killing it.
    """

    def __init__(
        self,
        scenario: Scenario,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        token_cache: TokenCache | None = None,
        sink: SampleSink | None = None,
    ) -> None:
        self._scenario = scenario
        self._settings = settings
        self._client = client
        self._token_cache = token_cache or TokenCache()
        self._options = scenario.options
        self.aggregator = MetricsAggregator(sink=sink)
        self._clock = RunClock()
        self._cancel = asyncio.Event()
        self._pool: VUPool | None = None
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    def cancel(self) -> None:
        self._cancel.set()
        if self._pool is not None:
            self._pool.stop_all()

    def _build_schedule(self) -> Schedule:
        options = self._options
        if options.stages:
            return Schedule(options.stages)
        duration = options.duration
        if options.iterations is not None and not duration:
            duration = options.max_duration
        if duration <= 0:
            raise ConfigurationError("either stages, duration or iterations must be configured")
        return Schedule([], flat_target=options.vus, flat_duration=duration)

    async def run(self) -> RunResult:
        if self._state is not RunState.IDLE:
            raise RuntimeError("a RunController executes exactly one run")
        self._state = RunState.SETUP
        client = self._client or httpx.AsyncClient(timeout=self._settings.request_timeout)
        try:
            return await self._run(client)
        finally:
            if self._client is None:
                await client.aclose()

    async def _run(self, client: httpx.AsyncClient) -> RunResult:
        scenario, options = self._scenario, self._options
        schedule = self._build_schedule()
        for name, kind in scenario.metrics.items():
            self.aggregator.declare(name, kind)
        evaluator = ThresholdEvaluator(options.thresholds, self.aggregator.kinds())
        token_provider = build_token_provider(self._settings, client, self._token_cache)
        if token_provider is not None:
            try:
                await token_provider.token()
            except TokenError as e:
                raise ConfigurationError(f"could not obtain a bearer token: {e}") from e
        tags = {"scenario": scenario.name, **options.tags}
        http = HttpSession(client, self.aggregator, token_provider, self._settings.load_test_api_key, tags)

        data = None
        if scenario.setup is not None:
            try:
                data = await scenario.setup(SetupContext(self._settings, http))
            except ConfigurationError:
                raise
            except Exception as e:
                logger.exception("Setup of scenario %s failed", scenario.name)
                return self._report(RunStatus.ABORTED_BY_ERROR, 0.0, evaluator, error=f"setup failed: {e}")

        self._pool = pool = VUPool(
            scenario.exec,
            http,
            self.aggregator,
            data=data,
            think_time=options.think_time,
            budget=IterationBudget(options.iterations),
            tags=tags,
        )
        logger.info(
            "Starting scenario %s: up to %d VUs for %.1fs against %s",
            scenario.name,
            schedule.max_target,
            schedule.duration,
            self._settings.bot_endpoint,
        )
        if options.graceful_stop < self._settings.request_timeout:
            logger.warning(
                "graceful_stop (%.0fs) is shorter than request_timeout (%.0fs), slow requests may be interrupted",
                options.graceful_stop,
                self._settings.request_timeout,
            )
        self._state = RunState.RUNNING
        self._clock.start()
        status, abort_reason, error = await self._tick_loop(pool, schedule, evaluator)

        if status is not RunStatus.COMPLETED:
            self._state = RunState.ABORTING
        pool.stop_all()
        await pool.wait_stopped(options.graceful_stop)
        elapsed = self._clock.elapsed()
        if pool.fatal_error is not None and status is RunStatus.COMPLETED:
            status, error = RunStatus.ABORTED_BY_ERROR, repr(pool.fatal_error)

        self._state = RunState.TEARDOWN
        if scenario.teardown is not None:
            try:
                await scenario.teardown(data, elapsed)
            except Exception:
                logger.exception("Teardown of scenario %s failed", scenario.name)
        return self._report(status, elapsed, evaluator, abort_reason=abort_reason, error=error)

    async def _tick_loop(
        self, pool: VUPool, schedule: Schedule, evaluator: ThresholdEvaluator
    ) -> tuple[RunStatus, ThresholdResult | None, str | None]:
        try:
            while True:
                elapsed = self._clock.elapsed()
                if self._cancel.is_set():
                    logger.warning("Run interrupted after %.1fs", elapsed)
                    return RunStatus.INTERRUPTED, None, None
                if pool.fatal_error is not None:
                    return RunStatus.ABORTED_BY_ERROR, None, repr(pool.fatal_error)
                if schedule.finished(elapsed):
                    return RunStatus.COMPLETED, None, None
                if pool.budget_exhausted and pool.live_count == 0:
                    return RunStatus.COMPLETED, None, None
                pool.reconcile(schedule.target(elapsed))
                results = evaluator.evaluate(self.aggregator.snapshot())
                for result in results:
                    if not result.passed:
                        THRESHOLD_BREACHES_TOTAL.labels(metric=result.metric).inc()
                breach = first_abort(results)
                if breach is not None:
                    logger.error(
                        "Threshold %s on %s failed (observed %s), aborting run",
                        breach.expression,
                        breach.metric,
                        breach.observed,
                    )
                    return RunStatus.ABORTED_BY_SLA, breach, None
                try:
                    await asyncio.wait_for(self._cancel.wait(), timeout=self._options.tick_interval)
                except TimeoutError:
                    pass
        except Exception as e:
            logger.exception("Run loop failed")
            return RunStatus.ABORTED_BY_ERROR, None, repr(e)

    def _report(
        self,
        status: RunStatus,
        elapsed: float,
        evaluator: ThresholdEvaluator,
        abort_reason: ThresholdResult | None = None,
        error: str | None = None,
    ) -> RunResult:
        snapshot = self.aggregator.snapshot()
        result = RunResult(
            scenario=self._scenario.name,
            status=status,
            duration=elapsed,
            metrics=snapshot,
            thresholds=evaluator.evaluate(snapshot),
            threshold_specs=evaluator.specs,
            metric_kinds=self.aggregator.kinds(),
            abort_reason=abort_reason,
            error=error,
        )
        self._state = RunState.REPORTED
        logger.info("Scenario %s finished with status %s in %.2fs", self._scenario.name, status, elapsed)
        return result
