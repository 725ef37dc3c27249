import logging
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from botload.activity import create_test_activity
from botload.aggregator import MetricKind
from botload.config import Settings
from botload.errors import ConfigurationError
from botload.executor import IterationContext
from botload.options import RunOptions, Scenario, SetupContext
from botload.scheduler import Stage
from botload.thresholds import ThresholdSpec, thresholds_from_mapping

logger = logging.getLogger(__name__)

_PHASES = (
    (5, "phase1-5vu"),
    (10, "phase2-10vu"),
    (25, "phase3-25vu"),
    (50, "phase4-50vu"),
    (75, "phase5-75vu"),
    (100, "phase6-100vu"),
    (150, "phase7-150vu"),
)


@dataclass(frozen=True)
class ScenarioData:
    settings: Settings
    authenticated: bool


async def _setup(ctx: SetupContext) -> ScenarioData:
    settings = ctx.settings
    authenticated = bool(settings.bot_token or settings.microsoft_app_id)
    logger.info("Endpoint: %s", settings.bot_endpoint)
    logger.info("App ID: %s", settings.microsoft_app_id or "not configured (unauthenticated mode)")
    if not authenticated:
        logger.warning("No BOT_TOKEN or app credentials configured, sending unauthenticated requests")
    return ScenarioData(settings=settings, authenticated=authenticated)


async def _teardown(data: ScenarioData | None, elapsed: float) -> None:
    logger.info("Test completed in %.2fs", elapsed)


def _status_ok(response: httpx.Response) -> bool:
    return response.status_code in (200, 202)


def _elapsed_ms(response: httpx.Response) -> float:
    return response.elapsed.total_seconds() * 1000


async def send_message(
    ctx: IterationContext, text: str | None = None, tags: dict[str, str] | None = None
) -> httpx.Response:
    settings = ctx.data.settings
    activity = create_test_activity(settings, text, conversation_id=f"load-conversation-{ctx.vu}-{ctx.iteration}")
    return await ctx.http.post(settings.bot_endpoint, json=activity.to_payload(), name="SendMessage", tags=tags)


def _log_failure(response: httpx.Response, prefix: str = "") -> None:
    logger.error("%sRequest failed: %s - %s", prefix, response.status_code, response.text[:200])


async def smoke_iteration(ctx: IterationContext) -> None:
    settings = ctx.data.settings
    health = await ctx.http.get(settings.resolved_health_endpoint, name="HealthCheck")
    if ctx.check(health, {"health endpoint is accessible": lambda r: r.status_code == 200}):
        logger.info("Health check passed")
    else:
        logger.warning("Health check returned: %s", health.status_code)

    response = await send_message(ctx, "smoke test")
    ok = ctx.check(
        response,
        {
            "endpoint is reachable": lambda r: r.status_code != 0,
            "status is 200 or 202": _status_ok,
            "status is not 401 (auth OK)": lambda r: r.status_code != 401,
            "status is not 403 (forbidden)": lambda r: r.status_code != 403,
            "status is not 500 (server error)": lambda r: r.status_code != 500,
            "response time < 5s": lambda r: _elapsed_ms(r) < 5000,
        },
    )
    logger.info("Response status: %s, time: %.2fms", response.status_code, _elapsed_ms(response))
    if response.status_code == 401:
        logger.error("Authentication failed, check BOT_TOKEN or app credentials")
    elif response.status_code == 403:
        logger.error("Forbidden, check bot permissions and credentials")
    elif response.status_code == 404:
        logger.error("Not found, check the endpoint URL")
    elif response.status_code >= 500:
        _log_failure(response)
    if not ok:
        logger.error("Some smoke checks failed")


async def load_iteration(ctx: IterationContext) -> None:
    response = await send_message(ctx)
    ok = ctx.check(
        response,
        {
            "status is 200 or 202": _status_ok,
            "response time < 1000ms": lambda r: _elapsed_ms(r) < 1000,
            "no error in response": lambda r: "error" not in r.text,
        },
    )
    ctx.rate("errors").add(not ok)
    if not ok:
        _log_failure(response)


def stress_phase(vu: int) -> str:
    for limit, phase in _PHASES:
        if vu <= limit:
            return phase
    return "phase8-200vu"


async def stress_iteration(ctx: IterationContext) -> None:
    phase = stress_phase(ctx.vu)
    response = await send_message(ctx, ctx.data.settings.test_message or "stress test", tags={"phase": phase})
    ctx.counter("total_requests").add(1)
    ctx.trend("response_time_trend").add(_elapsed_ms(response))
    ok = ctx.check(
        response,
        {
            "status is 200 or 202": _status_ok,
            "response time < 10s": lambda r: _elapsed_ms(r) < 10_000,
        },
    )
    ctx.rate("success_rate").add(ok)
    ctx.rate("errors").add(not ok)
    if not ok:
        _log_failure(response, f"[{phase}] ")


def smoke(settings: Settings) -> Scenario:
    return Scenario(
        name="smoke",
        description="single VU, single iteration connectivity check",
        exec=smoke_iteration,
        options=RunOptions(
            vus=1,
            iterations=1,
            think_time=(0.0, 0.0),
            tick_interval=settings.tick_interval,
            graceful_stop=settings.graceful_stop,
            thresholds=thresholds_from_mapping(
                {"http_req_failed": ["rate<0.1"], "http_req_duration": ["p(95)<2000"]}
            ),
            tags={"test_type": "smoke"},
        ),
        setup=_setup,
        teardown=_teardown,
    )


def load(settings: Settings) -> Scenario:
    vus = settings.default_vus
    return Scenario(
        name="load",
        description="ramp to DEFAULT_VUS, hold for DEFAULT_DURATION, ramp down",
        exec=load_iteration,
        options=RunOptions(
            stages=[
                Stage(duration="10s", target=vus),
                Stage(duration=settings.default_duration, target=vus),
                Stage(duration="10s", target=0),
            ],
            think_time=(1.0, 1.0),
            tick_interval=settings.tick_interval,
            graceful_stop=settings.graceful_stop,
            thresholds=[
                ThresholdSpec(metric="http_req_failed", expression="rate<0.01"),
                ThresholdSpec(metric="http_req_duration", expression="p(95)<500"),
                ThresholdSpec(metric="http_req_duration", expression="p(99)<1000"),
                ThresholdSpec(metric="errors", expression="rate<0.05"),
            ],
            tags={"test_type": "load"},
        ),
        setup=_setup,
        teardown=_teardown,
        metrics={"errors": MetricKind.RATE},
    )


def stress(settings: Settings) -> Scenario:
    stages = []
    for target in (5, 10, 25, 50, 75, 100, 150, 200):
        stages.append(Stage(duration="30s", target=target))
        stages.append(Stage(duration="1m", target=target))
    stages.append(Stage(duration="30s", target=0))
    return Scenario(
        name="stress",
        description="progressive 5 to 200 VU breakpoint search, aborts on SLA breach",
        exec=stress_iteration,
        options=RunOptions(
            stages=stages,
            think_time=(settings.think_time_min, settings.think_time_max),
            tick_interval=settings.tick_interval,
            graceful_stop=settings.graceful_stop,
            thresholds=thresholds_from_mapping(
                {
                    "http_req_duration": [{"threshold": "p(95)<10000", "abortOnFail": True}],
                    "http_req_failed": [{"threshold": "rate<0.01", "abortOnFail": True}],
                    "errors": ["rate<0.05"],
                }
            ),
            tags={"test_type": "stress", "test_name": "breakpoint-finder"},
        ),
        setup=_setup,
        teardown=_teardown,
        metrics={
            "errors": MetricKind.RATE,
            "success_rate": MetricKind.RATE,
            "response_time_trend": MetricKind.TREND,
            "total_requests": MetricKind.COUNTER,
        },
    )


SCENARIOS: dict[str, Callable[[Settings], Scenario]] = {
    "smoke": smoke,
    "load": load,
    "stress": stress,
}


def get_scenario(name: str, settings: Settings) -> Scenario:
    try:
        factory = SCENARIOS[name]
    except KeyError:
        raise ConfigurationError(f"unknown scenario {name!r}, choose from {', '.join(SCENARIOS)}") from None
    return factory(settings)
