"""
botload command line.

Usage:
    botload verify
    botload token
    botload run smoke
    botload run load --vus 10 --duration 1m
    botload run stress --out results/stress.json --raw-out results/stress.db
    botload run load --stage 10s:5 --stage 30s:5 --stage 10s:0 --abort-threshold "http_req_failed:rate<0.05"
    botload mock-bot --port 3978
"""

import asyncio
import dataclasses
import signal
from pathlib import Path

import click
import httpx
import uvicorn
from prometheus_client import start_http_server
from pydantic import ValidationError

from botload.app import create_app
from botload.auth import ClientCredentialsIssuer, token_info
from botload.config import Settings
from botload.controller import RunController, RunResult
from botload.database import open_db
from botload.dependencies import get_mock_settings, get_settings
from botload.errors import BotloadError, ConfigurationError
from botload.logging_setup import configure_logging
from botload.options import Scenario
from botload.scenarios import SCENARIOS, get_scenario
from botload.scheduler import Stage
from botload.store import SQLiteSampleStore, flush_task
from botload.summary import default_export_path, exit_code, export_json, text_summary
from botload.thresholds import parse_threshold_option
from botload.verify import CheckStatus, VerificationReport, verify_setup

_MARKS = {
    CheckStatus.OK: ("✓", "green", "OK"),
    CheckStatus.WARNING: ("⚠", "yellow", "WARNING"),
    CheckStatus.FAIL: ("✗", "red", "FAIL"),
}


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration:\n{e}") from e


def parse_stage_option(text: str) -> Stage:
    duration, sep, target = text.partition(":")
    if not sep:
        raise ConfigurationError(f"stage {text!r} must look like 'duration:target', e.g. 30s:5")
    try:
        return Stage(duration=duration, target=int(target))
    except (ValueError, ValidationError) as e:
        raise ConfigurationError(f"invalid stage {text!r}: {e}") from e


def apply_overrides(
    scenario: Scenario,
    *,
    vus: int | None = None,
    duration: str | None = None,
    iterations: int | None = None,
    stages: tuple[str, ...] = (),
    thresholds: tuple[str, ...] = (),
    abort_thresholds: tuple[str, ...] = (),
    default_duration: str = "30s",
) -> Scenario:
    options = scenario.options
    update: dict = {}
    if stages:
        update["stages"] = [parse_stage_option(stage) for stage in stages]
    elif vus is not None or duration is not None:
        update["stages"] = []
        update["vus"] = vus if vus is not None else options.vus
        update["duration"] = duration or default_duration
    if iterations is not None:
        update["iterations"] = iterations
    extra = [parse_threshold_option(t) for t in thresholds]
    extra += [parse_threshold_option(t, abort_on_fail=True) for t in abort_thresholds]
    if extra:
        update["thresholds"] = [*options.thresholds, *extra]
    if not update:
        return scenario
    merged = options.model_dump()
    merged.update(update)
    return dataclasses.replace(scenario, options=type(options)(**merged))


async def execute(scenario: Scenario, settings: Settings, raw_out: Path | None = None) -> RunResult:
    store = flusher = conn = None
    if raw_out is not None:
        conn = await open_db(raw_out)
        store = SQLiteSampleStore(conn)
        flusher = asyncio.create_task(flush_task(store, 1.0))
    controller = RunController(scenario, settings, sink=store)
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, controller.cancel)
    try:
        return await controller.run()
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        if flusher is not None:
            flusher.cancel()
            await asyncio.gather(flusher, return_exceptions=True)
            await store.flush()
            await conn.close()


@click.group()
@click.option("--log-level", default=None, help="Overrides LOG_LEVEL.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Load-test a bot messaging endpoint."""
    settings = _load_settings()
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


@cli.command()
@click.argument("scenario_name", type=click.Choice(sorted(SCENARIOS)))
@click.option("--vus", type=int, help="Flat number of virtual users; replaces the scenario stages.")
@click.option("--duration", help="Flat run duration such as 30s or 1m; replaces the scenario stages.")
@click.option("--iterations", type=int, help="Total iterations shared by all VUs.")
@click.option("--stage", "stages", multiple=True, help="duration:target, repeatable.")
@click.option("--threshold", "thresholds", multiple=True, help="metric:expression, repeatable.")
@click.option("--abort-threshold", "abort_thresholds", multiple=True, help="Like --threshold, aborts the run on failure.")
@click.option("--out", "out", type=click.Path(dir_okay=False, path_type=Path), help="JSON summary path.")
@click.option("--no-export", is_flag=True, help="Skip writing the JSON summary.")
@click.option("--raw-out", type=click.Path(dir_okay=False, path_type=Path), help="SQLite file for raw samples.")
@click.option("--metrics-port", type=int, help="Expose live Prometheus metrics on this port.")
@click.option("--no-color", is_flag=True)
@click.pass_obj
def run(
    settings: Settings,
    scenario_name: str,
    vus: int | None,
    duration: str | None,
    iterations: int | None,
    stages: tuple[str, ...],
    thresholds: tuple[str, ...],
    abort_thresholds: tuple[str, ...],
    out: Path | None,
    no_export: bool,
    raw_out: Path | None,
    metrics_port: int | None,
    no_color: bool,
) -> None:
    """Run a built-in scenario against BOT_ENDPOINT."""
    try:
        scenario = apply_overrides(
            get_scenario(scenario_name, settings),
            vus=vus,
            duration=duration,
            iterations=iterations,
            stages=stages,
            thresholds=thresholds,
            abort_thresholds=abort_thresholds,
            default_duration=settings.default_duration,
        )
        if metrics_port is not None:
            start_http_server(metrics_port)
        result = asyncio.run(execute(scenario, settings, raw_out))
    except (ConfigurationError, ValidationError) as e:
        raise click.ClickException(f"Configuration error: {e}") from e

    click.echo(text_summary(result, colors=not no_color))
    if not no_export:
        path = export_json(result, out or default_export_path(settings.results_dir, scenario.name))
        click.echo(f"\nSummary written to {path}")
    raise SystemExit(exit_code(result))


@cli.command()
@click.pass_obj
def token(settings: Settings) -> None:
    """Issue a bearer token with MICROSOFT_APP_ID / MICROSOFT_APP_PASSWORD."""
    if not settings.microsoft_app_id or not settings.microsoft_app_password:
        raise click.ClickException("Set MICROSOFT_APP_ID and MICROSOFT_APP_PASSWORD in .env to generate a token.")

    async def _issue() -> str:
        async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
            issuer = ClientCredentialsIssuer(
                client,
                settings.microsoft_app_id,
                settings.microsoft_app_password,
                settings.token_authority,
                settings.token_scope,
            )
            return (await issuer.issue()).token

    click.echo(f"App ID: {settings.microsoft_app_id}")
    click.echo(f"Endpoint: {settings.bot_endpoint}")
    try:
        issued = asyncio.run(_issue())
        info = token_info(issued)
    except BotloadError as e:
        raise click.ClickException(str(e)) from e
    click.secho("Token generated successfully!", fg="green")
    click.echo(f"  Expires at: {info.expires_at}")
    click.echo(f"  Issuer: {info.issuer}")
    click.echo(f"  Audience: {info.audience}")
    click.echo(f"  App ID: {info.app_id}")
    click.echo("")
    click.echo(f'export BOT_TOKEN="{info.token}"')
    click.echo("botload run smoke")


@cli.command()
@click.option("--env-file", type=click.Path(path_type=Path), default=Path(".env"), show_default=True)
@click.pass_obj
def verify(settings: Settings, env_file: Path) -> None:
    """Check configuration and endpoint reachability."""

    async def _verify() -> VerificationReport:
        async with httpx.AsyncClient(timeout=10.0) as client:
            return await verify_setup(settings, client, env_file)

    report = asyncio.run(_verify())
    for section, items in report.sections().items():
        click.echo("")
        click.secho(section, bold=True, fg="cyan")
        click.echo("─" * 60)
        for item in items:
            mark, color, label = _MARKS[item.status]
            click.echo(f"  {click.style(mark, fg=color)} {item.label}: {click.style(label, fg=color)}")
            if item.message:
                click.echo(f"    {item.message}")
    click.echo("")
    if report.has_errors:
        click.secho("✗ Setup has errors that need to be fixed", fg="red")
        raise SystemExit(1)
    if report.has_warnings:
        click.secho("⚠ Setup is functional but has warnings", fg="yellow")
    else:
        click.secho("✓ Setup is complete and ready!", fg="green")


@cli.command("mock-bot")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=3978, show_default=True, type=int)
def mock_bot(host: str, port: int) -> None:
    """Serve a mock bot on /api/messages (MOCK_BOT_* settings)."""
    uvicorn.run(create_app(get_mock_settings()), host=host, port=port)
