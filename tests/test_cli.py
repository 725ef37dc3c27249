import json
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
import pytest
from click.testing import CliRunner
from conftest import make_settings

from botload.aggregator import MetricsAggregator
from botload.auth import IssuedToken
from botload.cli import apply_overrides, cli, execute, parse_stage_option
from botload.controller import RunResult, RunStatus
from botload.errors import ConfigurationError
from botload.scenarios import load, smoke
from botload.store import SQLiteSampleStore
from botload.thresholds import ThresholdResult
from botload.verify import CheckStatus, VerificationReport


def make_result(status: RunStatus = RunStatus.COMPLETED, passed: bool = True) -> RunResult:
    return RunResult(
        scenario="smoke",
        status=status,
        duration=1.0,
        metrics=MetricsAggregator().snapshot(),
        thresholds=[ThresholdResult("http_req_failed", "rate<0.1", False, passed, 0.0)],
    )


@pytest.fixture
def runner():
    with patch("botload.cli.get_settings", return_value=make_settings()):
        yield CliRunner()


def test_parse_stage_option() -> None:
    stage = parse_stage_option("30s:5")
    assert stage.duration == 30.0
    assert stage.target == 5


@pytest.mark.parametrize("text", ["30s", "30s:five", "soon:5", "30s:-1"])
def test_parse_stage_option_rejects(text) -> None:
    with pytest.raises(ConfigurationError):
        parse_stage_option(text)


def test_apply_overrides_flat_run() -> None:
    scenario = apply_overrides(load(make_settings()), vus=4, duration="1m")
    assert scenario.options.stages == []
    assert scenario.options.vus == 4
    assert scenario.options.duration == 60.0
    assert scenario.exec is load(make_settings()).exec


def test_apply_overrides_vus_only_uses_default_duration() -> None:
    scenario = apply_overrides(load(make_settings()), vus=2, default_duration="45s")
    assert scenario.options.duration == 45.0


def test_apply_overrides_stages_and_thresholds() -> None:
    scenario = apply_overrides(
        smoke(make_settings()),
        stages=("10s:5", "20s:0"),
        thresholds=("http_reqs:count>10",),
        abort_thresholds=("http_req_failed:rate<0.5",),
    )
    assert [(s.duration, s.target) for s in scenario.options.stages] == [(10.0, 5), (20.0, 0)]
    added = scenario.options.thresholds[-2:]
    assert (added[0].metric, added[0].abort_on_fail) == ("http_reqs", False)
    assert (added[1].metric, added[1].abort_on_fail) == ("http_req_failed", True)
    assert len(scenario.options.thresholds) == 4


def test_apply_overrides_without_changes_returns_scenario() -> None:
    scenario = smoke(make_settings())
    assert apply_overrides(scenario) is scenario


def test_run_prints_summary_and_exits_zero(runner: CliRunner, tmp_path) -> None:
    out = tmp_path / "smoke.json"
    with patch("botload.cli.execute", new=AsyncMock(return_value=make_result())) as mocked:
        result = runner.invoke(cli, ["run", "smoke", "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert "scenario: smoke" in result.output
    assert json.loads(out.read_text())["status"] == "completed"
    assert mocked.await_args.args[0].name == "smoke"


def test_run_passes_overrides(runner: CliRunner) -> None:
    with patch("botload.cli.execute", new=AsyncMock(return_value=make_result())) as mocked:
        result = runner.invoke(cli, ["run", "load", "--vus", "3", "--duration", "10s", "--no-export"])
    assert result.exit_code == 0, result.output
    scenario = mocked.await_args.args[0]
    assert scenario.options.vus == 3
    assert scenario.options.duration == 10.0


def test_run_failed_thresholds_exit_99(runner: CliRunner) -> None:
    with patch("botload.cli.execute", new=AsyncMock(return_value=make_result(passed=False))):
        result = runner.invoke(cli, ["run", "smoke", "--no-export"])
    assert result.exit_code == 99


def test_run_interrupted_exit_130(runner: CliRunner) -> None:
    with patch("botload.cli.execute", new=AsyncMock(return_value=make_result(RunStatus.INTERRUPTED))):
        result = runner.invoke(cli, ["run", "smoke", "--no-export"])
    assert result.exit_code == 130


def test_run_rejects_bad_stage(runner: CliRunner) -> None:
    with patch("botload.cli.execute", new=AsyncMock()) as mocked:
        result = runner.invoke(cli, ["run", "load", "--stage", "nope", "--no-export"])
    assert result.exit_code == 1
    assert "Configuration error" in result.output
    mocked.assert_not_called()


def test_run_rejects_unknown_scenario(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["run", "soak"])
    assert result.exit_code == 2


def test_verify_exits_one_on_errors(runner: CliRunner) -> None:
    report = VerificationReport()
    report.add("Credentials", "MICROSOFT_APP_PASSWORD", CheckStatus.FAIL, "Missing")
    with patch("botload.cli.verify_setup", new=AsyncMock(return_value=report)):
        result = runner.invoke(cli, ["verify"])
    assert result.exit_code == 1
    assert "MICROSOFT_APP_PASSWORD" in result.output
    assert "Setup has errors" in result.output


def test_verify_ok(runner: CliRunner) -> None:
    report = VerificationReport()
    report.add("Endpoint", "BOT_ENDPOINT", CheckStatus.OK, "http://bot.test/api/messages")
    with patch("botload.cli.verify_setup", new=AsyncMock(return_value=report)):
        result = runner.invoke(cli, ["verify"])
    assert result.exit_code == 0
    assert "Setup is complete and ready!" in result.output


def test_token_requires_credentials(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["token"])
    assert result.exit_code == 1
    assert "MICROSOFT_APP_ID" in result.output


def test_token_prints_export_line() -> None:
    encoded = jwt.encode({"exp": 1_700_000_000, "appid": "app-id"}, "secret", algorithm="HS256")
    issuer = MagicMock()
    issuer.return_value.issue = AsyncMock(return_value=IssuedToken(encoded, 0.0))
    settings = make_settings(microsoft_app_id="app-id", microsoft_app_password="secret")
    with (
        patch("botload.cli.get_settings", return_value=settings),
        patch("botload.cli.ClientCredentialsIssuer", issuer),
    ):
        result = CliRunner().invoke(cli, ["token"])
    assert result.exit_code == 0, result.output
    assert f'export BOT_TOKEN="{encoded}"' in result.output
    assert "App ID: app-id" in result.output


def test_mock_bot_serves_app(runner: CliRunner) -> None:
    with patch("botload.cli.uvicorn.run") as run:
        result = runner.invoke(cli, ["mock-bot", "--port", "4000"])
    assert result.exit_code == 0
    assert run.call_args.kwargs["port"] == 4000


async def test_execute_wires_raw_sample_store(tmp_path) -> None:
    controller = MagicMock()
    controller.return_value.run = AsyncMock(return_value=make_result())
    raw_out = tmp_path / "raw" / "samples.db"
    with patch("botload.cli.RunController", controller):
        result = await execute(smoke(make_settings()), make_settings(), raw_out)
    assert result.status is RunStatus.COMPLETED
    assert raw_out.exists()
    assert isinstance(controller.call_args.kwargs["sink"], SQLiteSampleStore)
