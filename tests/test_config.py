import pytest
from pydantic import ValidationError

from botload.config import MockBotSettings, Settings
from botload.options import RunOptions


def test_defaults() -> None:
    s = Settings(_env_file=None)
    assert s.bot_endpoint == "http://localhost:3978/api/messages"
    assert s.default_vus == 5
    assert s.default_duration == "30s"
    assert s.think_time_min == 0.5
    assert s.think_time_max == 1.0
    assert s.request_timeout == 60.0
    assert s.graceful_stop == 90.0
    assert s.graceful_stop >= s.request_timeout
    assert s.results_dir == "results"
    assert s.log_level == "INFO"


def test_override_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOT_ENDPOINT", "https://bot.example.com/api/messages")
    monkeypatch.setenv("MICROSOFT_APP_ID", "app-id")
    monkeypatch.setenv("DEFAULT_VUS", "20")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    s = Settings(_env_file=None)
    assert s.bot_endpoint == "https://bot.example.com/api/messages"
    assert s.microsoft_app_id == "app-id"
    assert s.default_vus == 20
    assert s.log_level == "DEBUG"


def test_env_file_is_read(tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("BOT_TOKEN=from-file\nTEST_MESSAGE=ping\n")
    s = Settings(_env_file=env_file)
    assert s.bot_token == "from-file"
    assert s.test_message == "ping"


def test_rejects_non_http_endpoint() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, bot_endpoint="localhost:3978/api/messages")


def test_rejects_inverted_think_time() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, think_time_min=2.0, think_time_max=1.0)


def test_health_endpoint_derived_from_bot_endpoint() -> None:
    s = Settings(_env_file=None, bot_endpoint="https://bot.example.com/api/messages")
    assert s.resolved_health_endpoint == "https://bot.example.com/api/health"
    s = Settings(_env_file=None, health_endpoint="https://bot.example.com/healthz")
    assert s.resolved_health_endpoint == "https://bot.example.com/healthz"


def test_mock_bot_settings_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MOCK_BOT_FAILURE_RATE", "0.25")
    monkeypatch.setenv("MOCK_BOT_REQUIRE_AUTH", "true")
    s = MockBotSettings(_env_file=None)
    assert s.failure_rate == 0.25
    assert s.require_auth


def test_mock_bot_failure_rate_bounds() -> None:
    with pytest.raises(ValidationError):
        MockBotSettings(_env_file=None, failure_rate=1.5)


def test_run_options_from_settings() -> None:
    s = Settings(_env_file=None, default_vus=3, default_duration="1m", think_time_min=0, think_time_max=0)
    options = RunOptions.from_settings(s, iterations=10)
    assert options.vus == 3
    assert options.duration == 60.0
    assert options.iterations == 10
    assert options.think_time == (0.0, 0.0)
    assert options.graceful_stop == s.graceful_stop
    assert RunOptions().graceful_stop == 90.0


def test_run_options_validation() -> None:
    with pytest.raises(ValidationError):
        RunOptions(duration="forever")
    with pytest.raises(ValidationError):
        RunOptions(think_time=(2.0, 1.0))
    with pytest.raises(ValidationError):
        RunOptions(iterations=0)
