from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    bot_endpoint: str = "http://localhost:3978/api/messages"
    health_endpoint: str | None = None
    microsoft_app_id: str | None = None
    microsoft_app_password: str | None = None
    microsoft_app_tenant_id: str | None = None
    token_authority: str = "https://login.microsoftonline.com/botframework.com/oauth2/v2.0/token"
    token_scope: str = "https://api.botframework.com/.default"
    bot_token: str | None = None
    load_test_api_key: str | None = None
    service_url: str = "https://smba.trafficmanager.net/teams"
    bot_id: str = "workoflow-bot"
    bot_name: str = "Workoflow Bot"
    test_user_id: str = "29:load-test-user"
    test_user_name: str = "Load Test User"
    test_user_aad_object_id: str = "45908692-019e-4436-810c-b417f58f5f4f"
    test_message: str = "test"
    default_vus: int = Field(default=5, ge=0)
    default_duration: str = "30s"
    tick_interval: float = Field(default=0.1, gt=0)
    think_time_min: float = Field(default=0.5, ge=0)
    think_time_max: float = Field(default=1.0, ge=0)
    request_timeout: float = Field(default=60.0, gt=0)
    # must exceed request_timeout or a drain cancels requests in flight
    graceful_stop: float = Field(default=90.0, ge=0)
    results_dir: str = "results"
    log_level: str = "INFO"

    @field_validator("bot_endpoint", "health_endpoint", "service_url", "token_authority")
    @classmethod
    def _require_http_url(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(("http://", "https://")):
            raise ValueError(f"must be an http(s) URL, got {value!r}")
        return value

    @model_validator(mode="after")
    def _check_think_time(self) -> "Settings":
        if self.think_time_min > self.think_time_max:
            raise ValueError("think_time_min must not exceed think_time_max")
        return self

    @property
    def resolved_health_endpoint(self) -> str:
        if self.health_endpoint:
            return self.health_endpoint
        return self.bot_endpoint.replace("/api/messages", "/api/health")


class MockBotSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MOCK_BOT_", env_file=".env", extra="ignore")

    failure_rate: float = Field(default=0.0, ge=0, le=1)
    failure_status: int = 500
    latency_ms: float = Field(default=0.0, ge=0)
    latency_jitter_ms: float = Field(default=0.0, ge=0)
    require_auth: bool = False
    log_level: str = "INFO"
