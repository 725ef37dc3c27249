import pytest
from httpx import ASGITransport, AsyncClient

from botload.app import create_app
from botload.config import MockBotSettings, Settings
from botload.database import open_db

BOT_BASE_URL = "http://bot.test"


def make_settings(**overrides) -> Settings:
    values = {
        "bot_endpoint": f"{BOT_BASE_URL}/api/messages",
        "microsoft_app_id": None,
        "microsoft_app_password": None,
        "bot_token": None,
        "load_test_api_key": None,
        "tick_interval": 0.01,
        "think_time_min": 0.0,
        "think_time_max": 0.0,
        "graceful_stop": 2.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def bot_client_for(mock_settings: MockBotSettings) -> AsyncClient:
    app = create_app(mock_settings)
    return AsyncClient(transport=ASGITransport(app=app), base_url=BOT_BASE_URL)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def bot_client() -> AsyncClient:
    async with bot_client_for(MockBotSettings(_env_file=None)) as c:
        yield c


@pytest.fixture
async def failing_bot_client() -> AsyncClient:
    async with bot_client_for(MockBotSettings(_env_file=None, failure_rate=1.0)) as c:
        yield c


@pytest.fixture
async def db(tmp_path: pytest.TempPathFactory):
    conn = await open_db(str(tmp_path / "samples.db"))
    yield conn
    await conn.close()
