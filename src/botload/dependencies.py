from functools import lru_cache

from fastapi import Request

from botload.config import MockBotSettings, Settings


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_mock_settings() -> MockBotSettings:
    return MockBotSettings()


async def get_bot_settings(request: Request) -> MockBotSettings:
    return request.app.state.settings
