from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from botload.config import MockBotSettings
from botload.dependencies import get_mock_settings
from botload.logging_setup import configure_logging
from botload.router import router


def create_app(settings: MockBotSettings | None = None) -> FastAPI:
    """Mock bot endpoint with configurable latency and failure rate."""
    settings = settings or get_mock_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        yield

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.include_router(router)
    return app
