from conftest import bot_client_for, make_settings
from httpx import AsyncClient

from botload.activity import create_test_activity
from botload.config import MockBotSettings


def _payload(text: str = "hello") -> dict:
    return create_test_activity(make_settings(), text).to_payload()


async def test_post_message_returns_202(bot_client: AsyncClient) -> None:
    response = await bot_client.post("/api/messages", json=_payload())
    assert response.status_code == 202


async def test_post_message_response_shape(bot_client: AsyncClient) -> None:
    payload = _payload()
    body = (await bot_client.post("/api/messages", json=payload)).json()
    assert body == {"id": payload["id"], "status": "accepted"}


async def test_post_message_rejects_invalid_activity(bot_client: AsyncClient) -> None:
    payload = _payload()
    del payload["from"]
    response = await bot_client.post("/api/messages", json=payload)
    assert response.status_code == 422


async def test_health(bot_client: AsyncClient) -> None:
    response = await bot_client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_simulated_failure(failing_bot_client: AsyncClient) -> None:
    response = await failing_bot_client.post("/api/messages", json=_payload())
    assert response.status_code == 500
    assert response.json() == {"error": "simulated failure"}


async def test_custom_failure_status() -> None:
    settings = MockBotSettings(_env_file=None, failure_rate=1.0, failure_status=503)
    async with bot_client_for(settings) as client:
        response = await client.post("/api/messages", json=_payload())
    assert response.status_code == 503


async def test_require_auth_rejects_missing_token() -> None:
    async with bot_client_for(MockBotSettings(_env_file=None, require_auth=True)) as client:
        response = await client.post("/api/messages", json=_payload())
    assert response.status_code == 401


async def test_require_auth_accepts_bearer_token() -> None:
    async with bot_client_for(MockBotSettings(_env_file=None, require_auth=True)) as client:
        response = await client.post(
            "/api/messages", json=_payload(), headers={"Authorization": "Bearer abc"}
        )
    assert response.status_code == 202
