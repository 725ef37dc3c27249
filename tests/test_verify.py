import httpx
from conftest import make_settings

from botload.verify import CheckStatus, verify_setup


def _client(status: int = 200) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(status)))


def _status(report, label: str) -> CheckStatus:
    return next(item.status for item in report.items if item.label == label)


async def test_complete_setup(tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("MICROSOFT_APP_ID=a\n")
    settings = make_settings(
        microsoft_app_id="a",
        microsoft_app_password="b",
        microsoft_app_tenant_id="t",
        test_user_id="29:u",
        test_user_name="U",
        test_user_aad_object_id="aad",
        service_url="https://smba.test",
    )
    async with _client() as client:
        report = await verify_setup(settings, client, env_file)
    assert not report.has_errors
    assert not report.has_warnings
    assert list(report.sections()) == ["Files", "Endpoint", "Credentials", "Optional Configuration"]


async def test_missing_password_is_an_error(tmp_path) -> None:
    async with _client() as client:
        report = await verify_setup(make_settings(microsoft_app_id="a"), client, tmp_path / ".env")
    assert report.has_errors
    assert _status(report, "MICROSOFT_APP_PASSWORD") is CheckStatus.FAIL


async def test_unauthenticated_setup_only_warns(tmp_path) -> None:
    async with _client() as client:
        report = await verify_setup(make_settings(), client, tmp_path / ".env")
    assert not report.has_errors
    assert report.has_warnings
    assert _status(report, ".env file") is CheckStatus.WARNING
    assert _status(report, "MICROSOFT_APP_ID") is CheckStatus.WARNING


async def test_static_token_counts_as_credentials(tmp_path) -> None:
    async with _client() as client:
        report = await verify_setup(make_settings(bot_token="tok"), client, tmp_path / ".env")
    assert _status(report, "BOT_TOKEN") is CheckStatus.OK
    assert not any(item.label == "MICROSOFT_APP_ID" for item in report.items)


async def test_unhealthy_endpoint_warns(tmp_path) -> None:
    async with _client(503) as client:
        report = await verify_setup(make_settings(), client, tmp_path / ".env")
    assert _status(report, "health endpoint") is CheckStatus.WARNING


async def test_unreachable_endpoint_warns(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        report = await verify_setup(make_settings(), client, tmp_path / ".env")
    assert _status(report, "health endpoint") is CheckStatus.WARNING
    assert not report.has_errors
