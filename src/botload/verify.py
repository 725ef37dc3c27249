from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

import httpx

from botload.config import Settings

OPTIONAL_FIELDS = ("test_user_id", "test_user_name", "test_user_aad_object_id", "service_url")


class CheckStatus(StrEnum):
    OK = "ok"
    WARNING = "warning"
    FAIL = "fail"


@dataclass(frozen=True)
class CheckItem:
    section: str
    label: str
    status: CheckStatus
    message: str = ""


@dataclass
class VerificationReport:
    items: list[CheckItem] = field(default_factory=list)

    def add(self, section: str, label: str, status: CheckStatus, message: str = "") -> None:
        self.items.append(CheckItem(section, label, status, message))

    @property
    def has_errors(self) -> bool:
        return any(item.status is CheckStatus.FAIL for item in self.items)

    @property
    def has_warnings(self) -> bool:
        return any(item.status is CheckStatus.WARNING for item in self.items)

    def sections(self) -> dict[str, list[CheckItem]]:
        grouped: dict[str, list[CheckItem]] = {}
        for item in self.items:
            grouped.setdefault(item.section, []).append(item)
        return grouped


def _check_credentials(settings: Settings, report: VerificationReport) -> None:
    section = "Credentials"
    if settings.bot_token:
        report.add(section, "BOT_TOKEN", CheckStatus.OK, "Set")
    app_id, password = settings.microsoft_app_id, settings.microsoft_app_password
    if app_id and password:
        report.add(section, "MICROSOFT_APP_ID", CheckStatus.OK, "Set")
        report.add(section, "MICROSOFT_APP_PASSWORD", CheckStatus.OK, "Set")
    elif app_id or password:
        missing = "MICROSOFT_APP_PASSWORD" if app_id else "MICROSOFT_APP_ID"
        report.add(section, missing, CheckStatus.FAIL, "Missing, both app id and password are needed")
    elif not settings.bot_token:
        report.add(section, "MICROSOFT_APP_ID", CheckStatus.WARNING, "Not set, requests will be unauthenticated")
    if settings.microsoft_app_tenant_id:
        report.add(section, "MICROSOFT_APP_TENANT_ID", CheckStatus.OK, "Set")
    else:
        report.add(section, "MICROSOFT_APP_TENANT_ID", CheckStatus.WARNING, "Optional but recommended")


async def _check_endpoint(settings: Settings, client: httpx.AsyncClient, report: VerificationReport) -> None:
    section = "Endpoint"
    report.add(section, "BOT_ENDPOINT", CheckStatus.OK, settings.bot_endpoint)
    url = settings.resolved_health_endpoint
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        report.add(section, "health endpoint", CheckStatus.WARNING, f"{url} unreachable: {e!r}")
        return
    if response.status_code == 200:
        report.add(section, "health endpoint", CheckStatus.OK, url)
    else:
        report.add(section, "health endpoint", CheckStatus.WARNING, f"{url} returned {response.status_code}")


async def verify_setup(
    settings: Settings,
    client: httpx.AsyncClient,
    env_file: Path = Path(".env"),
) -> VerificationReport:
    report = VerificationReport()
    if env_file.exists():
        report.add("Files", ".env file", CheckStatus.OK, str(env_file.resolve()))
    else:
        report.add("Files", ".env file", CheckStatus.WARNING, "Not found, relying on process environment")
    await _check_endpoint(settings, client, report)
    _check_credentials(settings, report)
    for name in OPTIONAL_FIELDS:
        if name in settings.model_fields_set:
            report.add("Optional Configuration", name.upper(), CheckStatus.OK, "Set")
        else:
            report.add("Optional Configuration", name.upper(), CheckStatus.WARNING, "Optional but recommended")
    return report
