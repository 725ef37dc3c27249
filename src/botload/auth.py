import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import httpx
import jwt

from botload.config import Settings
from botload.errors import ConfigurationError, TokenError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = 3600.0
REFRESH_MARGIN = 60.0


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: float


class TokenIssuer(Protocol):
    async def issue(self) -> IssuedToken: ...


class ClientCredentialsIssuer:
    """Requests an app-only bearer token from the identity platform token endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        app_id: str,
        app_password: str,
        authority: str,
        scope: str,
    ) -> None:
        self._client = client
        self._app_id = app_id
        self._app_password = app_password
        self._authority = authority
        self._scope = scope

    async def issue(self) -> IssuedToken:
        try:
            response = await self._client.post(
                self._authority,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._app_id,
                    "client_secret": self._app_password,
                    "scope": self._scope,
                },
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TokenError(f"Failed to generate token: {e}") from e
        if "access_token" not in body:
            raise TokenError("Failed to generate token: response carries no access_token")
        lifetime = float(body.get("expires_in", DEFAULT_TOKEN_LIFETIME))
        logger.info("Issued token for app %s valid for %.0fs", self._app_id, lifetime)
        return IssuedToken(body["access_token"], time.time() + lifetime)


class TokenCache:
    def __init__(self, refresh_margin: float = REFRESH_MARGIN, clock: Callable[[], float] = time.time) -> None:
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._entries: dict[str, IssuedToken] = {}
        self._lock = asyncio.Lock()

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= self._clock() + self._refresh_margin:
            return None
        return entry.token

    def put(self, key: str, token: IssuedToken) -> None:
        self._entries[key] = token

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_issue(self, key: str, issuer: TokenIssuer) -> str:
        token = self.get(key)
        if token is not None:
            return token
        async with self._lock:
            token = self.get(key)
            if token is None:
                issued = await issuer.issue()
                self.put(key, issued)
                token = issued.token
        return token


class TokenProvider(Protocol):
    async def token(self) -> str: ...


class CachedTokenProvider:
    def __init__(self, key: str, issuer: TokenIssuer, cache: TokenCache) -> None:
        self._key = key
        self._issuer = issuer
        self._cache = cache

    async def token(self) -> str:
        return await self._cache.get_or_issue(self._key, self._issuer)


class StaticTokenProvider:
    def __init__(self, token: str) -> None:
        self._token = token

    async def token(self) -> str:
        return self._token


def build_token_provider(
    settings: Settings, client: httpx.AsyncClient, cache: TokenCache
) -> CachedTokenProvider | StaticTokenProvider | None:
    if settings.bot_token:
        return StaticTokenProvider(settings.bot_token)
    if settings.microsoft_app_id and not settings.microsoft_app_password:
        raise ConfigurationError("MICROSOFT_APP_PASSWORD is required when MICROSOFT_APP_ID is set")
    if settings.microsoft_app_password and not settings.microsoft_app_id:
        raise ConfigurationError("MICROSOFT_APP_ID is required when MICROSOFT_APP_PASSWORD is set")
    if not settings.microsoft_app_id:
        return None
    issuer = ClientCredentialsIssuer(
        client,
        settings.microsoft_app_id,
        settings.microsoft_app_password,
        settings.token_authority,
        settings.token_scope,
    )
    return CachedTokenProvider(settings.microsoft_app_id, issuer, cache)


@dataclass(frozen=True)
class TokenInfo:
    token: str
    expires_at: str | None
    issuer: str | None
    audience: str | None
    app_id: str | None

    @property
    def preview(self) -> str:
        return f"{self.token[:20]}..."


def token_info(token: str) -> TokenInfo:
    """Decode a JWT for display only. The signature is not verified."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise TokenError(f"Invalid JWT token format: {e}") from e
    expires_at = None
    if "exp" in claims:
        expires_at = datetime.fromtimestamp(claims["exp"], UTC).isoformat()
    return TokenInfo(
        token=token,
        expires_at=expires_at,
        issuer=claims.get("iss"),
        audience=claims.get("aud"),
        app_id=claims.get("appid"),
    )
