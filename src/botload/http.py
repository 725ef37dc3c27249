import logging
import time
from typing import Any

import httpx

from botload.aggregator import MetricsAggregator, Sample
from botload.auth import TokenProvider
from botload.errors import TokenError

logger = logging.getLogger(__name__)


def is_failed_status(status_code: int) -> bool:
    return not 200 <= status_code < 400


class HttpSession:
    """Times one request per call and records the http_* metrics for it."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        aggregator: MetricsAggregator,
        token_provider: TokenProvider | None = None,
        api_key: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> None:
        self._client = client
        self._aggregator = aggregator
        self._token_provider = token_provider
        self._api_key = api_key
        self._tags = tags or {}

    async def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        merged: dict[str, str] = {}
        if self._api_key:
            merged["x-api-key"] = self._api_key
        if self._token_provider is not None:
            merged["Authorization"] = f"Bearer {await self._token_provider.token()}"
        if headers:
            merged.update(headers)
        return merged

    def _record(self, tags: dict[str, str], duration_ms: float, failed: bool) -> None:
        self._aggregator.record(Sample("http_reqs", 1.0, tags))
        self._aggregator.record(Sample("http_req_duration", duration_ms, tags))
        self._aggregator.record(Sample("http_req_failed", float(failed), tags))

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        name: str | None = None,
        tags: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        tags = {**self._tags, **(tags or {}), "method": method, "name": name or url}
        start = time.perf_counter()
        try:
            request_headers = await self._headers(headers)
            response = await self._client.request(method, url, headers=request_headers, **kwargs)
        except (httpx.HTTPError, TokenError) as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self._record({**tags, "status": "0"}, duration_ms, True)
            logger.debug("%s %s failed after %.1fms: %r", method, url, duration_ms, e)
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        self._record({**tags, "status": str(response.status_code)}, duration_ms, is_failed_status(response.status_code))
        return response

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)
