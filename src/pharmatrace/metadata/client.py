"""HTTP client for the content-addressed metadata gateway."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from pharmatrace.common.exceptions import MetadataFetchError

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class MetadataGatewayClient:
    """Fetches metadata JSON documents by content hash."""

    def __init__(
        self,
        gateway_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.gateway_url = gateway_url
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                transport=self._transport, follow_redirects=True,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch(self, content_hash: str, timeout: float) -> dict[str, Any]:
        """GET ``{gateway}{hash}`` once.

        Raises MetadataFetchError with the HTTP status, or ``status=None``
        when no response was received.
        """
        url = f"{self.gateway_url}{content_hash}"
        try:
            resp = await self._get_http_client().get(url, timeout=timeout)
        except httpx.TimeoutException as e:
            raise MetadataFetchError(f"timeout fetching {content_hash}") from e
        except httpx.HTTPError as e:
            raise MetadataFetchError(f"transport error fetching {content_hash}: {e}") from e

        if resp.status_code != 200:
            raise MetadataFetchError(
                f"gateway returned HTTP {resp.status_code} for {content_hash}",
                status=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise MetadataFetchError(
                f"invalid JSON for {content_hash}", status=resp.status_code,
            ) from e
        if not isinstance(data, dict):
            raise MetadataFetchError(
                f"expected a JSON object for {content_hash}", status=resp.status_code,
            )
        return data

    async def fetch_with_retry(
        self,
        content_hash: str,
        timeout: float,
        max_attempts: int = 5,
        initial_backoff: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ) -> dict[str, Any]:
        """Fetch with exponential backoff on transport errors, 429 and 5xx.

        Any other status stops immediately. The last error is re-raised once
        attempts run out.
        """
        delay = initial_backoff
        for attempt in range(1, max_attempts + 1):
            try:
                return await self.fetch(content_hash, timeout)
            except MetadataFetchError as e:
                if not e.retryable or attempt == max_attempts:
                    raise
                logger.warning(
                    "Metadata fetch for %s failed (attempt %d/%d): %s. Retrying in %.0fs",
                    content_hash, attempt, max_attempts, e.message, delay,
                )
                await sleep(delay)
                delay *= 2
        raise MetadataFetchError(f"no fetch attempts made for {content_hash}")
