import asyncio
from typing import Any

import httpx
from loguru import logger

from app.core.version import __version__

DEFAULT_HEADERS = {
    "User-Agent": f"Peekaboo/{__version__}",
    "Accept": "application/json",
}


def _target(url: str) -> str:
    # Paths and queries carry subject identifiers; only the host is logged
    try:
        return httpx.URL(url).host or "<relative>"
    except httpx.InvalidURL:
        return "<invalid>"


class BaseClient:
    """
    Base asynchronous HTTP client with retry logic and logging.

    Only transport errors and 5xx responses are retried; a 4xx answer is
    final and raised to the caller immediately.
    """

    def __init__(
        self, base_url: str = "", timeout: float = 10.0, max_retries: int = 1, headers: dict[str, str] | None = None
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx.AsyncClient instance."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, headers=self.headers, follow_redirects=True
            )
        return self._client

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code >= 500
        return True

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self.get_client()
        target = f"{method} {_target(url)}"

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except (httpx.HTTPStatusError, httpx.RequestError) as exc:
                if attempt >= self.max_retries or not self._should_retry(exc):
                    logger.error(f"{target} failed after {attempt} attempt(s): {type(exc).__name__}")
                    raise
                wait_time = 0.5 * (2 ** (attempt - 1))
                logger.warning(
                    f"{target} failed ({type(exc).__name__}), retrying in {wait_time}s "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                await asyncio.sleep(wait_time)

    async def get(self, url: str, params: dict[str, Any] | None = None, **kwargs) -> Any:
        """Perform a GET request and return the decoded JSON body."""
        response = await self._request("GET", url, params=params, **kwargs)
        return response.json()

    async def post(self, url: str, json: Any = None, **kwargs) -> Any:
        """Perform a POST request and return the decoded JSON body (None when empty)."""
        response = await self._request("POST", url, json=json, **kwargs)
        if not response.content:
            return None
        return response.json()
