from typing import Any
from urllib.parse import quote

import httpx

from app.core.base_client import BaseClient
from app.core.errors import ErrorKind, SourceError
from app.services.sources.base import SourceConnector

# Status codes that mean the identifier itself was rejected
INVALID_IDENTIFIER_STATUSES = {400, 404, 422}


def raise_for_http_error(source: str, exc: Exception) -> None:
    """Translate an httpx failure into a SourceError of the matching kind."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in INVALID_IDENTIFIER_STATUSES:
            raise SourceError(f"{source} rejected identifier (HTTP {status})", kind=ErrorKind.INVALID_IDENTIFIER) from exc
        raise SourceError(f"{source} returned HTTP {status}") from exc
    if isinstance(exc, httpx.TimeoutException):
        raise SourceError(f"{source} timed out", kind=ErrorKind.TIMEOUT) from exc
    raise SourceError(f"{source} unreachable: {exc}") from exc


class HttpSourceConnector(SourceConnector):
    """
    Source backed by a JSON HTTP endpoint.

    The URL template receives the quoted identifier as ``{identifier}``.
    """

    def __init__(self, name: str, url_template: str, timeout: float = 10.0, max_retries: int = 1):
        super().__init__(name)
        if "{identifier}" not in url_template:
            raise ValueError(f"URL template for source '{name}' must contain '{{identifier}}'")
        self.url_template = url_template
        self._client = BaseClient(timeout=timeout, max_retries=max_retries)

    async def fetch(self, identifier: str) -> dict[str, Any]:
        url = self.url_template.format(identifier=quote(identifier, safe=""))
        try:
            data = await self._client.get(url)
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            raise_for_http_error(self.name, exc)
        except ValueError as exc:
            raise SourceError(f"{self.name} returned a non-JSON body") from exc

        if not isinstance(data, dict):
            raise SourceError(f"{self.name} returned {type(data).__name__}, expected an object")
        return data

    async def close(self) -> None:
        await self._client.close()
