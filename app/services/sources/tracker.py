from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import httpx

from app.core.base_client import BaseClient
from app.core.constants import TRACKER_SOURCE
from app.core.errors import SourceError
from app.services.sources.base import SourceConnector
from app.services.sources.http import raise_for_http_error


class VisitorTracker(ABC):
    """
    Interface for listing the visitors who interacted with a content item.
    Each visitor entry is a mapping with at least an ``id``.
    """

    @abstractmethod
    async def list_visitors(self, content_id: str) -> list[dict[str, Any]]:
        pass

    async def close(self) -> None:
        return None


class HttpVisitorTracker(VisitorTracker):
    def __init__(self, url_template: str, timeout: float = 10.0, max_retries: int = 1):
        self.url_template = url_template
        self._client = BaseClient(timeout=timeout, max_retries=max_retries)

    async def list_visitors(self, content_id: str) -> list[dict[str, Any]]:
        url = self.url_template.format(identifier=quote(content_id, safe=""))
        try:
            data = await self._client.get(url)
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            raise_for_http_error(TRACKER_SOURCE, exc)
        except ValueError as exc:
            raise SourceError("tracker returned a non-JSON body") from exc

        # Accept either a bare list or {"visitors": [...]}
        if isinstance(data, dict):
            data = data.get("visitors", [])
        if not isinstance(data, list):
            raise SourceError(f"tracker returned {type(data).__name__}, expected a list")
        return [v for v in data if isinstance(v, dict)]

    async def close(self) -> None:
        await self._client.close()


class TrackedVisitorSource(SourceConnector):
    """Exposes the tracker's entry for one visitor as an always-available source."""

    def __init__(self, entry: dict[str, Any]):
        super().__init__(TRACKER_SOURCE)
        self.entry = entry

    async def fetch(self, identifier: str) -> dict[str, Any]:
        return dict(self.entry)
