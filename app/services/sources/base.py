from abc import ABC, abstractmethod
from typing import Any


class SourceConnector(ABC):
    """
    Interface for a data source that returns a partial record for an identifier.

    Implementations must be safe to call concurrently and signal failure by
    raising ``SourceError`` with the matching kind (Timeout,
    SourceUnavailable or InvalidIdentifier).
    """

    def __init__(self, name: str):
        if not name or "." in name:
            raise ValueError(f"Invalid source name '{name}': must be non-empty and contain no '.'")
        self.name = name

    @abstractmethod
    async def fetch(self, identifier: str) -> dict[str, Any]:
        """
        Fetch this source's fields for the identifier.
        """
        pass

    async def close(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
