from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from app.core.errors import ErrorKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceFailure(BaseModel):
    """A connector that did not contribute to a combined record."""

    source: str
    kind: ErrorKind
    message: str = ""


class CombinedRecord(BaseModel):
    """
    Merge of every partial record fetched for one identifier.

    ``namespaced`` is the authoritative view, keyed ``source.field`` so that no
    source can overwrite another. ``flat`` exposes unqualified names where
    the first successful source wins.
    """

    identifier: str
    namespaced: dict[str, Any] = Field(default_factory=dict)
    flat: dict[str, Any] = Field(default_factory=dict)
    succeeded: list[str] = Field(default_factory=list)
    failures: list[SourceFailure] = Field(default_factory=list)

    def _namespaces(self) -> set[str]:
        return {key.split(".", 1)[0] for key in self.namespaced} | set(self.succeeded)

    def add_source(self, source: str, partial: dict[str, Any]) -> None:
        """Merge one successful source's fields under its namespace."""
        if source in self._namespaces():
            raise ValueError(f"Namespace '{source}' is already present in the record")
        for key, value in partial.items():
            self.namespaced[f"{source}.{key}"] = value
            self.flat.setdefault(str(key), value)
        self.succeeded.append(source)

    def attach(self, namespace: str, data: dict[str, Any]) -> None:
        """Merge caller-supplied data (not a source) under a reserved namespace."""
        if namespace in self._namespaces():
            raise ValueError(f"Namespace '{namespace}' is already present in the record")
        for key, value in data.items():
            self.namespaced[f"{namespace}.{key}"] = value

    def by_source(self) -> dict[str, dict[str, Any]]:
        grouped: dict[str, dict[str, Any]] = {}
        for key, value in self.namespaced.items():
            namespace, _, field = key.partition(".")
            grouped.setdefault(namespace, {})[field] = value
        return grouped

    @property
    def is_empty(self) -> bool:
        return not self.succeeded


class TransformedRecord(BaseModel):
    """Output of the transform stage: an opaque payload plus optional risk features."""

    identifier: str
    payload: dict[str, Any] = Field(default_factory=dict)
    features: dict[str, float] = Field(default_factory=dict)


class SecuredRecord(BaseModel):
    """
    Encoded form of a transformed record.

    The only representation allowed to be persisted or returned to a caller.
    """

    identifier: str
    scheme: str
    token: str
    secured_at: datetime = Field(default_factory=utcnow)


class VideoMeta(BaseModel):
    title: str
    url: str
    owner: str
    upload_location: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    def as_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "owner": self.owner,
            "upload_location": self.upload_location,
            "timestamp": self.timestamp.isoformat(),
        }
