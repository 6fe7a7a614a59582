import math
from abc import ABC, abstractmethod

import httpx

from app.core.base_client import BaseClient
from app.core.errors import TransformError
from app.models.record import CombinedRecord, TransformedRecord

# Field-name fragments that mark a numeric field as a risk feature
FEATURE_MARKERS = ("risk", "score")


class TransformStage(ABC):
    """
    Interface for the scoring/model stage that turns a combined record
    into a transformed one. Failures raise ``TransformError``.
    """

    @abstractmethod
    async def transform(self, record: CombinedRecord) -> TransformedRecord:
        pass

    async def close(self) -> None:
        return None


class PassthroughTransformStage(TransformStage):
    """
    Local stand-in used when no model service is configured.

    Copies the namespaced fields as the payload and lifts numeric fields in
    [0, 1] whose name mentions risk or score into features.
    """

    async def transform(self, record: CombinedRecord) -> TransformedRecord:
        features: dict[str, float] = {}
        for key, value in record.namespaced.items():
            field = key.rsplit(".", 1)[-1].lower()
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            if not any(marker in field for marker in FEATURE_MARKERS):
                continue
            if math.isfinite(value) and 0.0 <= value <= 1.0:
                features[key] = float(value)

        return TransformedRecord(identifier=record.identifier, payload=dict(record.namespaced), features=features)


class HttpTransformStage(TransformStage):
    """
    Sends the combined record to a model service.

    The service answers ``{"payload": {...}, "features": {"name": float}}``.
    """

    def __init__(self, url: str, timeout: float = 30.0):
        self.url = url
        self._client = BaseClient(timeout=timeout, max_retries=1)

    async def transform(self, record: CombinedRecord) -> TransformedRecord:
        body = {"identifier": record.identifier, "fields": record.namespaced, "sources": record.succeeded}
        try:
            data = await self._client.post(self.url, json=body)
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            raise TransformError(f"Model service call failed: {exc}") from exc
        except ValueError as exc:
            raise TransformError("Model service returned a non-JSON body") from exc

        if not isinstance(data, dict):
            raise TransformError("Model service returned an empty or malformed response")
        try:
            return TransformedRecord(
                identifier=record.identifier,
                payload=data.get("payload") or {},
                features=data.get("features") or {},
            )
        except ValueError as exc:
            raise TransformError(f"Model service response failed validation: {exc}") from exc

    async def close(self) -> None:
        await self._client.close()
