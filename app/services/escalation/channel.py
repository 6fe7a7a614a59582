from abc import ABC, abstractmethod

import httpx
from loguru import logger

from app.core.base_client import BaseClient
from app.core.errors import AlertDeliveryError
from app.core.security import redact_identifier
from app.models.risk import EscalationRecord, RiskAssessment


class AlertChannel(ABC):
    """
    Out-of-band alert destination. Raises ``AlertDeliveryError`` when the
    alert could not be handed over.
    """

    @abstractmethod
    async def send(self, record: EscalationRecord, assessment: RiskAssessment) -> None:
        pass

    async def close(self) -> None:
        return None


class LogAlertChannel(AlertChannel):
    """Writes alerts to the application log; used when no webhook is configured."""

    async def send(self, record: EscalationRecord, assessment: RiskAssessment) -> None:
        signals = ", ".join(f"{s.source}.{s.name}={s.strength}" for s in assessment.evidence)
        logger.warning(
            f"[{redact_identifier(record.identifier)}] ALERT {record.category.value} risk "
            f"(score={assessment.score}) at {record.timestamp.isoformat()}: {signals}"
        )


class WebhookAlertChannel(AlertChannel):
    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self._client = BaseClient(timeout=timeout, max_retries=2)

    async def send(self, record: EscalationRecord, assessment: RiskAssessment) -> None:
        body = {
            "identifier": record.identifier,
            "category": record.category.value,
            "timestamp": record.timestamp.isoformat(),
            "score": assessment.score,
            "evidence": [s.model_dump() for s in assessment.evidence],
        }
        try:
            await self._client.post(self.url, json=body)
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            raise AlertDeliveryError(f"Alert webhook failed: {exc}") from exc
        except ValueError:
            # Body was delivered; the receiver just did not answer with JSON
            pass

    async def close(self) -> None:
        await self._client.close()
