import asyncio

from loguru import logger

from app.core.errors import StageError
from app.core.security import redact_identifier
from app.models.risk import (
    EscalationOutcome,
    EscalationRecord,
    EscalationStatus,
    RiskAssessment,
    RiskCategory,
)
from app.services.escalation.channel import AlertChannel
from app.services.escalation.store import EscalationStore


class EscalationGate:
    """
    Decides whether a high-risk assessment raises an alert.

    At most one alert per identifier is emitted per deduplication window.
    Delivery is best effort: a failed delivery releases the window so a later
    run can deliver again, and is reported rather than raised.
    """

    def __init__(self, store: EscalationStore, channel: AlertChannel, delivery_timeout: float = 10.0):
        self.store = store
        self.channel = channel
        self.delivery_timeout = delivery_timeout

    @property
    def window_seconds(self) -> int:
        return self.store.window_seconds

    async def should_escalate(self, assessment: RiskAssessment) -> bool:
        """
        Atomically check for a prior escalation and record this one.

        Returns True for the first high-category assessment of an identifier
        within the window, False otherwise.
        """
        return await self._claim(assessment) is not None

    async def _claim(self, assessment: RiskAssessment) -> EscalationRecord | None:
        if assessment.category is not RiskCategory.HIGH:
            return None

        record = EscalationRecord(identifier=assessment.identifier, category=assessment.category)
        if not await self.store.claim(record):
            logger.info(f"[{redact_identifier(assessment.identifier)}] Escalation duplicate-suppressed")
            return None
        return record

    async def record_escalation(self, assessment: RiskAssessment) -> EscalationRecord:
        """Record an escalation unconditionally, restarting the window."""
        record = EscalationRecord(identifier=assessment.identifier, category=assessment.category)
        await self.store.put(record)
        return record

    async def escalate(self, assessment: RiskAssessment) -> EscalationOutcome:
        identifier = assessment.identifier
        if assessment.category is not RiskCategory.HIGH:
            return EscalationOutcome(identifier=identifier, status=EscalationStatus.NOT_REQUIRED)

        try:
            record = await self._claim(assessment)
        except StageError as exc:
            logger.warning(f"[{redact_identifier(identifier)}] Escalation store failed: {exc}")
            return EscalationOutcome(identifier=identifier, status=EscalationStatus.DELIVERY_FAILED, detail=str(exc))

        if record is None:
            return EscalationOutcome(identifier=identifier, status=EscalationStatus.DUPLICATE_SUPPRESSED)

        try:
            await asyncio.wait_for(self.channel.send(record, assessment), timeout=self.delivery_timeout)
        except asyncio.CancelledError:
            # Nothing was delivered; a claim left behind would suppress the subject for the whole window
            logger.warning(f"[{redact_identifier(identifier)}] Escalation cancelled before delivery")
            await self.store.release(identifier)
            raise
        except asyncio.TimeoutError:
            detail = f"Alert delivery timed out after {self.delivery_timeout}s"
        except StageError as exc:
            detail = exc.message or exc.kind.value
        except Exception as exc:
            logger.exception(f"[{redact_identifier(identifier)}] Alert delivery raised: {exc}")
            detail = str(exc) or type(exc).__name__
        else:
            logger.info(f"[{redact_identifier(identifier)}] Escalation triggered")
            return EscalationOutcome(identifier=identifier, status=EscalationStatus.TRIGGERED)

        logger.warning(f"[{redact_identifier(identifier)}] Escalation delivery failed: {detail}")
        await self.store.release(identifier)
        return EscalationOutcome(identifier=identifier, status=EscalationStatus.DELIVERY_FAILED, detail=detail)
