import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from app.core.constants import TRACKER_SOURCE
from app.core.errors import RETRYABLE_KINDS, ErrorKind, PipelineError, SourceError, StageError
from app.core.security import redact_identifier
from app.models.pipeline import AnalyzedVisitor, InteractionResult, PipelineResult, PipelineRun, Stage
from app.models.record import CombinedRecord, SecuredRecord, TransformedRecord
from app.models.risk import (
    DeploymentStatus,
    EscalationOutcome,
    EscalationStatus,
    RiskAssessment,
    RiskCategory,
)
from app.services.aggregator import Aggregator
from app.services.codec import RecordCodec
from app.services.compliance import ComplianceGate
from app.services.deployment import AssetDeployer
from app.services.escalation.gate import EscalationGate
from app.services.persistence import PersistenceSink
from app.services.risk.scorer import RiskScorer, ScoreInput
from app.services.sources.base import SourceConnector
from app.services.sources.tracker import TrackedVisitorSource, VisitorTracker
from app.services.transform import TransformStage

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Capped exponential backoff for infrastructure failures, at most one retry."""

    max_retries: int = Field(default=1, ge=0, le=1)
    backoff_base: float = Field(default=0.5, ge=0.0)
    backoff_max: float = Field(default=4.0, ge=0.0)

    def delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)


class StageDeadlines(BaseModel):
    """Per-call deadlines in seconds. Connector deadlines live on the Aggregator."""

    transform: float = 30.0
    secure: float = 5.0
    comply: float = 5.0
    persist: float = 5.0
    escalate: float = 10.0


class OperationSpec(BaseModel):
    """What distinguishes one named operation from another."""

    name: str
    score_input: ScoreInput = "transformed"
    deploy_on_escalation: bool = False


class PipelineOrchestrator:
    """
    Runs COLLECT -> TRANSFORM -> SCORE -> SECURE -> COMPLY -> PERSIST -> (ESCALATE).

    Stages run strictly in order. Any stage failure before ESCALATE ends the
    run with a ``PipelineError``; escalation problems are reported on the
    result and never fail a persisted run. Every collaborator is injected.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        transform: TransformStage,
        scorer: RiskScorer,
        codec: RecordCodec,
        compliance: ComplianceGate,
        sink: PersistenceSink,
        gate: EscalationGate,
        deployer: AssetDeployer | None = None,
        deadlines: StageDeadlines | None = None,
        retry: RetryPolicy | None = None,
    ):
        self.aggregator = aggregator
        self.transform = transform
        self.scorer = scorer
        self.codec = codec
        self.compliance = compliance
        self.sink = sink
        self.gate = gate
        self.deployer = deployer
        self.deadlines = deadlines or StageDeadlines()
        self.retry = retry or RetryPolicy()

    async def execute(
        self,
        operation: OperationSpec,
        identifier: str,
        connectors: Sequence[SourceConnector],
        entity_id: str | None = None,
        attachments: dict[str, dict[str, Any]] | None = None,
    ) -> PipelineResult:
        """
        Run one subject through every stage.

        Args:
            operation: Operation being performed
            identifier: Subject identifier passed to every connector
            connectors: Sources feeding COLLECT
            entity_id: Persistence key, defaults to the identifier
            attachments: Caller-supplied data merged under reserved namespaces

        Raises:
            PipelineError: identifying the failed stage and error kind
        """
        attachments = attachments or {}
        self._check_sources(connectors)
        clashes = set(attachments) & {c.name for c in connectors}
        if clashes:
            raise ValueError(f"Attachment namespaces clash with source names: {sorted(clashes)}")

        run = PipelineRun(operation=operation.name, identifier=identifier)
        logger.info(f"[{run.run_id}] Starting {operation.name} for {redact_identifier(identifier)}")

        self._check_identifier(run, identifier)

        async def collect() -> CombinedRecord:
            combined, _ = await self.aggregator.aggregate(identifier, connectors)
            for namespace, data in attachments.items():
                combined.attach(namespace, data)
            return combined

        combined = await self._stage(run, Stage.COLLECT, collect, None, ErrorKind.SOURCE_UNAVAILABLE)
        transformed = await self._stage(
            run,
            Stage.TRANSFORM,
            lambda: self.transform.transform(combined),
            self.deadlines.transform,
            ErrorKind.TRANSFORM_FAILED,
        )

        assessment = self._score(run, operation.score_input, combined, transformed)
        run.assessment = assessment
        run.complete(Stage.SCORE, detail=f"{assessment.category.value} ({assessment.score})")

        secured = await self._stage(
            run, Stage.SECURE, lambda: self.codec.encode(transformed), self.deadlines.secure, ErrorKind.SECURITY_FAILED
        )
        await self._comply(run, operation.name)
        await self._stage(
            run,
            Stage.PERSIST,
            lambda: self.sink.store(operation.name, entity_id or identifier, secured),
            self.deadlines.persist,
            ErrorKind.PERSISTENCE_FAILED,
        )

        escalation = None
        if assessment.category is RiskCategory.HIGH:
            run.begin(Stage.ESCALATE).attempts = 1
            escalation = await self._escalate_one(run, operation, assessment, secured)
            run.escalation = escalation
            run.complete(
                Stage.ESCALATE,
                detail=escalation.status.value,
                ok=escalation.status is not EscalationStatus.DELIVERY_FAILED,
            )

        run.finish()
        logger.info(f"[{run.run_id}] {run.summary()}")
        return PipelineResult(run=run, record=secured, assessment=assessment, escalation=escalation)

    async def execute_interactions(
        self,
        operation: OperationSpec,
        content_id: str,
        tracker: VisitorTracker | None,
        connectors: Sequence[SourceConnector],
    ) -> InteractionResult:
        """
        Analyze every visitor of a content item.

        Each visitor goes through COLLECT, TRANSFORM, SCORE and SECURE; the
        batch is then checked, persisted once under the content id, and each
        high-risk visitor is escalated.
        """
        self._check_sources(connectors)
        if any(c.name == TRACKER_SOURCE for c in connectors):
            raise ValueError(f"Source name '{TRACKER_SOURCE}' is reserved for the visitor tracker")

        run = PipelineRun(operation=operation.name, identifier=content_id)
        logger.info(f"[{run.run_id}] Starting {operation.name} for {redact_identifier(content_id)}")

        self._check_identifier(run, content_id)

        records = await self._stage(
            run,
            Stage.COLLECT,
            lambda: self._collect_visitors(content_id, tracker, connectors),
            None,
            ErrorKind.SOURCE_UNAVAILABLE,
        )

        async def transform_all() -> list[TransformedRecord]:
            return [
                await asyncio.wait_for(self.transform.transform(record), timeout=self.deadlines.transform)
                for record in records
            ]

        transformed = await self._stage(run, Stage.TRANSFORM, transform_all, None, ErrorKind.TRANSFORM_FAILED)

        run.begin(Stage.SCORE).attempts = 1
        assessments = [
            self._score(run, operation.score_input, combined, result)
            for combined, result in zip(records, transformed)
        ]
        categories = Counter(a.category.value for a in assessments)
        run.complete(Stage.SCORE, detail=", ".join(f"{n} {c}" for c, n in sorted(categories.items())) or "no visitors")

        batch = TransformedRecord(
            identifier=content_id,
            payload={
                "visitors": [
                    {
                        "visitor_id": result.identifier,
                        "payload": result.payload,
                        "features": result.features,
                        "assessment": assessment.model_dump(mode="json"),
                    }
                    for result, assessment in zip(transformed, assessments)
                ]
            },
        )

        async def secure_all() -> tuple[list[SecuredRecord], SecuredRecord]:
            each = [
                await asyncio.wait_for(self.codec.encode(result), timeout=self.deadlines.secure)
                for result in transformed
            ]
            return each, await asyncio.wait_for(self.codec.encode(batch), timeout=self.deadlines.secure)

        secured, secured_batch = await self._stage(run, Stage.SECURE, secure_all, None, ErrorKind.SECURITY_FAILED)
        await self._comply(run, operation.name)
        await self._stage(
            run,
            Stage.PERSIST,
            lambda: self.sink.store(operation.name, content_id, secured_batch),
            self.deadlines.persist,
            ErrorKind.PERSISTENCE_FAILED,
        )

        visitors = [
            AnalyzedVisitor(
                visitor_id=combined.identifier,
                assessment=assessment,
                secured=record,
                failures=combined.failures,
            )
            for combined, assessment, record in zip(records, assessments, secured)
        ]

        result = InteractionResult(run=run, record=secured_batch, visitors=visitors)
        high_risk = result.high_risk
        if high_risk:
            run.begin(Stage.ESCALATE).attempts = 1
            for visitor in high_risk:
                visitor.escalation = await self._escalate_one(run, operation, visitor.assessment, visitor.secured)
            statuses = Counter(v.escalation.status.value for v in high_risk)
            run.complete(
                Stage.ESCALATE,
                detail=", ".join(f"{n} {s}" for s, n in sorted(statuses.items())),
                ok=EscalationStatus.DELIVERY_FAILED.value not in statuses,
            )

        run.finish()
        logger.info(f"[{run.run_id}] {run.summary()} ({len(visitors)} visitors, {len(high_risk)} high risk)")
        return result

    @staticmethod
    def _check_sources(connectors: Sequence[SourceConnector]) -> None:
        names = [c.name for c in connectors]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate source names: {duplicates}")

    def _check_identifier(self, run: PipelineRun, identifier: str) -> None:
        if not identifier or not identifier.strip():
            run.begin(Stage.COLLECT).attempts = 1
            raise self._fail(run, Stage.COLLECT, ErrorKind.INVALID_IDENTIFIER, SourceError("Identifier is empty"))

    async def _collect_visitors(
        self, content_id: str, tracker: VisitorTracker | None, connectors: Sequence[SourceConnector]
    ) -> list[CombinedRecord]:
        if tracker is None:
            raise SourceError("No visitor tracker configured")
        entries = await asyncio.wait_for(tracker.list_visitors(content_id), timeout=self.aggregator.timeout)

        unique: dict[str, dict[str, Any]] = {}
        for entry in entries:
            visitor_id = str(entry.get("id") or "").strip()
            if not visitor_id:
                logger.warning(f"Skipping visitor entry without id for {redact_identifier(content_id)}")
                continue
            unique.setdefault(visitor_id, entry)

        # The tracker entry always succeeds, so a visitor is never dropped for failed sources
        results = await asyncio.gather(
            *(
                self.aggregator.aggregate(visitor_id, [TrackedVisitorSource(entry), *connectors])
                for visitor_id, entry in unique.items()
            )
        )
        return [combined for combined, _ in results]

    def _score(
        self, run: PipelineRun, score_input: ScoreInput, combined: CombinedRecord, transformed: TransformedRecord
    ) -> RiskAssessment:
        if run.stage_status(Stage.SCORE) is None:
            run.begin(Stage.SCORE).attempts = 1
        assessment = self.scorer.score_for(score_input, combined, transformed)
        logger.debug(
            f"[{run.run_id}] {redact_identifier(assessment.identifier)} scored {assessment.score} "
            f"({assessment.category.value}) from {len(assessment.evidence)} signals"
        )
        return assessment

    async def _comply(self, run: PipelineRun, operation: str) -> None:
        # Unexpected failures here are infrastructure problems, never a denial
        await self._stage(
            run,
            Stage.COMPLY,
            lambda: self.compliance.check(operation),
            self.deadlines.comply,
            ErrorKind.SOURCE_UNAVAILABLE,
        )

    async def _stage(
        self,
        run: PipelineRun,
        stage: Stage,
        call: Callable[[], Awaitable[T]],
        timeout: float | None,
        error_kind: ErrorKind,
    ) -> T:
        """
        Run one stage call under its deadline.

        Retryable failures are retried per the retry policy; anything else
        fails the run at this stage. ``error_kind`` classifies unexpected
        exceptions, which are treated as defects and never retried.
        """
        status = run.begin(stage)
        while True:
            status.attempts += 1
            expected = True
            try:
                if timeout is None:
                    result = await call()
                else:
                    result = await asyncio.wait_for(call(), timeout=timeout)
            except asyncio.TimeoutError:
                kind = ErrorKind.TIMEOUT
                cause: BaseException = TimeoutError(f"{stage.value} exceeded its deadline")
            except StageError as exc:
                kind, cause = exc.kind, exc
            except Exception as exc:
                logger.exception(f"[{run.run_id}] {stage.value} raised unexpectedly: {exc}")
                kind, cause, expected = error_kind, exc, False
            else:
                run.complete(stage)
                return result

            if expected and kind in RETRYABLE_KINDS and status.attempts <= self.retry.max_retries:
                delay = self.retry.delay(status.attempts)
                logger.warning(f"[{run.run_id}] {stage.value} failed ({kind.value}): {cause}. Retrying in {delay}s")
                await asyncio.sleep(delay)
                continue
            raise self._fail(run, stage, kind, cause)

    def _fail(self, run: PipelineRun, stage: Stage, kind: ErrorKind, cause: BaseException) -> PipelineError:
        message = str(cause) or kind.value
        run.fail(stage, kind, message)
        logger.warning(f"[{run.run_id}] {run.summary()}: {message}")
        return PipelineError(stage=stage, kind=kind, cause=cause, run=run)

    async def _escalate_one(
        self, run: PipelineRun, operation: OperationSpec, assessment: RiskAssessment, secured: SecuredRecord
    ) -> EscalationOutcome:
        identifier = assessment.identifier
        # The gate bounds delivery itself; this deadline covers the store round trips on top of it
        timeout = self.deadlines.escalate + self.gate.delivery_timeout
        try:
            outcome = await asyncio.wait_for(self.gate.escalate(assessment), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{run.run_id}] Escalation for {redact_identifier(identifier)} exceeded its deadline")
            return EscalationOutcome(
                identifier=identifier, status=EscalationStatus.DELIVERY_FAILED, detail="Escalation timed out"
            )
        except Exception as exc:
            logger.exception(f"[{run.run_id}] Escalation for {redact_identifier(identifier)} raised: {exc}")
            return EscalationOutcome(identifier=identifier, status=EscalationStatus.DELIVERY_FAILED, detail=str(exc))

        if outcome.status is EscalationStatus.TRIGGERED and operation.deploy_on_escalation and self.deployer:
            outcome.deployment = await self._deploy(run, secured)
        return outcome

    async def _deploy(self, run: PipelineRun, secured: SecuredRecord) -> DeploymentStatus:
        try:
            await asyncio.wait_for(self.deployer.deploy(secured), timeout=self.deadlines.escalate)
        except asyncio.TimeoutError:
            logger.warning(f"[{run.run_id}] Asset deployment exceeded its deadline")
            return DeploymentStatus.FAILED
        except StageError as exc:
            logger.warning(f"[{run.run_id}] Asset deployment failed: {exc}")
            return DeploymentStatus.FAILED
        except Exception as exc:
            logger.exception(f"[{run.run_id}] Asset deployment raised: {exc}")
            return DeploymentStatus.FAILED
        return DeploymentStatus.DISPATCHED
