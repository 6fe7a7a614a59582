"""Shared fakes for pipeline tests.

Every external collaborator is replaced by a small in-memory implementation
of its interface so tests can observe calls and inject failures.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from app.core.constants import (
    FULL_ANALYSIS,
    INTERACTION_ANALYSIS,
    PROFILE_SEARCH,
    VIDEO_UPLOAD,
    VIEWER_DATA_FETCH,
)
from app.core.errors import ComplianceDeniedError, PersistenceError, SecurityError
from app.models.record import CombinedRecord, SecuredRecord, TransformedRecord
from app.models.risk import EscalationRecord, RiskAssessment
from app.services.aggregator import Aggregator
from app.services.codec import FernetRecordCodec, RecordCodec
from app.services.compliance import ComplianceGate
from app.services.deployment import AssetDeployer
from app.services.escalation.channel import AlertChannel
from app.services.escalation.gate import EscalationGate
from app.services.escalation.store import InMemoryEscalationStore
from app.services.persistence import PersistenceSink
from app.services.pipeline.orchestrator import PipelineOrchestrator, RetryPolicy, StageDeadlines
from app.services.risk.scorer import RiskScorer
from app.services.sources.base import SourceConnector
from app.services.sources.tracker import VisitorTracker
from app.services.transform import TransformStage

ALL_OPERATIONS = [PROFILE_SEARCH, VIDEO_UPLOAD, INTERACTION_ANALYSIS, VIEWER_DATA_FETCH, FULL_ANALYSIS]


class FakeSource(SourceConnector):
    def __init__(
        self,
        name: str,
        data: dict[str, Any] | Callable[[str], dict[str, Any]] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        super().__init__(name)
        self.data = data if data is not None else {}
        self.error = error
        self.delay = delay
        self.calls: list[str] = []
        self.closed = False

    async def fetch(self, identifier: str) -> dict[str, Any]:
        self.calls.append(identifier)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if callable(self.data):
            return self.data(identifier)
        return dict(self.data)

    async def close(self) -> None:
        self.closed = True


class FakeTransform(TransformStage):
    def __init__(
        self,
        features: dict[str, float] | Callable[[CombinedRecord], dict[str, float]] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.features = features or {}
        self.error = error
        self.delay = delay
        self.calls: list[CombinedRecord] = []

    async def transform(self, record: CombinedRecord) -> TransformedRecord:
        self.calls.append(record)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        features = self.features(record) if callable(self.features) else dict(self.features)
        return TransformedRecord(identifier=record.identifier, payload=dict(record.namespaced), features=features)


class FailingCodec(RecordCodec):
    scheme = "broken"

    def __init__(self):
        self.calls = 0

    async def encode(self, record: TransformedRecord) -> SecuredRecord:
        self.calls += 1
        raise SecurityError("cipher unavailable")

    async def decode(self, secured: SecuredRecord) -> TransformedRecord:
        raise SecurityError("cipher unavailable")


class RecordingCompliance(ComplianceGate):
    def __init__(self, allowed=ALL_OPERATIONS):
        self.allowed = set(allowed)
        self.calls: list[str] = []

    async def check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation not in self.allowed:
            raise ComplianceDeniedError(f"{operation} denied")


class MemorySink(PersistenceSink):
    def __init__(self, failures: int = 0, error: Exception | None = None):
        self.records: dict[tuple[str, str], SecuredRecord] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures = failures
        self.error = error

    async def store(self, kind: str, entity_id: str, record: SecuredRecord) -> None:
        self.calls.append((kind, entity_id))
        if self.error is not None:
            raise self.error
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("disk full")
        self.records[(kind, entity_id)] = record

    async def load(self, kind: str, entity_id: str) -> SecuredRecord | None:
        return self.records.get((kind, entity_id))


class RecordingChannel(AlertChannel):
    def __init__(self, error: Exception | None = None, delay: float = 0.0):
        self.sent: list[tuple[EscalationRecord, RiskAssessment]] = []
        self.error = error
        self.delay = delay

    async def send(self, record: EscalationRecord, assessment: RiskAssessment) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append((record, assessment))


class RecordingDeployer(AssetDeployer):
    def __init__(self, error: Exception | None = None):
        self.deployed: list[SecuredRecord] = []
        self.error = error

    async def deploy(self, record: SecuredRecord) -> None:
        if self.error is not None:
            raise self.error
        self.deployed.append(record)


class StaticTracker(VisitorTracker):
    def __init__(self, visitors: list[dict[str, Any]] | None = None, error: Exception | None = None):
        self.visitors = visitors or []
        self.error = error
        self.calls: list[str] = []

    async def list_visitors(self, content_id: str) -> list[dict[str, Any]]:
        self.calls.append(content_id)
        if self.error is not None:
            raise self.error
        return [dict(v) for v in self.visitors]


class FakeTimer:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Harness:
    """An orchestrator wired to fakes, with the fakes exposed for assertions."""

    def __init__(
        self,
        codec: RecordCodec,
        transform: TransformStage | None = None,
        compliance: RecordingCompliance | None = None,
        sink: MemorySink | None = None,
        channel: RecordingChannel | None = None,
        deployer: RecordingDeployer | None = None,
        source_timeout: float = 1.0,
        max_retries: int = 1,
        window_seconds: int = 3600,
        timer: FakeTimer | None = None,
        deadlines: StageDeadlines | None = None,
        delivery_timeout: float = 0.5,
    ):
        self.codec = codec
        self.transform = transform or FakeTransform()
        self.compliance = compliance or RecordingCompliance()
        self.sink = sink or MemorySink()
        self.channel = channel or RecordingChannel()
        self.deployer = deployer or RecordingDeployer()
        self.timer = timer or FakeTimer()
        self.store = InMemoryEscalationStore(window_seconds, timer=self.timer)
        self.gate = EscalationGate(self.store, self.channel, delivery_timeout=delivery_timeout)
        self.orchestrator = PipelineOrchestrator(
            aggregator=Aggregator(timeout=source_timeout),
            transform=self.transform,
            scorer=RiskScorer(),
            codec=codec,
            compliance=self.compliance,
            sink=self.sink,
            gate=self.gate,
            deployer=self.deployer,
            deadlines=deadlines or StageDeadlines(transform=0.5, secure=5.0, comply=0.5, persist=0.5, escalate=1.0),
            retry=RetryPolicy(max_retries=max_retries, backoff_base=0.0, backoff_max=0.0),
        )


@pytest.fixture(scope="session")
def codec() -> FernetRecordCodec:
    return FernetRecordCodec("test-record-secret")


@pytest.fixture
def make_harness(codec):
    def _make(**kwargs) -> Harness:
        kwargs.setdefault("codec", codec)
        return Harness(**kwargs)

    return _make
