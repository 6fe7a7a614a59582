from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

from app.core.errors import ErrorKind
from app.models.record import SecuredRecord, SourceFailure, utcnow
from app.models.risk import EscalationOutcome, RiskAssessment, RiskCategory


class Stage(str, Enum):
    COLLECT = "COLLECT"
    TRANSFORM = "TRANSFORM"
    SCORE = "SCORE"
    SECURE = "SECURE"
    COMPLY = "COMPLY"
    PERSIST = "PERSIST"
    ESCALATE = "ESCALATE"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"


class StageStatus(BaseModel):
    stage: Stage
    state: Literal["running", "ok", "failed"] = "running"
    attempts: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    detail: str | None = None


class RunError(BaseModel):
    stage: Stage
    kind: ErrorKind
    message: str = ""


class PipelineRun(BaseModel):
    """
    The unit of work for one request.

    Stages are appended in execution order; a failed run keeps the stage
    and kind that terminated it.
    """

    run_id: str = Field(default_factory=lambda: uuid4().hex)
    operation: str
    identifier: str
    status: RunStatus = RunStatus.RUNNING
    stages: list[StageStatus] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    error: RunError | None = None
    assessment: RiskAssessment | None = None
    escalation: EscalationOutcome | None = None

    def stage_status(self, stage: Stage) -> StageStatus | None:
        for status in reversed(self.stages):
            if status.stage is stage:
                return status
        return None

    def begin(self, stage: Stage) -> StageStatus:
        status = StageStatus(stage=stage)
        self.stages.append(status)
        return status

    def complete(self, stage: Stage, detail: str | None = None, ok: bool = True) -> None:
        status = self.stage_status(stage) or self.begin(stage)
        status.state = "ok" if ok else "failed"
        status.finished_at = utcnow()
        status.detail = detail

    def fail(self, stage: Stage, kind: ErrorKind, message: str = "") -> None:
        self.complete(stage, detail=message, ok=False)
        self.status = RunStatus.FAILED
        self.error = RunError(stage=stage, kind=kind, message=message)
        self.finished_at = utcnow()

    def finish(self) -> None:
        self.status = RunStatus.DONE
        self.finished_at = utcnow()

    @property
    def executed_stages(self) -> list[Stage]:
        return [s.stage for s in self.stages]

    def summary(self) -> str:
        trail = " -> ".join(f"{s.stage.value}:{s.state}" for s in self.stages)
        if self.error:
            return f"{self.operation} {self.status.value} at {self.error.stage.value} ({self.error.kind.value}) [{trail}]"
        return f"{self.operation} {self.status.value} [{trail}]"


class PipelineResult(BaseModel):
    run: PipelineRun
    record: SecuredRecord
    assessment: RiskAssessment
    escalation: EscalationOutcome | None = None


class AnalyzedVisitor(BaseModel):
    visitor_id: str
    assessment: RiskAssessment
    secured: SecuredRecord
    failures: list[SourceFailure] = Field(default_factory=list)
    escalation: EscalationOutcome | None = None


class InteractionResult(BaseModel):
    run: PipelineRun
    record: SecuredRecord
    visitors: list[AnalyzedVisitor] = Field(default_factory=list)

    @property
    def high_risk(self) -> list[AnalyzedVisitor]:
        return [v for v in self.visitors if v.assessment.category is RiskCategory.HIGH]
