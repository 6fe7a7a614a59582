from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from app.models.record import utcnow


class RiskCategory(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskSignal(BaseModel):
    """One piece of evidence that contributed to a risk score."""

    source: str
    name: str
    strength: float


class RiskAssessment(BaseModel):
    identifier: str
    score: float = Field(ge=0.0, le=1.0)
    category: RiskCategory
    evidence: list[RiskSignal] = Field(default_factory=list)


class EscalationStatus(str, Enum):
    TRIGGERED = "triggered"
    DUPLICATE_SUPPRESSED = "duplicate-suppressed"
    DELIVERY_FAILED = "delivery-failed"
    NOT_REQUIRED = "not-required"


class DeploymentStatus(str, Enum):
    DISPATCHED = "dispatched"
    FAILED = "failed"


class EscalationRecord(BaseModel):
    """Marker kept for the deduplication window after an escalation."""

    identifier: str
    timestamp: datetime = Field(default_factory=utcnow)
    category: RiskCategory = RiskCategory.HIGH


class EscalationOutcome(BaseModel):
    identifier: str
    status: EscalationStatus
    detail: str | None = None
    deployment: DeploymentStatus | None = None
