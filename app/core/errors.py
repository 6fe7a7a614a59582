from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.models.pipeline import PipelineRun, Stage


class ErrorKind(str, Enum):
    SOURCE_UNAVAILABLE = "SourceUnavailable"
    TIMEOUT = "Timeout"
    TRANSFORM_FAILED = "TransformFailed"
    SECURITY_FAILED = "SecurityFailed"
    COMPLIANCE_DENIED = "ComplianceDenied"
    PERSISTENCE_FAILED = "PersistenceFailed"
    INVALID_IDENTIFIER = "InvalidIdentifier"
    ESCALATION_DELIVERY_FAILED = "EscalationDeliveryFailed"


# Infrastructure failures the orchestrator may retry (at most once)
RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.SOURCE_UNAVAILABLE,
        ErrorKind.PERSISTENCE_FAILED,
    }
)


class StageError(Exception):
    """
    Base error raised by pipeline collaborators.

    Subclasses carry a default kind; callers may override it per raise.
    """

    kind: ErrorKind = ErrorKind.SOURCE_UNAVAILABLE

    def __init__(self, message: str = "", kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class SourceError(StageError):
    kind = ErrorKind.SOURCE_UNAVAILABLE


class TransformError(StageError):
    kind = ErrorKind.TRANSFORM_FAILED


class SecurityError(StageError):
    kind = ErrorKind.SECURITY_FAILED


class ComplianceDeniedError(StageError):
    kind = ErrorKind.COMPLIANCE_DENIED


class PersistenceError(StageError):
    kind = ErrorKind.PERSISTENCE_FAILED


class AlertDeliveryError(StageError):
    kind = ErrorKind.ESCALATION_DELIVERY_FAILED


class DeploymentError(StageError):
    kind = ErrorKind.ESCALATION_DELIVERY_FAILED


class PipelineError(Exception):
    """
    Caller-facing failure of a pipeline run.

    Identifies the stage that failed and the error kind, and keeps the
    original exception as ``cause``. Never carries record data.
    """

    def __init__(
        self,
        stage: "Stage",
        kind: ErrorKind,
        cause: BaseException | None = None,
        run: "PipelineRun | None" = None,
    ):
        self.stage = stage
        self.kind = kind
        self.cause = cause
        self.run = run
        detail = str(cause) if cause is not None and str(cause) else kind.value
        super().__init__(f"{stage.value} failed ({kind.value}): {detail}")

    @property
    def message(self) -> str:
        if self.cause is not None and str(self.cause):
            return str(self.cause)
        return self.kind.value

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "kind": self.kind.value,
            "message": self.message,
            "run_id": self.run.run_id if self.run else None,
        }
