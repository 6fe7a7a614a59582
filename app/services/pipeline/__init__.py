"""
Profile intelligence pipeline.

Composes source aggregation, transformation, risk scoring, securing,
compliance, persistence and escalation into the named operations.
"""

from app.services.pipeline.factory import build_pipeline_service
from app.services.pipeline.orchestrator import OperationSpec, PipelineOrchestrator, RetryPolicy, StageDeadlines
from app.services.pipeline.service import OPERATIONS, ProfilePipelineService

__all__ = [
    "build_pipeline_service",
    "OperationSpec",
    "PipelineOrchestrator",
    "RetryPolicy",
    "StageDeadlines",
    "OPERATIONS",
    "ProfilePipelineService",
]
