from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from app.api.deps import get_pipeline_service
from app.core.errors import ErrorKind, PipelineError
from app.core.security import redact_identifier
from app.models.pipeline import InteractionResult, PipelineResult, PipelineRun, RunStatus, StageStatus
from app.models.record import SecuredRecord, SourceFailure, VideoMeta
from app.models.risk import EscalationOutcome, RiskAssessment
from app.services.pipeline.service import ProfilePipelineService

router = APIRouter(tags=["pipeline"])

ERROR_STATUS = {
    ErrorKind.INVALID_IDENTIFIER: 400,
    ErrorKind.COMPLIANCE_DENIED: 403,
    ErrorKind.TIMEOUT: 504,
}


class VideoUploadRequest(BaseModel):
    title: str = Field(..., min_length=1)
    url: str
    owner: str = Field(..., min_length=1)
    uploadLocation: str | None = Field(default=None, description="Where the video was uploaded from")


class InteractionRequest(BaseModel):
    videoId: str = Field(..., min_length=1)


class AnalysisRequest(BaseModel):
    profileId: str = Field(..., min_length=1)


class RunSummary(BaseModel):
    run_id: str
    operation: str
    status: RunStatus
    stages: list[StageStatus]

    @classmethod
    def from_run(cls, run: PipelineRun) -> "RunSummary":
        return cls(run_id=run.run_id, operation=run.operation, status=run.status, stages=run.stages)


class SecuredResponse(BaseModel):
    """Secured record plus escalation outcome; the assessment stays server side."""

    run: RunSummary
    record: SecuredRecord
    escalation: EscalationOutcome | None = None

    @classmethod
    def from_result(cls, result: PipelineResult) -> "SecuredResponse":
        return cls(run=RunSummary.from_run(result.run), record=result.record, escalation=result.escalation)


class AnalysisResponse(SecuredResponse):
    assessment: RiskAssessment

    @classmethod
    def from_result(cls, result: PipelineResult) -> "AnalysisResponse":
        return cls(
            run=RunSummary.from_run(result.run),
            record=result.record,
            escalation=result.escalation,
            assessment=result.assessment,
        )


class VisitorResponse(BaseModel):
    visitor_id: str
    failures: list[SourceFailure] = Field(default_factory=list)
    record: SecuredRecord
    escalation: EscalationOutcome | None = None


class InteractionResponse(BaseModel):
    run: RunSummary
    record: SecuredRecord
    visitors: list[VisitorResponse]

    @classmethod
    def from_result(cls, result: InteractionResult) -> "InteractionResponse":
        return cls(
            run=RunSummary.from_run(result.run),
            record=result.record,
            visitors=[
                VisitorResponse(visitor_id=v.visitor_id, failures=v.failures, record=v.secured, escalation=v.escalation)
                for v in result.visitors
            ],
        )


def _raise_for_pipeline_error(exc: PipelineError, identifier: str) -> None:
    status = ERROR_STATUS.get(exc.kind, 502)
    logger.warning(f"[{redact_identifier(identifier)}] Pipeline failed at {exc.stage.value}: {exc.kind.value}")
    raise HTTPException(status_code=status, detail=exc.to_dict()) from exc


@router.get("/profiles/search", response_model=SecuredResponse)
async def search_profile(username: str, service: ProfilePipelineService = Depends(get_pipeline_service)):
    try:
        return SecuredResponse.from_result(await service.run_profile_search(username))
    except PipelineError as exc:
        _raise_for_pipeline_error(exc, username)


@router.post("/videos", response_model=SecuredResponse)
async def upload_video(payload: VideoUploadRequest, service: ProfilePipelineService = Depends(get_pipeline_service)):
    video = VideoMeta(
        title=payload.title,
        url=payload.url,
        owner=payload.owner,
        upload_location=payload.uploadLocation,
        timestamp=datetime.now(timezone.utc),
    )
    try:
        return SecuredResponse.from_result(await service.run_video_upload(video))
    except PipelineError as exc:
        _raise_for_pipeline_error(exc, payload.owner)


@router.post("/interactions/analyze", response_model=InteractionResponse)
async def analyze_interactions(
    payload: InteractionRequest, service: ProfilePipelineService = Depends(get_pipeline_service)
):
    try:
        return InteractionResponse.from_result(await service.run_interaction_analysis(payload.videoId))
    except PipelineError as exc:
        _raise_for_pipeline_error(exc, payload.videoId)


@router.get("/viewers", response_model=SecuredResponse)
async def get_viewer_data(profile_id: str, service: ProfilePipelineService = Depends(get_pipeline_service)):
    try:
        return SecuredResponse.from_result(await service.run_viewer_data_fetch(profile_id))
    except PipelineError as exc:
        _raise_for_pipeline_error(exc, profile_id)


@router.post("/analysis", response_model=AnalysisResponse)
async def fetch_and_analyze(payload: AnalysisRequest, service: ProfilePipelineService = Depends(get_pipeline_service)):
    try:
        return AnalysisResponse.from_result(await service.run_full_analysis(payload.profileId))
    except PipelineError as exc:
        _raise_for_pipeline_error(exc, payload.profileId)
