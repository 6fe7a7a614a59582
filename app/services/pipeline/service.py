from collections.abc import Mapping

from loguru import logger

from app.core.constants import (
    FULL_ANALYSIS,
    INTERACTION_ANALYSIS,
    OPERATION_SOURCES,
    PROFILE_SEARCH,
    VIDEO_NAMESPACE,
    VIDEO_UPLOAD,
    VIEWER_DATA_FETCH,
)
from app.models.pipeline import InteractionResult, PipelineResult
from app.models.record import VideoMeta
from app.services.pipeline.orchestrator import OperationSpec, PipelineOrchestrator
from app.services.sources.base import SourceConnector
from app.services.sources.tracker import VisitorTracker

OPERATIONS: dict[str, OperationSpec] = {
    PROFILE_SEARCH: OperationSpec(name=PROFILE_SEARCH, score_input="transformed"),
    VIDEO_UPLOAD: OperationSpec(name=VIDEO_UPLOAD, score_input="transformed", deploy_on_escalation=True),
    INTERACTION_ANALYSIS: OperationSpec(name=INTERACTION_ANALYSIS, score_input="both", deploy_on_escalation=True),
    VIEWER_DATA_FETCH: OperationSpec(name=VIEWER_DATA_FETCH, score_input="transformed", deploy_on_escalation=True),
    FULL_ANALYSIS: OperationSpec(name=FULL_ANALYSIS, score_input="both"),
}


class ProfilePipelineService:
    """
    The five named operations, each a configuration of the same pipeline.

    Operations differ only in their source set, which record is scored and
    whether escalation is wired to asset deployment.
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        sources: Mapping[str, SourceConnector],
        tracker: VisitorTracker | None = None,
        operation_sources: Mapping[str, tuple[str, ...]] = OPERATION_SOURCES,
    ):
        self.orchestrator = orchestrator
        self.sources = dict(sources)
        self.tracker = tracker
        self.operation_sources = dict(operation_sources)

    def connectors_for(self, operation: str) -> list[SourceConnector]:
        connectors = []
        for name in self.operation_sources.get(operation, ()):
            connector = self.sources.get(name)
            if connector is None:
                logger.warning(f"Source '{name}' for {operation} is not configured; skipping")
                continue
            connectors.append(connector)
        return connectors

    async def run_profile_search(self, username: str) -> PipelineResult:
        return await self.orchestrator.execute(
            OPERATIONS[PROFILE_SEARCH], username, self.connectors_for(PROFILE_SEARCH)
        )

    async def run_video_upload(self, video: VideoMeta, owner: str | None = None) -> PipelineResult:
        """Viewer data is collected for the owner; the record is stored under the video title."""
        owner = owner or video.owner
        return await self.orchestrator.execute(
            OPERATIONS[VIDEO_UPLOAD],
            owner,
            self.connectors_for(VIDEO_UPLOAD),
            entity_id=video.title,
            attachments={VIDEO_NAMESPACE: video.as_fields()},
        )

    async def run_interaction_analysis(self, content_id: str) -> InteractionResult:
        return await self.orchestrator.execute_interactions(
            OPERATIONS[INTERACTION_ANALYSIS], content_id, self.tracker, self.connectors_for(INTERACTION_ANALYSIS)
        )

    async def run_viewer_data_fetch(self, profile_id: str) -> PipelineResult:
        return await self.orchestrator.execute(
            OPERATIONS[VIEWER_DATA_FETCH], profile_id, self.connectors_for(VIEWER_DATA_FETCH)
        )

    async def run_full_analysis(self, profile_id: str) -> PipelineResult:
        return await self.orchestrator.execute(OPERATIONS[FULL_ANALYSIS], profile_id, self.connectors_for(FULL_ANALYSIS))

    async def close(self) -> None:
        """Close every client owned by the pipeline's collaborators."""
        closables = [
            *self.sources.values(),
            self.tracker,
            self.orchestrator.transform,
            self.orchestrator.sink,
            self.orchestrator.gate.store,
            self.orchestrator.gate.channel,
            self.orchestrator.deployer,
        ]
        for closable in closables:
            if closable is None:
                continue
            try:
                await closable.close()
            except Exception as exc:
                logger.warning(f"Failed to close {type(closable).__name__}: {exc}")
