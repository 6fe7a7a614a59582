from fastapi import HTTPException, Request

from app.services.pipeline.service import ProfilePipelineService


def get_pipeline_service(request: Request) -> ProfilePipelineService:
    service = getattr(request.app.state, "pipeline", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Pipeline is not initialized.")
    return service
