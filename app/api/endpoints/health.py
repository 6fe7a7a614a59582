from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health", summary="Readiness probe")
async def health_check(request: Request) -> dict:
    """Report whether the pipeline is wired, and with which sources."""
    service = getattr(request.app.state, "pipeline", None)
    if service is None:
        return {"status": "starting"}
    return {
        "status": "ok",
        "sources": sorted(service.sources),
        "tracker": service.tracker is not None,
        "escalation_window_seconds": service.orchestrator.gate.window_seconds,
    }
