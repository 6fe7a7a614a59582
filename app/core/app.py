import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from app.api.main import api_router
from app.services.pipeline.factory import build_pipeline_service

from .config import settings
from .version import __version__

logger.remove()
logger.add(sys.stderr, level=settings.LOG_LEVEL.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events (startup/shutdown).
    """
    app.state.pipeline = build_pipeline_service(settings)
    yield
    try:
        await app.state.pipeline.close()
        logger.info("Pipeline clients closed")
    except Exception as exc:
        logger.warning(f"Failed to close pipeline clients: {exc}")


app = FastAPI(
    title="Peekaboo",
    description="Profile intelligence pipeline",
    version=__version__,
    lifespan=lifespan,
    docs_url=None if settings.APP_ENV != "development" else "/docs",
    redoc_url=None if settings.APP_ENV != "development" else "/redoc",
)

app.include_router(api_router)
