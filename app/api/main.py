from fastapi import APIRouter

from .endpoints.health import router as health_router
from .endpoints.pipeline import router as pipeline_router

api_router = APIRouter()


@api_router.get("/")
async def root():
    return {"message": "Peekaboo API is running"}


api_router.include_router(health_router)
api_router.include_router(pipeline_router)
