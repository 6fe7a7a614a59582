import os

import uvicorn
from loguru import logger

from app.core.app import app  # noqa: F401
from app.core.config import settings

if __name__ == "__main__":
    port = int(os.getenv("PORT", settings.PORT))
    reload = settings.APP_ENV == "development"
    logger.info(f"Starting Peekaboo on port {port} ({settings.APP_ENV})")
    uvicorn.run("app.core.app:app", host="0.0.0.0", port=port, reload=reload)
