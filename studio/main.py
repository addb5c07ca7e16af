"""
Studio worker entrypoint.

    uvicorn studio.main:app --port 8080
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from . import config
from .creator.routes import admin_router, assets_router, creator_router, tools_router
from .services import close_services

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Studio worker starting up...")
    yield
    logger.info("Studio worker shutting down...")
    await close_services()


app = FastAPI(title="UGC Studio", lifespan=lifespan)
app.include_router(creator_router)
app.include_router(assets_router)
app.include_router(tools_router)
app.include_router(admin_router)


@app.get("/health")
def health_check():
    """Verify the worker is running and env vars are configured."""
    return {
        "status": "ok",
        "gemini_api_key_set": bool(config.GEMINI_API_KEY),
        "video_api_key_set": bool(config.VEO_API_KEY),
        "supabase_url_set": bool(config.SUPABASE_URL),
        "r2_configured": bool(config.R2_ACCOUNT_ID and config.R2_ACCESS_KEY_ID),
    }


if __name__ == "__main__":
    uvicorn.run("studio.main:app", host="0.0.0.0", port=config.PORT)
