from __future__ import annotations
"""ReelWorks: FastAPI application entry point.

Mounts the job API and progress WebSocket, configures CORS and logging,
and cancels outstanding orchestrations on shutdown.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reelworks import __version__
from reelworks.api.router import api_router
from reelworks.api.ws import router as ws_router
from reelworks.config import get_settings
from reelworks.services.credentials import mask_key
from reelworks.services.jobs import get_job_registry

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: report config on startup, cancel jobs on shutdown."""
    logger.info("%s starting up...", settings.APP_NAME)
    if settings.GEMINI_API_KEY:
        logger.info("Gemini key: %s", mask_key(settings.GEMINI_API_KEY))
    else:
        logger.warning("GEMINI_API_KEY is not set, generation requests will fail")
    logger.info(
        "Polling every %.0fs, retry budget %d attempts",
        settings.POLL_INTERVAL, settings.RETRY_MAX_ATTEMPTS,
    )

    yield

    await get_job_registry().shutdown()
    logger.info("%s shut down", settings.APP_NAME)


app = FastAPI(
    title="ReelWorks API",
    description="Gemini / Veo studio backend: video generation, logo animation, remedy and montage",
    version=__version__,
    lifespan=lifespan,
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(ws_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": settings.APP_NAME,
        "status": "running",
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    registry = get_job_registry()
    return {
        "status": "healthy",
        "api_key_configured": bool(settings.GEMINI_API_KEY),
        "jobs": len(registry),
    }
