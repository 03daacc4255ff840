from __future__ import annotations
"""Master API router, mounts all sub-routers."""

from fastapi import APIRouter

from reelworks.api.jobs import router as jobs_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(jobs_router, prefix="/jobs", tags=["Jobs"])
