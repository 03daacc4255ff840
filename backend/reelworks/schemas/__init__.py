"""Pydantic v2 schemas package."""

from reelworks.schemas.jobs import (
    JobCreated,
    JobRead,
    MontageSegmentRead,
    VideoJobCreate,
)

__all__ = [
    "JobCreated",
    "JobRead",
    "MontageSegmentRead",
    "VideoJobCreate",
]
