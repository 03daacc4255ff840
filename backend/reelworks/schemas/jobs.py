from __future__ import annotations
"""Pydantic v2 schemas for generation jobs."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

Orientation = Literal["16:9", "9:16"]
Resolution = Literal["720p", "1080p"]
Style = Literal["Cinematic", "Realistic", "Animation", "Cyberpunk", "Vintage"]


class VideoJobCreate(BaseModel):
    """Schema for starting a text-to-video job."""

    prompt: str = Field(min_length=1)
    style: Style = "Cinematic"
    orientation: Orientation = "16:9"
    resolution: Resolution = "720p"

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt must not be blank")
        return value


class JobCreated(BaseModel):
    job_id: str
    feature: str
    status: str


class MontageSegmentRead(BaseModel):
    start_timestamp: str
    end_timestamp: str
    visual_description: str


class JobRead(BaseModel):
    """Schema for reading a job's current state."""

    job_id: str
    feature: str
    status: str
    message: str = ""
    progress: float = 0.0
    phase: str = "submitted"
    error_kind: str | None = None
    has_artifact: bool = False
    artifact_uri: str | None = None
    segments: list[MontageSegmentRead] = []
