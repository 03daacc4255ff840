from __future__ import annotations
"""Generation job endpoints: start, inspect, cancel and reset studio jobs."""

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from reelworks.schemas.jobs import JobCreated, JobRead, VideoJobCreate
from reelworks.services.jobs import JobRecord, JobRegistry, get_job_registry
from reelworks.services.orchestrator import Clip, Feature

router = APIRouter()

_ORIENTATIONS = {"16:9", "9:16"}
_RESOLUTIONS = {"720p", "1080p"}
_REMEDY_MODES = {"auto", "remedy"}


def _require(value: str, allowed: set[str], name: str) -> str:
    if value not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"{name} must be one of {sorted(allowed)} (got {value!r})",
        )
    return value


def _get_job(registry: JobRegistry, job_id: str) -> JobRecord:
    try:
        return registry.get(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found") from None


def _created(job: JobRecord) -> JobCreated:
    return JobCreated(job_id=job.id, feature=job.feature, status=job.status.value)


def _read(job: JobRecord) -> JobRead:
    data = job.snapshot()
    result = job.result
    if result is not None:
        data["artifact_uri"] = result.artifact.uri if result.artifact else None
        data["segments"] = [
            {
                "start_timestamp": s.start_timestamp,
                "end_timestamp": s.end_timestamp,
                "visual_description": s.visual_description,
            }
            for s in result.segments
        ]
    return JobRead(**data)


@router.post("/video", response_model=JobCreated, status_code=202)
async def start_video(req: VideoJobCreate, registry: JobRegistry = Depends(get_job_registry)):
    """Start a text-to-video generation."""
    orchestrator = registry.orchestrator
    job = registry.submit(
        Feature.VIDEO.value,
        lambda slot: orchestrator.generate_video(
            req.prompt,
            style=req.style,
            orientation=req.orientation,
            resolution=req.resolution,
            slot=slot,
        ),
    )
    return _created(job)


@router.post("/logo", response_model=JobCreated, status_code=202)
async def start_logo(
    logo: UploadFile = File(...),
    niche: str = Form("Luxury"),
    aspect_ratio: str = Form("16:9"),
    resolution: str = Form("720p"),
    direction: str = Form(""),
    registry: JobRegistry = Depends(get_job_registry),
):
    """Start a logo reveal animation from an uploaded image."""
    _require(aspect_ratio, _ORIENTATIONS, "aspect_ratio")
    _require(resolution, _RESOLUTIONS, "resolution")
    data = await logo.read()
    if not data:
        raise HTTPException(status_code=400, detail="Logo file is empty")

    orchestrator = registry.orchestrator
    job = registry.submit(
        Feature.LOGO.value,
        lambda slot: orchestrator.animate_logo(
            data,
            logo.content_type or "image/png",
            niche=niche,
            aspect_ratio=aspect_ratio,
            resolution=resolution,
            direction=direction,
            slot=slot,
        ),
    )
    return _created(job)


@router.post("/remedy", response_model=JobCreated, status_code=202)
async def start_remedy(
    file: UploadFile = File(...),
    mode: str = Form("remedy"),
    prompt: str = Form(""),
    registry: JobRegistry = Depends(get_job_registry),
):
    """Clean up an image (watermark removal / sharpening) or reconstruct a video."""
    _require(mode, _REMEDY_MODES, "mode")
    content_type = file.content_type or ""
    orchestrator = registry.orchestrator

    if content_type.startswith("video/"):
        job = registry.submit(
            Feature.VIDEO_REMEDY.value,
            lambda slot: orchestrator.remedy_video(prompt, slot=slot),
        )
        return _created(job)

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    job = registry.submit(
        Feature.IMAGE_REMEDY.value,
        lambda slot: orchestrator.remedy_image(
            data,
            mode=mode,
            prompt=prompt or None,
            mime_type=content_type or "image/png",
            slot=slot,
        ),
    )
    return _created(job)


@router.post("/montage", response_model=JobCreated, status_code=202)
async def start_montage(
    clips: list[UploadFile] = File(...),
    registry: JobRegistry = Depends(get_job_registry),
):
    """Analyse several clips for highlights and sequence them."""
    items = []
    for upload in clips:
        data = await upload.read()
        if data:
            items.append(Clip(data, upload.content_type or "video/mp4", upload.filename or ""))
    if not items:
        raise HTTPException(status_code=400, detail="At least one non-empty clip is required")

    orchestrator = registry.orchestrator
    job = registry.submit(
        Feature.MONTAGE.value,
        lambda slot: orchestrator.build_montage(items, slot=slot),
    )
    return _created(job)


@router.get("", response_model=list[JobRead])
async def list_jobs(registry: JobRegistry = Depends(get_job_registry)):
    return [_read(job) for job in registry.jobs()]


@router.get("/{job_id}", response_model=JobRead)
async def get_job(job_id: str, registry: JobRegistry = Depends(get_job_registry)):
    """Poll job status (fallback when WebSocket unavailable)."""
    return _read(_get_job(registry, job_id))


@router.get("/{job_id}/artifact")
async def get_artifact(job_id: str, registry: JobRegistry = Depends(get_job_registry)):
    """Return the generated media bytes."""
    job = _get_job(registry, job_id)
    if job.result is None or job.result.data is None:
        raise HTTPException(status_code=404, detail="Job has no artifact")
    return Response(
        content=job.result.data,
        media_type=job.result.mime_type or "application/octet-stream",
    )


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, registry: JobRegistry = Depends(get_job_registry)):
    """Abort a running job; finished jobs are left as they are."""
    _get_job(registry, job_id)
    cancelled = registry.cancel(job_id)
    return {"job_id": job_id, "cancel_requested": cancelled}


@router.delete("/{job_id}", status_code=204)
async def reset_job(job_id: str, registry: JobRegistry = Depends(get_job_registry)):
    """Discard a job and its artifact, cancelling it first if needed."""
    _get_job(registry, job_id)
    await registry.discard(job_id)
    return Response(status_code=204)
