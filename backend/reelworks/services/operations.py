from __future__ import annotations
"""Long-running operation and artifact references returned by Veo."""

from dataclasses import dataclass, field
from typing import Any

import httpx


@dataclass(frozen=True)
class ArtifactRef:
    """Location of a finished media file on the remote service."""
    uri: str
    mime_type: str = "video/mp4"

    def authorized_url(self, api_key: str) -> str:
        """The artifact URI with the ``key`` query parameter merged in."""
        return str(httpx.URL(self.uri).copy_merge_params({"key": api_key}))


@dataclass(frozen=True)
class Operation:
    """Snapshot of a remote long-running job.

    Instances are never mutated; each poll yields a fresh snapshot.
    """
    name: str
    done: bool = False
    result: ArtifactRef | None = None
    error: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def failed(self) -> bool:
        return self.done and self.error is not None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Operation:
        """Parse a ``google.longrunning.Operation`` JSON payload."""
        error = payload.get("error")
        return cls(
            name=payload.get("name", ""),
            done=bool(payload.get("done")),
            result=_extract_artifact(payload.get("response") or {}),
            error=error if isinstance(error, dict) else None,
            raw=payload,
        )


def _extract_artifact(response: dict[str, Any]) -> ArtifactRef | None:
    """Find the first generated video in an operation response.

    Handles both the REST shape (``generateVideoResponse.generatedSamples``)
    and the SDK shape (``generatedVideos``).
    """
    samples = (
        response.get("generateVideoResponse", {}).get("generatedSamples")
        or response.get("generatedVideos")
        or []
    )
    for sample in samples:
        video = sample.get("video") or {}
        uri = video.get("uri")
        if uri:
            return ArtifactRef(uri=uri, mime_type=video.get("mimeType") or "video/mp4")
    return None
