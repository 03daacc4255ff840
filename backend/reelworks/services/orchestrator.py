from __future__ import annotations
"""Task orchestrator: per-feature façade over submit → poll → download.

Each call gets its own cancellation token and progress estimator. A new
call on the same slot supersedes the previous token without aborting it,
so cancelling through the slot only ever reaches the newest invocation.

Features:
- generate_video: text-to-video via Veo
- animate_logo:   image-to-video reveal of an uploaded logo
- remedy_image:   synchronous image clean-up on the image model
- remedy_video:   Veo reconstruction of a clip
- build_montage:  highlight analysis over several clips
"""

import enum
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from reelworks.config import Settings, get_settings
from reelworks.services import prompts, retry
from reelworks.services.cancellation import CancellationToken
from reelworks.services.credentials import CredentialResync, SettingsCredentialResync
from reelworks.services.errors import (
    FailureInfo,
    FailureKind,
    GenerationError,
    MissingArtifactError,
    OperationCancelled,
    describe,
)
from reelworks.services.operations import ArtifactRef, Operation
from reelworks.services.poller import OperationPoller, PollState
from reelworks.services.progress import (
    PHASE_FINALIZING,
    PHASE_SYNTHESIZING,
    ProgressEstimate,
    ProgressEstimator,
)
from reelworks.services.providers.gemini_video import (
    GeminiClient,
    extract_inline_image,
    extract_text,
    inline_part,
)

logger = logging.getLogger(__name__)

MSG_CANCELLED = "Cancelled."
MSG_SYNC_STARTING = "Key sync required. Authorization starting..."
MSG_SYNC_COMPLETE = "Sync complete. Please retry."
MSG_QUOTA = "Quota exhausted. Please wait or check settings."
MSG_RATE_LIMITED_DOWNLOAD = "Pending (Quota)..."

StatusCallback = Callable[[str, str], None]
ProgressCallback = Callable[[str, ProgressEstimate], None]


class Feature(str, enum.Enum):
    VIDEO = "video"
    LOGO = "logo"
    IMAGE_REMEDY = "image_remedy"
    VIDEO_REMEDY = "video_remedy"
    MONTAGE = "montage"


class TaskStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MontageSegment:
    start_timestamp: str
    end_timestamp: str
    visual_description: str


@dataclass(frozen=True)
class Clip:
    data: bytes
    mime_type: str
    name: str = ""


@dataclass
class TaskResult:
    """Terminal outcome of one orchestration."""
    feature: str
    status: TaskStatus
    message: str = ""
    data: bytes | None = None
    mime_type: str | None = None
    artifact: ArtifactRef | None = None
    failure: FailureInfo | None = None
    progress: float = 0.0
    segments: list[MontageSegment] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is TaskStatus.SUCCEEDED


@dataclass
class Invocation:
    """Per-call state: token, estimator and latest status line."""
    feature: str
    slot: str
    token: CancellationToken
    progress: ProgressEstimator
    on_status: StatusCallback | None = None
    message: str = ""

    def status(self, message: str) -> None:
        self.message = message
        logger.info("[%s:%s] %s", self.feature, self.slot, message)
        if self.on_status is not None:
            self.on_status(self.slot, message)


class TaskOrchestrator:
    """Sequence generation features against the Gemini service.

    Args:
        client: Gemini REST client; built from settings when omitted.
        credentials: Re-sync collaborator invoked on AUTH_REQUIRED.
        settings: Fixed settings snapshot. When omitted the cached
            application settings are read on every access, so a credential
            re-sync (which reloads them) reaches this orchestrator and its
            client. An explicit snapshot is never refreshed.
        retry_policy: Backoff applied to submit, poll and download.
        poll_interval / poll_timeout / progress_tick / stitch_delay:
            Timing overrides (seconds); default to settings.
        on_status: ``(slot, message)`` for every status line.
        on_progress: ``(slot, estimate)`` for every progress tick.
    """

    def __init__(
        self,
        client: GeminiClient | None = None,
        *,
        credentials: CredentialResync | None = None,
        settings: Settings | None = None,
        retry_policy: retry.RetryPolicy | None = None,
        poll_interval: float | None = None,
        poll_timeout: float | None = None,
        progress_tick: float | None = None,
        stitch_delay: float | None = None,
        on_status: StatusCallback | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self._settings = settings
        self.client = client or GeminiClient(settings=settings)
        self.credentials = credentials or SettingsCredentialResync()
        self.retry_policy = retry_policy or retry.RetryPolicy.from_settings(self.settings)
        self.poll_interval = self.settings.POLL_INTERVAL if poll_interval is None else poll_interval
        self.poll_timeout = self.settings.POLL_TIMEOUT if poll_timeout is None else poll_timeout
        self.progress_tick = self.settings.PROGRESS_TICK if progress_tick is None else progress_tick
        self.stitch_delay = (
            self.settings.MONTAGE_STITCH_DELAY if stitch_delay is None else stitch_delay
        )
        self.on_status = on_status
        self.on_progress = on_progress
        self._slots: dict[str, CancellationToken] = {}

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def aclose(self) -> None:
        """Close the client's HTTP connection pool, if it owns one."""
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Slot / token management
    # ------------------------------------------------------------------

    def active_token(self, slot: str) -> CancellationToken | None:
        return self._slots.get(slot)

    def cancel(self, slot: str) -> bool:
        """Abort the invocation currently holding *slot*.

        Returns False (and does nothing) when the slot is idle.
        """
        token = self._slots.get(slot)
        if token is None:
            return False
        logger.info("Cancelling %s", slot)
        token.abort()
        return True

    def _begin(self, feature: Feature, slot: str | None) -> Invocation:
        slot = slot or feature.value
        token = CancellationToken()
        self._slots[slot] = token

        estimator = ProgressEstimator(self.progress_tick)
        if self.on_progress is not None:
            on_progress = self.on_progress
            estimator.subscribe(lambda estimate: on_progress(slot, estimate))

        return Invocation(feature.value, slot, token, estimator, self.on_status)

    def _detach(self, inv: Invocation) -> None:
        if self._slots.get(inv.slot) is inv.token:
            del self._slots[inv.slot]

    # ------------------------------------------------------------------
    # Core sequencing
    # ------------------------------------------------------------------

    async def _orchestrate(
        self,
        feature: Feature,
        slot: str | None,
        work: Callable[[Invocation], Awaitable[TaskResult]],
    ) -> TaskResult:
        inv = self._begin(feature, slot)
        inv.progress.start()
        try:
            return await work(inv)
        except Exception as exc:
            info = describe(exc, inv.token)
            if info.kind is FailureKind.CANCELLED:
                return self._cancelled(inv)
            if info.kind is FailureKind.FATAL:
                logger.error("[%s:%s] generation failed: %s", inv.feature, inv.slot, exc,
                             exc_info=not isinstance(exc, GenerationError))
            return await self._failed(inv, info)
        finally:
            inv.progress.stop()
            self._detach(inv)

    def _cancelled(self, inv: Invocation) -> TaskResult:
        inv.progress.reset()
        inv.status(MSG_CANCELLED)
        return TaskResult(inv.feature, TaskStatus.CANCELLED, message=MSG_CANCELLED)

    async def _failed(self, inv: Invocation, info: FailureInfo) -> TaskResult:
        inv.progress.stop()
        if info.kind is FailureKind.AUTH_REQUIRED:
            inv.status(MSG_SYNC_STARTING)
            try:
                await self.credentials.resync()
            except Exception as exc:
                logger.exception("[%s:%s] credential re-sync failed", inv.feature, inv.slot)
                message = f"Key sync failed: {exc}"
            else:
                message = MSG_SYNC_COMPLETE
        elif info.kind in (FailureKind.QUOTA_EXHAUSTED, FailureKind.RATE_LIMITED):
            message = MSG_QUOTA
        else:
            message = info.message or "An unexpected error occurred."

        inv.status(message)
        return TaskResult(
            inv.feature,
            TaskStatus.FAILED,
            message=message,
            failure=info,
            progress=inv.progress.value,
        )

    async def _run_operation(
        self,
        inv: Invocation,
        submit: Callable[[CancellationToken], Awaitable[Operation]],
    ) -> TaskResult:
        """submit → poll → download for one Veo job."""
        inv.status("Initializing...")
        operation = await retry.execute(
            lambda: submit(inv.token), self.retry_policy, inv.token,
            caller=f"{inv.feature}:submit",
        )

        inv.status("Synthesizing...")
        inv.progress.set_phase(PHASE_SYNTHESIZING)
        poller = OperationPoller(
            self.client.get_operation,
            inv.token,
            interval=self.poll_interval,
            policy=self.retry_policy,
            timeout=self.poll_timeout,
        )
        outcome = await poller.run(operation)
        if outcome.state is PollState.CANCELLED:
            raise OperationCancelled()
        if outcome.state is PollState.FAILED:
            return await self._failed(inv, outcome.failure)

        artifact = outcome.operation.result
        if artifact is None:
            raise MissingArtifactError("Generation complete, but no video data was found.")

        inv.status("Encoding...")
        inv.progress.set_phase(PHASE_FINALIZING)
        data = await retry.execute(
            lambda: self.client.download(artifact, inv.token),
            self.retry_policy,
            inv.token,
            caller=f"{inv.feature}:download",
            on_retry=lambda state, delay: inv.status(MSG_RATE_LIMITED_DOWNLOAD),
        )
        inv.token.raise_if_aborted()

        inv.progress.complete()
        inv.status("Complete.")
        return TaskResult(
            inv.feature,
            TaskStatus.SUCCEEDED,
            message="Complete.",
            data=data,
            mime_type=artifact.mime_type,
            artifact=artifact,
            progress=inv.progress.value,
        )

    # ------------------------------------------------------------------
    # Feature façades
    # ------------------------------------------------------------------

    async def generate_video(
        self,
        prompt: str,
        *,
        style: str = "Cinematic",
        orientation: str = "16:9",
        resolution: str = "720p",
        slot: str | None = None,
    ) -> TaskResult:
        if not prompt.strip():
            raise ValueError("prompt must not be empty")

        async def submit(token: CancellationToken) -> Operation:
            return await self.client.submit_video(
                prompt=prompts.video_prompt(prompt, style),
                resolution=resolution,
                aspect_ratio=orientation,
                token=token,
            )

        return await self._orchestrate(
            Feature.VIDEO, slot, lambda inv: self._run_operation(inv, submit),
        )

    async def animate_logo(
        self,
        logo: bytes,
        mime_type: str,
        *,
        niche: str = "Luxury",
        aspect_ratio: str = "16:9",
        resolution: str = "720p",
        direction: str = "",
        slot: str | None = None,
    ) -> TaskResult:
        if not logo:
            raise ValueError("logo image must not be empty")

        async def submit(token: CancellationToken) -> Operation:
            return await self.client.submit_video(
                prompt=prompts.logo_prompt(niche, direction),
                resolution=resolution,
                aspect_ratio=aspect_ratio,
                image=logo,
                image_mime_type=mime_type,
                token=token,
            )

        return await self._orchestrate(
            Feature.LOGO, slot, lambda inv: self._run_operation(inv, submit),
        )

    async def remedy_video(self, prompt: str, *, slot: str | None = None) -> TaskResult:
        async def submit(token: CancellationToken) -> Operation:
            return await self.client.submit_video(
                prompt=prompts.video_remedy_prompt(prompt),
                resolution="720p",
                aspect_ratio="16:9",
                model=self.settings.VEO_MODEL_FAST,
                token=token,
            )

        return await self._orchestrate(
            Feature.VIDEO_REMEDY, slot, lambda inv: self._run_operation(inv, submit),
        )

    async def remedy_image(
        self,
        image: bytes,
        *,
        mode: str = "auto",
        prompt: str | None = None,
        mime_type: str = "image/png",
        slot: str | None = None,
    ) -> TaskResult:
        if mode not in ("auto", "remedy"):
            raise ValueError(f"unknown remedy mode: {mode}")
        if not image:
            raise ValueError("image must not be empty")

        async def work(inv: Invocation) -> TaskResult:
            inv.status("Neural inpainting active...")
            inv.progress.set_phase(PHASE_SYNTHESIZING)
            parts = [inline_part(image, mime_type), {"text": prompts.image_instruction(mode, prompt)}]
            response = await retry.execute(
                lambda: self.client.generate_content(
                    model=self.settings.IMAGE_MODEL, parts=parts, token=inv.token,
                ),
                self.retry_policy,
                inv.token,
                caller="image_remedy",
            )
            data, result_mime = extract_inline_image(response)
            inv.token.raise_if_aborted()

            inv.progress.complete()
            inv.status("Complete.")
            return TaskResult(
                inv.feature,
                TaskStatus.SUCCEEDED,
                message="Complete.",
                data=data,
                mime_type=result_mime,
                progress=inv.progress.value,
            )

        return await self._orchestrate(Feature.IMAGE_REMEDY, slot, work)

    async def build_montage(self, clips: list[Clip], *, slot: str | None = None) -> TaskResult:
        if not clips:
            raise ValueError("at least one clip is required")

        async def work(inv: Invocation) -> TaskResult:
            inv.status("AI Analysis: Scanning for cinematic highlights...")
            parts = [inline_part(c.data, c.mime_type) for c in clips]
            parts.append({"text": prompts.MONTAGE_ANALYSIS})
            response = await retry.execute(
                lambda: self.client.generate_content(
                    model=self.settings.ANALYSIS_MODEL,
                    parts=parts,
                    generation_config={
                        "responseMimeType": "application/json",
                        "responseSchema": prompts.MONTAGE_SCHEMA,
                    },
                    token=inv.token,
                ),
                self.retry_policy,
                inv.token,
                caller="montage",
            )
            inv.token.raise_if_aborted()
            segments = parse_segments(response)

            inv.status("AI Stitching: Grading and sequencing selected clips...")
            inv.progress.set_phase(PHASE_SYNTHESIZING)
            if await inv.token.wait(self.stitch_delay):
                raise OperationCancelled()

            preview = self.settings.MONTAGE_PREVIEW_URL
            inv.progress.complete()
            inv.status("Complete.")
            return TaskResult(
                inv.feature,
                TaskStatus.SUCCEEDED,
                message="Complete.",
                artifact=ArtifactRef(preview) if preview else None,
                segments=segments,
                progress=inv.progress.value,
            )

        return await self._orchestrate(Feature.MONTAGE, slot, work)


def parse_segments(response: dict) -> list[MontageSegment]:
    """Montage highlights from a JSON response; unparsable output yields []."""
    try:
        text = extract_text(response) or "[]"
    except GenerationError:
        text = "[]"
    try:
        items = json.loads(text)
    except json.JSONDecodeError:
        logger.error("Failed to parse montage analysis output: %.200s", text)
        return []
    if not isinstance(items, list):
        logger.error("Montage analysis returned %s, expected a list", type(items).__name__)
        return []

    segments = []
    for item in items:
        if not isinstance(item, dict):
            continue
        segments.append(MontageSegment(
            start_timestamp=str(item.get("start_timestamp", "")),
            end_timestamp=str(item.get("end_timestamp", "")),
            visual_description=str(item.get("visual_description", "")),
        ))
    return segments
