"""Gemini / Veo REST client.

Covers the three remote interactions the studio needs:
  submit (predictLongRunning) → poll operation → download artifact
plus the synchronous generateContent call used for image remedy and
montage analysis.

Every network-issuing method takes the orchestration's cancellation token,
so an abort cancels the in-flight request.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

import httpx

from reelworks.config import Settings, get_settings
from reelworks.services.cancellation import CancellationToken
from reelworks.services.credentials import mask_key
from reelworks.services.errors import GenerationError, error_from_response
from reelworks.services.operations import ArtifactRef, Operation

logger = logging.getLogger(__name__)

T = TypeVar("T")

HIGH_QUALITY_RESOLUTION = "1080p"


def inline_part(data: bytes, mime_type: str) -> dict[str, Any]:
    """Base64 ``inlineData`` part for a generateContent request."""
    return {
        "inlineData": {
            "mimeType": mime_type,
            "data": base64.b64encode(data).decode("ascii"),
        }
    }


def normalize_image_mime(mime_type: str | None) -> str:
    """Veo accepts png or jpeg image inputs only."""
    return "image/png" if mime_type and "png" in mime_type else "image/jpeg"


class GeminiClient:
    """Thin async wrapper over the Gemini REST API.

    The API key is read from settings on every call unless given explicitly,
    so a credential re-sync takes effect without rebuilding the client.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        endpoint: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings
        self._api_key = api_key
        self._endpoint = endpoint
        self._client = http_client
        self._own_client = http_client is None

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @property
    def api_key(self) -> str:
        key = self._api_key or self.settings.GEMINI_API_KEY
        if not key:
            raise GenerationError("Gemini API key is required")
        return key

    @property
    def endpoint(self) -> str:
        return (self._endpoint or self.settings.GEMINI_ENDPOINT).rstrip("/")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT)
            self._own_client = True
        return self._client

    async def aclose(self) -> None:
        if self._own_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @staticmethod
    async def _send(call: Awaitable[T], token: CancellationToken | None) -> T:
        if token is None:
            return await call
        return await token.guard(call)

    def model_for(self, resolution: str) -> str:
        """High-quality model for 1080p (avoids black-frame output), fast otherwise."""
        if resolution == HIGH_QUALITY_RESOLUTION:
            return self.settings.VEO_MODEL_HQ
        return self.settings.VEO_MODEL_FAST

    # ------------------------------------------------------------------
    # Long-running video generation
    # ------------------------------------------------------------------

    async def submit_video(
        self,
        *,
        prompt: str,
        resolution: str = "720p",
        aspect_ratio: str = "16:9",
        image: bytes | None = None,
        image_mime_type: str | None = None,
        model: str | None = None,
        token: CancellationToken | None = None,
    ) -> Operation:
        """Start a Veo generation and return its operation handle."""
        model = model or self.model_for(resolution)
        instance: dict[str, Any] = {"prompt": prompt}
        if image is not None:
            instance["image"] = {
                "bytesBase64Encoded": base64.b64encode(image).decode("ascii"),
                "mimeType": normalize_image_mime(image_mime_type),
            }

        body = {
            "instances": [instance],
            "parameters": {
                "aspectRatio": aspect_ratio,
                "resolution": resolution,
                "sampleCount": 1,
            },
        }

        url = f"{self.endpoint}/models/{model}:predictLongRunning"
        logger.info(
            "Submitting Veo job model=%s resolution=%s aspect=%s image=%s key=%s",
            model, resolution, aspect_ratio, image is not None, mask_key(self.api_key),
        )
        resp = await self._send(
            self._get_client().post(url, json=body, params={"key": self.api_key}), token,
        )
        if not resp.is_success:
            raise error_from_response(resp)

        operation = Operation.from_api(resp.json())
        logger.info("Veo operation created: %s", operation.name)
        return operation

    async def get_operation(
        self,
        operation: Operation,
        token: CancellationToken | None = None,
    ) -> Operation:
        """Fetch the latest snapshot of *operation*."""
        url = f"{self.endpoint}/{operation.name}"
        resp = await self._send(
            self._get_client().get(url, params={"key": self.api_key}), token,
        )
        if not resp.is_success:
            raise error_from_response(resp)
        return Operation.from_api(resp.json())

    async def download(
        self,
        artifact: ArtifactRef,
        token: CancellationToken | None = None,
    ) -> bytes:
        """Download artifact bytes; the auth parameter is appended to the URI."""
        resp = await self._send(
            self._get_client().get(
                artifact.authorized_url(self.api_key),
                timeout=self.settings.DOWNLOAD_TIMEOUT,
                follow_redirects=True,
            ),
            token,
        )
        if resp.status_code == 429:
            raise GenerationError("429", status_code=429, code=429)
        if not resp.is_success:
            raise GenerationError(
                f"Download failed: {resp.reason_phrase or resp.status_code}",
                status_code=resp.status_code,
            )
        logger.info("Downloaded artifact: %d bytes", len(resp.content))
        return resp.content

    # ------------------------------------------------------------------
    # Synchronous content generation
    # ------------------------------------------------------------------

    async def generate_content(
        self,
        *,
        model: str,
        parts: list[dict[str, Any]],
        generation_config: dict[str, Any] | None = None,
        token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if generation_config:
            body["generationConfig"] = generation_config

        url = f"{self.endpoint}/models/{model}:generateContent"
        resp = await self._send(
            self._get_client().post(url, json=body, params={"key": self.api_key}), token,
        )
        if not resp.is_success:
            raise error_from_response(resp)
        return resp.json()


def response_parts(response: dict[str, Any]) -> list[dict[str, Any]]:
    """Parts of the first candidate; raises when the model returned nothing."""
    candidates = response.get("candidates") or []
    parts = (candidates[0].get("content") or {}).get("parts") if candidates else None
    if not parts:
        raise GenerationError("No response content from studio engine.")
    return parts


def extract_inline_image(response: dict[str, Any]) -> tuple[bytes, str]:
    """Return (bytes, mime type) of the first inline image in *response*."""
    for part in response_parts(response):
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            return base64.b64decode(inline["data"]), mime_type
    raise GenerationError("No image data returned from model")


def extract_text(response: dict[str, Any]) -> str:
    return "".join(part.get("text", "") for part in response_parts(response))
