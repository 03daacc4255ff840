"""Pytest configuration helpers.

This conftest ensures the ``backend`` directory is on `sys.path` so tests can
import the `reelworks` package regardless of how pytest is invoked, and
provides a scripted fake of the Gemini client.
"""
import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from reelworks.config import Settings  # noqa: E402
from reelworks.services.errors import GenerationError  # noqa: E402
from reelworks.services.operations import ArtifactRef, Operation  # noqa: E402
from reelworks.services.retry import RetryPolicy  # noqa: E402

VIDEO_URI = "https://generativelanguage.googleapis.com/v1beta/files/abc:download?alt=media"


def rate_limited(message: str = "Resource has been exhausted (e.g. check quota).") -> GenerationError:
    return GenerationError(message, status_code=429, status="RESOURCE_EXHAUSTED", code=429)


class FakeGeminiClient:
    """Scripted stand-in for GeminiClient.

    Each script is a list consumed front to back; an Exception entry is
    raised, anything else is returned. The last entry repeats.
    """

    def __init__(self, submits=None, polls=None, downloads=None, contents=None):
        self.submits = list(submits or [Operation("operations/op-1")])
        self.polls = list(polls or [])
        self.downloads = list(downloads or [b"video-bytes"])
        self.contents = list(contents or [])
        self.calls: list[str] = []
        self.submit_kwargs: list[dict] = []
        self.content_kwargs: list[dict] = []
        self.downloaded: list[ArtifactRef] = []
        self.poll_hook = None
        self.closed = False

    @staticmethod
    def _next(script):
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def submit_video(self, **kwargs):
        self.calls.append("submit")
        self.submit_kwargs.append(kwargs)
        return self._next(self.submits)

    async def get_operation(self, operation, token=None):
        self.calls.append("poll")
        if self.poll_hook is not None:
            self.poll_hook(len([c for c in self.calls if c == "poll"]))
        return self._next(self.polls)

    async def download(self, artifact, token=None):
        self.calls.append("download")
        self.downloaded.append(artifact)
        return self._next(self.downloads)

    async def generate_content(self, **kwargs):
        self.calls.append("content")
        self.content_kwargs.append(kwargs)
        return self._next(self.contents)

    async def aclose(self):
        self.closed = True


def done_operation(uri: str = VIDEO_URI) -> Operation:
    return Operation("operations/op-1", done=True, result=ArtifactRef(uri))


@pytest.fixture
def settings():
    return Settings(
        GEMINI_API_KEY="test-key-0123456789abcdef",
        POLL_INTERVAL=0.0,
        RETRY_BASE_DELAY=0.0,
        RETRY_JITTER=0.0,
        PROGRESS_TICK=0.001,
        MONTAGE_STITCH_DELAY=0.0,
        _env_file=None,
    )


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=7, base_delay=0.0, max_delay=0.0, jitter=0.0)
