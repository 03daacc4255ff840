"""Credential re-sync collaborator.

Invoked when the service reports that the configured key's entity no
longer exists. The default implementation re-reads settings so a key
selected out-of-band (environment or ``.env``) replaces the stale one.
"""

from __future__ import annotations

import logging
from typing import Protocol

from reelworks.config import reload_settings

logger = logging.getLogger(__name__)


def mask_key(key: str) -> str:
    """Mask an API key for safe logging: show first 8 and last 4 chars."""
    if len(key) <= 16:
        return "***"
    return f"{key[:8]}...{key[-4:]}"


class CredentialResync(Protocol):
    async def resync(self) -> None: ...


class SettingsCredentialResync:
    """Reload cached settings so a newly selected key takes effect."""

    def __init__(self) -> None:
        self.resyncs = 0

    async def resync(self) -> None:
        self.resyncs += 1
        settings = reload_settings()
        if settings.GEMINI_API_KEY:
            logger.info("Credential re-sync complete, key=%s", mask_key(settings.GEMINI_API_KEY))
        else:
            logger.warning("Credential re-sync complete but no GEMINI_API_KEY is configured")
