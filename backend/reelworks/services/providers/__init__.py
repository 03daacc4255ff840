"""Remote media-synthesis provider clients.

Each provider implements the long-running generation pattern:
  submit job → poll operation → download artifact
"""
from __future__ import annotations
