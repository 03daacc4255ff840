"""ReelWorks: orchestration backend for Gemini / Veo media generation."""

__version__ = "0.1.0"
