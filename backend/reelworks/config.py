"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """ReelWorks application settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "ReelWorks"
    DEBUG: bool = False
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # --- Gemini / Veo ---
    GEMINI_API_KEY: str = ""
    GEMINI_ENDPOINT: str = "https://generativelanguage.googleapis.com/v1beta"
    VEO_MODEL_HQ: str = "veo-3.1-generate-preview"
    VEO_MODEL_FAST: str = "veo-3.1-fast-generate-preview"
    IMAGE_MODEL: str = "gemini-2.5-flash-image"
    ANALYSIS_MODEL: str = "gemini-3-pro-preview"

    # --- HTTP ---
    HTTP_TIMEOUT: float = 60.0
    DOWNLOAD_TIMEOUT: float = 120.0

    # --- Long-running operation polling ---
    POLL_INTERVAL: float = 10.0
    POLL_TIMEOUT: float = 0.0  # 0 = wait until the service reports done

    # --- Retry / backoff (seconds) ---
    RETRY_MAX_ATTEMPTS: int = 7
    RETRY_BASE_DELAY: float = 5.0
    RETRY_MAX_DELAY: float = 60.0
    RETRY_JITTER: float = 3.0

    # --- Synthetic progress ---
    PROGRESS_TICK: float = 1.0

    # --- Montage ---
    MONTAGE_STITCH_DELAY: float = 3.0
    MONTAGE_PREVIEW_URL: str = ""

    # --- Job registry ---
    MAX_FINISHED_JOBS: int = 20  # 0 = keep every finished job

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()


def reload_settings() -> Settings:
    """Drop the cached settings and re-read environment / .env."""
    get_settings.cache_clear()
    return get_settings()
