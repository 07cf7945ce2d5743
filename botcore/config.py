from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path.cwd() / ".env"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    log_level: str = "INFO"

    # Storage settings. redis wins over a directory, memory is the fallback
    storage_dir: Path | None = None
    redis_url: str | None = None
    redis_namespace: str = "botcore"

    # =================================================================
    # RETRY SETTINGS - deterministic by default (no jitter)
    # =================================================================
    backoff_initial_delay: float = 1.0
    backoff_max_delay: float = 60.0  # 1 minute
    backoff_factor: float = 2.0
    backoff_jitter: float = 0.0
    max_attempts: int | None = None  # unbounded until external intervention

    autostart: bool = False

    # Re-anchor a link whose previous seal is already confirmed
    reseal_confirmed: bool = True

    # Provider (transport + ledger) settings
    provider_url: str | None = None
    provider_timeout: float = 30.0

    model_config = SettingsConfigDict(
        env_prefix="bot_",
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def storage_backend(self) -> Literal["redis", "file", "memory"]:
        if self.redis_url:
            return "redis"
        if self.storage_dir:
            return "file"
        return "memory"

    def backoff_config(self) -> dict:
        """Keyword arguments for BackoffPolicy."""
        return {
            "initial_delay": self.backoff_initial_delay,
            "max_delay": self.backoff_max_delay,
            "factor": self.backoff_factor,
            "jitter": self.backoff_jitter,
        }

    def normalized_provider_url(self) -> str | None:
        if not self.provider_url:
            return None
        return self.provider_url.rstrip("/")


settings = Settings()
