"""
MODULE OVERVIEW:
Application-wide configuration for the polling client, built on Pydantic Settings.

WHAT IS HAPPENING HERE:
Every cadence knob lives here: the default, minimum and maximum polling
intervals, the retry budget, and the per-request timeout. Sessions never
hardcode "30 seconds" themselves; they read these bounds from the settings
object their client was built with. Values come from `HOSPITAL_POLL_*`
environment variables or a local `.env` file.
"""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PollingSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HOSPITAL_POLL_",
        env_file=".env",
        env_file_encoding="utf-8",
        # Tolerate unrelated env vars so the client runs out-of-the-box
        extra="ignore",
    )

    BASE_URL: str = "http://localhost:5000/api"
    LOG_LEVEL: str = "INFO"

    # Cadence (milliseconds)
    DEFAULT_INTERVAL_MS: int = 30000
    MIN_INTERVAL_MS: int = 5000
    MAX_INTERVAL_MS: int = 300000
    CHANGE_INTERVAL_MS: int | None = None
    ADAPTIVE_POLLING: bool = True

    # Failure handling
    MAX_RETRIES: int = 3
    REQUEST_TIMEOUT_S: float = 10.0

    AUTH_TOKEN: str | None = None

    # Local sandbox server
    SANDBOX_PORT: int = 5000
    SANDBOX_TOKEN: str | None = None

    @model_validator(mode="after")
    def check_bounds(self) -> "PollingSettings":
        if self.MIN_INTERVAL_MS < 1:
            raise ValueError("MIN_INTERVAL_MS must be at least 1")
        if self.MIN_INTERVAL_MS > self.MAX_INTERVAL_MS:
            raise ValueError("MIN_INTERVAL_MS must not exceed MAX_INTERVAL_MS")
        if self.MAX_RETRIES < 0:
            raise ValueError("MAX_RETRIES must not be negative")
        return self

    @property
    def change_interval_ms(self) -> int:
        """Interval for change-detection feeds: a third of the default unless set explicitly."""
        interval = self.CHANGE_INTERVAL_MS or self.DEFAULT_INTERVAL_MS // 3
        return max(self.MIN_INTERVAL_MS, interval)


settings = PollingSettings()
