"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    recognizer_http_url: str = "http://127.0.0.1:8000/api/v1"
    recognizer_ws_url: str = "ws://127.0.0.1:8000/api/v1/recognition/ws"
    auth_token: str
    camera_index: int = 0
    camera_width: int = 1280
    camera_height: int = 720
    mirror_display: bool = True
    capture_interval_seconds: float = 1.5
    result_timeout_seconds: float | None = None
    max_frame_width: int = 640
    jpeg_quality: int = 80
    connect_timeout_seconds: float = 5.0
    request_timeout_seconds: float = 10.0
    reconnect_initial_delay_seconds: float = 1.0
    reconnect_max_delay_seconds: float = 20.0
    reconnect_max_attempts: int = 5
    capture_failure_threshold: int = 3
    backend_error_threshold: int = 5
    backend_error_window_seconds: float = 10.0
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def resolve_result_timeout(settings: Settings) -> float:
    """Return the in-flight timeout, defaulting to one capture interval."""
    if settings.result_timeout_seconds is None:
        return settings.capture_interval_seconds
    if settings.result_timeout_seconds <= 0:
        return settings.capture_interval_seconds
    return settings.result_timeout_seconds
