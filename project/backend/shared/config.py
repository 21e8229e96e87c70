"""
Configuration management.

Centralized environment variable management and validation.
"""

from typing import Literal, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from shared.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # Allow case-insensitive env var matching
        extra="ignore"
    )

    # Environment
    environment: Literal["development", "test", "staging", "production"] = "development"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = True

    # Persistence: "supabase" for deployments, "memory" for local runs
    persistence_backend: Literal["supabase", "memory"] = "supabase"
    supabase_url: str = ""
    supabase_service_key: str = ""
    artifact_bucket: str = "composite-artifacts"
    artifact_backend: Literal["supabase", "fal"] = "supabase"

    # Redis configuration
    redis_url: str = "redis://localhost:6379/0"

    # API keys
    openai_api_key: str = ""
    fal_key: str = ""

    # Frontend configuration
    frontend_url: str = "http://localhost:3000"  # Frontend domain for CORS

    # Media tool
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    media_tool_timeout_seconds: float = 300.0
    scratch_dir: Optional[str] = None  # Defaults to the system temp dir

    # Generation
    video_model: Literal["veo3", "live_avatar", "sadtalker"] = "veo3"
    tts_model: str = "tts-1"
    speech_timeout_seconds: float = 60.0
    video_timeout_seconds: float = 120.0
    download_timeout_seconds: float = 60.0

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 30.0

    # Speech synthesis limiter (per process)
    speech_max_concurrent: int = 3
    speech_min_interval: float = 0.15
    speech_reservoir: int = 500
    speech_refresh_interval: float = 60.0

    # Video synthesis limiter (per process)
    video_max_concurrent: int = 1
    video_min_interval: float = 12.0
    video_reservoir: int = 5
    video_refresh_interval: float = 60.0

    # Circuit breakers
    breaker_error_threshold_percentage: float = 50.0
    breaker_volume_threshold: int = 5
    breaker_rolling_window_seconds: float = 10.0
    breaker_reset_timeout_seconds: float = 30.0

    # Segmentation
    default_target_duration: float = 30.0
    max_clip_duration: float = 10.0

    # Orchestration
    continuity_resume_after_fallback: bool = True
    default_clip_duration: float = 8.0
    max_concurrent_jobs: int = 3
    run_worker_in_process: bool = False

    # Rate limiting
    rate_limit_fail_closed: bool = False  # Default: fail-open
    rate_limit_jobs_per_hour: int = 5

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate Supabase URL format."""
        if v and not v.startswith(("http://", "https://")):
            raise ConfigError("SUPABASE_URL must be a valid HTTP/HTTPS URL")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v:
            raise ConfigError("REDIS_URL is required")
        if not v.startswith(("redis://", "rediss://")):
            raise ConfigError("REDIS_URL must start with redis:// or rediss://")
        return v

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str) -> str:
        """Validate OpenAI API key format."""
        if v and not v.startswith("sk-"):
            raise ConfigError("OPENAI_API_KEY must start with 'sk-'")
        return v

    @field_validator("ffmpeg_path", "ffprobe_path")
    @classmethod
    def validate_media_tool_path(cls, v: str) -> str:
        if not v.strip():
            raise ConfigError("Media tool path must not be empty")
        return v

    @field_validator("retry_max_attempts", "max_concurrent_jobs", "speech_max_concurrent", "video_max_concurrent")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ConfigError("Value must be at least 1")
        return v

    @field_validator("max_clip_duration")
    @classmethod
    def validate_max_clip_duration(cls, v: float) -> float:
        """Clips shorter than the minimum segment length cannot be planned."""
        if v < 2:
            raise ConfigError("MAX_CLIP_DURATION must be at least 2 seconds")
        return v

    def require_supabase(self) -> None:
        """
        Ensure Supabase credentials are present.

        Raises:
            ConfigError: If URL or service key is missing
        """
        if not self.supabase_url:
            raise ConfigError("SUPABASE_URL is required")
        if not self.supabase_service_key:
            raise ConfigError("SUPABASE_SERVICE_KEY is required")


# Singleton instance
try:
    settings = Settings()
except Exception as e:
    # Re-raise as ConfigError for consistency
    if isinstance(e, ConfigError):
        raise
    raise ConfigError(f"Failed to load configuration: {str(e)}") from e
