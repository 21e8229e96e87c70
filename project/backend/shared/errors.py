"""
Error handling.

Custom exception classes for consistent error handling across the pipeline.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        code: Optional[str] = None
    ):
        """
        Initialize pipeline error.

        Args:
            message: Error message
            job_id: Optional composite job ID associated with the error
            code: Optional error code for categorization
        """
        self.message = message
        self.job_id = job_id
        self.code = code
        super().__init__(self.message)


class ConfigError(PipelineError):
    """Configuration errors (missing env vars, invalid settings)."""
    pass


class ValidationError(PipelineError):
    """Input validation errors (malformed script, segment or request)."""
    pass


class JobNotFoundError(PipelineError):
    """Composite job does not exist."""
    pass


class InvalidStateTransition(PipelineError):
    """A clip or composite status change that the state machine forbids."""

    def __init__(self, current: str, target: str, entity: str = "clip"):
        self.current = current
        self.target = target
        self.entity = entity
        super().__init__(
            f"Invalid {entity} transition: {current} -> {target}",
            code="INVALID_TRANSITION"
        )


class RetryableError(PipelineError):
    """Error that can be retried."""
    pass


class TransientProviderError(RetryableError):
    """Network error, timeout or 5xx response from a generation service."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        http_status: Optional[int] = None,
        provider_message: Optional[str] = None,
        job_id: Optional[str] = None,
        code: Optional[str] = "PROVIDER_TRANSIENT"
    ):
        self.provider = provider
        self.http_status = http_status
        self.provider_message = provider_message
        super().__init__(message, job_id, code)


class QuotaExceededError(PipelineError):
    """429-class response signalling exhausted provider quota (never retried)."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        http_status: Optional[int] = 429,
        provider_message: Optional[str] = None,
        job_id: Optional[str] = None,
        code: Optional[str] = "QUOTA_EXCEEDED"
    ):
        self.provider = provider
        self.http_status = http_status
        self.provider_message = provider_message
        super().__init__(message, job_id, code)


class GenerationError(PipelineError):
    """AI generation failures (speech, video)."""
    pass


class GenerationFailed(GenerationError):
    """A generation call failed for good (non-retryable or retries exhausted)."""

    def __init__(
        self,
        reason: str,
        http_status: Optional[int] = None,
        provider_message: Optional[str] = None,
        job_id: Optional[str] = None,
        code: Optional[str] = "GENERATION_FAILED"
    ):
        self.reason = reason
        self.http_status = http_status
        self.provider_message = provider_message
        super().__init__(reason, job_id, code)


class CircuitOpenError(PipelineError):
    """Circuit breaker is open; the call was rejected without reaching the provider."""

    def __init__(self, breaker_name: str, retry_after: Optional[float] = None):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit '{breaker_name}' is open",
            code="CIRCUIT_OPEN"
        )


class MediaToolError(PipelineError):
    """Base class for external media tool (ffmpeg/ffprobe) failures."""
    pass


class MediaToolUnavailable(MediaToolError):
    """Media tool binary is missing or not executable."""
    pass


class MediaToolFailed(MediaToolError):
    """Media tool exited with a non-zero status or produced no output."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
        job_id: Optional[str] = None,
        code: Optional[str] = "MEDIA_TOOL_FAILED"
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message, job_id, code)


class ArtifactDownloadError(PipelineError):
    """Artifact could not be fetched from the store."""
    pass


class ArtifactUploadError(PipelineError):
    """Artifact could not be written to the store."""
    pass


class CompositionError(PipelineError):
    """Video stitching failures."""
    pass


class PersistenceError(PipelineError):
    """Job or clip state could not be written or read."""
    pass


class RateLimitError(PipelineError):
    """Rate limit exceeded errors."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[int] = None,
        job_id: Optional[str] = None,
        code: Optional[str] = None
    ):
        """
        Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds until retry is allowed
            job_id: Optional job ID associated with the error
            code: Optional error code for categorization
        """
        self.retry_after = retry_after
        super().__init__(message, job_id, code)


__all__ = [
    "PipelineError",
    "ConfigError",
    "ValidationError",
    "JobNotFoundError",
    "InvalidStateTransition",
    "RetryableError",
    "TransientProviderError",
    "QuotaExceededError",
    "GenerationError",
    "GenerationFailed",
    "CircuitOpenError",
    "MediaToolError",
    "MediaToolUnavailable",
    "MediaToolFailed",
    "ArtifactDownloadError",
    "ArtifactUploadError",
    "CompositionError",
    "PersistenceError",
    "RateLimitError",
]
