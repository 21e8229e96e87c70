"""
fal.ai queue transport.

Submits a model request, waits for its result and maps transport and HTTP
failures onto the pipeline error taxonomy. Every call goes through the
video integration guard.
"""

from typing import Any, Dict, Optional, Tuple

import fal_client
import httpx
from fal_client.client import FalClientError

from shared.config import settings
from shared.errors import GenerationFailed, QuotaExceededError, TransientProviderError
from shared.logging import get_logger
from shared.resilience import VIDEO, IntegrationGuard, get_guard
from shared.retry import is_retryable_http_status

logger = get_logger("generation_client")

PROVIDER = "fal"


def classify_provider_error(
    model_id: str,
    status: Optional[int],
    provider_message: Optional[str]
) -> Exception:
    """
    Map a failed provider response to the error the caller should see.

    Returns:
        QuotaExceededError for 429, TransientProviderError for 408/425/5xx,
        GenerationFailed for everything else (including unknown status)
    """
    message = f"{model_id} request failed"
    if status is not None:
        message = f"{message} with HTTP {status}"
    if provider_message:
        message = f"{message}: {provider_message[:300]}"

    if status == 429:
        return QuotaExceededError(message, provider=PROVIDER, provider_message=provider_message)
    # Queue submissions are safe to repeat
    if status is not None and is_retryable_http_status(status, "POST", assume_idempotent=True):
        return TransientProviderError(
            message,
            provider=PROVIDER,
            http_status=status,
            provider_message=provider_message,
        )
    return GenerationFailed(message, http_status=status, provider_message=provider_message)


def _status_of(error: Exception) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is not None:
        return status
    cause = error.__cause__
    if isinstance(cause, httpx.HTTPStatusError):
        return cause.response.status_code
    return None


def video_url_from(output: Any, model_id: str) -> str:
    """Pull video.url out of a model response."""
    video = output.get("video") if isinstance(output, dict) else None
    url = video.get("url") if isinstance(video, dict) else None
    if not url:
        raise GenerationFailed(f"{model_id} did not return a video URL", provider_message=str(output)[:300])
    return url


class FalTransport:
    """
    Call fal.ai models.

    Args:
        client: fal AsyncClient (built from settings.fal_key when omitted)
        guard: Integration guard (the shared video guard when omitted)
    """

    def __init__(
        self,
        client: Optional[fal_client.AsyncClient] = None,
        guard: Optional[IntegrationGuard] = None
    ):
        self._client = client
        self._guard = guard

    @property
    def client(self) -> fal_client.AsyncClient:
        if self._client is None:
            self._client = fal_client.AsyncClient(key=settings.fal_key or None)
        return self._client

    @property
    def guard(self) -> IntegrationGuard:
        if self._guard is None:
            self._guard = get_guard(VIDEO)
        return self._guard

    async def _invoke(self, model_id: str, arguments: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
        try:
            handle = await self.client.submit(model_id, arguments=arguments)
            logger.debug("fal request submitted", extra={"model": model_id, "request_id": handle.request_id})
            output = await handle.get()
        except httpx.HTTPStatusError as e:
            raise classify_provider_error(model_id, e.response.status_code, e.response.text) from e
        except httpx.TransportError as e:
            # Includes timeouts
            raise TransientProviderError(
                f"{model_id} request failed: {type(e).__name__}: {str(e)}",
                provider=PROVIDER,
            ) from e
        except FalClientError as e:
            raise classify_provider_error(model_id, _status_of(e), str(e)) from e
        return output, handle.request_id

    async def run(self, model_id: str, arguments: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
        """
        Run a model to completion.

        Returns:
            (model output, provider request id)

        Raises:
            GenerationFailed: Non-retryable error, or transient errors that
                outlasted every retry
            QuotaExceededError: Quota exhausted (429)
            CircuitOpenError: The video breaker is open
        """
        logger.info("Starting fal generation", extra={"model": model_id})
        try:
            output, request_id = await self.guard.call(self._invoke, model_id, arguments, operation=model_id)
        except TransientProviderError as e:
            raise GenerationFailed(
                f"{model_id} failed after retries: {e.message}",
                http_status=e.http_status,
                provider_message=e.provider_message,
            ) from e
        logger.info("fal generation finished", extra={"model": model_id, "request_id": request_id})
        return output, request_id
