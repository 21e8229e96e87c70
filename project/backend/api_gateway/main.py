"""
FastAPI application entry point.

Main application setup with CORS, middleware, error handlers and route
registration. Optionally runs the job worker inside the API process.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import settings
from shared.errors import (
    CircuitOpenError,
    InvalidStateTransition,
    JobNotFoundError,
    PipelineError,
    QuotaExceededError,
    RateLimitError,
    RetryableError,
    ValidationError
)
from shared.logging import get_logger
from shared.redis_client import redis_client

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the in-process worker when configured; close Redis on shutdown."""
    worker_task: Optional[asyncio.Task] = None
    if settings.run_worker_in_process:
        from api_gateway.dependencies import get_store
        from api_gateway.orchestrator import CompositeOrchestrator
        from api_gateway.worker import CompositeWorker

        worker = CompositeWorker(orchestrator=CompositeOrchestrator(store=get_store()))
        worker_task = asyncio.create_task(worker.run())
        logger.info("In-process worker started")

    yield

    if worker_task is not None:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            logger.info("In-process worker stopped")
    await redis_client.close()


# Create FastAPI app
app = FastAPI(
    title="Composite Video API",
    description="Composite testimonial video generation",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Caller-ID"],
    allow_credentials=True,
    max_age=3600
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID to each request."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    logger.info(
        "Request started",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path
        }
    )

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


def error_response(
    request: Request,
    status_code: int,
    error: str,
    code: str,
    retryable: bool,
    headers: Optional[dict] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "code": code,
            "retryable": retryable,
            "request_id": getattr(request.state, "request_id", None)
        },
        headers=headers
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return error_response(request, 400, str(exc), exc.code or "VALIDATION_ERROR", False)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are validation errors too."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    return error_response(request, 400, f"Invalid request: {details}", "VALIDATION_ERROR", False)


@app.exception_handler(JobNotFoundError)
async def not_found_error_handler(request: Request, exc: JobNotFoundError):
    """Handle unknown jobs."""
    return error_response(request, 404, str(exc), "NOT_FOUND", False)


@app.exception_handler(InvalidStateTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStateTransition):
    """Handle operations the job's status does not allow."""
    return error_response(request, 409, str(exc), "INVALID_TRANSITION", False)


@app.exception_handler(RateLimitError)
async def rate_limit_error_handler(request: Request, exc: RateLimitError):
    """Handle rate limit errors."""
    retry_after = exc.retry_after or 3600
    return error_response(
        request, 429, str(exc), exc.code or "RATE_LIMIT_EXCEEDED", True,
        headers={"Retry-After": str(retry_after)}
    )


@app.exception_handler(QuotaExceededError)
async def quota_error_handler(request: Request, exc: QuotaExceededError):
    """Handle exhausted provider quota."""
    return error_response(request, 429, str(exc), exc.code or "QUOTA_EXCEEDED", False)


@app.exception_handler(CircuitOpenError)
async def circuit_open_handler(request: Request, exc: CircuitOpenError):
    """Handle calls rejected by an open circuit breaker."""
    return error_response(request, 500, str(exc), "CIRCUIT_OPEN", True)


@app.exception_handler(RetryableError)
async def retryable_error_handler(request: Request, exc: RetryableError):
    """Handle retryable errors."""
    return error_response(request, 500, str(exc), exc.code or "RETRYABLE_ERROR", True)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    """Handle pipeline errors."""
    return error_response(request, 500, str(exc), exc.code or "PIPELINE_ERROR", False)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"request_id": getattr(request.state, "request_id", None)}
    )
    return error_response(request, 500, "Internal server error", "INTERNAL_ERROR", False)


# Register routes
from api_gateway.routes import composites, health

app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(composites.router, prefix="/api/v1", tags=["composites"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Composite Video API", "version": "1.0.0"}
