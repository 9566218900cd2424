import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.middleware.base import BaseHTTPMiddleware

from api.config.logging import get_logger

logger = get_logger(__name__)


class JobServiceException(Exception):
    """Base exception for the job service."""

    # Whether the queue may retry a job that failed with this error
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(JobServiceException):
    """Raised when input validation fails (never retried)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class NotFoundError(JobServiceException):
    """Raised when a resource is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class InvalidStateError(JobServiceException):
    """Raised when a transition is not allowed from the current job state."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class ConfigurationError(JobServiceException):
    """Raised for deployment problems: missing processors, disabled backend."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code, details)


class UnknownJobTypeError(ConfigurationError):
    """Raised when no processor is registered for a job type."""

    def __init__(self, job_type: str):
        super().__init__(
            f"No processor registered for job type: {job_type}",
            status.HTTP_400_BAD_REQUEST,
            {"job_type": job_type},
        )


class QueueUnavailableError(ConfigurationError):
    """Raised when the durable queue backend is disabled or unreachable."""

    def __init__(self, message: str = "Job queue is not available"):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class TransientProcessingError(JobServiceException):
    """Raised (or wrapped) when a processor fails; retried with backoff."""

    retryable = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR, details)


class JobTimeoutError(TransientProcessingError):
    """Raised when a processor exceeds the job's timeout."""

    def __init__(self, timeout_ms: int):
        super().__init__(
            f"Job exceeded timeout of {timeout_ms}ms", {"timeout_ms": timeout_ms}
        )


def is_retryable(exc: BaseException) -> bool:
    """Processor errors are retried unless they are known non-retryable errors."""
    if isinstance(exc, JobServiceException):
        return exc.retryable
    return True


def public_error_message(exc: BaseException, limit: int = 1000) -> str:
    """Single-line message suitable for the job's user-visible error field."""
    message = str(exc).strip() or exc.__class__.__name__
    message = message.splitlines()[0]
    if len(message) > limit:
        message = message[: limit - 3] + "..."
    return message


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


async def job_service_exception_handler(
    request: Request, exc: JobServiceException
) -> JSONResponse:
    """Handle job service exceptions."""
    request_id = _request_id(request)

    logger.warning(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = _request_id(request)

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
    )


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render malformed request bodies as 400 with field details."""
    request_id = _request_id(request)
    errors = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=create_error_response(
            status_code=status.HTTP_400_BAD_REQUEST,
            message="Invalid request",
            details={"errors": errors},
            request_id=request_id,
        ),
    )


async def store_unavailable_exception_handler(
    request: Request, exc: OperationalError
) -> JSONResponse:
    """Surface queue store connectivity failures instead of empty results."""
    request_id = _request_id(request)

    logger.error(
        "Queue store unavailable",
        exception=exc.__class__.__name__,
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=create_error_response(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            message="Job queue store is unavailable",
            request_id=request_id,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = _request_id(request)

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        # Generate correlation ID for request tracking
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        # Add to log context
        from api.config.logging import add_request_context

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        # Add request ID to response headers
        response.headers["X-Request-ID"] = request_id

        return response
