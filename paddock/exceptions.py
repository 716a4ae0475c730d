"""
Centralized Exception Handling for the Paddock racing data layer
Provides the error taxonomy for upstream calls and standardized error responses.
"""
from typing import Optional, Dict, Any
from fastapi import HTTPException, status
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class AppException(Exception):
    """
    Base exception class for application-specific errors.

    All custom exceptions should inherit from this class to ensure
    consistent error handling and response formatting.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize application exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (default: 500)
            error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
            details: Additional error details dictionary
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppException):
    """Raised when input validation fails. Never sent over the network."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="VALIDATION_ERROR",
            details=details
        )


class NotFoundError(AppException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier}
        )


class ExternalAPIError(AppException):
    """
    Raised when a call to the upstream racing API fails.

    Subclasses set ``retryable`` to tell the retry executor whether
    another attempt could succeed.
    """

    retryable = True

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        error_code: str = "EXTERNAL_API_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        full_message = f"External API error ({service}): {message}"
        super().__init__(
            message=full_message,
            status_code=status_code,
            error_code=error_code,
            details={"service": service, **details} if details else {"service": service}
        )


class UnauthorizedError(ExternalAPIError):
    """Raised on 401/403. Terminal: the stored API key is rejected."""

    retryable = False

    def __init__(self, service: str = "racing-api"):
        super().__init__(
            service=service,
            message="API key rejected. Please check your RapidAPI key for the Horse Racing USA API.",
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="UNAUTHORIZED",
        )


class HttpError(ExternalAPIError):
    """Raised on any non-200 status other than 401/403. Transient."""

    def __init__(self, code: int, service: str = "racing-api"):
        self.code = code
        super().__init__(
            service=service,
            message=f"HTTP error: {code}",
            error_code="HTTP_ERROR",
            details={"upstream_status": code}
        )


class NetworkError(ExternalAPIError):
    """Raised on transport failures (timeout, DNS, connection reset). Transient."""

    def __init__(self, message: str, service: str = "racing-api"):
        super().__init__(
            service=service,
            message=f"Network error: {message}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="NETWORK_ERROR",
        )


class DecodingError(ExternalAPIError):
    """Raised when a response body does not match the expected schema. Terminal."""

    retryable = False

    def __init__(self, message: str, service: str = "racing-api"):
        super().__init__(
            service=service,
            message=f"Data decoding error: {message}",
            error_code="DATA_INTEGRITY_ERROR",
        )


class FetchCancelledError(AppException):
    """Raised to callers of an in-flight fetch cancelled before it completed (e.g. on shutdown)."""

    def __init__(self, operation: str):
        super().__init__(
            message=f"The {operation} fetch was cancelled before it completed",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="FETCH_CANCELLED",
            details={"operation": operation}
        )


def create_error_response(
    exception: AppException,
    include_traceback: bool = False
) -> JSONResponse:
    """
    Create standardized error response from AppException.

    Args:
        exception: AppException instance
        include_traceback: Whether to include traceback in response (default: False for security)

    Returns:
        JSONResponse with standardized error format
    """
    response_data = {
        "error": {
            "code": exception.error_code,
            "message": exception.message,
            "status_code": exception.status_code
        }
    }

    # Add details if present
    if exception.details:
        response_data["error"]["details"] = exception.details

    # Include traceback only in development/debug mode
    if include_traceback:
        import traceback
        response_data["error"]["traceback"] = traceback.format_exc()

    return JSONResponse(
        status_code=exception.status_code,
        content=response_data
    )


def handle_app_exception(exception: AppException) -> JSONResponse:
    """
    Handle AppException and return standardized response.

    Args:
        exception: AppException instance

    Returns:
        JSONResponse with error details
    """
    logger.error(
        f"AppException: {exception.error_code} - {exception.message}",
        extra={"error_code": exception.error_code, "details": exception.details}
    )
    return create_error_response(exception, include_traceback=False)


def handle_generic_exception(exception: Exception) -> JSONResponse:
    """
    Handle generic exceptions and convert to standardized format.

    Args:
        exception: Generic Exception instance

    Returns:
        JSONResponse with error details
    """
    logger.error(f"Unhandled exception: {str(exception)}", exc_info=True)

    app_exception = AppException(
        message="An unexpected error occurred",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code="INTERNAL_ERROR",
        details={"original_error": str(exception)}
    )

    return create_error_response(app_exception, include_traceback=False)


def handle_http_exception(exception: HTTPException) -> JSONResponse:
    """
    Handle FastAPI HTTPException and convert to standardized format.

    Args:
        exception: HTTPException instance

    Returns:
        JSONResponse with standardized error format
    """
    logger.warning(f"HTTPException: {exception.status_code} - {exception.detail}")

    response_data = {
        "error": {
            "code": "HTTP_ERROR",
            "message": exception.detail,
            "status_code": exception.status_code
        }
    }

    return JSONResponse(
        status_code=exception.status_code,
        content=response_data
    )
