"""
Standardized Error Handling - Consistent API Error Responses
Domain errors raised by the channel services and the HTTP errors they map to
"""

import functools
from datetime import datetime
from typing import Optional, Dict, Any
from fastapi import HTTPException, status
from utils.logger import logger


# ============================================================================
# Domain errors (raised by services, never carry HTTP concerns)
# ============================================================================

class ChannelConnectionError(Exception):
    """Base class for channel connection failures"""

    error_code = "CHANNEL_CONNECTION_ERROR"
    transient = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TokenExchangeFailed(ChannelConnectionError):
    """The provider refused to trade the short-lived token; signup must restart"""

    error_code = "TOKEN_EXCHANGE_FAILED"


class ChannelAlreadyClaimed(ChannelConnectionError):
    """The channel id is bound to a different tenant"""

    error_code = "CHANNEL_ALREADY_CLAIMED"

    def __init__(self, channel_external_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Channel {channel_external_id} is already connected to another restaurant",
            {"channel_external_id": channel_external_id},
        )
        self.channel_external_id = channel_external_id


class ProviderUnavailable(ChannelConnectionError):
    """Network failure, timeout, throttling or 5xx from the provider"""

    error_code = "PROVIDER_UNAVAILABLE"
    transient = True


class InvalidToken(ChannelConnectionError):
    """The provider rejected the access token (authentication-class failure)"""

    error_code = "INVALID_TOKEN"


class ProviderRequestError(ChannelConnectionError):
    """Any other non-success answer from the provider"""

    error_code = "PROVIDER_REQUEST_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code


class ChannelAccountNotFound(ChannelConnectionError):
    """No channel account with that id for the caller"""

    error_code = "CHANNEL_ACCOUNT_NOT_FOUND"


# ============================================================================
# HTTP errors
# ============================================================================

class APIError(HTTPException):
    """
    Standardized API Error with consistent response format

    Provides structured error responses with optional details,
    error codes, and automatic logging.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        log_error: bool = True
    ):
        """
        Initialize standardized API error

        Args:
            status_code: HTTP status code
            message: Human-readable error message
            details: Additional error details (optional)
            error_code: Machine-readable error code (optional)
            log_error: Whether to log the error (default: True)
        """
        error_detail = create_error_response(status_code, message, details, error_code)

        if log_error:
            self._log_error(status_code, message, error_code)

        super().__init__(status_code=status_code, detail=error_detail)

    def _log_error(self, status_code: int, message: str, error_code: Optional[str]):
        """Log error with appropriate level based on status code"""
        if status_code >= 500:
            logger.error(f"Server Error [{error_code}]: {message}")
        elif status_code >= 400:
            logger.warning(f"Client Error [{error_code}]: {message}")
        else:
            logger.info(f"Error Response [{error_code}]: {message}")

# Predefined Error Classes for Common Scenarios

class ValidationError(APIError):
    """Validation error (400)"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=message,
            details=details,
            error_code=error_code
        )


class NotFoundError(APIError):
    """Resource not found error (404)"""
    def __init__(self, resource: str = "Resource", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message=f"{resource} not found",
            details=details,
            error_code="NOT_FOUND_ERROR"
        )

class ConflictError(APIError):
    """Resource conflict error (409)"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: str = "CONFLICT_ERROR"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            message=message,
            details=details,
            error_code=error_code
        )

class BadGatewayError(APIError):
    """Upstream provider answered with an error (502)"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: str = "BAD_GATEWAY_ERROR"):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            message=message,
            details=details,
            error_code=error_code
        )

class ServerError(APIError):
    """Internal server error (500)"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message=message,
            details=details,
            error_code="SERVER_ERROR"
        )

class ServiceUnavailableError(APIError):
    """Service unavailable error (503)"""
    def __init__(self, service: str, details: Optional[Dict[str, Any]] = None, error_code: str = "SERVICE_UNAVAILABLE_ERROR"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            message=f"{service} service unavailable",
            details=details,
            error_code=error_code
        )


def to_api_error(error: ChannelConnectionError) -> APIError:
    """Map a domain error onto the HTTP error the UI expects"""
    if isinstance(error, TokenExchangeFailed):
        return ValidationError(error.message, error.details, error_code=error.error_code)
    if isinstance(error, ChannelAlreadyClaimed):
        return ConflictError(error.message, error.details, error_code=error.error_code)
    if isinstance(error, ProviderUnavailable):
        return ServiceUnavailableError("Meta Graph API", {"reason": error.message}, error_code=error.error_code)
    if isinstance(error, ChannelAccountNotFound):
        return NotFoundError("Channel account", error.details)
    return BadGatewayError(error.message, error.details, error_code=error.error_code)

# Error Handler Decorators

def handle_api_errors(func):
    """
    Decorator to automatically handle common exceptions and convert them to APIErrors

    Usage:
        @router.post("/connect")
        @handle_api_errors
        async def my_endpoint():
            # Your endpoint logic
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except APIError:
            # Re-raise API errors as-is
            raise
        except ChannelConnectionError as e:
            raise to_api_error(e)
        except ValueError as e:
            raise ValidationError(str(e))
        except Exception as e:
            # Full traceback for unexpected errors
            logger.exception(f"Unexpected error in {func.__name__}: {type(e).__name__}")
            raise ServerError(
                "An unexpected error occurred",
                {"function": func.__name__, "error_type": type(e).__name__}
            )

    return wrapper

# Utility Functions

def create_error_response(
    status_code: int,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    error_code: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create a standardized error response dictionary

    Useful for manual error response creation without raising exceptions
    """
    response = {
        "error": True,
        "message": message,
        "status_code": status_code,
        "timestamp": datetime.utcnow().isoformat(),
        "api_version": "v1"
    }

    if error_code:
        response["error_code"] = error_code

    if details:
        response["details"] = details

    return response

# Export all error classes and utilities
__all__ = [
    "ChannelConnectionError",
    "TokenExchangeFailed",
    "ChannelAlreadyClaimed",
    "ProviderUnavailable",
    "InvalidToken",
    "ProviderRequestError",
    "ChannelAccountNotFound",
    "APIError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "BadGatewayError",
    "ServerError",
    "ServiceUnavailableError",
    "to_api_error",
    "handle_api_errors",
    "create_error_response",
]
