from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
import traceback
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class AuthenticationError(Exception):
    """Custom exception for authentication errors."""

    def __init__(
        self, message: str = "Authentication failed", error_code: str = "AUTH_ERROR"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class PushConfigurationError(Exception):
    """Raised when Web Push delivery credentials (VAPID keys) are missing."""

    def __init__(
        self,
        message: str = "VAPID keys not configured. Set VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY.",
        error_code: str = "PUSH_NOT_CONFIGURED",
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class PushDeliveryError(Exception):
    """A delivery attempt failed but the endpoint may still be valid."""

    def __init__(self, message: str, error_code: str = "PUSH_DELIVERY_FAILED"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class PushGoneError(PushDeliveryError):
    """The push service reported the endpoint as expired or unregistered."""

    def __init__(self, endpoint: str, status_code: int = 410):
        super().__init__(
            f"Subscription expired or invalid ({status_code})",
            error_code="PUSH_ENDPOINT_GONE",
        )
        self.endpoint = endpoint
        self.status_code = status_code


def setup_error_handlers(app: FastAPI):
    """Render every error through the standard ApiResponse envelope."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        formatted_errors = [
            {
                "field": " -> ".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        logger.warning(f"Request validation failed: {formatted_errors}")

        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=formatted_errors,
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_exception_handler(
        request: Request, exc: AuthenticationError
    ):
        # Cron callers get no hint about which check failed
        logger.warning(f"Rejected {request.url.path}: {exc.error_code}")

        return ResponseBuilder.error(
            request=request,
            message="Unauthorized",
            error_code="UNAUTHORIZED",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    @app.exception_handler(PushConfigurationError)
    async def push_configuration_exception_handler(
        request: Request, exc: PushConfigurationError
    ):
        logger.error(f"Push delivery is not configured: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database error on {request.url.path}: {str(exc)}")

        # Don't expose internal database errors to callers
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions"""
        logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")

        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
