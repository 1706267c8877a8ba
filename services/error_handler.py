"""
Error Handling for the Resell Queue API

Centralized exception handlers and a catch-all middleware that turn
ResellException subclasses into JSON error responses.

Status mapping:
    InvalidPhotosError / validation      400
    JobNotFoundError                     404
    InvalidTransitionError               409
    QuotaExhaustedError                  429
    ConfigurationError                   503
    ExternalServiceError / network       502
    anything else                        500

Usage:
    from services.error_handler import setup_error_handlers

    app = FastAPI()
    setup_error_handlers(app)
"""

import logging
import traceback
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from services.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    InvalidPhotosError,
    InvalidTransitionError,
    JobNotFoundError,
    MarketDataUnavailable,
    QuotaExhaustedError,
    ResellException,
    TransientNetworkError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ============================================================
# Error Response Helpers
# ============================================================

def get_status_code(exc: ResellException) -> int:
    """Determine HTTP status code for exception."""
    if isinstance(exc, (ValidationError, InvalidPhotosError)):
        return 400
    elif isinstance(exc, JobNotFoundError):
        return 404
    elif isinstance(exc, InvalidTransitionError):
        return 409
    elif isinstance(exc, QuotaExhaustedError):
        return 429
    elif isinstance(exc, ConfigurationError):
        return 503
    elif isinstance(exc, (ExternalServiceError, TransientNetworkError, MarketDataUnavailable)):
        return 502
    return 500


def create_error_response(
    error: ResellException,
    status_code: int = 500,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Create a standardized JSON error response."""
    response_data = error.to_dict()

    if request:
        response_data["path"] = str(request.url.path)
        response_data["method"] = request.method

    return JSONResponse(
        status_code=status_code,
        content=response_data,
    )


def log_error(exc: ResellException, status_code: int):
    """Log error with appropriate severity."""
    if status_code >= 500:
        logger.error(
            f"[{exc.code}] {exc.message}",
            extra={"details": exc.details, "cause": str(exc.cause) if exc.cause else None},
        )
    else:
        logger.warning(f"[{exc.code}] {exc.message}", extra={"details": exc.details})


# ============================================================
# Exception Handlers
# ============================================================

async def handle_resell_exception(
    request: Request,
    exc: ResellException,
) -> JSONResponse:
    """Handle ResellException and its subclasses."""
    status_code = get_status_code(exc)
    log_error(exc, status_code)
    return create_error_response(exc, status_code, request)


async def handle_generic_exception(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "path": str(request.url.path),
        },
    )


# ============================================================
# Error Handling Middleware
# ============================================================

class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Last line of defence: anything that escapes the exception handlers
    becomes a generic 500 JSON body instead of a dropped connection.
    """

    def __init__(self, app: FastAPI, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable):
        try:
            return await call_next(request)

        except ResellException as exc:
            return await handle_resell_exception(request, exc)

        except Exception as exc:
            logger.error(
                f"Unhandled exception in {request.url.path}: {type(exc).__name__}: {exc}",
                exc_info=True,
            )
            content = {
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            }
            if self.debug:
                content["debug"] = {
                    "exception": type(exc).__name__,
                    "message": str(exc),
                    "traceback": traceback.format_exc(),
                }
            return JSONResponse(status_code=500, content=content)


# ============================================================
# Setup Function
# ============================================================

def setup_error_handlers(app: FastAPI, debug: bool = False):
    """
    Configure error handlers for the FastAPI application.

    Args:
        app: The FastAPI application instance
        debug: If True, include exception details in 500 responses
    """
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)

    @app.exception_handler(ResellException)
    async def resell_exception_handler(request: Request, exc: ResellException):
        return await handle_resell_exception(request, exc)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        return await handle_generic_exception(request, exc)

    logger.info(f"[ERROR HANDLER] Configured (debug={debug})")
