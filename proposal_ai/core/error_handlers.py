"""
Global error handlers for the FastAPI application
"""

from datetime import datetime, timezone
import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from proposal_ai.core.exceptions import (
    AuthConfigError,
    ProposalAIException,
    ProviderError,
    status_code_for,
)

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions"""
    logger.error(f"HTTP error on {request.url.path}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code,
            "path": str(request.url.path)
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request body validation errors (missing or malformed parameters)"""
    logger.error(f"Validation error on {request.url.path}: {exc.errors()}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Missing required parameters",
            "details": [
                {"loc": list(err.get("loc", [])), "msg": err.get("msg", "")}
                for err in exc.errors()
            ],
            "path": str(request.url.path)
        }
    )


async def provider_error_handler(request: Request, exc: ProviderError):
    """Provider, auth-config and timeout failures share one 500 shape so clients can offer a retry"""
    logger.error(f"Provider error on {request.url.path} ({exc.provider}): {exc.message}")

    content = {
        "error": exc.code,
        "details": exc.message,
        "provider": exc.provider,
        "timestamp": _timestamp(),
    }
    if isinstance(exc, AuthConfigError) and "availableKeys" in exc.details:
        content["availableKeys"] = exc.details["availableKeys"]

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content
    )


async def domain_exception_handler(request: Request, exc: ProposalAIException):
    """Handle the remaining domain exceptions"""
    logger.error(f"API error on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=status_code_for(exc),
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
            "path": str(request.url.path)
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)

    # Don't expose internal errors in production
    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.ENVIRONMENT == "production":
        message = "An internal error occurred"
    else:
        message = str(exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": message,
            "path": str(request.url.path)
        }
    )
