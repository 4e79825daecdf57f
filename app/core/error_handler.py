"""
Global error handling: every failure leaves the API as {"error": {"message": ...}}.
"""

import logging
from typing import Any, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from .exceptions import (
    ConflictError,
    DatabaseError,
    ExternalServiceError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DOMAIN_ERRORS = (
    ValidationError,
    UnauthorizedError,
    NotFoundError,
    ConflictError,
    DatabaseError,
    ExternalServiceError,
)


def _error_response(status_code: int, message: str, details: Optional[Any] = None) -> JSONResponse:
    error = {"message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map domain, framework and database errors onto the error envelope."""

    if isinstance(exc, DOMAIN_ERRORS):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
        else:
            logger.info(f"Rejected {request.method} {request.url.path}: {exc.detail}")
        return _error_response(exc.status_code, exc.detail)

    if isinstance(exc, HTTPException):
        # Routing errors (unknown path, wrong method) raised by Starlette itself
        logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
        return _error_response(exc.status_code, str(exc.detail))

    if isinstance(exc, RequestValidationError):
        logger.warning(f"Invalid request to {request.url.path}: {exc.errors()}")
        return _error_response(422, "Validation failed", jsonable_encoder(exc.errors()))

    if isinstance(exc, SQLAlchemyError):
        logger.error(f"Database error on {request.url.path}: {exc}")
        return _error_response(500, "Database operation failed")

    logger.error(f"Unexpected error on {request.url.path}: {exc}", exc_info=True)
    return _error_response(500, "An unexpected error occurred")
