"""Exception handlers rendering every failure as ``{"error": {"code", "message"}}``."""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from ..core.config import settings
from ..errors import ServiceError


logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "INVALID_INPUT",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "INVALID_STATE",
}


def error_body(code: str, message: str, details=None) -> dict:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"error": error}


async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a taxonomy error with its own status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """
    Handle request validation errors as 400 INVALID_INPUT.

    Args:
        request: FastAPI request
        exc: Validation error

    Returns:
        JSON response with the failing fields
    """
    errors = []

    for error in exc.errors():
        field_path = ".".join(str(x) for x in error["loc"] if x != "body")
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(f"Validation error on {request.url.path}: {errors}")

    first = errors[0] if errors else None
    message = f"{first['field']}: {first['message']}" if first and first["field"] else "The request data failed validation"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("INVALID_INPUT", message, errors),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Map framework HTTP errors (auth, routing) onto the same error shape."""
    code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, message),
        headers=getattr(exc, "headers", None),
    )


async def database_exception_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    """
    Handle database errors.

    Args:
        request: FastAPI request
        exc: Database error

    Returns:
        JSON response with error message
    """
    logger.error(f"Database error on {request.url.path}: {exc}", exc_info=True)

    if isinstance(exc, IntegrityError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=error_body(
                "INVALID_STATE",
                "The operation violates a database constraint",
                str(exc.orig) if settings.DEBUG and hasattr(exc, "orig") else None,
            ),
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            "INTERNAL_ERROR",
            "An error occurred while accessing the database",
            str(exc) if settings.DEBUG else None,
        ),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle all other unhandled exceptions.

    Args:
        request: FastAPI request
        exc: Unhandled exception

    Returns:
        JSON response with error message
    """
    logger.error(
        f"Unhandled exception on {request.url.path}: {exc}",
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            "INTERNAL_ERROR",
            str(exc) if settings.DEBUG else "An unexpected error occurred",
        ),
    )
