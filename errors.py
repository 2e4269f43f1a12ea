"""
Error taxonomy and the centralized exception handlers.

Every API error is an HTTPException subclass, so route code raises them the
same way it raises a plain HTTPException. All errors leave the API as
{success, message, error, statusCode} JSON.
"""
import logging
import os
import traceback

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import ConnectionFailure, DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

ENVIRONMENT = os.getenv("ENVIRONMENT", os.getenv("NODE_ENV", "development"))


class ApiError(HTTPException):
    status_code = 500
    error = "Server Error"

    def __init__(self, detail=None):
        super().__init__(status_code=type(self).status_code, detail=detail or type(self).error)


class ValidationError(ApiError):
    status_code = 400
    error = "Validation Error"


class InsufficientStock(ValidationError):
    pass


class PriceMismatch(ValidationError):
    pass


class InvalidStatus(ValidationError):
    pass


class InvalidState(ValidationError):
    pass


class Unauthorized(ApiError):
    status_code = 401
    error = "Unauthorized"


class Forbidden(ApiError):
    status_code = 403
    error = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    error = "Not Found"


class DuplicateKey(ApiError):
    status_code = 409
    error = "Duplicate Entry"


class ServiceUnavailable(ApiError):
    status_code = 503
    error = "Database connection error"


def error_body(status_code: int, error: str, message: str, exc: Exception = None) -> dict:
    body = {
        "success": False,
        "message": message,
        "error": error,
        "statusCode": status_code,
    }
    if exc is not None and ENVIRONMENT != "production":
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return body


async def http_exception_handler(request: Request, exc: HTTPException):
    error = getattr(exc, "error", None) or _default_error_name(exc.status_code)
    headers = getattr(exc, "headers", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, error, str(exc.detail)),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else err.get("msg", "Invalid value"))
    return JSONResponse(status_code=400, content=error_body(400, "Validation Error", ", ".join(messages)))


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    details = exc.details or {}
    key_value = details.get("keyValue") or {}
    if key_value:
        field = next(iter(key_value))
        message = f"The {field} already exists. Please use a different value."
    else:
        message = "A record with the same unique value already exists."
    return JSONResponse(status_code=409, content=error_body(409, "Duplicate Entry", message))


async def connection_failure_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection error on %s %s: %s", request.method, request.url.path, exc)
    message = (
        "The server is currently unable to handle the request due to database "
        "connectivity issues. Please try again later."
    )
    return JSONResponse(status_code=503, content=error_body(503, "Database connection error", message))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(500, "Server Error", str(exc) or "An unexpected error occurred on the server", exc),
    )


def _default_error_name(status_code: int) -> str:
    return {
        400: "Validation Error",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Duplicate Entry",
        503: "Service Unavailable",
    }.get(status_code, "Server Error" if status_code >= 500 else "Error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(ConnectionFailure, connection_failure_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
