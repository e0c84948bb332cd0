"""
Error taxonomy and the handlers that turn it into JSON responses.

Route and service code raises these like any ``HTTPException``; every response
body carries a ``message`` and validation failures add an ``errors`` list.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config

logger = logging.getLogger(__name__)


class ValidationError(HTTPException):
    def __init__(self, message: str = "Validation failed", errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(status_code=400, detail=message)
        self.errors = errors or []


class AuthenticationError(HTTPException):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(status_code=401, detail=message, headers={"WWW-Authenticate": "Bearer"})


class AuthorizationError(HTTPException):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(status_code=403, detail=message)


class NotFoundError(HTTPException):
    def __init__(self, message: str = "Not found"):
        super().__init__(status_code=404, detail=message)


class ConflictError(HTTPException):
    # Duplicates and already-paid orders are reported as bad input
    def __init__(self, message: str):
        super().__init__(status_code=400, detail=message)


class InternalError(HTTPException):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(status_code=500, detail=message)


def _field_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "path", "query")]
        errors.append({"field": ".".join(loc) or None, "message": err.get("msg")})
    return errors


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content: Dict[str, Any] = {"message": exc.detail}
    if isinstance(exc, ValidationError) and exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"message": "Validation failed", "errors": _field_errors(exc)})


async def store_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"message": "Internal server error"}
    if config.is_development():
        content["error"] = repr(exc)
    return JSONResponse(status_code=500, content=content)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PyMongoError, store_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
