"""
Error types shared by the document layer and the API, plus the FastAPI
handlers that turn them into JSON responses.
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[dict]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(AppError):
    """One or more field rules failed. `errors` holds {field, message} items."""
    status_code = 422
    default_message = "Validation failed"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


def duplicate_key_field(exc: DuplicateKeyError) -> Optional[str]:
    details = exc.details or {}
    key_pattern = details.get("keyPattern") or details.get("keyValue")
    if key_pattern:
        return next(iter(key_pattern))
    return None


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        body = {"success": False, "message": exc.message}
        if exc.errors:
            body["errors"] = exc.errors
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        field = duplicate_key_field(exc)
        conflict = ConflictError(f"{field} already exists" if field else "Duplicate value")
        return await app_error_handler(request, conflict)
