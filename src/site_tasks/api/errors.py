"""Mapping of task errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from site_tasks.errors import (
    ConcurrentMutationError,
    FetchError,
    NotFoundError,
    TaskError,
    WriteError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[TaskError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConcurrentMutationError: status.HTTP_409_CONFLICT,
    WriteError: status.HTTP_502_BAD_GATEWAY,
    FetchError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(exc: Exception) -> int:
    """HTTP status code for a task or validation error."""
    if isinstance(exc, ValueError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, PermissionError):
        return status.HTTP_401_UNAUTHORIZED
    for error_type, code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _task_error_handler(request: Request, exc: Exception) -> JSONResponse:
    code = status_code_for(exc)
    logger.warning(
        f"[API] {request.method} {request.url.path} failed with {code}: "
        f"{type(exc).__name__}: {exc}"
    )
    return JSONResponse(status_code=code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    """Register task error handlers with the FastAPI app."""
    app.add_exception_handler(TaskError, _task_error_handler)
    app.add_exception_handler(ValueError, _task_error_handler)
    app.add_exception_handler(PermissionError, _task_error_handler)
