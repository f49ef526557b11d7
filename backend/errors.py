"""
Domain error taxonomy and its HTTP mapping.

The hierarchy, membership and taxonomy modules raise these exceptions without
knowing anything about HTTP. The API layer turns them into JSON responses
shaped like FastAPI's own HTTPException bodies ({"detail": ...}).
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TaskTrackerError(Exception):
    """Base class for errors reported to the caller."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(TaskTrackerError):
    """Referenced entity does not exist or is not visible to the requester."""

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(TaskTrackerError):
    """Entity exists but the authorization predicate rejects the requester."""

    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(TaskTrackerError):
    """State-based rejection: duplicates, children blocking delete, owner removal."""

    status_code = status.HTTP_409_CONFLICT


class InvalidReferenceError(TaskTrackerError):
    """A cycle would be created or a reference crosses an ownership boundary."""

    status_code = status.HTTP_400_BAD_REQUEST


async def task_tracker_error_handler(request: Request, exc: TaskTrackerError) -> JSONResponse:
    logger.info(
        f"{request.method} {request.url.path} rejected with "
        f"{exc.status_code} ({type(exc).__name__}): {exc.detail}"
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Full detail stays in the server log
    logger.exception(f"Unexpected error handling {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskTrackerError, task_tracker_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
