"""Custom exception classes and FastAPI exception handlers.

Register all handlers in asset_catalog/main.py via app.add_exception_handler().
"""

from fastapi import Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# API exception classes
# ---------------------------------------------------------------------------


class NotFoundError(Exception):
    """Raised when an entity with the given ID does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConflictError(Exception):
    """Raised when a request would clash with the current export state."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class UnprocessableError(Exception):
    """Raised when business-logic validation fails (beyond Pydantic)."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Pipeline exception classes
# ---------------------------------------------------------------------------


class ExportError(Exception):
    """Base class for failures raised by the export pipeline."""


class ListingError(ExportError):
    """Listing an asset type failed; that type's export is aborted."""

    def __init__(self, asset_type: str, detail: str) -> None:
        self.asset_type = asset_type
        self.detail = detail
        super().__init__(f"Listing {asset_type} failed: {detail}")


class ExportCancelledError(ExportError):
    """The session a unit of work belongs to is no longer the current one."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Export session {session_id} was cancelled")


class RetryExhaustedError(ExportError):
    """A retryable operation kept failing until the attempt ceiling."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc)},
    )


async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"detail": exc.detail},
    )


async def unprocessable_handler(request: Request, exc: UnprocessableError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": exc.detail},
    )


async def export_cancelled_handler(request: Request, exc: ExportCancelledError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc)},
    )


async def export_error_handler(request: Request, exc: ExportError) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc)},
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected internal error occurred."},
    )
