"""
Domain exceptions and the global exception handlers for the FastAPI application.
Every domain error carries structured details so callers never parse messages.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Any, List, Optional
from uuid import UUID


logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""
    def __init__(self, message: str, status_code: int = 500, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundError(AppException):
    """Referenced quote, section, line item or contact does not resolve."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"entity": entity, "id": str(entity_id)},
        )


class InvalidStateError(AppException):
    """Mutation is not allowed while the quote is in its current status."""

    def __init__(self, message: str, current_status: Any):
        self.current_status = current_status
        super().__init__(
            message,
            status_code=status.HTTP_409_CONFLICT,
            details={"current_status": _status_value(current_status)},
        )


class InvalidTransitionError(AppException):
    """Requested lifecycle transition is not in the allowed table."""

    def __init__(self, current_status: Any, target_status: Any):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot transition from '{_status_value(current_status)}' to '{_status_value(target_status)}'",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "current_status": _status_value(current_status),
                "target_status": _status_value(target_status),
            },
        )


class QuoteValidationError(AppException):
    """Submission validation failed; carries every violated rule."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            "; ".join(self.errors),
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": self.errors},
        )


class IneligibleForConversionError(AppException):
    """Quote cannot be converted, or the selection holds nothing orderable."""

    def __init__(
        self,
        message: str,
        quote_id: Optional[UUID] = None,
        current_status: Any = None,
        warnings: Optional[List[str]] = None,
        skipped_item_ids: Optional[List[UUID]] = None,
    ):
        self.quote_id = quote_id
        self.current_status = current_status
        self.warnings = list(warnings or [])
        self.skipped_item_ids = list(skipped_item_ids or [])
        super().__init__(
            message,
            status_code=status.HTTP_409_CONFLICT,
            details={
                "quote_id": str(quote_id) if quote_id else None,
                "current_status": _status_value(current_status),
                "warnings": self.warnings,
                "skipped_item_ids": [str(item_id) for item_id in self.skipped_item_ids],
            },
        )


class CollaboratorFailureError(AppException):
    """External order creation failed; the collaborator message is kept verbatim."""

    def __init__(self, message: str, warnings: Optional[List[str]] = None):
        self.warnings = list(warnings or [])
        super().__init__(
            message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"warnings": self.warnings},
        )


def _status_value(value: Any) -> Any:
    return getattr(value, "value", value)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle custom application exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application exception: {exc.message}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
            "details": exc.details,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "details": exc.details,
                "path": request.url.path,
            }
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        f"HTTP exception: {exc.detail}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "status_code": exc.status_code,
                "path": request.url.path,
            }
        },
    )


def _serialize_validation_errors(errors: list) -> list:
    """Convert validation errors to JSON-serializable format."""
    serialized = []
    for error in errors:
        serialized_error = {}
        for key, value in error.items():
            if key == "ctx" and isinstance(value, dict):
                # ctx may hold the raised ValueError itself
                serialized_error[key] = {
                    ctx_key: str(ctx_value) if isinstance(ctx_value, Exception) else ctx_value
                    for ctx_key, ctx_value in value.items()
                }
            elif isinstance(value, Exception):
                serialized_error[key] = str(value)
            else:
                serialized_error[key] = value
        serialized.append(serialized_error)
    return serialized


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors."""
    serialized_errors = _serialize_validation_errors(exc.errors())

    logger.warning(
        f"Validation error: {serialized_errors}",
        extra={
            "path": request.url.path,
            "errors": serialized_errors,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "details": serialized_errors,
                "path": request.url.path,
            }
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "exception_type": type(exc).__name__,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "path": request.url.path,
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
