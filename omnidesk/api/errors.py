import logging
from typing import NoReturn

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from omnidesk.domain.exceptions import InvalidTicketTransition
from omnidesk.schemas.common import ErrorResponse
from omnidesk.services.errors import (
    ConflictError,
    DownstreamUnavailableError,
    NotFoundError,
    PersistenceError,
    ServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def status_code_for(exc: Exception) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ValidationError, ConflictError, InvalidTicketTransition)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, DownstreamUnavailableError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def raise_for_service_error(exc: Exception) -> NoReturn:
    if isinstance(exc, (ServiceError, InvalidTicketTransition)):
        raise HTTPException(status_code=status_code_for(exc), detail=str(exc)) from exc
    raise exc


def _error_response(status_code: int, error: str, details: list | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                "message": error.get("msg"),
            }
            for error in exc.errors()
        ]
        return _error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", details)

    @app.exception_handler(PersistenceError)
    async def persistence_exception_handler(request: Request, exc: PersistenceError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @app.exception_handler(ServiceError)
    async def service_exception_handler(request: Request, exc: ServiceError):
        return _error_response(status_code_for(exc), str(exc))
