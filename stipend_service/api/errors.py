"""Map domain exceptions to HTTP error responses"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from stipend_service.api.dependencies import get_request_id
from stipend_service.domain.enums import ErrorKind
from stipend_service.domain.exceptions import DomainException

logger = logging.getLogger(__name__)


def _body(kind: ErrorKind, detail: str, request_id: str, errors=None) -> dict:
    return {"error": kind.value, "detail": detail, "errors": list(errors or []), "request_id": request_id}


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    request_id = get_request_id(request)
    extra = {"request_id": request_id, "path": request.url.path, "error_kind": exc.kind.value}
    if exc.status_code >= 500:
        logger.error(f"{exc.kind.value}: {exc.message}", extra=extra)
        if exc.kind is ErrorKind.INTERNAL:
            return JSONResponse(status_code=500, content=_body(exc.kind, "Internal server error", request_id))
    else:
        logger.warning(f"{exc.kind.value}: {exc.message}", extra=extra)
    return JSONResponse(status_code=exc.status_code, content=_body(exc.kind, exc.message, request_id, exc.errors))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = get_request_id(request)
    errors = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
    logger.warning("Request validation failed", extra={"request_id": request_id, "path": request.url.path})
    return JSONResponse(
        status_code=400,
        content=_body(ErrorKind.INVALID_INPUT, "request validation failed", request_id, errors),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = get_request_id(request)
    logger.exception(
        f"Unexpected error: {exc}",
        extra={"request_id": request_id, "path": request.url.path, "method": request.method},
    )
    return JSONResponse(status_code=500, content=_body(ErrorKind.INTERNAL, "Internal server error", request_id))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
