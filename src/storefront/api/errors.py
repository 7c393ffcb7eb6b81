"""Translate domain errors into HTTP responses.

Framework errors (``ValidationError``, ``ObjectNotFoundError``) and the
storefront taxonomy in ``storefront.errors`` are mapped to status codes in
this one place. Bodies carry a machine code and a human readable message.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.integrations.fastapi import register_exception_handlers

from storefront.errors import (
    AmountMismatch,
    ConflictError,
    GatewayError,
    GatewayTimeout,
    InvalidSignature,
    PermissionDenied,
    StorefrontError,
    VoucherInvalid,
)

logger = structlog.get_logger(__name__)

STATUS_CODES = {
    VoucherInvalid: 404,
    PermissionDenied: 403,
    ConflictError: 409,
    InvalidSignature: 400,
    AmountMismatch: 400,
    GatewayTimeout: 504,
    GatewayError: 502,
}


def status_code_for(exc: StorefrontError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"code": "validation_error", "errors": exc.messages})


async def not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    errors = getattr(exc, "messages", None) or (exc.args[0] if exc.args else str(exc))
    return JSONResponse(status_code=404, content={"code": "not_found", "errors": errors})


async def version_conflict_handler(request: Request, exc: ExpectedVersionError) -> JSONResponse:
    logger.warning("Concurrent update lost", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=409,
        content={"code": "concurrent_update", "message": "The record changed while processing; retry the request"},
    )


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log("Request rejected", path=request.url.path, code=exc.code, status_code=status_code, error=exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(ObjectNotFoundError, not_found_handler)
    app.add_exception_handler(ExpectedVersionError, version_conflict_handler)
    app.add_exception_handler(StorefrontError, storefront_error_handler)
