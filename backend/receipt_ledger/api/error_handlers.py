"""
Custom exception handlers for FastAPI.
Every failure leaves the API in the same envelope shape:
``{"status": "error", "reason": ..., "message": ...}``.
"""

import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from receipt_ledger.core.errors import ReceiptError
from receipt_ledger.core.observability import sentry_breadcrumb, sentry_capture


logger = logging.getLogger(__name__)


def receipt_exception_handler(request: Request, exc: ReceiptError):
    logger.info("[api] %s %s -> %s (%s): %s", request.method, request.url.path, exc.status_code, exc.reason, exc.message)
    sentry_breadcrumb(
        category="receipt",
        message=f"{exc.kind.value}:{exc.reason}",
        level="warning",
        data={"path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "status": "error",
            "reason": "invalid-request",
            "message": "Validation error",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("[api] unhandled error on %s %s", request.method, request.url.path)
    sentry_capture(exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "status": "error",
            "reason": "internal-error",
            "message": str(exc) or "Internal server error",
        },
    )
