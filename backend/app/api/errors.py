"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.request_id import get_request_id
from app.domain.gamification.exceptions import (
    AwardConflictError,
    GamificationError,
    IdempotencyConflictError,
    StoreUnavailableError,
)

_LOG = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (AwardConflictError, status.HTTP_409_CONFLICT),
    (IdempotencyConflictError, status.HTTP_409_CONFLICT),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(exc: GamificationError) -> HTTPException:
    """Map a points engine error onto the HTTP status the API documents."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.reason)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.reason)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {
            "detail": "validation_error",
            "errors": jsonable_encoder(exc.errors()),
            "request_id": get_request_id(request),
        }
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(GamificationError)
    async def domain_exc_handler(request: Request, exc: GamificationError):  # type: ignore[override]
        http_exc = to_http_exception(exc)
        _LOG.warning("points.request_failed", extra={"reason": exc.reason, "status": http_exc.status_code})
        payload = {"detail": http_exc.detail, "request_id": get_request_id(request)}
        return JSONResponse(status_code=http_exc.status_code, content=payload)
