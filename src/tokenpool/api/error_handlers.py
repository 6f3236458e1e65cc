# -*- coding: utf-8 -*-
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tokenpool.allocation.errors import INTERNAL, INVALID_INPUT, AllocationServiceError

logger = logging.getLogger(__name__)


def error_body(code: str, message: str, details=None) -> dict:
    return {"error": code, "message": message, "details": dict(details or {})}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AllocationServiceError)
    async def handle_allocation_error(request: Request, exc: AllocationServiceError):
        if exc.http_status >= 500:
            logger.error("request_failed", extra={"path": request.url.path, "code": exc.code}, exc_info=exc.cause)
        return JSONResponse(
            status_code=exc.http_status,
            content=error_body(exc.detail.code, exc.detail.message, exc.detail.details),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        fields = [
            {"loc": [str(part) for part in error.get("loc", ())], "msg": str(error.get("msg", ""))}
            for error in exc.errors()
        ]
        return JSONResponse(status_code=400, content=error_body(INVALID_INPUT, "Invalid request", {"errors": fields}))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("unhandled_error", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content=error_body(INTERNAL, "Internal server error"))


__all__ = ["error_body", "install_error_handlers"]
