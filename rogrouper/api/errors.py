"""
rogrouper.api.errors — Error response rendering
================================================

Every error leaves the API as ``{"error": <message>, ...}``.  Upstream
Roblox failures also carry the upstream ``status`` and ``details``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from rogrouper.services.roblox_client import RobloxAPIError

logger = logging.getLogger(__name__)


def upstream_failure(exc: RobloxAPIError, message: str) -> JSONResponse:
    """500 response for a failed Roblox passthrough."""
    return JSONResponse(
        status_code=500,
        content={"error": message, "status": exc.status_code, "details": exc.details or exc.message},
    )


async def _http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


async def _roblox_error(request: Request, exc: RobloxAPIError) -> JSONResponse:
    logger.error("Unhandled Roblox API error on %s: %s", request.url.path, exc)
    return upstream_failure(exc, exc.message)


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, _http_exception)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(RobloxAPIError, _roblox_error)
    app.add_exception_handler(Exception, _unhandled)
