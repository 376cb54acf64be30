"""Exception handlers translating relay errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chat_bridge.core.errors import (
    DestinationError,
    MalformedRequest,
    StoreUnavailable,
    UnknownDestination,
)

# Configure logger for this module
logger = logging.getLogger(__name__)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": "malformed", "detail": jsonable_encoder(exc.errors())},
    )


async def _malformed(request: Request, exc: MalformedRequest) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": "malformed", "detail": jsonable_encoder(exc.detail)},
    )


async def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("Registry store unavailable during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "store_unavailable", "detail": str(exc)},
    )


async def _unknown_destination(request: Request, exc: UnknownDestination) -> JSONResponse:
    logger.warning("Unknown destination: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_410_GONE,
        content={"status": "unknown_destination", "detail": str(exc)},
    )


async def _destination_error(request: Request, exc: DestinationError) -> JSONResponse:
    logger.error("Destination error: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"status": "destination_error", "detail": str(exc)},
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Register the relay error handlers on an application."""
    app.add_exception_handler(RequestValidationError, _validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(MalformedRequest, _malformed)  # type: ignore[arg-type]
    app.add_exception_handler(StoreUnavailable, _store_unavailable)  # type: ignore[arg-type]
    app.add_exception_handler(UnknownDestination, _unknown_destination)  # type: ignore[arg-type]
    app.add_exception_handler(DestinationError, _destination_error)  # type: ignore[arg-type]
