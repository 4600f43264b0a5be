"""Mapping of sync engine errors to HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ledgersync.sync.types import (
    InvalidTransitionError,
    OperationNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def _not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


async def _validation_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


async def _transition_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Conflicting request %s %s: %s", request.method, request.url.path, exc)
    return _error_response(status.HTTP_409_CONFLICT, exc)


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for the engine's error taxonomy."""
    app.add_exception_handler(OperationNotFoundError, _not_found_handler)
    app.add_exception_handler(ValidationError, _validation_handler)
    app.add_exception_handler(InvalidTransitionError, _transition_handler)
