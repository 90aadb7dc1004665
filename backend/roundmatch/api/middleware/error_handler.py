# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Global Error Handler
Converts domain and unhandled exceptions into structured JSON error
responses. Registered on the FastAPI app in main.py.
"""

from __future__ import annotations

import traceback

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from roundmatch.core.errors import (
    ConfirmationWindowClosedError,
    InvalidStateError,
    NotFoundError,
    RegistrationConflictError,
    StorageError,
)
from roundmatch.utils.logger import get_logger

log = get_logger(__name__)


def _error_body(code: str, message: str, detail: str | None = None) -> dict:
    body = {"error": {"code": code, "message": message}}
    if detail:
        body["error"]["detail"] = detail
    return body


def register_error_handlers(app: FastAPI) -> None:
    """
    Register all global exception handlers on the FastAPI application.
    Call this in main.py after creating the app instance.
    """

    @app.exception_handler(NotFoundError)
    async def not_found_handler(req: Request, exc: NotFoundError) -> JSONResponse:
        log.warning("not_found", path=str(req.url), kind=exc.kind, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=_error_body(code="NOT_FOUND", message=str(exc)),
        )

    @app.exception_handler(RegistrationConflictError)
    async def registration_conflict_handler(
        req: Request, exc: RegistrationConflictError
    ) -> JSONResponse:
        log.warning("registration_conflict", path=str(req.url), error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=_error_body(
                code="REGISTRATION_CONFLICT",
                message=str(exc),
                detail=exc.current_status,
            ),
        )

    @app.exception_handler(ConfirmationWindowClosedError)
    async def window_closed_handler(
        req: Request, exc: ConfirmationWindowClosedError
    ) -> JSONResponse:
        log.info("confirmation_window_closed", path=str(req.url))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(
                code="CONFIRMATION_WINDOW_CLOSED",
                message=str(exc),
                detail=exc.current_status,
            ),
        )

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(req: Request, exc: InvalidStateError) -> JSONResponse:
        log.warning(
            "invalid_state",
            path=str(req.url),
            error=str(exc),
            current_status=exc.current_status,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(
                code="INVALID_STATE",
                message=str(exc),
                detail=exc.current_status,
            ),
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(req: Request, exc: StorageError) -> JSONResponse:
        log.error("storage_failure", path=str(req.url), error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=_error_body(
                code="STORAGE_FAILURE",
                message="The data store is temporarily unavailable. Please retry.",
                detail=str(exc),
            ),
        )

    @app.exception_handler(Exception)
    async def generic_handler(req: Request, exc: Exception) -> JSONResponse:
        tb = traceback.format_exc()
        log.error(
            "unhandled_exception",
            path=str(req.url),
            error=str(exc),
            exc_type=type(exc).__name__,
            traceback=tb,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(
                code="INTERNAL_SERVER_ERROR",
                message="An unexpected error occurred.",
            ),
        )
