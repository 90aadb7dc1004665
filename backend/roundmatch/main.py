# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — FastAPI Application Entry Point
Creates the app, registers lifespan events, CORS, routers,
and global error handlers.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roundmatch.api.middleware.error_handler import register_error_handlers
from roundmatch.api.routes import dashboard, matching, participants
from roundmatch.config import get_settings
from roundmatch.dependencies import close_round_store, get_round_store, init_round_store
from roundmatch.utils.logger import configure_logging, get_logger

log = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Startup: configure logging, initialise the RoundStore.
    Shutdown: close store connections.
    """
    # ── Startup ──────────────────────────────────────────────────────────────
    settings = get_settings()
    configure_logging(settings)

    log.info(
        "roundmatch_startup",
        version=VERSION,
        store=settings.store_backend,
        default_group_size=settings.default_group_size,
        round_utc_offset_hours=settings.round_utc_offset_hours,
        time_override=settings.enable_time_override,
    )

    init_round_store()

    log.info("roundmatch_ready")
    yield

    # ── Shutdown ─────────────────────────────────────────────────────────────
    close_round_store()
    log.info("roundmatch_shutdown")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="RoundMatch",
        summary="Timed networking rounds: grouping at T-0 and participant status tracking.",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error Handlers ───────────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Routers ──────────────────────────────────────────────────────────────
    app.include_router(dashboard.router)
    app.include_router(participants.router)
    app.include_router(matching.router)

    # ── Health Check ─────────────────────────────────────────────────────────
    @app.get("/health", tags=["health"], summary="Health check")
    async def health() -> dict:
        reachable = get_round_store().ping()
        return {
            "status": "ok" if reachable else "degraded",
            "service": "roundmatch",
            "version": VERSION,
            "store": settings.store_backend,
            "store_reachable": reachable,
        }

    return app


# Module-level app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
