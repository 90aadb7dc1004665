# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — FastAPI Dependencies
Singleton provider for the RoundStore and the effective "current time".
The store is instantiated once at startup via the lifespan event in
main.py and stored here as a module-level singleton.
Route handlers access both via FastAPI's Depends() injection.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Query, status

from roundmatch.config import get_settings
from roundmatch.core.round_store import InMemoryRoundStore, RedisRoundStore, RoundStore
from roundmatch.utils.logger import get_logger
from roundmatch.utils.time_utils import parse_time_override, utc_now

log = get_logger(__name__)

# ─── RoundStore Singleton ────────────────────────────────────────────────────

_round_store: RoundStore | None = None


def init_round_store() -> None:
    """
    Initialise the RoundStore singleton based on STORE_BACKEND config.
    Called once during application lifespan startup.
    """
    global _round_store
    settings = get_settings()

    if settings.store_backend == "redis":
        log.info("init_round_store", backend="redis", url=settings.redis_url)
        _round_store = RedisRoundStore(
            redis_url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
        )
    else:
        log.info("init_round_store", backend="memory")
        _round_store = InMemoryRoundStore()


def close_round_store() -> None:
    """Close and drop the singleton. Called during lifespan shutdown."""
    global _round_store
    if _round_store is not None:
        _round_store.close()
        _round_store = None


def get_round_store() -> RoundStore:
    """
    FastAPI dependency: inject the RoundStore singleton into route handlers.

    Usage in a route:
        @router.get("/p/{token}/dashboard")
        def dashboard(token: str, store: RoundStoreDep):
            participant = store.get_participant_by_token(token)
            ...
    """
    if _round_store is None:
        raise RuntimeError(
            "RoundStore has not been initialised. "
            "Ensure init_round_store() is called during app lifespan startup."
        )
    return _round_store


# Annotated type alias for clean route signatures
RoundStoreDep = Annotated[RoundStore, Depends(get_round_store)]


# ─── Current Time ────────────────────────────────────────────────────────────

def get_current_time(
    now: Annotated[Optional[str], Query(description="ISO-8601 time override")] = None,
    x_test_time: Annotated[Optional[str], Header()] = None,
) -> datetime:
    """
    Effective "now" for a request. When ENABLE_TIME_OVERRIDE is on, the
    `now` query parameter or the X-Test-Time header replaces the wall clock
    so time-dependent behaviour can be exercised deterministically.
    """
    if not get_settings().enable_time_override:
        return utc_now()

    raw = now or x_test_time
    try:
        override = parse_time_override(raw)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid time override '{raw}': expected ISO-8601",
        ) from e
    return override or utc_now()


CurrentTimeDep = Annotated[datetime, Depends(get_current_time)]
