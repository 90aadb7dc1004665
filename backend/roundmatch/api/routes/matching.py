# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Matching trigger endpoints
Operator trigger, lock inspection, and the cron fallback for rounds that
no dashboard read happened to poll. All triggers are idempotent.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Query

from roundmatch.core.errors import NotFoundError
from roundmatch.core.matching_orchestrator import run_due_matching, run_matching
from roundmatch.dependencies import CurrentTimeDep, RoundStoreDep
from roundmatch.models.match import (
    AutoMatchRequest,
    AutoMatchResponse,
    MatchingLock,
    RunDueResponse,
)
from roundmatch.utils.logger import get_logger

router = APIRouter(tags=["matching"])
log = get_logger(__name__)


@router.post(
    "/rounds/{round_id}/auto-match",
    response_model=AutoMatchResponse,
    summary="Run matching for a round",
    description=(
        "Runs matching once per round. Repeated calls return "
        "already_completed=true with match_count=0 and make no changes."
    ),
)
async def auto_match(
    round_id: str,
    body: AutoMatchRequest,
    store: RoundStoreDep,
    now: CurrentTimeDep,
) -> AutoMatchResponse:
    log.info("matching_triggered", session_id=body.session_id, round_id=round_id, source="operator")
    result = await asyncio.to_thread(run_matching, store, body.session_id, round_id, now=now)
    return AutoMatchResponse.from_result(result)


@router.get(
    "/rounds/{round_id}/matching-lock",
    response_model=MatchingLock,
    summary="Inspect the matching lock of a round",
)
async def get_matching_lock(
    round_id: str,
    store: RoundStoreDep,
    session_id: str = Query(..., description="Owning session"),
) -> MatchingLock:
    lock = store.get_matching_lock(session_id, round_id)
    if lock is None:
        raise NotFoundError("Matching lock", f"{session_id}:{round_id}")
    return lock


@router.post(
    "/matching/run-due",
    response_model=RunDueResponse,
    summary="Run matching for every live round",
    description=(
        "Scheduled fallback. Call from cron every minute. A round that fails "
        "is listed under failures and retried by the next call."
    ),
)
async def run_due(store: RoundStoreDep, now: CurrentTimeDep) -> RunDueResponse:
    return await asyncio.to_thread(run_due_matching, store, now)
