# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — GET /p/{token}/dashboard
Returns the participant's reconciled registrations and parent sessions.
Rounds that just crossed T-0 get matching enqueued as a background task
so the response never waits on it.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks

from roundmatch.core.matching_orchestrator import run_matching_task
from roundmatch.core.status_reconciler import build_dashboard
from roundmatch.dependencies import CurrentTimeDep, RoundStoreDep
from roundmatch.models.registration import DashboardResponse
from roundmatch.utils.logger import get_logger

router = APIRouter(tags=["dashboard"])
log = get_logger(__name__)


@router.get(
    "/p/{token}/dashboard",
    response_model=DashboardResponse,
    summary="Participant dashboard",
    description=(
        "Reconciles each registration's status against the current time, "
        "then returns registrations enriched with round timing plus their sessions. "
        "Pass ?now= or X-Test-Time to override the current time."
    ),
)
async def get_dashboard(
    token: str,
    store: RoundStoreDep,
    now: CurrentTimeDep,
    background_tasks: BackgroundTasks,
) -> DashboardResponse:
    result = build_dashboard(store, token, now)

    for session_id, round_id in result.matching_triggers:
        background_tasks.add_task(run_matching_task, store, session_id, round_id, now)
        log.info("matching_triggered", session_id=session_id, round_id=round_id, source="dashboard")

    return result.response
