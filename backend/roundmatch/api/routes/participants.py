# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Participant action endpoints
  POST /p/{token}/confirm/{round_id}
  POST /rounds/{round_id}/confirm/{participant_id}
  POST /participant/{token}/check-in
  POST /participant/{token}/confirm-match
  GET  /participant/{token}/match-partner
"""

from __future__ import annotations

from fastapi import APIRouter

from roundmatch.core.participant_actions import (
    check_in_by_token,
    confirm_attendance,
    confirm_attendance_by_token,
    confirm_meeting_by_token,
    get_match_partners,
)
from roundmatch.dependencies import CurrentTimeDep, RoundStoreDep
from roundmatch.models.registration import (
    ConfirmAttendanceRequest,
    ConfirmAttendanceResponse,
    MatchActionRequest,
    MatchActionResponse,
    MatchPartnersResponse,
)

router = APIRouter(tags=["participants"])


@router.post(
    "/p/{token}/confirm/{round_id}",
    response_model=ConfirmAttendanceResponse,
    summary="Confirm attendance (participant token)",
)
async def confirm_by_token(
    token: str,
    round_id: str,
    body: ConfirmAttendanceRequest,
    store: RoundStoreDep,
    now: CurrentTimeDep,
) -> ConfirmAttendanceResponse:
    return confirm_attendance_by_token(store, token, body.session_id, round_id, now)


@router.post(
    "/rounds/{round_id}/confirm/{participant_id}",
    response_model=ConfirmAttendanceResponse,
    summary="Confirm attendance (participant id)",
)
async def confirm_by_participant(
    round_id: str,
    participant_id: str,
    body: ConfirmAttendanceRequest,
    store: RoundStoreDep,
    now: CurrentTimeDep,
) -> ConfirmAttendanceResponse:
    return confirm_attendance(store, participant_id, body.session_id, round_id, now)


@router.post(
    "/participant/{token}/check-in",
    response_model=MatchActionResponse,
    summary="Report arrival at the meeting point",
)
async def check_in(
    token: str,
    body: MatchActionRequest,
    store: RoundStoreDep,
    now: CurrentTimeDep,
) -> MatchActionResponse:
    return check_in_by_token(store, token, body.match_id, now)


@router.post(
    "/participant/{token}/confirm-match",
    response_model=MatchActionResponse,
    summary="Confirm the meeting took place",
)
async def confirm_match(
    token: str,
    body: MatchActionRequest,
    store: RoundStoreDep,
    now: CurrentTimeDep,
) -> MatchActionResponse:
    return confirm_meeting_by_token(store, token, body.match_id, now)


@router.get(
    "/participant/{token}/match-partner",
    response_model=MatchPartnersResponse,
    summary="Current match partners and their progress",
)
async def match_partner(token: str, store: RoundStoreDep) -> MatchPartnersResponse:
    return get_match_partners(store, token)
