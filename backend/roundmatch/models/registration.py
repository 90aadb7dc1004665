# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Registration Models and Status State Machine
One Registration per (participant, session, round). Its status moves:

    registered ─┬─> confirmed ─┬─> matched ─> checked-in
                │              │               └─> waiting-for-meet-confirmation ─> met
                │              └─> no-match
                └─> unconfirmed
    (most non-protected states) ─> completed   once the round is over

Protected statuses are never overwritten by background reconciliation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from roundmatch.models.session import RoundPhase, Session


class RegistrationStatus(str, Enum):
    REGISTERED = "registered"
    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"
    MATCHED = "matched"
    NO_MATCH = "no-match"
    CHECKED_IN = "checked-in"
    WAITING_FOR_MEET_CONFIRMATION = "waiting-for-meet-confirmation"
    MET = "met"
    MISSED = "missed"
    LEFT_ALONE = "left-alone"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


S = RegistrationStatus

TERMINAL_STATUSES: frozenset[RegistrationStatus] = frozenset({
    S.NO_MATCH, S.MET, S.MISSED, S.LEFT_ALONE, S.COMPLETED,
})

USER_INITIATED_STATUSES: frozenset[RegistrationStatus] = frozenset({
    S.CONFIRMED, S.MATCHED, S.CHECKED_IN, S.WAITING_FOR_MEET_CONFIRMATION,
    S.MET, S.CANCELLED,
})

# Blacklist for background writes
PROTECTED_STATUSES: frozenset[RegistrationStatus] = TERMINAL_STATUSES | USER_INITIATED_STATUSES

# Whitelist: the only targets a background write may set
BACKGROUND_TARGET_STATUSES: frozenset[RegistrationStatus] = frozenset({
    S.COMPLETED, S.UNCONFIRMED,
})

# Statuses in which a participant is engaged with their match
ACTIVE_MATCH_STATUSES: frozenset[RegistrationStatus] = frozenset({
    S.MATCHED, S.CHECKED_IN, S.WAITING_FOR_MEET_CONFIRMATION,
})

# Statuses that count as "arrived at the meeting point"
ARRIVED_STATUSES: frozenset[RegistrationStatus] = frozenset({
    S.CHECKED_IN, S.WAITING_FOR_MEET_CONFIRMATION, S.MET,
})

UNCONFIRMED_REASON = "Did not confirm attendance before round start (T-0)"
SOLO_NO_MATCH_REASON = "You were the only participant who confirmed attendance"
NO_MATCH_REASON = "Could not find a suitable match"


class Registration(BaseModel):
    """Central per-(participant, session, round) record."""
    participant_id: str
    session_id: str
    round_id: str
    status: RegistrationStatus = RegistrationStatus.REGISTERED

    # ── Matching inputs ──
    team: Optional[str] = None
    topics: list[str] = Field(default_factory=list)
    meeting_point: Optional[str] = Field(None, description="Participant's preferred meeting point")

    # ── Matching outputs ──
    match_id: Optional[str] = None
    match_partner_names: list[str] = Field(default_factory=list)
    meeting_point_id: Optional[str] = None

    # ── Timestamps ──
    registered_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    confirmed_at: Optional[datetime] = None
    matched_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    met_at: Optional[datetime] = None
    last_status_update: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    notifications_enabled: bool = True
    unconfirmed_reason: Optional[str] = None
    no_match_reason: Optional[str] = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.participant_id, self.session_id, self.round_id)


# ─── API Request/Response Schemas ────────────────────────────────────────────

class ConfirmAttendanceRequest(BaseModel):
    """Request body for POST /p/{token}/confirm/{round_id}."""
    session_id: str


class ConfirmAttendanceResponse(BaseModel):
    success: bool = True
    status: RegistrationStatus
    confirmed_at: Optional[datetime] = None
    already_confirmed: bool = False
    message: str = "Attendance confirmed"


class MatchActionRequest(BaseModel):
    """Request body for check-in and confirm-match."""
    match_id: str


class MatchActionResponse(BaseModel):
    success: bool = True
    status: RegistrationStatus
    match_id: str
    changed_at: Optional[datetime] = None
    already_done: bool = False


class PartnerStatus(BaseModel):
    participant_id: str
    first_name: str = ""
    last_name: str = ""
    is_checked_in: bool = False
    is_met: bool = False


class MatchPartnersResponse(BaseModel):
    """Response body for GET /participant/{token}/match-partner."""
    match_id: str
    session_id: str
    round_id: str
    my_name: str
    my_status: RegistrationStatus
    meeting_point: Optional[str] = None
    partners: list[PartnerStatus] = Field(default_factory=list)
    all_checked_in: bool = False
    should_start_networking: bool = False


class DashboardRegistration(BaseModel):
    """A Registration enriched with round timing for the participant dashboard."""
    registration: Registration
    round_name: str = ""
    round_date: Optional[str] = None
    round_start_time: Optional[str] = None
    round_duration_minutes: Optional[int] = None
    phase: Optional[RoundPhase] = None
    status_changed: bool = False


class DashboardResponse(BaseModel):
    success: bool = True
    participant_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    registrations: list[DashboardRegistration] = Field(default_factory=list)
    sessions: list[Session] = Field(default_factory=list)
