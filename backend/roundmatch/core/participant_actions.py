# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Participant Actions
User-initiated status transitions. Every action is idempotent for
statuses it has already advanced past, so client retries on flaky
networks succeed instead of erroring.

  register_for_round   (none)                   → registered
  confirm_attendance   registered               → confirmed      (before T-0)
  check_in             matched                  → checked-in
                       all members arrived      → waiting-for-meet-confirmation
  confirm_meeting      checked-in | waiting     → met
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from roundmatch.config import Settings
from roundmatch.core.errors import (
    ConfirmationWindowClosedError,
    InvalidStateError,
    NotFoundError,
)
from roundmatch.core.round_store import RoundStore
from roundmatch.models.match import Match
from roundmatch.models.registration import (
    ACTIVE_MATCH_STATUSES,
    ARRIVED_STATUSES,
    ConfirmAttendanceResponse,
    MatchActionResponse,
    MatchPartnersResponse,
    PartnerStatus,
    Registration,
    RegistrationStatus,
)
from roundmatch.models.session import Participant, Round, Session
from roundmatch.utils.logger import get_logger
from roundmatch.utils.time_utils import round_timeline, utc_now

log = get_logger(__name__)

S = RegistrationStatus

_ALREADY_CONFIRMED = frozenset({S.CONFIRMED, S.MATCHED, S.COMPLETED})
_ALREADY_CHECKED_IN = ARRIVED_STATUSES
_CAN_CONFIRM_MEETING = frozenset({S.CHECKED_IN, S.WAITING_FOR_MEET_CONFIRMATION})


# ─── Lookups ─────────────────────────────────────────────────────────────────

def _participant_by_token(store: RoundStore, token: str) -> Participant:
    participant = store.get_participant_by_token(token)
    if participant is None:
        raise NotFoundError("Participant", "token")
    return participant


def _session_and_round(store: RoundStore, session_id: str, round_id: str) -> tuple[Session, Round]:
    session = store.get_session(session_id)
    if session is None:
        raise NotFoundError("Session", session_id)
    round_ = session.get_round(round_id)
    if round_ is None:
        raise NotFoundError("Round", round_id)
    return session, round_


def _registration(
    store: RoundStore, participant_id: str, session_id: str, round_id: str
) -> Registration:
    reg = store.get_registration(participant_id, session_id, round_id)
    if reg is None:
        raise NotFoundError("Registration", f"{participant_id}:{session_id}:{round_id}")
    return reg


def _match_registration(
    store: RoundStore, participant_id: str, match_id: str
) -> tuple[Match, Registration]:
    match = store.get_match(match_id)
    if match is None:
        raise NotFoundError("Match", match_id)
    if participant_id not in match.participant_ids:
        raise InvalidStateError("Participant is not a member of this match")
    reg = _registration(store, participant_id, match.session_id, match.round_id)
    return match, reg


# ─── Registration & confirmation ─────────────────────────────────────────────

def register_for_round(
    store: RoundStore,
    participant_id: str,
    session_id: str,
    round_id: str,
    *,
    team: Optional[str] = None,
    topics: Optional[list[str]] = None,
    meeting_point: Optional[str] = None,
    notifications_enabled: bool = True,
    now: Optional[datetime] = None,
) -> Registration:
    """Create a `registered` registration. Raises RegistrationConflictError on duplicates."""
    if store.get_participant(participant_id) is None:
        raise NotFoundError("Participant", participant_id)
    _session_and_round(store, session_id, round_id)

    now = now or utc_now()
    reg = Registration(
        participant_id=participant_id,
        session_id=session_id,
        round_id=round_id,
        team=team,
        topics=list(topics or []),
        meeting_point=meeting_point,
        notifications_enabled=notifications_enabled,
        registered_at=now,
        last_status_update=now,
    )
    created = store.create_registration(reg)
    log.info("participant_registered", participant_id=participant_id, round_id=round_id)
    return created


def confirm_attendance(
    store: RoundStore,
    participant_id: str,
    session_id: str,
    round_id: str,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ConfirmAttendanceResponse:
    """
    registered → confirmed.

    Idempotent for confirmed / matched / completed.

    Raises:
        NotFoundError:                  session, round or registration missing
        ConfirmationWindowClosedError:  now is past T-0
        InvalidStateError:              any other current status
    """
    now = now or utc_now()
    _, round_ = _session_and_round(store, session_id, round_id)
    reg = _registration(store, participant_id, session_id, round_id)

    if reg.status in _ALREADY_CONFIRMED:
        return ConfirmAttendanceResponse(
            status=reg.status,
            confirmed_at=reg.confirmed_at,
            already_confirmed=True,
            message="Attendance already confirmed",
        )

    if reg.status != S.REGISTERED:
        raise InvalidStateError(
            f"Cannot confirm attendance from status '{reg.status.value}'",
            current_status=reg.status.value,
        )

    if now > round_timeline(round_, settings).start:
        raise ConfirmationWindowClosedError(
            "Confirmation window has closed: the round has already started",
            current_status=reg.status.value,
        )

    updated = store.update_registration_status(
        participant_id, session_id, round_id,
        S.CONFIRMED,
        changed_at=now,
        expected_status=S.REGISTERED,
        confirmed_at=now,
    )
    if updated is None:
        # Status moved on since the read; answer from the current record
        return confirm_attendance(store, participant_id, session_id, round_id, now, settings)
    log.info("attendance_confirmed", participant_id=participant_id, round_id=round_id)
    return ConfirmAttendanceResponse(status=updated.status, confirmed_at=updated.confirmed_at)


def confirm_attendance_by_token(
    store: RoundStore,
    token: str,
    session_id: str,
    round_id: str,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ConfirmAttendanceResponse:
    participant = _participant_by_token(store, token)
    return confirm_attendance(store, participant.id, session_id, round_id, now, settings)


# ─── Meeting point ───────────────────────────────────────────────────────────

def _advance_if_all_arrived(store: RoundStore, match: Match, now: datetime) -> bool:
    regs = [
        store.get_registration(pid, match.session_id, match.round_id)
        for pid in match.participant_ids
    ]
    if any(r is None or r.status not in ARRIVED_STATUSES for r in regs):
        return False

    for reg in regs:
        if reg.status == S.CHECKED_IN:
            store.update_registration_status(
                reg.participant_id, reg.session_id, reg.round_id,
                S.WAITING_FOR_MEET_CONFIRMATION,
                changed_at=now,
                expected_status=S.CHECKED_IN,
            )
    log.info("match_all_checked_in", match_id=match.match_id, group_size=len(regs))
    return True


def check_in(
    store: RoundStore,
    participant_id: str,
    match_id: str,
    now: Optional[datetime] = None,
) -> MatchActionResponse:
    """matched → checked-in; advances the whole group once everyone has arrived."""
    now = now or utc_now()
    match, reg = _match_registration(store, participant_id, match_id)

    if reg.status in _ALREADY_CHECKED_IN:
        return MatchActionResponse(
            status=reg.status,
            match_id=match_id,
            changed_at=reg.checked_in_at,
            already_done=True,
        )
    if reg.status != S.MATCHED:
        raise InvalidStateError(
            f"Cannot check in from status '{reg.status.value}'",
            current_status=reg.status.value,
        )

    written = store.update_registration_status(
        participant_id, match.session_id, match.round_id,
        S.CHECKED_IN,
        changed_at=now,
        expected_status=S.MATCHED,
        checked_in_at=now,
    )
    if written is None:
        return check_in(store, participant_id, match_id, now)
    log.info("participant_checked_in", participant_id=participant_id, match_id=match_id)

    _advance_if_all_arrived(store, match, now)
    current = _registration(store, participant_id, match.session_id, match.round_id)
    return MatchActionResponse(status=current.status, match_id=match_id, changed_at=now)


def confirm_meeting(
    store: RoundStore,
    participant_id: str,
    match_id: str,
    now: Optional[datetime] = None,
) -> MatchActionResponse:
    """checked-in | waiting-for-meet-confirmation → met. Idempotent for met."""
    now = now or utc_now()
    match, reg = _match_registration(store, participant_id, match_id)

    if reg.status == S.MET:
        return MatchActionResponse(
            status=reg.status, match_id=match_id, changed_at=reg.met_at, already_done=True
        )
    if reg.status not in _CAN_CONFIRM_MEETING:
        raise InvalidStateError(
            f"Cannot confirm meeting from status '{reg.status.value}'",
            current_status=reg.status.value,
        )

    written = store.update_registration_status(
        participant_id, match.session_id, match.round_id,
        S.MET,
        changed_at=now,
        expected_status=reg.status,
        met_at=now,
    )
    if written is None:
        return confirm_meeting(store, participant_id, match_id, now)
    log.info("meeting_confirmed", participant_id=participant_id, match_id=match_id)
    return MatchActionResponse(status=S.MET, match_id=match_id, changed_at=now)


def check_in_by_token(
    store: RoundStore, token: str, match_id: str, now: Optional[datetime] = None
) -> MatchActionResponse:
    participant = _participant_by_token(store, token)
    return check_in(store, participant.id, match_id, now)


def confirm_meeting_by_token(
    store: RoundStore, token: str, match_id: str, now: Optional[datetime] = None
) -> MatchActionResponse:
    participant = _participant_by_token(store, token)
    return confirm_meeting(store, participant.id, match_id, now)


# ─── Match partner view ──────────────────────────────────────────────────────

def _current_match_registration(regs: list[Registration]) -> Optional[Registration]:
    with_match = [r for r in regs if r.match_id]
    active = [r for r in with_match if r.status in ACTIVE_MATCH_STATUSES]
    pool = active or [r for r in with_match if r.status == S.MET]
    if not pool:
        return None
    # Most recently matched round wins
    return max(pool, key=lambda r: (r.matched_at or r.registered_at, r.round_id))


def get_match_partners(store: RoundStore, token: str) -> MatchPartnersResponse:
    """
    The caller's current match with each partner's progress.

    Raises:
        NotFoundError: unknown token, or no active match.
    """
    participant = _participant_by_token(store, token)
    reg = _current_match_registration(store.get_registrations_for_participant(participant.id))
    if reg is None:
        raise NotFoundError("Active match", participant.id)

    members = store.get_match_participants(reg.match_id)
    match = store.get_match(reg.match_id)

    partners: list[PartnerStatus] = []
    for member in members:
        if member.participant_id == participant.id:
            continue
        partner_reg = store.get_registration(member.participant_id, reg.session_id, reg.round_id)
        partner_status = partner_reg.status if partner_reg else None
        partners.append(PartnerStatus(
            participant_id=member.participant_id,
            first_name=member.first_name,
            last_name=member.last_name,
            is_checked_in=partner_status in ARRIVED_STATUSES,
            is_met=partner_status == S.MET,
        ))

    all_checked_in = all(p.is_checked_in for p in partners)
    all_met = all(p.is_met for p in partners)

    return MatchPartnersResponse(
        match_id=reg.match_id,
        session_id=reg.session_id,
        round_id=reg.round_id,
        my_name=participant.display_name,
        my_status=reg.status,
        meeting_point=match.meeting_point if match else reg.meeting_point_id,
        partners=partners,
        all_checked_in=all_checked_in,
        should_start_networking=all_met and reg.status == S.MET,
    )
