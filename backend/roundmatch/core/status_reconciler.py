# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Status Reconciler
Runs on every participant dashboard read. Recomputes each registration's
status from wall-clock time and persists the result only when it clears
all three protection layers:

  1. Blacklist:       current status is terminal / user-initiated
  2. Timestamp guard: confirmed_at is set (catches un-enumerated states)
  3. Whitelist:       target must be `completed` or `unconfirmed`

Rounds that just crossed T-0 are returned as matching triggers. The
caller dispatches them without awaiting; the matching lock makes
redundant triggers harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from roundmatch.config import Settings, get_settings
from roundmatch.core.errors import NotFoundError
from roundmatch.core.round_store import RoundStore
from roundmatch.models.match import LockState
from roundmatch.models.registration import (
    BACKGROUND_TARGET_STATUSES,
    PROTECTED_STATUSES,
    UNCONFIRMED_REASON,
    DashboardRegistration,
    DashboardResponse,
    Registration,
    RegistrationStatus,
)
from roundmatch.models.session import Round, RoundPhase, Session, SessionStatus
from roundmatch.utils.logger import get_logger
from roundmatch.utils.time_utils import RoundTimeline, round_timeline, utc_now

log = get_logger(__name__)

_AUTO_COMPLETABLE = frozenset({SessionStatus.PUBLISHED, SessionStatus.SCHEDULED})


def round_phase(timeline: RoundTimeline, now: datetime) -> RoundPhase:
    if now >= timeline.end:
        return RoundPhase.ENDED
    if now >= timeline.start:
        return RoundPhase.LIVE
    if now >= timeline.confirmation_opens_at:
        return RoundPhase.CONFIRMATION_OPEN
    return RoundPhase.UPCOMING


def compute_candidate_status(
    reg: Registration,
    timeline: RoundTimeline,
    now: datetime,
) -> Optional[RegistrationStatus]:
    """
    Status implied by wall-clock time alone, or None if time implies no change.
    Only `unconfirmed` and `completed` are ever produced.
    """
    if reg.status == RegistrationStatus.REGISTERED and now >= timeline.start:
        return RegistrationStatus.UNCONFIRMED
    if timeline.is_completed(now) and reg.status != RegistrationStatus.COMPLETED:
        return RegistrationStatus.COMPLETED
    return None


def protection_block_reason(
    reg: Registration,
    candidate: Optional[RegistrationStatus],
) -> Optional[str]:
    """Name of the protection layer that rejects the write, or None if allowed."""
    if candidate is None or candidate == reg.status:
        return "unchanged"
    if reg.status in PROTECTED_STATUSES:
        return "blacklist"
    if reg.confirmed_at is not None:
        return "timestamp_guard"
    if candidate not in BACKGROUND_TARGET_STATUSES:
        return "whitelist"
    return None


def should_persist(reg: Registration, candidate: Optional[RegistrationStatus]) -> bool:
    return protection_block_reason(reg, candidate) is None


def reconcile_registration(
    store: RoundStore,
    reg: Registration,
    timeline: RoundTimeline,
    now: datetime,
) -> tuple[Registration, bool]:
    """
    Apply the time-derived status to one registration if it is safe to.

    Returns:
        (registration as persisted after the call, whether it changed)
    """
    candidate = compute_candidate_status(reg, timeline, now)
    blocked = protection_block_reason(reg, candidate)

    if blocked is not None:
        if blocked != "unchanged":
            log.debug(
                "status_protected",
                participant_id=reg.participant_id,
                round_id=reg.round_id,
                current=reg.status.value,
                candidate=candidate.value if candidate else None,
                layer=blocked,
            )
        return reg, False

    extra = {}
    if candidate == RegistrationStatus.UNCONFIRMED:
        extra["unconfirmed_reason"] = UNCONFIRMED_REASON

    updated = store.update_registration_status(
        reg.participant_id, reg.session_id, reg.round_id,
        candidate,
        changed_at=now,
        expected_status=reg.status,
        **extra,
    )
    if updated is None:
        # A user action or matching run wrote first; it wins
        current = store.get_registration(reg.participant_id, reg.session_id, reg.round_id)
        return current or reg, False
    log.info(
        "status_reconciled",
        participant_id=reg.participant_id,
        round_id=reg.round_id,
        previous=reg.status.value,
        status=candidate.value,
    )
    return updated, True


def auto_complete_session(
    store: RoundStore,
    session: Session,
    now: datetime,
    settings: Optional[Settings] = None,
) -> Session:
    """Mark a published/scheduled session completed once every round is past its completion instant."""
    if session.status not in _AUTO_COMPLETABLE or not session.rounds:
        return session

    if all(round_timeline(r, settings).is_completed(now) for r in session.rounds):
        session = store.update_session_status(session.id, SessionStatus.COMPLETED)
        log.info("session_auto_completed", session_id=session.id)
    return session


# ─── Dashboard ───────────────────────────────────────────────────────────────

@dataclass
class DashboardResult:
    response: DashboardResponse
    # (session_id, round_id) pairs that crossed T-0 during this read
    matching_triggers: list[tuple[str, str]] = field(default_factory=list)


def _should_trigger(
    store: RoundStore,
    reg: Registration,
    timeline: RoundTimeline,
    now: datetime,
) -> bool:
    if reg.status != RegistrationStatus.CONFIRMED or not timeline.in_trigger_window(now):
        return False
    lock = store.get_matching_lock(reg.session_id, reg.round_id)
    return lock is None or lock.state != LockState.COMPLETED


def build_dashboard(
    store: RoundStore,
    token: str,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> DashboardResult:
    """
    Participant dashboard read: reconcile every registration, enrich it with
    round timing, and collect the rounds whose matching should be triggered.

    Raises:
        NotFoundError: unknown token.
    """
    settings = settings or get_settings()
    now = now or utc_now()

    participant = store.get_participant_by_token(token)
    if participant is None:
        raise NotFoundError("Participant", "token")

    sessions: dict[str, Optional[Session]] = {}
    enriched: list[DashboardRegistration] = []
    triggers: list[tuple[str, str]] = []

    for reg in store.get_registrations_for_participant(participant.id):
        if reg.session_id not in sessions:
            sessions[reg.session_id] = store.get_session(reg.session_id)
        session = sessions[reg.session_id]
        round_: Optional[Round] = session.get_round(reg.round_id) if session else None

        if round_ is None:
            log.warning(
                "dashboard_round_missing",
                participant_id=participant.id,
                session_id=reg.session_id,
                round_id=reg.round_id,
            )
            enriched.append(DashboardRegistration(registration=reg))
            continue

        timeline = round_timeline(round_, settings)

        if _should_trigger(store, reg, timeline, now):
            key = (reg.session_id, reg.round_id)
            if key not in triggers:
                triggers.append(key)

        current, changed = reconcile_registration(store, reg, timeline, now)
        enriched.append(DashboardRegistration(
            registration=current,
            round_name=round_.name,
            round_date=round_.date.isoformat(),
            round_start_time=round_.start_time,
            round_duration_minutes=round_.duration_minutes,
            phase=round_phase(timeline, now),
            status_changed=changed,
        ))

    parent_sessions = [
        auto_complete_session(store, s, now, settings)
        for s in sessions.values() if s is not None
    ]

    log.info(
        "dashboard_built",
        participant_id=participant.id,
        n_registrations=len(enriched),
        n_changed=sum(1 for r in enriched if r.status_changed),
        n_triggers=len(triggers),
    )

    response = DashboardResponse(
        participant_id=participant.id,
        email=participant.email,
        first_name=participant.first_name,
        last_name=participant.last_name,
        registrations=enriched,
        sessions=parent_sessions,
    )
    return DashboardResult(response=response, matching_triggers=triggers)
