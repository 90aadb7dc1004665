# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Matching Orchestrator
Entry point invoked once per round at T-0. Safe to call repeatedly: the
per-(session, round) matching lock makes every call after the first a
no-op.

Execution order (strictly sequential within one run):
  1. Resolve session + round                      (NotFoundError)
  2. Atomically claim the matching lock           (idempotency guard)
     and roll back writes left by an aborted claim
  3. registered → unconfirmed                     (compare-and-set)
  4. 0 confirmed  → zero-result lock
  5. 1 confirmed  → no-match, solo lock
  6. Meeting history → pair scores → groups
  7. Persist matches, members → matched
  8. Single leftover absorbed into smallest match
  9. Remaining confirmed → no-match
 10. Complete the lock with final counts

Any exception before step 10 releases the claim and propagates. The next
trigger deletes the failed run's matches and no-match marks before
grouping, so a retry starts from scratch.
"""

from __future__ import annotations

import asyncio
import traceback
import uuid
from datetime import datetime
from typing import Optional

from roundmatch.config import Settings, get_settings
from roundmatch.core.errors import NotFoundError, StorageError
from roundmatch.core.round_store import RoundStore
from roundmatch.models.match import (
    LockState,
    Match,
    MatchCandidate,
    MatchingFailure,
    MatchingLock,
    MatchingResult,
    RunDueResponse,
)
from roundmatch.models.registration import (
    NO_MATCH_REASON,
    SOLO_NO_MATCH_REASON,
    UNCONFIRMED_REASON,
    Registration,
    RegistrationStatus,
)
from roundmatch.models.session import Round, Session, SessionStatus
from roundmatch.modules.matching import (
    ScoringWeights,
    build_groups,
    build_score_matrix,
    load_meeting_history,
)
from roundmatch.utils.logger import get_logger, round_context
from roundmatch.utils.time_utils import round_timeline, utc_now

log = get_logger(__name__)

_MATCHABLE_SESSION_STATUSES = frozenset({SessionStatus.PUBLISHED, SessionStatus.SCHEDULED})


def run_matching(
    store: RoundStore,
    session_id: str,
    round_id: str,
    *,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> MatchingResult:
    """
    Run matching for one round exactly once.

    Returns:
        MatchingResult. already_completed / in_progress are set (with zero
        counts and no writes) when another run owns or finished the round.

    Raises:
        NotFoundError: session or round does not exist.
        StorageError:  store failure; the claim is released, retry is safe.
    """
    settings = settings or get_settings()
    now = now or utc_now()

    session = store.get_session(session_id)
    if session is None:
        raise NotFoundError("Session", session_id)
    round_ = session.get_round(round_id)
    if round_ is None:
        raise NotFoundError("Round", round_id)

    claim_id = uuid.uuid4().hex
    lock = store.claim_matching_lock(
        session_id, round_id, claim_id, settings.matching_claim_ttl_seconds, now
    )
    if lock is None:
        return _skipped_result(store, session_id, round_id)

    log.info(
        "matching_start",
        session_id=session_id,
        round_id=round_id,
        group_size=round_.group_size,
        matching_type=session.matching_type.value,
        claim_id=claim_id,
    )

    try:
        result = _execute(store, session, round_, lock, settings, now)
    except Exception:
        _release_claim(store, lock)
        raise

    log.info(
        "matching_complete",
        session_id=session_id,
        round_id=round_id,
        match_count=result.match_count,
        unmatched_count=result.unmatched_count,
        unconfirmed_count=result.unconfirmed_count,
        solo_participant=result.solo_participant,
    )
    return result


def _skipped_result(store: RoundStore, session_id: str, round_id: str) -> MatchingResult:
    existing = store.get_matching_lock(session_id, round_id)
    completed = existing is not None and existing.state == LockState.COMPLETED
    log.info(
        "matching_skipped",
        session_id=session_id,
        round_id=round_id,
        reason="already_completed" if completed else "in_progress",
    )
    return MatchingResult(
        session_id=session_id,
        round_id=round_id,
        already_completed=completed,
        in_progress=not completed,
    )


def _release_claim(store: RoundStore, lock: MatchingLock) -> None:
    try:
        released = store.release_matching_lock(lock.session_id, lock.round_id, lock.claim_id)
    except StorageError as e:
        # The claim still expires after its TTL
        log.warning("matching_claim_release_failed", round_id=lock.round_id, error=str(e))
        return
    log.warning(
        "matching_aborted",
        session_id=lock.session_id,
        round_id=lock.round_id,
        claim_released=released,
    )


# ─── Roll back an aborted run ────────────────────────────────────────────────

def _roll_back_aborted_runs(
    store: RoundStore,
    session: Session,
    round_: Round,
    lock: MatchingLock,
    now: datetime,
) -> list[Match]:
    """
    Undo what an earlier claim wrote before it failed or was abandoned, so
    this run groups from the state matching found at T-0.

    The lock is never COMPLETED here, so every match of the round and every
    no-match mark in it belongs to an aborted run. Matches whose members
    have already checked in are kept as they are and returned; everything
    else is deleted and its members go back to `confirmed`.
    """
    kept: list[Match] = []
    deleted = 0
    for match in store.get_matches_for_session(session.id):
        if match.round_id != round_.id or match.claim_id == lock.claim_id:
            continue
        regs = [
            r for r in (
                store.get_registration(pid, session.id, round_.id)
                for pid in match.participant_ids
            )
            if r is not None and r.match_id == match.match_id
        ]
        if any(r.status != RegistrationStatus.MATCHED for r in regs):
            kept.append(match)
            continue
        for reg in regs:
            store.update_registration_status(
                reg.participant_id, session.id, round_.id,
                RegistrationStatus.CONFIRMED,
                changed_at=now,
                expected_status=RegistrationStatus.MATCHED,
                match_id=None,
                match_partner_names=[],
                meeting_point_id=None,
                matched_at=None,
            )
        store.delete_match(match.match_id)
        deleted += 1

    reverted = 0
    for reg in store.get_registrations_for_round(session.id, round_.id):
        if reg.status != RegistrationStatus.NO_MATCH:
            continue
        written = store.update_registration_status(
            reg.participant_id, session.id, round_.id,
            RegistrationStatus.CONFIRMED,
            changed_at=now,
            expected_status=RegistrationStatus.NO_MATCH,
            no_match_reason=None,
        )
        if written is not None:
            reverted += 1

    if deleted or reverted or kept:
        log.warning(
            "aborted_run_rolled_back",
            session_id=session.id,
            round_id=round_.id,
            deleted_matches=deleted,
            reverted_no_match=reverted,
            kept_matches=len(kept),
        )
    return kept


# ─── Steps 3-10 ──────────────────────────────────────────────────────────────

def _execute(
    store: RoundStore,
    session: Session,
    round_: Round,
    lock: MatchingLock,
    settings: Settings,
    now: datetime,
) -> MatchingResult:
    result = MatchingResult(session_id=session.id, round_id=round_.id)
    kept = _roll_back_aborted_runs(store, session, round_, lock, now)

    # ── Step 3: reclassify never-confirmed registrations ──
    for reg in store.get_registrations_for_round(session.id, round_.id):
        if reg.status != RegistrationStatus.REGISTERED:
            continue
        # Skipped if the participant confirmed after the read above
        written = store.update_registration_status(
            reg.participant_id, reg.session_id, reg.round_id,
            RegistrationStatus.UNCONFIRMED,
            changed_at=now,
            expected_status=RegistrationStatus.REGISTERED,
            unconfirmed_reason=UNCONFIRMED_REASON,
        )
        if written is not None:
            result.unconfirmed_count += 1

    confirmed = [
        r for r in store.get_registrations_for_round(session.id, round_.id)
        if r.status == RegistrationStatus.CONFIRMED
    ]
    result.match_ids = [m.match_id for m in kept]
    result.match_count = len(kept)

    # ── Step 4: nobody to match ──
    if not confirmed:
        _complete_lock(store, lock, result, now)
        return result

    # ── Step 5: solo participant ──
    if len(confirmed) == 1:
        solo = confirmed[0]
        _mark_no_match(store, solo, SOLO_NO_MATCH_REASON, now)
        result.unmatched_count = 1
        result.solo_participant = True
        _complete_lock(store, lock, result, now)
        return result

    # ── Step 6: history → scores → groups ──
    candidates = [_to_candidate(store, reg) for reg in confirmed]
    history = load_meeting_history(
        store, session.id, [c.participant_id for c in candidates]
    )
    scores = build_score_matrix(
        candidates, history, session.matching_type, ScoringWeights.from_settings(settings)
    )
    plan = build_groups(
        candidates, scores,
        group_size=round_.group_size,
        min_group_score=settings.min_group_score,
    )

    # ── Step 7: persist matches ──
    matches: list[Match] = []
    for idx, group in enumerate(plan.groups):
        match = Match(
            match_id=f"match_{uuid.uuid4().hex}",
            session_id=session.id,
            round_id=round_.id,
            members=[c.to_member() for c in group],
            meeting_point=_meeting_point(round_, idx, group),
            created_at=now,
            claim_id=lock.claim_id,
        )
        store.create_match(match)
        _mark_matched(store, match, match.participant_ids, now)
        matches.append(match)

    # ── Step 8: absorb a single leftover ──
    absorb_index = plan.absorb_index
    if absorb_index is not None:
        target = matches[absorb_index]
        leftover = plan.leftovers[0]
        target.members.append(leftover.to_member())
        store.update_match(target)
        # Every member (old and new) gets the updated partner list
        _mark_matched(store, target, target.participant_ids, now)
        log.info(
            "leftover_absorbed",
            match_id=target.match_id,
            participant_id=leftover.participant_id,
            group_size=len(target.members),
        )

    # ── Step 9: everyone else is no-match ──
    for candidate in plan.unmatched:
        store.update_registration_status(
            candidate.participant_id, session.id, round_.id,
            RegistrationStatus.NO_MATCH,
            changed_at=now,
            no_match_reason=NO_MATCH_REASON,
        )

    # ── Step 10: finalize ──
    result.match_count += len(matches)
    result.unmatched_count = len(plan.unmatched)
    result.match_ids += [m.match_id for m in matches]
    _complete_lock(store, lock, result, now)
    return result


def _to_candidate(store: RoundStore, reg: Registration) -> MatchCandidate:
    participant = store.get_participant(reg.participant_id)
    return MatchCandidate(
        participant_id=reg.participant_id,
        first_name=participant.first_name if participant else "",
        last_name=participant.last_name if participant else "",
        team=reg.team,
        topics=list(reg.topics),
        meeting_point=reg.meeting_point,
    )


def _meeting_point(round_: Round, group_index: int, group: list[MatchCandidate]) -> str:
    if round_.meeting_points:
        return round_.meeting_points[group_index % len(round_.meeting_points)]
    preferred = next((c.meeting_point for c in group if c.meeting_point), None)
    return preferred or "TBD"


def _mark_matched(
    store: RoundStore,
    match: Match,
    participant_ids: list[str],
    now: datetime,
) -> None:
    for pid in participant_ids:
        store.update_registration_status(
            pid, match.session_id, match.round_id,
            RegistrationStatus.MATCHED,
            changed_at=now,
            match_id=match.match_id,
            match_partner_names=match.partner_names_for(pid),
            meeting_point_id=match.meeting_point,
            matched_at=now,
        )


def _mark_no_match(store: RoundStore, reg: Registration, reason: str, now: datetime) -> None:
    store.update_registration_status(
        reg.participant_id, reg.session_id, reg.round_id,
        RegistrationStatus.NO_MATCH,
        changed_at=now,
        no_match_reason=reason,
    )


def _complete_lock(
    store: RoundStore,
    lock: MatchingLock,
    result: MatchingResult,
    now: datetime,
) -> None:
    lock.match_count = result.match_count
    lock.unmatched_count = result.unmatched_count
    lock.solo_participant = result.solo_participant
    lock.completed_at = now
    store.complete_matching_lock(lock)


# ─── Async / scheduled entry points ──────────────────────────────────────────

async def run_matching_task(
    store: RoundStore,
    session_id: str,
    round_id: str,
    now: Optional[datetime] = None,
) -> Optional[MatchingResult]:
    """
    Fire-and-forget wrapper. Runs as a FastAPI background task from the
    dashboard read path; failures are logged, never raised to the caller.
    """
    with round_context(session_id, round_id, source="background"):
        try:
            # to_thread copies the bound context into the worker
            return await asyncio.to_thread(run_matching, store, session_id, round_id, now=now)
        except Exception as exc:
            log.error(
                "matching_task_failed",
                error=f"{type(exc).__name__}: {exc}",
                traceback=traceback.format_exc(),
            )
            return None


def run_due_matching(
    store: RoundStore,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> RunDueResponse:
    """
    Scheduled fallback for rounds nobody polled: run matching for every
    live round (T-0 <= now < end) of every published/scheduled session.

    A failing round is logged and reported in `failures`; the sweep carries
    on with the remaining rounds and the next sweep retries it.

    Returns:
        RunDueResponse with the live rounds checked, results of the runs
        that executed, and the rounds that failed.
    """
    settings = settings or get_settings()
    now = now or utc_now()

    sweep = RunDueResponse()
    for session in store.list_sessions():
        if session.status not in _MATCHABLE_SESSION_STATUSES:
            continue
        for round_ in session.rounds:
            if not round_timeline(round_, settings).is_live(now):
                continue
            sweep.checked_rounds += 1
            with round_context(session.id, round_.id, source="scheduled"):
                try:
                    result = run_matching(
                        store, session.id, round_.id, settings=settings, now=now
                    )
                except Exception as exc:
                    log.error(
                        "matching_failed",
                        error=f"{type(exc).__name__}: {exc}",
                        traceback=traceback.format_exc(),
                    )
                    sweep.failures.append(MatchingFailure(
                        session_id=session.id,
                        round_id=round_.id,
                        error=f"{type(exc).__name__}: {exc}",
                    ))
                    continue
            if not (result.already_completed or result.in_progress):
                sweep.results.append(result)

    log.info(
        "run_due_matching_complete",
        checked_rounds=sweep.checked_rounds,
        executed=len(sweep.results),
        failed=len(sweep.failures),
    )
    return sweep
