# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Abstract RoundStore
Clean interface over sessions, participants, registrations, matches and
matching locks. Swap InMemoryRoundStore for RedisRoundStore with zero
engine changes.

InMemoryRoundStore:  development / single-worker deployments / tests
RedisRoundStore:     production / multi-worker deployments

The matching lock is the only cross-invocation ordering primitive, so
both backends implement claim_matching_lock() as an atomic
insert-if-absent (dict under an RLock / Redis SET NX).
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

from roundmatch.core.errors import NotFoundError, RegistrationConflictError, StorageError
from roundmatch.models.match import LockState, Match, MatchingLock, MatchMember
from roundmatch.models.registration import Registration, RegistrationStatus
from roundmatch.models.session import Participant, Session, SessionStatus
from roundmatch.utils.logger import get_logger
from roundmatch.utils.time_utils import utc_now

log = get_logger(__name__)

_REGISTRATION_FIELDS = frozenset(Registration.model_fields) - {
    "participant_id", "session_id", "round_id", "status", "last_status_update",
}


def _apply_status_update(
    reg: Registration,
    status: RegistrationStatus,
    changed_at: datetime,
    fields: dict[str, Any],
) -> Registration:
    unknown = set(fields) - _REGISTRATION_FIELDS
    if unknown:
        raise ValueError(f"Unknown registration fields: {sorted(unknown)}")
    for name, value in fields.items():
        setattr(reg, name, value)
    reg.status = status
    reg.last_status_update = changed_at
    return reg


def _log_stale_write(
    reg: Registration,
    expected: RegistrationStatus,
    target: RegistrationStatus,
) -> None:
    log.info(
        "registration_write_skipped",
        participant_id=reg.participant_id,
        round_id=reg.round_id,
        expected=expected,
        current=reg.status,
        target=target,
    )


def _registration_sort_key(reg: Registration) -> tuple:
    return (reg.registered_at, reg.participant_id)


def _match_sort_key(match: Match) -> tuple:
    return (match.created_at, match.match_id)


# ─── Abstract Interface ──────────────────────────────────────────────────────

class RoundStore(ABC):
    """
    Abstract base class for all storage backends.
    All methods are synchronous; async wrappers live in the orchestrator layer.
    Returned models are copies: mutating them never changes stored state.
    """

    # ── Sessions ──

    @abstractmethod
    def put_session(self, session: Session) -> None:
        """Insert or replace a session (rounds included)."""

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]:
        """Return Session by ID, or None if not found."""

    @abstractmethod
    def list_sessions(self) -> list[Session]:
        """Return every session."""

    def update_session_status(self, session_id: str, status: SessionStatus) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        session.status = status
        self.put_session(session)
        return session

    # ── Participants ──

    @abstractmethod
    def put_participant(self, participant: Participant) -> None:
        """Insert or replace a participant and its token index entry."""

    @abstractmethod
    def get_participant(self, participant_id: str) -> Optional[Participant]:
        """Return Participant by ID, or None."""

    @abstractmethod
    def get_participant_by_token(self, token: str) -> Optional[Participant]:
        """Indexed lookup of a participant by access token."""

    # ── Registrations ──

    @abstractmethod
    def create_registration(self, registration: Registration) -> Registration:
        """
        Insert a new registration.
        Raises RegistrationConflictError if (participant, session, round) exists.
        """

    @abstractmethod
    def get_registration(
        self, participant_id: str, session_id: str, round_id: str
    ) -> Optional[Registration]:
        """Return one registration, or None."""

    @abstractmethod
    def get_registrations_for_round(
        self, session_id: str, round_id: str
    ) -> list[Registration]:
        """All registrations of a round, ordered by registration time."""

    @abstractmethod
    def get_registrations_for_participant(self, participant_id: str) -> list[Registration]:
        """All registrations of a participant, ordered by registration time."""

    @abstractmethod
    def update_registration_status(
        self,
        participant_id: str,
        session_id: str,
        round_id: str,
        status: RegistrationStatus,
        *,
        changed_at: Optional[datetime] = None,
        expected_status: Optional[RegistrationStatus] = None,
        **fields: Any,
    ) -> Optional[Registration]:
        """
        Set status plus any extra Registration fields, stamping last_status_update.

        With expected_status the write is a compare-and-set: it is skipped
        (returning None) when the stored status has moved on since the
        caller read it.

        Raises NotFoundError if the registration does not exist.
        """

    # ── Matches ──

    @abstractmethod
    def create_match(self, match: Match) -> Match:
        """Persist a new match."""

    @abstractmethod
    def update_match(self, match: Match) -> Match:
        """Replace an existing match. Raises NotFoundError if absent."""

    @abstractmethod
    def delete_match(self, match_id: str) -> bool:
        """Remove a match and its index entry. Returns True if it existed."""

    @abstractmethod
    def get_match(self, match_id: str) -> Optional[Match]:
        """Return Match by ID, or None."""

    @abstractmethod
    def get_matches_for_session(self, session_id: str) -> list[Match]:
        """All matches ever created in a session, oldest first."""

    def get_match_participants(self, match_id: str) -> list[MatchMember]:
        match = self.get_match(match_id)
        if match is None:
            raise NotFoundError("Match", match_id)
        return match.members

    # ── Matching lock ──

    @abstractmethod
    def get_matching_lock(self, session_id: str, round_id: str) -> Optional[MatchingLock]:
        """Return the lock record (running claim or completed), or None."""

    @abstractmethod
    def claim_matching_lock(
        self,
        session_id: str,
        round_id: str,
        claim_id: str,
        ttl_seconds: int,
        now: Optional[datetime] = None,
    ) -> Optional[MatchingLock]:
        """
        Atomically insert a RUNNING lock if none exists, or take over a
        RUNNING claim older than ttl_seconds.
        Returns the new lock on success, None if another record holds the key.
        """

    @abstractmethod
    def complete_matching_lock(self, lock: MatchingLock) -> MatchingLock:
        """
        Turn our RUNNING claim into a COMPLETED lock carrying the run's counts.
        Raises StorageError if the claim was lost to another run.
        """

    @abstractmethod
    def release_matching_lock(self, session_id: str, round_id: str, claim_id: str) -> bool:
        """Delete our RUNNING claim so a failed run can be retried. Returns True if deleted."""

    # ── Lifecycle ──

    def ping(self) -> bool:
        """True if the backend is reachable. Used by /health."""
        return True

    def close(self) -> None:
        """Release backend connections. Called at app shutdown."""


# ─── In-Memory Implementation ────────────────────────────────────────────────

class InMemoryRoundStore(RoundStore):
    """
    Thread-safe in-memory store using dicts + RLock.
    Suitable for single-process development and testing.
    All data is lost on process restart.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._participants: dict[str, Participant] = {}
        self._token_index: dict[str, str] = {}
        self._registrations: dict[tuple[str, str, str], Registration] = {}
        self._matches: dict[str, Match] = {}
        self._locks: dict[tuple[str, str], MatchingLock] = {}
        self._lock = threading.RLock()

    # ── Sessions ──

    def put_session(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def list_sessions(self) -> list[Session]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values()]

    # ── Participants ──

    def put_participant(self, participant: Participant) -> None:
        with self._lock:
            previous = self._participants.get(participant.id)
            if previous is not None and previous.token != participant.token:
                self._token_index.pop(previous.token, None)
            self._participants[participant.id] = participant.model_copy(deep=True)
            self._token_index[participant.token] = participant.id

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        with self._lock:
            participant = self._participants.get(participant_id)
            return participant.model_copy(deep=True) if participant else None

    def get_participant_by_token(self, token: str) -> Optional[Participant]:
        with self._lock:
            participant_id = self._token_index.get(token)
            if participant_id is None:
                return None
            return self.get_participant(participant_id)

    # ── Registrations ──

    def create_registration(self, registration: Registration) -> Registration:
        key = registration.key
        with self._lock:
            if key in self._registrations:
                raise RegistrationConflictError(
                    "Participant is already registered for this round",
                    current_status=self._registrations[key].status.value,
                )
            self._registrations[key] = registration.model_copy(deep=True)
        log.debug(
            "registration_created",
            participant_id=registration.participant_id,
            session_id=registration.session_id,
            round_id=registration.round_id,
        )
        return registration.model_copy(deep=True)

    def get_registration(
        self, participant_id: str, session_id: str, round_id: str
    ) -> Optional[Registration]:
        with self._lock:
            reg = self._registrations.get((participant_id, session_id, round_id))
            return reg.model_copy(deep=True) if reg else None

    def get_registrations_for_round(
        self, session_id: str, round_id: str
    ) -> list[Registration]:
        with self._lock:
            regs = [
                r.model_copy(deep=True) for r in self._registrations.values()
                if r.session_id == session_id and r.round_id == round_id
            ]
        return sorted(regs, key=_registration_sort_key)

    def get_registrations_for_participant(self, participant_id: str) -> list[Registration]:
        with self._lock:
            regs = [
                r.model_copy(deep=True) for r in self._registrations.values()
                if r.participant_id == participant_id
            ]
        return sorted(regs, key=_registration_sort_key)

    def update_registration_status(
        self,
        participant_id: str,
        session_id: str,
        round_id: str,
        status: RegistrationStatus,
        *,
        changed_at: Optional[datetime] = None,
        expected_status: Optional[RegistrationStatus] = None,
        **fields: Any,
    ) -> Optional[Registration]:
        key = (participant_id, session_id, round_id)
        with self._lock:
            reg = self._registrations.get(key)
            if reg is None:
                raise NotFoundError("Registration", ":".join(key))
            if expected_status is not None and reg.status != expected_status:
                _log_stale_write(reg, expected_status, status)
                return None
            _apply_status_update(reg, status, changed_at or utc_now(), fields)
            updated = reg.model_copy(deep=True)

        log.debug(
            "registration_status_updated",
            participant_id=participant_id,
            round_id=round_id,
            status=status.value,
        )
        return updated

    # ── Matches ──

    def create_match(self, match: Match) -> Match:
        with self._lock:
            self._matches[match.match_id] = match.model_copy(deep=True)
        return match.model_copy(deep=True)

    def update_match(self, match: Match) -> Match:
        with self._lock:
            if match.match_id not in self._matches:
                raise NotFoundError("Match", match.match_id)
            self._matches[match.match_id] = match.model_copy(deep=True)
        return match.model_copy(deep=True)

    def delete_match(self, match_id: str) -> bool:
        with self._lock:
            return self._matches.pop(match_id, None) is not None

    def get_match(self, match_id: str) -> Optional[Match]:
        with self._lock:
            match = self._matches.get(match_id)
            return match.model_copy(deep=True) if match else None

    def get_matches_for_session(self, session_id: str) -> list[Match]:
        with self._lock:
            matches = [
                m.model_copy(deep=True) for m in self._matches.values()
                if m.session_id == session_id
            ]
        return sorted(matches, key=_match_sort_key)

    # ── Matching lock ──

    def get_matching_lock(self, session_id: str, round_id: str) -> Optional[MatchingLock]:
        with self._lock:
            lock = self._locks.get((session_id, round_id))
            return lock.model_copy() if lock else None

    def claim_matching_lock(
        self,
        session_id: str,
        round_id: str,
        claim_id: str,
        ttl_seconds: int,
        now: Optional[datetime] = None,
    ) -> Optional[MatchingLock]:
        now = now or utc_now()
        key = (session_id, round_id)
        with self._lock:
            existing = self._locks.get(key)
            if existing is not None and not existing.is_expired(now, ttl_seconds):
                return None
            if existing is not None:
                log.warning(
                    "matching_claim_taken_over",
                    session_id=session_id,
                    round_id=round_id,
                    stale_claim_id=existing.claim_id,
                )
            lock = MatchingLock(
                session_id=session_id,
                round_id=round_id,
                claim_id=claim_id,
                claimed_at=now,
            )
            self._locks[key] = lock
            return lock.model_copy()

    def complete_matching_lock(self, lock: MatchingLock) -> MatchingLock:
        key = (lock.session_id, lock.round_id)
        with self._lock:
            current = self._locks.get(key)
            if current is None or current.claim_id != lock.claim_id:
                raise StorageError(
                    f"Matching claim {lock.claim_id} lost for round {lock.round_id}"
                )
            completed = lock.model_copy(update={"state": LockState.COMPLETED})
            self._locks[key] = completed
            return completed.model_copy()

    def release_matching_lock(self, session_id: str, round_id: str, claim_id: str) -> bool:
        key = (session_id, round_id)
        with self._lock:
            current = self._locks.get(key)
            if (
                current is None
                or current.claim_id != claim_id
                or current.state != LockState.RUNNING
            ):
                return False
            del self._locks[key]
            return True


# ─── Redis Implementation ────────────────────────────────────────────────────

class RedisRoundStore(RoundStore):
    """
    Redis-backed store for production multi-worker deployments.
    Models are JSON-serialised; secondary indexes are Redis sets.
    Every redis-py error surfaces as StorageError.
    Requires redis-py and a running Redis instance.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: str = "roundmatch:",
        client: Optional[Any] = None,
    ) -> None:
        """
        Args:
            redis_url:  connection URL, ignored when `client` is given.
            key_prefix: namespace for every key this store writes.
            client:     a ready redis.Redis-compatible client created with
                        decode_responses=True (tests pass a fakeredis one).
        """
        try:
            import redis as redis_lib
        except ImportError as e:
            raise ImportError(
                "redis package required for RedisRoundStore. "
                "Install with: pip install redis"
            ) from e

        self._redis = redis_lib
        self._client = client or redis_lib.from_url(redis_url, decode_responses=True)
        self._prefix = key_prefix

        # Verify connection on init
        with self._errors("ping"):
            self._client.ping()
        log.info("redis_round_store_connected", url=None if client else redis_url)

    @contextmanager
    def _errors(self, op: str) -> Iterator[None]:
        try:
            yield
        except self._redis.RedisError as e:
            log.error("redis_operation_failed", op=op, error=str(e))
            raise StorageError(f"Redis {op} failed: {e}") from e

    # ── Keys ──

    def _session_key(self, session_id: str) -> str:
        return f"{self._prefix}session:{session_id}"

    def _sessions_index(self) -> str:
        return f"{self._prefix}sessions"

    def _participant_key(self, participant_id: str) -> str:
        return f"{self._prefix}participant:{participant_id}"

    def _token_key(self, token: str) -> str:
        return f"{self._prefix}participant_token:{token}"

    def _registration_key(self, participant_id: str, session_id: str, round_id: str) -> str:
        return f"{self._prefix}registration:{session_id}:{round_id}:{participant_id}"

    def _round_registrations_key(self, session_id: str, round_id: str) -> str:
        return f"{self._prefix}round_registrations:{session_id}:{round_id}"

    def _participant_registrations_key(self, participant_id: str) -> str:
        return f"{self._prefix}participant_registrations:{participant_id}"

    def _match_key(self, match_id: str) -> str:
        return f"{self._prefix}match:{match_id}"

    def _session_matches_key(self, session_id: str) -> str:
        return f"{self._prefix}session_matches:{session_id}"

    def _lock_key(self, session_id: str, round_id: str) -> str:
        return f"{self._prefix}matching_lock:{session_id}:{round_id}"

    # ── Sessions ──

    def put_session(self, session: Session) -> None:
        with self._errors("put_session"):
            pipe = self._client.pipeline()
            pipe.set(self._session_key(session.id), session.model_dump_json())
            pipe.sadd(self._sessions_index(), session.id)
            pipe.execute()

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._errors("get_session"):
            raw = self._client.get(self._session_key(session_id))
        return Session.model_validate_json(raw) if raw else None

    def list_sessions(self) -> list[Session]:
        with self._errors("list_sessions"):
            ids = sorted(self._client.smembers(self._sessions_index()))
            raws = self._client.mget([self._session_key(i) for i in ids]) if ids else []
        return [Session.model_validate_json(r) for r in raws if r]

    # ── Participants ──

    def put_participant(self, participant: Participant) -> None:
        with self._errors("put_participant"):
            previous = self.get_participant(participant.id)
            pipe = self._client.pipeline()
            if previous is not None and previous.token != participant.token:
                pipe.delete(self._token_key(previous.token))
            pipe.set(self._participant_key(participant.id), participant.model_dump_json())
            pipe.set(self._token_key(participant.token), participant.id)
            pipe.execute()

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        with self._errors("get_participant"):
            raw = self._client.get(self._participant_key(participant_id))
        return Participant.model_validate_json(raw) if raw else None

    def get_participant_by_token(self, token: str) -> Optional[Participant]:
        with self._errors("get_participant_by_token"):
            participant_id = self._client.get(self._token_key(token))
        if participant_id is None:
            return None
        return self.get_participant(participant_id)

    # ── Registrations ──

    def create_registration(self, registration: Registration) -> Registration:
        pid, sid, rid = registration.key
        key = self._registration_key(pid, sid, rid)
        with self._errors("create_registration"):
            # SET NX enforces one registration per (participant, session, round)
            created = self._client.set(key, registration.model_dump_json(), nx=True)
            if not created:
                raise RegistrationConflictError(
                    "Participant is already registered for this round"
                )
            pipe = self._client.pipeline()
            pipe.sadd(self._round_registrations_key(sid, rid), pid)
            pipe.sadd(self._participant_registrations_key(pid), f"{sid}|{rid}")
            pipe.execute()
        return registration

    def get_registration(
        self, participant_id: str, session_id: str, round_id: str
    ) -> Optional[Registration]:
        with self._errors("get_registration"):
            raw = self._client.get(
                self._registration_key(participant_id, session_id, round_id)
            )
        return Registration.model_validate_json(raw) if raw else None

    def _load_registrations(self, keys: list[str]) -> list[Registration]:
        if not keys:
            return []
        with self._errors("mget_registrations"):
            raws = self._client.mget(keys)
        regs = [Registration.model_validate_json(r) for r in raws if r]
        return sorted(regs, key=_registration_sort_key)

    def get_registrations_for_round(
        self, session_id: str, round_id: str
    ) -> list[Registration]:
        with self._errors("get_registrations_for_round"):
            pids = self._client.smembers(self._round_registrations_key(session_id, round_id))
        return self._load_registrations(
            [self._registration_key(pid, session_id, round_id) for pid in pids]
        )

    def get_registrations_for_participant(self, participant_id: str) -> list[Registration]:
        with self._errors("get_registrations_for_participant"):
            members = self._client.smembers(
                self._participant_registrations_key(participant_id)
            )
        keys = []
        for member in members:
            sid, rid = member.split("|", 1)
            keys.append(self._registration_key(participant_id, sid, rid))
        return self._load_registrations(keys)

    def update_registration_status(
        self,
        participant_id: str,
        session_id: str,
        round_id: str,
        status: RegistrationStatus,
        *,
        changed_at: Optional[datetime] = None,
        expected_status: Optional[RegistrationStatus] = None,
        **fields: Any,
    ) -> Optional[Registration]:
        key = self._registration_key(participant_id, session_id, round_id)
        changed_at = changed_at or utc_now()

        with self._errors("update_registration_status"):
            with self._client.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(key)
                        raw = pipe.get(key)
                        if raw is None:
                            pipe.unwatch()
                            raise NotFoundError(
                                "Registration", f"{participant_id}:{session_id}:{round_id}"
                            )
                        reg = Registration.model_validate_json(raw)
                        if expected_status is not None and reg.status != expected_status:
                            pipe.unwatch()
                            _log_stale_write(reg, expected_status, status)
                            return None
                        _apply_status_update(reg, status, changed_at, fields)
                        pipe.multi()
                        pipe.set(key, reg.model_dump_json())
                        pipe.execute()
                        break
                    except self._redis.WatchError:
                        # Written concurrently: re-read and re-check
                        continue
        log.debug(
            "registration_status_updated",
            participant_id=participant_id,
            round_id=round_id,
            status=status.value,
        )
        return reg

    # ── Matches ──

    def create_match(self, match: Match) -> Match:
        with self._errors("create_match"):
            pipe = self._client.pipeline()
            pipe.set(self._match_key(match.match_id), match.model_dump_json())
            pipe.sadd(self._session_matches_key(match.session_id), match.match_id)
            pipe.execute()
        return match

    def update_match(self, match: Match) -> Match:
        with self._errors("update_match"):
            # XX: only overwrite an existing match
            updated = self._client.set(
                self._match_key(match.match_id), match.model_dump_json(), xx=True
            )
        if not updated:
            raise NotFoundError("Match", match.match_id)
        return match

    def delete_match(self, match_id: str) -> bool:
        match = self.get_match(match_id)
        if match is None:
            return False
        with self._errors("delete_match"):
            pipe = self._client.pipeline()
            pipe.delete(self._match_key(match_id))
            pipe.srem(self._session_matches_key(match.session_id), match_id)
            deleted, _ = pipe.execute()
        return bool(deleted)

    def get_match(self, match_id: str) -> Optional[Match]:
        with self._errors("get_match"):
            raw = self._client.get(self._match_key(match_id))
        return Match.model_validate_json(raw) if raw else None

    def get_matches_for_session(self, session_id: str) -> list[Match]:
        with self._errors("get_matches_for_session"):
            ids = list(self._client.smembers(self._session_matches_key(session_id)))
            raws = self._client.mget([self._match_key(i) for i in ids]) if ids else []
        matches = [Match.model_validate_json(r) for r in raws if r]
        return sorted(matches, key=_match_sort_key)

    # ── Matching lock ──

    def get_matching_lock(self, session_id: str, round_id: str) -> Optional[MatchingLock]:
        with self._errors("get_matching_lock"):
            raw = self._client.get(self._lock_key(session_id, round_id))
        return MatchingLock.model_validate_json(raw) if raw else None

    def claim_matching_lock(
        self,
        session_id: str,
        round_id: str,
        claim_id: str,
        ttl_seconds: int,
        now: Optional[datetime] = None,
    ) -> Optional[MatchingLock]:
        now = now or utc_now()
        key = self._lock_key(session_id, round_id)
        lock = MatchingLock(
            session_id=session_id,
            round_id=round_id,
            claim_id=claim_id,
            claimed_at=now,
        )
        payload = lock.model_dump_json()

        with self._errors("claim_matching_lock"):
            if self._client.set(key, payload, nx=True):
                return lock

            # Key exists: only an expired RUNNING claim may be taken over (CAS)
            with self._client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        pipe.multi()
                        pipe.set(key, payload)
                        pipe.execute()
                        return lock
                    existing = MatchingLock.model_validate_json(raw)
                    if not existing.is_expired(now, ttl_seconds):
                        pipe.unwatch()
                        return None
                    pipe.multi()
                    pipe.set(key, payload)
                    pipe.execute()
                except self._redis.WatchError:
                    return None

        log.warning(
            "matching_claim_taken_over",
            session_id=session_id,
            round_id=round_id,
            stale_claim_id=existing.claim_id,
        )
        return lock

    def complete_matching_lock(self, lock: MatchingLock) -> MatchingLock:
        key = self._lock_key(lock.session_id, lock.round_id)
        completed = lock.model_copy(update={"state": LockState.COMPLETED})

        with self._errors("complete_matching_lock"):
            with self._client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    current = MatchingLock.model_validate_json(raw) if raw else None
                    if current is None or current.claim_id != lock.claim_id:
                        pipe.unwatch()
                        raise StorageError(
                            f"Matching claim {lock.claim_id} lost for round {lock.round_id}"
                        )
                    pipe.multi()
                    pipe.set(key, completed.model_dump_json())
                    pipe.execute()
                except self._redis.WatchError as e:
                    raise StorageError(
                        f"Matching lock for round {lock.round_id} changed during completion"
                    ) from e
        return completed

    def release_matching_lock(self, session_id: str, round_id: str, claim_id: str) -> bool:
        key = self._lock_key(session_id, round_id)
        with self._errors("release_matching_lock"):
            with self._client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    current = MatchingLock.model_validate_json(raw) if raw else None
                    if (
                        current is None
                        or current.claim_id != claim_id
                        or current.state != LockState.RUNNING
                    ):
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    pipe.execute()
                    return True
                except self._redis.WatchError:
                    return False

    # ── Lifecycle ──

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except self._redis.RedisError as e:
            log.warning("redis_ping_failed", error=str(e))
            return False

    def close(self) -> None:
        self._client.close()
        log.info("redis_round_store_closed")
