# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Match, Matching Lock and Matching Result Models
A Match is one persisted group for a round. The MatchingLock is the
per-(session, round) idempotency record: its presence in the COMPLETED
state means matching has already run for that round.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class MatchMember(BaseModel):
    participant_id: str
    first_name: str = ""
    last_name: str = ""
    team: Optional[str] = None
    topics: list[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Match(BaseModel):
    match_id: str
    session_id: str
    round_id: str
    members: list[MatchMember] = Field(default_factory=list)
    meeting_point: str = "TBD"
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    # Matching run that created it; lets a retry find an aborted run's writes
    claim_id: Optional[str] = None

    @property
    def participant_ids(self) -> list[str]:
        return [m.participant_id for m in self.members]

    def partner_names_for(self, participant_id: str) -> list[str]:
        return [
            m.display_name for m in self.members
            if m.participant_id != participant_id
        ]


class MatchCandidate(BaseModel):
    """A confirmed participant entering the grouping engine."""
    participant_id: str
    first_name: str = ""
    last_name: str = ""
    team: Optional[str] = None
    topics: list[str] = Field(default_factory=list)
    meeting_point: Optional[str] = None

    def to_member(self) -> MatchMember:
        return MatchMember(
            participant_id=self.participant_id,
            first_name=self.first_name,
            last_name=self.last_name,
            team=self.team,
            topics=list(self.topics),
        )


class LockState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"


class MatchingLock(BaseModel):
    session_id: str
    round_id: str
    state: LockState = LockState.RUNNING
    claim_id: str
    claimed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    completed_at: Optional[datetime] = None
    match_count: int = 0
    unmatched_count: int = 0
    solo_participant: bool = False

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        """A RUNNING claim past its TTL belongs to an abandoned run."""
        if self.state == LockState.COMPLETED:
            return False
        return (now - self.claimed_at).total_seconds() >= ttl_seconds


class MatchingResult(BaseModel):
    """Outcome of one runMatching invocation."""
    session_id: str
    round_id: str
    match_count: int = 0
    unmatched_count: int = 0
    unconfirmed_count: int = 0
    solo_participant: bool = False
    already_completed: bool = False
    in_progress: bool = False
    match_ids: list[str] = Field(default_factory=list)

    @property
    def message(self) -> str:
        if self.already_completed:
            return "Matching already completed"
        if self.in_progress:
            return "Matching already in progress"
        if self.solo_participant:
            return "Solo participant marked as no-match"
        if self.match_count == 0 and self.unmatched_count == 0:
            return "No participants to match"
        return "Matching completed"


# ─── API Request/Response Schemas ────────────────────────────────────────────

class AutoMatchRequest(BaseModel):
    """Request body for POST /rounds/{round_id}/auto-match."""
    session_id: str


class AutoMatchResponse(BaseModel):
    success: bool = True
    already_completed: bool = False
    in_progress: bool = False
    match_count: int = 0
    unmatched_count: int = 0
    solo_participant: bool = False
    message: str

    @classmethod
    def from_result(cls, result: MatchingResult) -> "AutoMatchResponse":
        return cls(
            already_completed=result.already_completed,
            in_progress=result.in_progress,
            match_count=result.match_count,
            unmatched_count=result.unmatched_count,
            solo_participant=result.solo_participant,
            message=result.message,
        )


class MatchingFailure(BaseModel):
    """A round whose scheduled matching run raised; retried by the next sweep."""
    session_id: str
    round_id: str
    error: str


class RunDueResponse(BaseModel):
    """Response body for POST /matching/run-due."""
    checked_rounds: int = 0
    results: list[MatchingResult] = Field(default_factory=list)
    failures: list[MatchingFailure] = Field(default_factory=list)
