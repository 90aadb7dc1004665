# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Session, Round and Participant Models
Owned by organisers (sessions/rounds) and by the registration flow
(participants). The matching core only reads them.
"""

from __future__ import annotations

from datetime import date as date_type
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class MatchingType(str, Enum):
    ACROSS_TEAMS = "across-teams"
    WITHIN_TEAMS = "within-teams"


class RoundPhase(str, Enum):
    """Display-only phase derived from wall-clock time. Never persisted."""
    UPCOMING = "upcoming"
    CONFIRMATION_OPEN = "confirmation-open"
    LIVE = "live"
    ENDED = "ended"


class Round(BaseModel):
    """A single timed networking slot within a Session."""
    id: str
    session_id: str
    name: str = ""
    date: date_type
    start_time: str = Field(..., pattern=r"^\d{1,2}:\d{2}$", description="Local HH:MM")
    duration_minutes: int = Field(10, gt=0)
    group_size: int = Field(2, ge=2)
    confirmation_window_minutes: int = Field(5, ge=0)
    meeting_points: list[str] = Field(default_factory=list)


class Session(BaseModel):
    id: str
    name: str
    organizer_id: str = ""
    date: Optional[date_type] = None
    status: SessionStatus = SessionStatus.PUBLISHED
    matching_type: MatchingType = MatchingType.ACROSS_TEAMS
    enable_teams: bool = False
    teams: list[str] = Field(default_factory=list)
    enable_topics: bool = False
    topics: list[str] = Field(default_factory=list)
    rounds: list[Round] = Field(default_factory=list)

    def get_round(self, round_id: str) -> Optional[Round]:
        return next((r for r in self.rounds if r.id == round_id), None)


class Participant(BaseModel):
    id: str
    email: str
    token: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "Participant"
