# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
Shared fixtures: an in-memory store, explicit Settings, a builder for
sessions / participants / registrations, and an API client that runs the
full FastAPI lifespan.

All rounds are on 2026-03-14 in organiser time (UTC+1):
  r1 18:00  → T-0 17:00 UTC
  r2 18:30  → T-0 17:30 UTC
  r3 19:00  → T-0 18:00 UTC
"""

from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest

ROUND_DATE = date(2026, 3, 14)
START_TIMES = {"r1": "18:00", "r2": "18:30", "r3": "19:00"}
T0 = datetime(2026, 3, 14, 17, 0, tzinfo=timezone.utc)
REGISTERED_AT = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class World:
    """Builds sessions and participants directly in a store."""

    def __init__(self, store) -> None:
        self.store = store
        self._n = 0

    def session(
        self,
        session_id: str = "s1",
        round_ids: tuple[str, ...] = ("r1",),
        group_size: int = 2,
        matching_type: str = "across-teams",
        meeting_points: Optional[list[str]] = None,
        status: str = "published",
    ):
        from roundmatch.models.session import MatchingType, Round, Session, SessionStatus

        rounds = [
            Round(
                id=rid,
                session_id=session_id,
                name=f"Round {rid}",
                date=ROUND_DATE,
                start_time=START_TIMES[rid],
                duration_minutes=10,
                group_size=group_size,
                confirmation_window_minutes=5,
                meeting_points=list(meeting_points or []),
            )
            for rid in round_ids
        ]
        session = Session(
            id=session_id,
            name=f"Session {session_id}",
            matching_type=MatchingType(matching_type),
            status=SessionStatus(status),
            rounds=rounds,
        )
        self.store.put_session(session)
        return session

    def participant(
        self,
        status: str = "registered",
        session_id: str = "s1",
        round_ids: tuple[str, ...] = ("r1",),
        team: Optional[str] = None,
        topics: tuple[str, ...] = (),
        first_name: Optional[str] = None,
        confirmed_at: Optional[datetime] = None,
        meeting_point: Optional[str] = None,
    ):
        from roundmatch.models.registration import Registration, RegistrationStatus
        from roundmatch.models.session import Participant

        self._n += 1
        pid = f"p{self._n:02d}"
        participant = Participant(
            id=pid,
            email=f"{pid}@example.com",
            token=f"token-{pid}",
            first_name=first_name or f"First{self._n:02d}",
            last_name="Tester",
        )
        self.store.put_participant(participant)

        reg_status = RegistrationStatus(status)
        if confirmed_at is None and reg_status == RegistrationStatus.CONFIRMED:
            confirmed_at = T0 - timedelta(minutes=3)

        for rid in round_ids:
            self.store.create_registration(Registration(
                participant_id=pid,
                session_id=session_id,
                round_id=rid,
                status=reg_status,
                team=team,
                topics=list(topics),
                meeting_point=meeting_point,
                registered_at=REGISTERED_AT + timedelta(seconds=self._n),
                last_status_update=REGISTERED_AT + timedelta(seconds=self._n),
                confirmed_at=confirmed_at,
            ))
        return participant

    def participants(self, n: int, status: str = "registered", **kwargs) -> list:
        return [self.participant(status=status, **kwargs) for _ in range(n)]

    def status_of(self, participant_id: str, session_id: str = "s1", round_id: str = "r1"):
        return self.store.get_registration(participant_id, session_id, round_id).status.value


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def settings():
    from roundmatch.config import Settings
    return Settings(_env_file=None, log_level="WARNING", round_utc_offset_hours=1.0)


@pytest.fixture
def store():
    from roundmatch.core.round_store import InMemoryRoundStore
    return InMemoryRoundStore()


@pytest.fixture
def world(store) -> World:
    return World(store)


@pytest.fixture
def make_world():
    """Factory for a World over a custom store: `make_world(FlakyStore())`."""
    return World


# ─── API client ──────────────────────────────────────────────────────────────
# ASGITransport + asgi_lifespan so the FastAPI lifespan runs
# (which calls init_round_store()) before any request is made.

@asynccontextmanager
async def _lifespan_client():
    from asgi_lifespan import LifespanManager
    from httpx import ASGITransport, AsyncClient

    from roundmatch.main import create_app
    test_app = create_app()

    async with LifespanManager(test_app) as manager:
        transport = ASGITransport(app=manager.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture
def lifespan_client(monkeypatch):
    """Factory: `async with lifespan_client() as c: ...`"""
    from roundmatch.config import get_settings

    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("ENABLE_TIME_OVERRIDE", "true")
    monkeypatch.setenv("ROUND_UTC_OFFSET_HOURS", "1.0")

    # Settings are cached; rebuild them from the patched env and drop
    # them again once monkeypatch restores it
    get_settings.cache_clear()
    yield _lifespan_client
    get_settings.cache_clear()
