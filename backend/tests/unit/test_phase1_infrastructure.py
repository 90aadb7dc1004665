# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
Phase 1 infrastructure smoke tests.
Tests config loading, logging, time utilities, InMemoryRoundStore behaviour
(including the atomic matching-lock claim), RedisRoundStore against
fakeredis, and the API skeleton.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

# ─── Config ──────────────────────────────────────────────────────────────────

def test_settings_load_defaults():
    from roundmatch.config import Settings
    s = Settings(_env_file=None, log_level="INFO", store_backend="memory")
    assert s.store_backend == "memory"
    assert s.default_group_size == 2
    assert s.score_not_met_before == 30
    assert s.score_team_rule == 20
    assert s.score_shared_topic == 10
    assert s.min_group_score == 0
    assert s.matching_trigger_window_seconds == 120
    assert s.round_grace_minutes == 5
    assert (s.host, s.port) == ("0.0.0.0", 8000)
    assert not hasattr(s, "matching_trigger_window_minutes")


def test_settings_env_override():
    from roundmatch.config import Settings
    s = Settings(_env_file=None, score_shared_topic=15, log_level="WARNING")
    assert s.score_shared_topic == 15
    assert s.log_level == "WARNING"


# ─── Logging ─────────────────────────────────────────────────────────────────

def test_log_processor_renders_statuses_and_timestamps(t0):
    from roundmatch.models.registration import RegistrationStatus
    from roundmatch.utils.logger import _render_domain_values

    event = _render_domain_values(None, "info", {
        "event": "status_reconciled",
        "status": RegistrationStatus.NO_MATCH,
        "now": t0,
        "count": 3,
    })
    assert event["status"] == "no-match"
    assert event["now"] == "2026-03-14T17:00:00+00:00"
    assert event["count"] == 3


def test_round_context_binds_and_restores():
    import structlog

    from roundmatch.utils.logger import round_context

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id="req-1")

    with round_context("s1", "r1", source="cron"):
        bound = structlog.contextvars.get_contextvars()
        assert bound == {"request_id": "req-1", "session_id": "s1", "round_id": "r1", "source": "cron"}

    assert structlog.contextvars.get_contextvars() == {"request_id": "req-1"}
    structlog.contextvars.clear_contextvars()


# ─── Time utilities ──────────────────────────────────────────────────────────

def test_parse_round_start_applies_offset():
    from roundmatch.utils.time_utils import parse_round_start
    start = parse_round_start(date(2026, 3, 14), "18:00", 1.0)
    assert start == datetime(2026, 3, 14, 17, 0, tzinfo=timezone.utc)


def test_parse_round_start_crosses_midnight():
    from roundmatch.utils.time_utils import parse_round_start
    start = parse_round_start(date(2026, 3, 14), "0:30", 1.0)
    assert start == datetime(2026, 3, 13, 23, 30, tzinfo=timezone.utc)


def test_parse_round_start_invalid():
    from roundmatch.utils.time_utils import parse_round_start
    with pytest.raises(ValueError, match="HH:MM"):
        parse_round_start(date(2026, 3, 14), "eighteen", 1.0)


def test_parse_time_override_accepts_z_suffix():
    from roundmatch.utils.time_utils import parse_time_override
    parsed = parse_time_override("2026-03-14T17:00:30Z")
    assert parsed == datetime(2026, 3, 14, 17, 0, 30, tzinfo=timezone.utc)


def test_parse_time_override_naive_is_utc():
    from roundmatch.utils.time_utils import parse_time_override
    parsed = parse_time_override("2026-03-14T17:00:00")
    assert parsed.tzinfo is not None
    assert parsed == datetime(2026, 3, 14, 17, 0, tzinfo=timezone.utc)


def test_parse_time_override_empty():
    from roundmatch.utils.time_utils import parse_time_override
    assert parse_time_override(None) is None
    assert parse_time_override("") is None


def test_round_timeline_boundaries(world, settings, t0):
    from roundmatch.utils.time_utils import round_timeline

    session = world.session()
    tl = round_timeline(session.rounds[0], settings)

    assert tl.start == t0
    assert tl.end == t0 + timedelta(minutes=10)
    assert tl.completes_at == t0 + timedelta(minutes=15)
    assert tl.confirmation_opens_at == t0 - timedelta(minutes=5)

    assert tl.in_trigger_window(t0)
    assert tl.in_trigger_window(t0 + timedelta(seconds=119))
    assert not tl.in_trigger_window(t0 + timedelta(seconds=120))
    assert not tl.in_trigger_window(t0 - timedelta(seconds=1))
    assert tl.is_live(t0 + timedelta(minutes=9))
    assert not tl.is_live(t0 + timedelta(minutes=10))
    assert tl.is_completed(t0 + timedelta(minutes=15))


# ─── InMemoryRoundStore: entities ────────────────────────────────────────────

def test_session_roundtrip_returns_copies(store, world):
    session = world.session(round_ids=("r1", "r2"))
    fetched = store.get_session(session.id)
    assert fetched.get_round("r2").start_time == "18:30"

    fetched.rounds.clear()
    assert len(store.get_session(session.id).rounds) == 2


def test_update_session_status(store, world):
    from roundmatch.core.errors import NotFoundError
    from roundmatch.models.session import SessionStatus

    world.session()
    updated = store.update_session_status("s1", SessionStatus.COMPLETED)
    assert updated.status == SessionStatus.COMPLETED
    assert store.get_session("s1").status == SessionStatus.COMPLETED

    with pytest.raises(NotFoundError):
        store.update_session_status("missing", SessionStatus.COMPLETED)


def test_participant_token_index(store):
    from roundmatch.models.session import Participant

    p = Participant(id="p1", email="a@example.com", token="tok-1", first_name="Ada")
    store.put_participant(p)
    assert store.get_participant_by_token("tok-1").id == "p1"

    # Rotating the token drops the stale index entry
    store.put_participant(p.model_copy(update={"token": "tok-2"}))
    assert store.get_participant_by_token("tok-1") is None
    assert store.get_participant_by_token("tok-2").id == "p1"


def test_registration_unique_per_round(store, world):
    from roundmatch.core.errors import RegistrationConflictError
    from roundmatch.models.registration import Registration

    world.session()
    p = world.participant()
    with pytest.raises(RegistrationConflictError):
        store.create_registration(
            Registration(participant_id=p.id, session_id="s1", round_id="r1")
        )


def test_registrations_ordered_by_registration_time(store, world):
    world.session()
    ids = [p.id for p in world.participants(4)]
    regs = store.get_registrations_for_round("s1", "r1")
    assert [r.participant_id for r in regs] == ids


def test_update_registration_status_stamps_time(store, world, t0):
    from roundmatch.models.registration import RegistrationStatus

    world.session()
    p = world.participant()
    updated = store.update_registration_status(
        p.id, "s1", "r1", RegistrationStatus.CONFIRMED,
        changed_at=t0, confirmed_at=t0,
    )
    assert updated.status == RegistrationStatus.CONFIRMED
    assert updated.last_status_update == t0
    assert store.get_registration(p.id, "s1", "r1").confirmed_at == t0


def test_update_registration_status_rejects_unknown_field(store, world):
    from roundmatch.models.registration import RegistrationStatus

    world.session()
    p = world.participant()
    with pytest.raises(ValueError, match="Unknown registration fields"):
        store.update_registration_status(
            p.id, "s1", "r1", RegistrationStatus.CONFIRMED, favourite_colour="blue"
        )


def test_update_registration_status_missing(store):
    from roundmatch.core.errors import NotFoundError
    from roundmatch.models.registration import RegistrationStatus

    with pytest.raises(NotFoundError):
        store.update_registration_status("nobody", "s1", "r1", RegistrationStatus.CONFIRMED)


def test_update_registration_status_compare_and_set(store, world, t0):
    from roundmatch.models.registration import RegistrationStatus

    world.session()
    p = world.participant(status="confirmed")
    skipped = store.update_registration_status(
        p.id, "s1", "r1", RegistrationStatus.UNCONFIRMED,
        changed_at=t0, expected_status=RegistrationStatus.REGISTERED,
    )
    assert skipped is None
    reg = store.get_registration(p.id, "s1", "r1")
    assert reg.status == RegistrationStatus.CONFIRMED
    assert reg.last_status_update != t0

    written = store.update_registration_status(
        p.id, "s1", "r1", RegistrationStatus.MATCHED,
        changed_at=t0, expected_status=RegistrationStatus.CONFIRMED,
    )
    assert written.status == RegistrationStatus.MATCHED


def test_delete_match(store):
    from roundmatch.models.match import Match, MatchMember

    store.create_match(Match(
        match_id="m1", session_id="s1", round_id="r1",
        members=[MatchMember(participant_id="a"), MatchMember(participant_id="b")],
    ))
    assert store.delete_match("m1") is True
    assert store.get_match("m1") is None
    assert store.get_matches_for_session("s1") == []
    assert store.delete_match("m1") is False


def test_match_create_update_and_participants(store):
    from roundmatch.core.errors import NotFoundError
    from roundmatch.models.match import Match, MatchMember

    match = Match(
        match_id="m1", session_id="s1", round_id="r1",
        members=[MatchMember(participant_id="a"), MatchMember(participant_id="b")],
    )
    store.create_match(match)
    match.members.append(MatchMember(participant_id="c"))
    assert len(store.get_match_participants("m1")) == 2

    store.update_match(match)
    assert [m.participant_id for m in store.get_match_participants("m1")] == ["a", "b", "c"]

    with pytest.raises(NotFoundError):
        store.update_match(match.model_copy(update={"match_id": "m2"}))
    with pytest.raises(NotFoundError):
        store.get_match_participants("m2")


# ─── InMemoryRoundStore: matching lock ───────────────────────────────────────

def test_claim_matching_lock_is_exclusive(store, t0):
    from roundmatch.models.match import LockState

    first = store.claim_matching_lock("s1", "r1", "claim-a", 300, t0)
    second = store.claim_matching_lock("s1", "r1", "claim-b", 300, t0)

    assert first is not None and first.state == LockState.RUNNING
    assert second is None
    assert store.get_matching_lock("s1", "r1").claim_id == "claim-a"


def test_expired_claim_can_be_taken_over(store, t0):
    store.claim_matching_lock("s1", "r1", "stale", 300, t0)
    later = t0 + timedelta(seconds=301)
    lock = store.claim_matching_lock("s1", "r1", "fresh", 300, later)
    assert lock is not None
    assert store.get_matching_lock("s1", "r1").claim_id == "fresh"


def test_completed_lock_never_expires(store, t0):
    lock = store.claim_matching_lock("s1", "r1", "claim-a", 300, t0)
    lock.match_count = 3
    store.complete_matching_lock(lock)

    far_future = t0 + timedelta(days=30)
    assert store.claim_matching_lock("s1", "r1", "claim-b", 300, far_future) is None
    assert store.get_matching_lock("s1", "r1").match_count == 3


def test_complete_lost_claim_raises(store, t0):
    from roundmatch.core.errors import StorageError

    lock = store.claim_matching_lock("s1", "r1", "claim-a", 300, t0)
    store.claim_matching_lock("s1", "r1", "claim-b", 300, t0 + timedelta(seconds=400))
    with pytest.raises(StorageError, match="lost"):
        store.complete_matching_lock(lock)


def test_release_only_own_running_claim(store, t0):
    store.claim_matching_lock("s1", "r1", "claim-a", 300, t0)
    assert store.release_matching_lock("s1", "r1", "claim-b") is False
    assert store.release_matching_lock("s1", "r1", "claim-a") is True
    assert store.get_matching_lock("s1", "r1") is None

    lock = store.claim_matching_lock("s1", "r1", "claim-c", 300, t0)
    store.complete_matching_lock(lock)
    assert store.release_matching_lock("s1", "r1", "claim-c") is False


# ─── RedisRoundStore ─────────────────────────────────────────────────────────

def test_redis_store_unreachable_raises_storage_error():
    pytest.importorskip("redis")
    from roundmatch.core.errors import StorageError
    from roundmatch.core.round_store import RedisRoundStore

    with pytest.raises(StorageError):
        RedisRoundStore("redis://127.0.0.1:1/0")


@pytest.fixture
def redis_store():
    fakeredis = pytest.importorskip("fakeredis")
    from roundmatch.core.round_store import RedisRoundStore

    store = RedisRoundStore(client=fakeredis.FakeRedis(decode_responses=True))
    yield store
    store.close()


def test_redis_claim_is_exclusive(redis_store, t0):
    from roundmatch.models.match import LockState

    first = redis_store.claim_matching_lock("s1", "r1", "claim-a", 300, t0)
    second = redis_store.claim_matching_lock("s1", "r1", "claim-b", 300, t0 + timedelta(seconds=10))

    assert first is not None and first.state == LockState.RUNNING
    assert second is None
    assert redis_store.get_matching_lock("s1", "r1").claim_id == "claim-a"


def test_redis_expired_claim_taken_over(redis_store, t0):
    redis_store.claim_matching_lock("s1", "r1", "stale", 300, t0)
    lock = redis_store.claim_matching_lock("s1", "r1", "fresh", 300, t0 + timedelta(seconds=301))
    assert lock is not None and lock.claim_id == "fresh"
    assert redis_store.get_matching_lock("s1", "r1").claim_id == "fresh"


def test_redis_completed_lock_never_taken_over(redis_store, t0):
    lock = redis_store.claim_matching_lock("s1", "r1", "claim-a", 300, t0)
    lock.match_count = 2
    redis_store.complete_matching_lock(lock)

    assert redis_store.claim_matching_lock("s1", "r1", "claim-b", 300, t0 + timedelta(days=1)) is None
    assert redis_store.get_matching_lock("s1", "r1").match_count == 2


def test_redis_complete_lost_claim_raises(redis_store, t0):
    from roundmatch.core.errors import StorageError
    from roundmatch.models.match import LockState

    lock = redis_store.claim_matching_lock("s1", "r1", "claim-a", 300, t0)
    redis_store.claim_matching_lock("s1", "r1", "claim-b", 300, t0 + timedelta(seconds=400))

    with pytest.raises(StorageError, match="lost"):
        redis_store.complete_matching_lock(lock)
    current = redis_store.get_matching_lock("s1", "r1")
    assert (current.claim_id, current.state) == ("claim-b", LockState.RUNNING)


def test_redis_release_only_own_running_claim(redis_store, t0):
    redis_store.claim_matching_lock("s1", "r1", "claim-a", 300, t0)
    assert redis_store.release_matching_lock("s1", "r1", "claim-b") is False
    assert redis_store.get_matching_lock("s1", "r1").claim_id == "claim-a"
    assert redis_store.release_matching_lock("s1", "r1", "claim-a") is True
    assert redis_store.get_matching_lock("s1", "r1") is None

    lock = redis_store.claim_matching_lock("s1", "r1", "claim-c", 300, t0)
    redis_store.complete_matching_lock(lock)
    assert redis_store.release_matching_lock("s1", "r1", "claim-c") is False
    assert redis_store.get_matching_lock("s1", "r1") is not None


def test_redis_duplicate_registration_conflicts(redis_store, make_world):
    from roundmatch.core.errors import RegistrationConflictError
    from roundmatch.models.registration import Registration

    world = make_world(redis_store)
    world.session()
    p = world.participant()
    with pytest.raises(RegistrationConflictError):
        redis_store.create_registration(
            Registration(participant_id=p.id, session_id="s1", round_id="r1")
        )
    assert [r.participant_id for r in redis_store.get_registrations_for_round("s1", "r1")] == [p.id]


def test_redis_update_registration_status_compare_and_set(redis_store, make_world, t0):
    from roundmatch.core.errors import NotFoundError
    from roundmatch.models.registration import RegistrationStatus

    world = make_world(redis_store)
    world.session()
    p = world.participant(status="confirmed")

    assert redis_store.update_registration_status(
        p.id, "s1", "r1", RegistrationStatus.UNCONFIRMED,
        changed_at=t0, expected_status=RegistrationStatus.REGISTERED,
    ) is None
    assert world.status_of(p.id) == "confirmed"

    written = redis_store.update_registration_status(
        p.id, "s1", "r1", RegistrationStatus.MATCHED,
        changed_at=t0, expected_status=RegistrationStatus.CONFIRMED, match_id="m1",
    )
    assert written.match_id == "m1"
    assert redis_store.get_registration(p.id, "s1", "r1").last_status_update == t0

    with pytest.raises(NotFoundError):
        redis_store.update_registration_status("nobody", "s1", "r1", RegistrationStatus.CONFIRMED)


def test_redis_delete_match_drops_session_index(redis_store):
    from roundmatch.models.match import Match, MatchMember

    for mid in ("m1", "m2"):
        redis_store.create_match(Match(
            match_id=mid, session_id="s1", round_id="r1",
            members=[MatchMember(participant_id="a"), MatchMember(participant_id="b")],
        ))
    assert redis_store.delete_match("m1") is True
    assert [m.match_id for m in redis_store.get_matches_for_session("s1")] == ["m2"]
    assert redis_store.delete_match("m1") is False


def test_redis_matching_run_end_to_end(redis_store, make_world, settings, t0):
    from roundmatch.core.matching_orchestrator import run_matching
    from roundmatch.models.match import LockState

    world = make_world(redis_store)
    world.session()
    world.participants(5, status="confirmed")

    result = run_matching(redis_store, "s1", "r1", settings=settings, now=t0)

    assert result.match_count == 2
    matches = redis_store.get_matches_for_session("s1")
    assert sorted(len(m.members) for m in matches) == [2, 3]
    assert {world.status_of(f"p{i:02d}") for i in range(1, 6)} == {"matched"}
    assert redis_store.get_matching_lock("s1", "r1").state == LockState.COMPLETED
    assert redis_store.ping() is True


# ─── API Smoke Tests ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_health_endpoint(lifespan_client):
    async with lifespan_client() as c:
        resp = await c.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["service"] == "roundmatch"
    assert data["store"] == "memory"
    assert data["store_reachable"] is True


@pytest.mark.asyncio
async def test_dashboard_unknown_token(lifespan_client):
    async with lifespan_client() as c:
        resp = await c.get("/p/no-such-token/dashboard")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_invalid_time_override_rejected(lifespan_client):
    async with lifespan_client() as c:
        resp = await c.get("/p/any/dashboard", headers={"X-Test-Time": "not-a-time"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_docs_available(lifespan_client):
    async with lifespan_client() as c:
        resp = await c.get("/docs")
    assert resp.status_code == 200
