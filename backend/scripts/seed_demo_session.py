"""
RoundMatch — Demo Session Seeder
Writes a demo session (two rounds), six participants and their
registrations into the configured store (STORE_BACKEND / REDIS_URL).
Run once after starting Redis: python scripts/seed_demo_session.py

With the in-memory backend nothing outlives the process, so the script
also confirms everyone for round 1 and runs matching to show the result.
"""

import sys
from datetime import timedelta

from roundmatch.config import get_settings
from roundmatch.core.errors import RegistrationConflictError
from roundmatch.core.matching_orchestrator import run_matching
from roundmatch.core.participant_actions import confirm_attendance, register_for_round
from roundmatch.dependencies import get_round_store, init_round_store
from roundmatch.models.session import MatchingType, Participant, Round, Session
from roundmatch.utils.time_utils import round_timeline, utc_now

SESSION_ID = "demo-session"

# ─── Demo data ───────────────────────────────────────────────────────────────
PARTICIPANTS = [
    # id, first, last, team, topics
    ("p-ada", "Ada", "Lovelace", "Engineering", ["ai", "hardware"]),
    ("p-alan", "Alan", "Turing", "Research", ["ai", "cryptography"]),
    ("p-grace", "Grace", "Hopper", "Engineering", ["compilers"]),
    ("p-edsger", "Edsger", "Dijkstra", "Research", ["compilers", "algorithms"]),
    ("p-barbara", "Barbara", "Liskov", "Product", ["algorithms"]),
    ("p-ken", "Ken", "Thompson", "Product", ["hardware", "cryptography"]),
]


def build_session() -> Session:
    settings = get_settings()
    # Round 1 starts at the next full hour in organiser-local time
    local_now = utc_now() + timedelta(hours=settings.round_utc_offset_hours)
    start = (local_now + timedelta(hours=1)).replace(minute=0, second=0, microsecond=0)
    second = start + timedelta(minutes=30)

    rounds = [
        Round(
            id="demo-round-1",
            session_id=SESSION_ID,
            name="Round 1",
            date=start.date(),
            start_time=start.strftime("%H:%M"),
            duration_minutes=settings.default_round_duration_minutes,
            group_size=settings.default_group_size,
            confirmation_window_minutes=settings.default_confirmation_window_minutes,
            meeting_points=["Coffee bar", "Window table", "Lobby"],
        ),
        Round(
            id="demo-round-2",
            session_id=SESSION_ID,
            name="Round 2",
            date=second.date(),
            start_time=second.strftime("%H:%M"),
            duration_minutes=settings.default_round_duration_minutes,
            group_size=3,
            confirmation_window_minutes=settings.default_confirmation_window_minutes,
        ),
    ]
    return Session(
        id=SESSION_ID,
        name="RoundMatch Demo Evening",
        organizer_id="demo-organizer",
        date=start.date(),
        matching_type=MatchingType(settings.default_matching_type),
        enable_teams=True,
        teams=sorted({p[3] for p in PARTICIPANTS}),
        enable_topics=True,
        topics=sorted({t for p in PARTICIPANTS for t in p[4]}),
        rounds=rounds,
    )


def main() -> None:
    print("\n🤝 RoundMatch — Demo Seeder\n" + "─" * 40)

    settings = get_settings()
    init_round_store()
    store = get_round_store()
    print(f"Store backend: {settings.store_backend}\n")

    session = build_session()
    store.put_session(session)
    print(f"[ Session ] {session.name} ({session.id})")
    for r in session.rounds:
        print(f"  {r.name}: {r.date} {r.start_time}, group size {r.group_size}")

    print("\n[ Participants ]")
    for pid, first, last, team, topics in PARTICIPANTS:
        store.put_participant(Participant(
            id=pid,
            email=f"{first.lower()}@example.com",
            token=f"token-{pid}",
            first_name=first,
            last_name=last,
        ))
        for r in session.rounds:
            try:
                register_for_round(store, pid, session.id, r.id, team=team, topics=topics)
            except RegistrationConflictError:
                print(f"  ✓ {first} {last} already registered for {r.name}, skipping.")
        print(f"  {first} {last:<10} team={team:<12} dashboard: /p/token-{pid}/dashboard")

    if settings.store_backend == "memory":
        _simulate_round_one(store, session)

    print("\n" + "─" * 40)
    print("✅ Demo data ready.\n")


def _simulate_round_one(store, session: Session) -> None:
    round_ = session.rounds[0]
    start = round_timeline(round_, get_settings()).start

    print("\n[ Simulation: Round 1 ]")
    for pid, *_ in PARTICIPANTS[:5]:
        confirm_attendance(store, pid, session.id, round_.id, now=start - timedelta(minutes=2))

    result = run_matching(store, session.id, round_.id, now=start)
    print(f"  {result.message}: {result.match_count} matches, {result.unmatched_count} unmatched")
    for match in store.get_matches_for_session(session.id):
        names = ", ".join(m.display_name for m in match.members)
        print(f"  {match.meeting_point:<14} {names}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(1)
