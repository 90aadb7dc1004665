# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Time Utilities
Round dates and start times are stored as the organiser's wall-clock
values ("2026-03-14", "18:30") at a fixed UTC offset. Everything the
engine compares is converted to timezone-aware UTC first.

Timeline of one round:

    confirmation_opens_at ── T-0 (start) ── end ── completes_at
          T - window                       T + duration   end + grace
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from roundmatch.config import Settings, get_settings

if TYPE_CHECKING:
    from roundmatch.models.session import Round


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_minutes(value: datetime, minutes: float) -> datetime:
    return value + timedelta(minutes=minutes)


def parse_round_start(
    round_date: date,
    start_time: str,
    utc_offset_hours: float,
) -> datetime:
    """
    Combine a round date and "HH:MM" start time into an aware UTC datetime.

    Raises:
        ValueError: if start_time is not "HH:MM".
    """
    try:
        hours_str, minutes_str = start_time.split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except ValueError as e:
        raise ValueError(f"Invalid round start time '{start_time}', expected HH:MM") from e

    local = datetime(
        round_date.year, round_date.month, round_date.day, hours, minutes,
        tzinfo=timezone(timedelta(hours=utc_offset_hours)),
    )
    return local.astimezone(timezone.utc)


def parse_time_override(raw: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 "current time" override (query param or X-Test-Time).
    Returns None for empty input. A trailing "Z" is accepted.
    """
    if not raw:
        return None
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


@dataclass(frozen=True)
class RoundTimeline:
    start: datetime
    end: datetime
    completes_at: datetime
    confirmation_opens_at: datetime
    trigger_closes_at: datetime

    def in_trigger_window(self, now: datetime) -> bool:
        return self.start <= now < self.trigger_closes_at

    def is_live(self, now: datetime) -> bool:
        return self.start <= now < self.end

    def is_completed(self, now: datetime) -> bool:
        return now >= self.completes_at


def round_timeline(round_: "Round", settings: Settings | None = None) -> RoundTimeline:
    """Build the UTC timeline for a round using configured offsets and windows."""
    settings = settings or get_settings()

    start = parse_round_start(round_.date, round_.start_time, settings.round_utc_offset_hours)
    end = add_minutes(start, round_.duration_minutes)
    return RoundTimeline(
        start=start,
        end=end,
        completes_at=add_minutes(end, settings.round_grace_minutes),
        confirmation_opens_at=add_minutes(start, -round_.confirmation_window_minutes),
        trigger_closes_at=start + timedelta(seconds=settings.matching_trigger_window_seconds),
    )
