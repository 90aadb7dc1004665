# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Meeting History Tracker
Derives, for a set of candidate participants, who each has already been
grouped with in this session by replaying every past Match.

Recomputed fresh on every matching run: O(matches × members²), which is
negligible at expected session sizes and never goes stale.
"""

from __future__ import annotations

from itertools import combinations
from typing import Iterable

from roundmatch.core.round_store import RoundStore
from roundmatch.models.match import Match
from roundmatch.utils.logger import get_logger

log = get_logger(__name__)

MeetingHistory = dict[str, set[str]]


def build_meeting_history(
    matches: Iterable[Match],
    participant_ids: Iterable[str],
) -> MeetingHistory:
    """
    Build participant_id → set of participant_ids met before.

    Every candidate gets an entry (possibly empty). Co-memberships are
    recorded symmetrically for every unordered pair within a match; pairs
    not involving a candidate are ignored.
    """
    history: MeetingHistory = {pid: set() for pid in participant_ids}

    for match in matches:
        for a, b in combinations(match.participant_ids, 2):
            if a == b:
                continue
            if a in history:
                history[a].add(b)
            if b in history:
                history[b].add(a)

    return history


def have_met(history: MeetingHistory, a: str, b: str) -> bool:
    return b in history.get(a, ()) or a in history.get(b, ())


def load_meeting_history(
    store: RoundStore,
    session_id: str,
    participant_ids: Iterable[str],
) -> MeetingHistory:
    """Replay all matches of a session from the store."""
    ids = list(participant_ids)
    matches = store.get_matches_for_session(session_id)
    history = build_meeting_history(matches, ids)

    log.debug(
        "meeting_history_loaded",
        session_id=session_id,
        n_matches=len(matches),
        n_candidates=len(ids),
        n_with_history=sum(1 for met in history.values() if met),
    )
    return history
