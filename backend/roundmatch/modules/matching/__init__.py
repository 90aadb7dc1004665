# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Matching Module
Public API for meeting history, pair scoring and greedy grouping.
"""

from roundmatch.modules.matching.group_builder import (
    GroupingPlan,
    best_group,
    best_pair,
    build_groups,
    group_score,
)
from roundmatch.modules.matching.meeting_history import (
    MeetingHistory,
    build_meeting_history,
    have_met,
    load_meeting_history,
)
from roundmatch.modules.matching.pair_scorer import (
    ScoringWeights,
    build_score_matrix,
    pair_score,
)

__all__ = [
    # Meeting history
    "MeetingHistory",
    "build_meeting_history",
    "load_meeting_history",
    "have_met",
    # Pair scoring
    "ScoringWeights",
    "pair_score",
    "build_score_matrix",
    # Grouping
    "GroupingPlan",
    "best_pair",
    "best_group",
    "group_score",
    "build_groups",
]
