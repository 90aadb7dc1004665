# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Pairing Scorer
Symmetric, additive compatibility score for every unordered pair of
confirmed participants:

  +30  never met before in this session  (novelty dominates)
  +20  team rule satisfied, both have a team
         across-teams:  team_a != team_b
         within-teams:  team_a == team_b
  +10  at least one shared topic         (capped, not per overlap)

The constants are policy and come from Settings.
Scores are materialised as an (N, N) int matrix with a zero diagonal so
the grouping engine can sum rows with numpy.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from roundmatch.config import Settings, get_settings
from roundmatch.models.match import MatchCandidate
from roundmatch.models.session import MatchingType
from roundmatch.modules.matching.meeting_history import MeetingHistory, have_met
from roundmatch.utils.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    not_met_before: int = 30
    team_rule: int = 20
    shared_topic: int = 10

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ScoringWeights":
        settings = settings or get_settings()
        return cls(
            not_met_before=settings.score_not_met_before,
            team_rule=settings.score_team_rule,
            shared_topic=settings.score_shared_topic,
        )


def _team_rule_satisfied(
    a: MatchCandidate,
    b: MatchCandidate,
    matching_type: MatchingType,
) -> bool:
    if not a.team or not b.team:
        return False
    if matching_type == MatchingType.WITHIN_TEAMS:
        return a.team == b.team
    return a.team != b.team


def pair_score(
    a: MatchCandidate,
    b: MatchCandidate,
    history: MeetingHistory,
    matching_type: MatchingType = MatchingType.ACROSS_TEAMS,
    weights: ScoringWeights = ScoringWeights(),
) -> int:
    """Score one unordered pair. pair_score(a, b) == pair_score(b, a)."""
    score = 0
    if not have_met(history, a.participant_id, b.participant_id):
        score += weights.not_met_before
    if _team_rule_satisfied(a, b, matching_type):
        score += weights.team_rule
    if set(a.topics) & set(b.topics):
        score += weights.shared_topic
    return score


def build_score_matrix(
    candidates: list[MatchCandidate],
    history: MeetingHistory,
    matching_type: MatchingType = MatchingType.ACROSS_TEAMS,
    weights: ScoringWeights = ScoringWeights(),
) -> np.ndarray:
    """
    Build the symmetric (N, N) pair score matrix.

    Row/column i corresponds to candidates[i]. Diagonal is zero.
    """
    n = len(candidates)
    matrix = np.zeros((n, n), dtype=np.int64)

    for i in range(n):
        for j in range(i + 1, n):
            s = pair_score(candidates[i], candidates[j], history, matching_type, weights)
            matrix[i, j] = s
            matrix[j, i] = s

    if n > 1:
        upper = matrix[np.triu_indices(n, k=1)]
        log.debug(
            "score_matrix_built",
            n_candidates=n,
            matching_type=matching_type.value,
            max_score=int(upper.max()),
            mean_score=round(float(upper.mean()), 2),
        )
    return matrix
