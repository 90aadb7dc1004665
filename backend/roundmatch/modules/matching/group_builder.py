# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Greedy Grouping Engine
Assembles disjoint groups of the configured size from the pair score
matrix, then decides what happens to leftovers.

  k == 2:  repeatedly take the globally best-scoring pair.
  k  > 2:  sort all pairs by score (desc); grow each seed pair by the
           remaining participant with the highest summed score against
           the current members until it has k members; keep the best
           complete group found; remove it from the pool; repeat.

Greedy, with no global assignment solver. Ties always resolve to the
earliest index in candidate order, so identical inputs give identical
groups.

Leftovers:
  exactly one leftover and ≥1 group  → absorbed into the first smallest group
  anything else                       → no-match
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Optional

import numpy as np

from roundmatch.models.match import MatchCandidate
from roundmatch.utils.logger import get_logger

log = get_logger(__name__)


@dataclass
class GroupingPlan:
    groups: list[list[MatchCandidate]] = field(default_factory=list)
    group_scores: list[int] = field(default_factory=list)
    leftovers: list[MatchCandidate] = field(default_factory=list)

    @property
    def absorb_index(self) -> Optional[int]:
        """Index of the group that absorbs a single leftover, else None."""
        if len(self.leftovers) != 1 or not self.groups:
            return None
        return min(range(len(self.groups)), key=lambda i: len(self.groups[i]))

    @property
    def unmatched(self) -> list[MatchCandidate]:
        """Leftovers that end up as no-match."""
        return [] if self.absorb_index is not None else list(self.leftovers)


def group_score(scores: np.ndarray, members: list[int]) -> int:
    """Sum of pair scores over every unordered pair in the group."""
    return int(sum(scores[a, b] for a, b in combinations(members, 2)))


def best_pair(pool: list[int], scores: np.ndarray) -> tuple[Optional[list[int]], int]:
    """Globally best pair in the pool. First maximum in pool order wins."""
    best: Optional[list[int]] = None
    best_score = -1
    for a, b in combinations(pool, 2):
        s = int(scores[a, b])
        if s > best_score:
            best, best_score = [a, b], s
    return best, best_score


def _grow_group(
    seed: list[int],
    pool: list[int],
    scores: np.ndarray,
    group_size: int,
) -> list[int]:
    group = list(seed)
    remaining = [p for p in pool if p not in group]

    while len(group) < group_size and remaining:
        # Summed affinity of each remaining participant to the current members
        affinity = scores[np.ix_(remaining, group)].sum(axis=1)
        pick = int(np.argmax(affinity))  # argmax returns the first maximum
        group.append(remaining.pop(pick))

    return group


def best_group(
    pool: list[int],
    scores: np.ndarray,
    group_size: int,
) -> tuple[Optional[list[int]], int]:
    """Best complete group reachable from any seed pair."""
    pairs = list(combinations(pool, 2))
    # Stable sort keeps pool order among equal-score seeds
    pairs.sort(key=lambda ab: int(scores[ab[0], ab[1]]), reverse=True)

    best: Optional[list[int]] = None
    best_score = -1
    for a, b in pairs:
        group = _grow_group([a, b], pool, scores, group_size)
        if len(group) < group_size:
            continue
        s = group_score(scores, group)
        if s > best_score:
            best, best_score = group, s
    return best, best_score


def build_groups(
    candidates: list[MatchCandidate],
    scores: np.ndarray,
    group_size: int = 2,
    min_group_score: int = 0,
) -> GroupingPlan:
    """
    Partition candidates into groups and leftovers.

    Args:
        candidates:      Confirmed participants in stable order
        scores:          (N, N) symmetric score matrix aligned with candidates
        group_size:      Target members per group (k ≥ 2)
        min_group_score: Groups whose total pair score falls below this are
                         not formed; grouping stops and the rest are leftovers

    Returns:
        GroupingPlan with groups in creation order.
    """
    if group_size < 2:
        raise ValueError(f"group_size must be >= 2, got {group_size}")
    if scores.shape != (len(candidates), len(candidates)):
        raise ValueError(
            f"Score matrix shape {scores.shape} does not match "
            f"{len(candidates)} candidates"
        )

    pool = list(range(len(candidates)))
    plan = GroupingPlan()

    while len(pool) >= group_size:
        if group_size == 2:
            group, score = best_pair(pool, scores)
        else:
            group, score = best_group(pool, scores, group_size)

        if group is None or score < min_group_score:
            log.debug(
                "grouping_stopped",
                remaining=len(pool),
                best_score=score,
                min_group_score=min_group_score,
            )
            break

        plan.groups.append([candidates[i] for i in group])
        plan.group_scores.append(score)
        chosen = set(group)
        pool = [p for p in pool if p not in chosen]

    plan.leftovers = [candidates[i] for i in pool]

    log.info(
        "grouping_complete",
        n_candidates=len(candidates),
        group_size=group_size,
        n_groups=len(plan.groups),
        n_leftovers=len(plan.leftovers),
        absorb_index=plan.absorb_index,
    )
    return plan
