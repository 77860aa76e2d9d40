"""
Candidate Pool for Activity Duels

Holds the working set of activities for one session, ranks them with the
session model and draws duel pairs from the top tier of the ranking.
Randomness is confined to duel drawing and comes from an injectable
random source; ranking itself is a deterministic stable sort.
"""

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

import numpy as np

from config.config import PoolConfig
from models.ranking_model import ModelParameters, score
from utils import has_values, to_vector

logger = logging.getLogger(__name__)

DUEL_POSITIONS = ('left', 'right')


@dataclass(eq=False)
class Activity:
    """A recommendable activity; embedding may be unknown."""
    id: Any
    name: str
    embedding: Optional[np.ndarray] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Activity':
        """Build an activity from a catalog record."""
        extra = {k: v for k, v in data.items() if k not in ('id', 'name', 'embedding')}
        return cls(
            id=data['id'],
            name=data.get('name', str(data['id'])),
            embedding=to_vector(data.get('embedding')),
            metadata=extra
        )

    @property
    def has_embedding(self) -> bool:
        return has_values(self.embedding)

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data = {'id': self.id, 'name': self.name, 'has_embedding': self.has_embedding}
        data.update(self.metadata)
        if include_embedding and self.has_embedding:
            data['embedding'] = self.embedding.tolist()
        return data


@dataclass
class DuelState:
    """The two activities currently presented to the user."""
    left: Optional[Activity] = None
    right: Optional[Activity] = None

    @property
    def is_playable(self) -> bool:
        """True if both slots hold distinct activities."""
        return (
            self.left is not None
            and self.right is not None
            and self.left.id != self.right.id
        )

    def get(self, position: str) -> Optional[Activity]:
        if position not in DUEL_POSITIONS:
            raise ValueError(f"Duel position must be one of {DUEL_POSITIONS}, got '{position}'")
        return self.left if position == 'left' else self.right

    def opposite(self, position: str) -> Optional[Activity]:
        return self.get('right' if position == 'left' else 'left')

    def with_slot(self, position: str, activity: Optional[Activity]) -> 'DuelState':
        """Copy of this duel with one slot replaced."""
        if position == 'left':
            return DuelState(left=activity, right=self.right)
        return DuelState(left=self.left, right=activity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'left': self.left.to_dict() if self.left else None,
            'right': self.right.to_dict() if self.right else None,
            'playable': self.is_playable
        }


def top_tier_size(pool_size: int, fraction: float = 0.2, min_size: int = 2) -> int:
    """
    Number of top-ranked entries eligible for a duel.

    Example:
        >>> top_tier_size(12)
        2
        >>> top_tier_size(30)
        6
    """
    if pool_size <= 0:
        return 0
    return min(pool_size, max(min_size, math.floor(pool_size * fraction)))


def draw_duel(ranked: List[Activity], rng: random.Random,
              fraction: float = 0.2, min_size: int = 2) -> DuelState:
    """
    Draw a duel pair from the top tier of a ranked list.

    With fewer than two candidates a degenerate duel is returned: both slots
    empty for an empty list, only ``left`` filled for a single candidate.
    """
    if not ranked:
        return DuelState()
    if len(ranked) < 2:
        return DuelState(left=ranked[0], right=None)

    tier = top_tier_size(len(ranked), fraction, min_size)
    left_index = rng.randrange(tier)
    right_index = rng.randrange(tier)
    while right_index == left_index and tier > 1:
        right_index = rng.randrange(tier)

    return DuelState(left=ranked[left_index], right=ranked[right_index])


class CandidatePool:
    """
    Working set of activities for one duel session.

    Members are kept in their latest ranked order. Merging skips ids already
    present; eviction removes a single activity by id.
    """

    def __init__(self, config: PoolConfig = None, rng: random.Random = None):
        self.config = config if config is not None else PoolConfig()
        self.rng = rng if rng is not None else random.Random()
        self.members: List[Activity] = []
        self.scores: Dict[Any, float] = {}
        self.eliminated_ids: List[Any] = []
        self.total_admitted = 0

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[Activity]:
        return iter(self.members)

    def __contains__(self, activity_id: Any) -> bool:
        return any(activity.id == activity_id for activity in self.members)

    def ids(self) -> List[Any]:
        return [activity.id for activity in self.members]

    def get(self, activity_id: Any) -> Optional[Activity]:
        for activity in self.members:
            if activity.id == activity_id:
                return activity
        return None

    def merge(self, activities: Iterable[Activity]) -> List[Activity]:
        """
        Append new activities, skipping ids already in the pool.

        Returns:
            The activities actually added
        """
        known_ids = set(self.ids())
        added = []
        for activity in activities:
            if activity.id in known_ids:
                continue
            known_ids.add(activity.id)
            self.members.append(activity)
            added.append(activity)

        self.total_admitted += len(added)
        if added:
            logger.info(f"Added {len(added)} activities to pool. Pool size: {len(self.members)}")
        return added

    def evict(self, loser_id: Any) -> Optional[Activity]:
        """Remove exactly the activity with ``loser_id``; returns it, or None if absent."""
        for index, activity in enumerate(self.members):
            if activity.id == loser_id:
                del self.members[index]
                self.scores.pop(loser_id, None)
                self.eliminated_ids.append(loser_id)
                return activity

        logger.debug(f"Cannot evict activity {loser_id}: not in pool")
        return None

    def rank(self, context: np.ndarray, params: Optional[ModelParameters]) -> List[Activity]:
        """
        Re-score every member and reorder the pool by descending score.

        Equal scores keep their previous relative order, so with no usable
        model the catalog order is preserved.
        """
        self.scores = {
            activity.id: score(context, activity.embedding, params)
            for activity in self.members
        }
        self.members = sorted(self.members, key=lambda activity: self.scores[activity.id], reverse=True)
        return list(self.members)

    def tier_size(self, pool_size: int = None) -> int:
        if pool_size is None:
            pool_size = len(self.members)
        return top_tier_size(pool_size, self.config.top_tier_fraction, self.config.min_tier_size)

    def draw_duel(self) -> DuelState:
        """Draw a duel from the current (ranked) order."""
        return draw_duel(self.members, self.rng, self.config.top_tier_fraction, self.config.min_tier_size)

    def draw_opponent(self, winner: Optional[Activity]) -> Optional[Activity]:
        """
        Draw a fresh opponent for a pinned winner.

        The opponent comes from the top tier of the ranked pool with the winner
        excluded. Returns None if nobody else is left.
        """
        winner_id = winner.id if winner is not None else None
        remaining = [activity for activity in self.members if activity.id != winner_id]
        if not remaining:
            return None

        tier = self.tier_size(len(remaining))
        return remaining[self.rng.randrange(tier)]

    def get_statistics(self) -> Dict[str, Any]:
        """Summary of the pool state."""
        return {
            'size': len(self.members),
            'tier_size': self.tier_size(),
            'eliminated_count': len(self.eliminated_ids),
            'total_admitted': self.total_admitted,
            'missing_embeddings': sum(1 for activity in self.members if not activity.has_embedding),
            'top': [
                {'id': activity.id, 'name': activity.name, 'score': self.scores.get(activity.id, 0.0)}
                for activity in self.members[:5]
            ]
        }
