"""
Duel Controller Service

Drives one recommendation session as a pairwise elimination tournament:
1. Seed a private copy of the base model and encode the session context
2. Rank the candidate pool and present a duel from its top tier
3. On every choice: evict the loser, train on the winner, re-rank, and draw
   a fresh opponent for the winner, who stays in its slot
4. Refill the pool from the catalog in the background when it runs low

Catalog refills are single-flight per session and never replace the pair
currently on screen; they only fill an empty slot. Training notifications for
the base model are fire-and-forget.
"""

import asyncio
import logging
import random
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

import numpy as np

from config.config import DuelConfig
from models.candidate_pool import Activity, CandidatePool, DuelState, DUEL_POSITIONS
from models.ranking_model import LinearRankingModel
from services.catalog_client import CatalogError, CatalogSource
from services.embedding_cache import EmbeddingCache
from utils import encode_context

logger = logging.getLogger(__name__)

# Recent choices kept per session for monitoring
HISTORY_SIZE = 20


class SessionState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    AWAITING_CHOICE = 'awaiting_choice'
    RESOLVING = 'resolving'
    DEPLETED = 'depleted'


class DuelController:
    """
    Session state machine for activity duels.

    One controller owns exactly one session's model parameters and candidate
    pool. Choices are serialised with an asyncio lock so model updates are
    strictly sequential.
    """

    def __init__(self, catalog: CatalogSource, config: DuelConfig = None, session_id: str = None,
                 embedding_cache: Optional[EmbeddingCache] = None, rng: random.Random = None):
        self.config = config if config is not None else DuelConfig()
        self.catalog = catalog
        self.session_id = session_id
        self.embedding_cache = embedding_cache
        self.rng = rng if rng is not None else random.Random(self.config.seed)

        self.state = SessionState.UNINITIALIZED
        self.model: Optional[LinearRankingModel] = None
        self.pool = CandidatePool(self.config.pool, self.rng)
        self.context_tags: List[str] = []
        self.context = encode_context([])
        self.duel = DuelState()
        self.lock = asyncio.Lock()

        # Background work
        self._replenish_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Task] = set()
        self.replenish_count = 0
        self.last_replenish_error: Optional[str] = None

        # Session tracking
        self.choice_count = 0
        self.history = deque(maxlen=HISTORY_SIZE)
        self.started_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, base_weights: Optional[Any], context_tags: Iterable[str],
                   initial_candidates: Iterable[Activity]) -> DuelState:
        """
        Seed the session and draw the first duel.

        This is the only place the session model is created; it is never
        re-seeded afterwards.

        Raises:
            RuntimeError: If the session was already initialised
        """
        if self.state != SessionState.UNINITIALIZED:
            raise RuntimeError(f"Session {self.session_id} is already initialised")

        self.model = LinearRankingModel(base_weights, self.config.ranking)
        self.context_tags = list(dict.fromkeys(context_tags))
        self.context = encode_context(self.context_tags)
        if len(self.context) != self.config.ranking.context_dim:
            logger.warning(
                f"Context vector has {len(self.context)} positions, expected {self.config.ranking.context_dim}"
            )
        self.started_at = datetime.now()

        self._admit(initial_candidates)
        self.pool.rank(self.context, self.model.params)
        self.duel = self.pool.draw_duel()
        self._refresh_state()

        logger.info(
            f"Initialised session {self.session_id}: {len(self.pool)} candidates, "
            f"tags={self.context_tags}, model_ready={self.model.is_ready}"
        )
        return self.duel

    async def close(self):
        """Cancel outstanding background work for this session."""
        tasks = list(self._background_tasks)
        if self._replenish_task is not None:
            tasks.append(self._replenish_task)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Closed session {self.session_id}")

    async def wait_for_background(self):
        """Wait until the refill and training notifications in flight have finished."""
        tasks = list(self._background_tasks)
        if self._replenish_task is not None:
            tasks.append(self._replenish_task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Duel resolution
    # ------------------------------------------------------------------

    @property
    def can_duel(self) -> bool:
        return self.duel.is_playable

    @property
    def is_replenishing(self) -> bool:
        return self._replenish_task is not None and not self._replenish_task.done()

    async def resolve_choice(self, winner_position: str, winner_id: Any = None) -> DuelState:
        """
        Resolve the current duel in favour of ``winner_position``.

        Args:
            winner_position: 'left' or 'right'
            winner_id: Optional id the caller believes is in that slot; a
                mismatch marks the choice as stale and it is ignored

        Returns:
            The duel to present next (unchanged if the choice was ignored)
        """
        async with self.lock:
            return self._resolve(winner_position, winner_id)

    def _resolve(self, winner_position: str, winner_id: Any) -> DuelState:
        if winner_position not in DUEL_POSITIONS:
            raise ValueError(f"Winner position must be one of {DUEL_POSITIONS}, got '{winner_position}'")

        winner = self.duel.get(winner_position)
        loser = self.duel.opposite(winner_position)

        if winner is None or loser is None:
            logger.debug(f"Ignoring choice for session {self.session_id}: no complete duel on screen")
            return self.duel
        if winner_id is not None and winner.id != winner_id:
            logger.info(f"Ignoring stale choice for session {self.session_id}: {winner_id} is no longer {winner_position}")
            return self.duel
        if winner.id == loser.id:
            logger.warning(f"Ignoring choice for session {self.session_id}: duel against itself ({winner.id})")
            return self.duel

        self.state = SessionState.RESOLVING

        # Step 1: Evict the loser
        self.pool.evict(loser.id)

        # Step 2: Train the session model on the winner
        embedding = self._resolve_embedding(winner)
        if embedding is None:
            logger.warning(f"No embedding for activity {winner.id}; skipping session model update")
        else:
            self.model.update(self.context, embedding)

        # Step 3: Re-rank the remaining pool
        self.pool.rank(self.context, self.model.params)

        self.choice_count += 1
        self.history.append({
            'winner_id': winner.id,
            'loser_id': loser.id,
            'timestamp': datetime.now()
        })

        # Step 4: Notify the base model trainer without waiting
        self._spawn(self._notify_training(winner.id))

        # Step 5: Refill in the background when running low
        if len(self.pool) <= self.config.pool.replenish_threshold:
            self.request_replenishment()

        # Step 6: Keep the winner in place, replace only the loser
        opponent = self.pool.draw_opponent(winner)
        loser_position = 'right' if winner_position == 'left' else 'left'
        self.duel = self.duel.with_slot(loser_position, opponent)
        self._refresh_state()

        return self.duel

    def _resolve_embedding(self, activity: Activity) -> Optional[np.ndarray]:
        """Embedding carried by the activity, falling back to the cache."""
        if activity.has_embedding:
            return activity.embedding
        if self.embedding_cache is None:
            return None
        embedding = self.embedding_cache.get(activity.id)
        if embedding is not None:
            activity.embedding = embedding
        return embedding

    async def prefetch_embeddings(self, activities: Iterable[Activity]) -> int:
        """Warm the cache for activities arriving without an embedding."""
        if self.embedding_cache is None:
            return 0
        return await self.embedding_cache.prefetch(
            activity.id for activity in activities if not activity.has_embedding
        )

    def _admit(self, activities: Iterable[Activity]) -> List[Activity]:
        activities = list(activities)
        for activity in activities:
            self._resolve_embedding(activity)
        return self.pool.merge(activities)

    def _refresh_state(self):
        if self.duel.is_playable:
            self.state = SessionState.AWAITING_CHOICE
        else:
            self.state = SessionState.DEPLETED
            logger.info(f"Session {self.session_id} cannot duel: {len(self.pool)} candidates left")

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def request_replenishment(self) -> asyncio.Task:
        """
        Start a background refill, or join the one already in flight.

        Must be called from a running event loop.
        """
        if self.is_replenishing:
            logger.debug(f"Refill already in flight for session {self.session_id}")
            return self._replenish_task

        self._replenish_task = asyncio.get_running_loop().create_task(self._replenish())
        return self._replenish_task

    async def _replenish(self) -> int:
        """Fetch more candidates and merge them; returns how many were added."""
        self.replenish_count += 1
        timeout = self.config.pool.replenish_timeout
        logger.info(f"Requesting more candidates for session {self.session_id} (pool size {len(self.pool)})")

        try:
            batch = await asyncio.wait_for(self.catalog.fetch_batch(self.context_tags), timeout=timeout)
        except asyncio.TimeoutError:
            self.last_replenish_error = f"Catalog refill timed out after {timeout}s"
            logger.error(f"Error fetching more recommendations for session {self.session_id}: timed out")
            return 0
        except CatalogError as e:
            self.last_replenish_error = str(e)
            logger.error(f"Error fetching more recommendations for session {self.session_id}: {e}")
            return 0
        except Exception as e:
            self.last_replenish_error = f"Unexpected catalog failure: {e}"
            logger.exception(f"Unexpected error fetching more recommendations for session {self.session_id}")
            return 0

        await self.prefetch_embeddings(batch.activities)
        async with self.lock:
            return self._merge_refill(batch.activities)

    def _merge_refill(self, activities: Iterable[Activity]) -> int:
        added = self._admit(activities)
        self.last_replenish_error = None
        self.pool.rank(self.context, self.model.params if self.model else None)

        # Fill an empty slot without replacing what is on screen
        if not self.duel.is_playable:
            pinned = self.duel.left or self.duel.right
            if pinned is None or pinned.id not in self.pool:
                self.duel = self.pool.draw_duel()
            else:
                empty_position = 'right' if self.duel.left is pinned else 'left'
                self.duel = self.duel.with_slot(empty_position, self.pool.draw_opponent(pinned))

        if self.state != SessionState.UNINITIALIZED:
            self._refresh_state()

        logger.info(f"Refill for session {self.session_id} added {len(added)} candidates (pool size {len(self.pool)})")
        return len(added)

    async def _notify_training(self, activity_id: Any):
        if not self.session_id:
            return
        try:
            await self.catalog.submit_training(self.session_id, activity_id, self.context_tags)
        except Exception as e:
            logger.warning(f"Error training base model for session {self.session_id}: {e}")

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        """Session summary for monitoring endpoints."""
        return {
            'session_id': self.session_id,
            'state': self.state.value,
            'can_duel': self.can_duel,
            'context_tags': list(self.context_tags),
            'choice_count': self.choice_count,
            'recent_choices': list(self.history),
            'started_at': self.started_at,
            'replenishing': self.is_replenishing,
            'replenish_count': self.replenish_count,
            'last_replenish_error': self.last_replenish_error,
            'pool': self.pool.get_statistics(),
            'model': self.model.get_statistics() if self.model else None
        }
