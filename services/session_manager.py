"""
Session Manager

Keeps one DuelController per session id. Sessions never share model
parameters or candidate pools; the manager only creates, looks up and
discards them.
"""

import logging
import uuid
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from config.config import DuelConfig
from services.catalog_client import CatalogError, CatalogSource
from services.duel_controller import DuelController
from services.embedding_cache import EmbeddingCache

logger = logging.getLogger(__name__)


class SessionNotFound(KeyError):
    """Raised when a session id is not registered."""


class SessionManager:
    """Registry of live duel sessions."""

    def __init__(self, catalog: CatalogSource, config: DuelConfig = None,
                 embedding_cache: Optional[EmbeddingCache] = None, max_sessions: int = 1000):
        self.catalog = catalog
        self.config = config if config is not None else DuelConfig()
        self.embedding_cache = embedding_cache
        self.max_sessions = max_sessions
        self.sessions: "OrderedDict[str, DuelController]" = OrderedDict()
        self.metrics = {
            'sessions_started': 0,
            'sessions_ended': 0,
            'start_failures': 0
        }

    async def _ensure_embeddings(self):
        if self.embedding_cache is None or self.embedding_cache.is_loaded:
            return
        try:
            await self.embedding_cache.load(self.catalog)
        except CatalogError as e:
            logger.error(f"Error fetching embeddings: {e}")

    async def start_session(self, tags: List[str]) -> DuelController:
        """
        Fetch the first batch for a tag set and start a new session.

        Raises:
            CatalogError: If the catalog cannot provide the first batch
        """
        await self._ensure_embeddings()

        try:
            batch = await self.catalog.fetch_batch(tags)
        except CatalogError:
            self.metrics['start_failures'] += 1
            raise

        session_id = batch.session_id or str(uuid.uuid4())
        if session_id in self.sessions:
            logger.warning(f"Session id {session_id} reused by catalog; replacing existing session")
            await self.end_session(session_id)

        if self.embedding_cache is not None:
            await self.embedding_cache.store_activities(batch.activities)

        controller = DuelController(
            self.catalog,
            self.config,
            session_id=session_id,
            embedding_cache=self.embedding_cache
        )
        await controller.prefetch_embeddings(batch.activities)
        controller.initialize(batch.base_weights, tags, batch.activities)

        self.sessions[session_id] = controller
        self.metrics['sessions_started'] += 1

        while len(self.sessions) > self.max_sessions:
            oldest_id = next(iter(self.sessions))
            logger.info(f"Session limit reached; discarding oldest session {oldest_id}")
            await self.end_session(oldest_id)

        return controller

    def get_session(self, session_id: str) -> DuelController:
        """Look up a live session."""
        controller = self.sessions.get(session_id)
        if controller is None:
            raise SessionNotFound(session_id)
        return controller

    async def end_session(self, session_id: str) -> bool:
        """Discard a session and its model; returns False if it did not exist."""
        controller = self.sessions.pop(session_id, None)
        if controller is None:
            return False
        await controller.close()
        self.metrics['sessions_ended'] += 1
        return True

    async def close_all(self):
        for session_id in list(self.sessions):
            await self.end_session(session_id)

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.metrics.copy()
        metrics['active_sessions'] = len(self.sessions)
        if self.embedding_cache is not None:
            metrics['embedding_cache'] = self.embedding_cache.get_metrics()
        return metrics
