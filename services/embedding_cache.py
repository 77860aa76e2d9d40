"""
Embedding Lookup Cache

Resolves activity embeddings by id. Lookups are served from an in-memory map;
when a Redis client is configured, embeddings are also shared through Redis.
Redis calls are blocking and run in worker threads, so the in-memory map is
filled ahead of time with ``store_activities`` and ``prefetch``. Absence is a
normal outcome: the ranking model treats activities without embeddings as
neutral.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import redis

from models.candidate_pool import Activity
from services.catalog_client import CatalogSource

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """In-memory embedding map with an optional shared Redis tier."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, ttl: int = 3600,
                 key_prefix: str = 'embedding'):
        self.redis_client = redis_client
        self.ttl = ttl
        self.key_prefix = key_prefix
        self.embeddings: Dict[Any, np.ndarray] = {}
        self.is_loaded = False
        self.metrics = {
            'hits': 0,
            'redis_hits': 0,
            'misses': 0
        }

    @classmethod
    def from_settings(cls, settings) -> 'EmbeddingCache':
        """Create a cache, connecting to Redis if the settings enable it."""
        redis_client = None
        if settings.redis_enabled:
            try:
                redis_client = redis.Redis(
                    host=settings.redis_host,
                    port=settings.redis_port,
                    password=settings.redis_password,
                    decode_responses=True
                )
                logger.info(f"Embedding cache using Redis at {settings.redis_host}:{settings.redis_port}")
            except Exception as e:
                logger.error(f"Failed to initialise Redis for embeddings: {e}")
        return cls(redis_client=redis_client, ttl=settings.embedding_cache_ttl)

    def _key(self, activity_id: Any) -> str:
        return f"{self.key_prefix}:{activity_id}"

    def __len__(self) -> int:
        return len(self.embeddings)

    def put(self, activity_id: Any, embedding) -> None:
        """Store an embedding in memory."""
        self.embeddings[activity_id] = np.asarray(embedding, dtype=np.float64)

    def get(self, activity_id: Any) -> Optional[np.ndarray]:
        """Return the in-memory embedding for an activity id, or None if unknown."""
        embedding = self.embeddings.get(activity_id)
        if embedding is None:
            self.metrics['misses'] += 1
        else:
            self.metrics['hits'] += 1
        return embedding

    def _write_redis(self, vectors: Dict[Any, np.ndarray]) -> None:
        pipeline = self.redis_client.pipeline()
        for activity_id, vector in vectors.items():
            pipeline.setex(self._key(activity_id), self.ttl, json.dumps(vector.tolist()))
        pipeline.execute()

    def _read_redis(self, activity_ids: List[Any]) -> Dict[Any, np.ndarray]:
        cached = self.redis_client.mget([self._key(activity_id) for activity_id in activity_ids])
        return {
            activity_id: np.array(json.loads(value), dtype=np.float64)
            for activity_id, value in zip(activity_ids, cached)
            if value
        }

    async def store_activities(self, activities: Iterable[Activity]) -> int:
        """Cache embeddings carried by activities; returns how many were stored."""
        vectors = {}
        for activity in activities:
            if activity.has_embedding:
                self.put(activity.id, activity.embedding)
                vectors[activity.id] = self.embeddings[activity.id]

        if self.redis_client and vectors:
            try:
                await asyncio.to_thread(self._write_redis, vectors)
            except redis.RedisError as e:
                logger.error(f"Cache set error: {e}")
        return len(vectors)

    async def prefetch(self, activity_ids: Iterable[Any]) -> int:
        """
        Pull embeddings that are not in memory yet from Redis.

        Returns:
            Number of embeddings found in Redis
        """
        if not self.redis_client:
            return 0
        wanted = [activity_id for activity_id in dict.fromkeys(activity_ids) if activity_id not in self.embeddings]
        if not wanted:
            return 0

        try:
            found = await asyncio.to_thread(self._read_redis, wanted)
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Cache get error: {e}")
            return 0

        self.embeddings.update(found)
        self.metrics['redis_hits'] += len(found)
        return len(found)

    async def load(self, source: CatalogSource) -> int:
        """Fetch the full embeddings listing once and cache it."""
        activities = await source.fetch_embeddings()
        stored = await self.store_activities(activities)
        self.is_loaded = True
        logger.info(f"Cached {stored} activity embeddings")
        return stored

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.metrics.copy()
        metrics['size'] = len(self.embeddings)
        metrics['is_loaded'] = self.is_loaded
        return metrics
